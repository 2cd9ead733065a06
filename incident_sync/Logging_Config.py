# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from .config import get_cli_setting, get_log_file_path, get_metrics_log_file_path
from .Metrics.metrics_logger import METRIC_LEVEL_NAME
#
########################################################################################################################
#
# Functions:

CONSOLE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Chatty third-party loggers that only matter at WARNING and above
NOISY_STD_LOGGERS = ("httpx", "httpcore", "asyncio")


def _is_metric(record) -> bool:
    return record["level"].name == METRIC_LEVEL_NAME


def _not_metric(record) -> bool:
    return record["level"].name != METRIC_LEVEL_NAME


def metrics_json_formatter(record) -> str:
    """Flattens a metric record (see Metrics/metrics_logger.py) into one JSON line."""
    extra = record["extra"]
    timestamp = extra.get("timestamp")
    if isinstance(timestamp, datetime):
        timestamp = timestamp.isoformat()
    log_record = {
        "time": record["time"].strftime("%Y-%m-%d %H:%M:%S.%f"),
        "event": extra.get("event"),
        "type": extra.get("type"),
        "value": extra.get("value"),
        "labels": extra.get("labels"),
        "timestamp": timestamp,
    }
    # Escape braces, loguru treats the returned string as a format template
    return json.dumps(log_record, default=str).replace("{", "{{").replace("}", "}}") + "\n"


def configure_logging(
        log_level: Optional[str] = None,
        app_log_path: Optional[Path] = None,
        metrics_log_path: Optional[Path] = None,
        console: bool = True,
        enqueue: bool = True,
):
    """
    Sets up Loguru sinks for the console, the application log file and the JSON metrics log.

    Args:
        log_level: Minimum level for console and app log. Defaults to [general] log_level.
        app_log_path: Path for the text log. Defaults to the configured log file.
        metrics_log_path: Path for the metrics log. Defaults to the configured metrics file.
        console: Disable when a TUI owns the terminal.
        enqueue: Make file sinks non-blocking.

    Returns:
        The configured logger instance.
    """
    level = (log_level or get_cli_setting("general", "log_level", "INFO")).upper()
    rotation = get_cli_setting("logging", "rotation", "10 MB")
    retention = get_cli_setting("logging", "retention", "7 days")

    logger.remove()

    for name in NOISY_STD_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if console:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, filter=_not_metric)

    app_path = app_log_path or get_log_file_path()
    app_path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(app_path),
        level=level,
        format=FILE_FORMAT,
        filter=_not_metric,
        rotation=rotation,
        retention=retention,
        enqueue=enqueue,
        backtrace=True,
    )

    metrics_path = metrics_log_path or get_metrics_log_file_path()
    metrics_path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(metrics_path),
        level=METRIC_LEVEL_NAME,
        format=metrics_json_formatter,
        filter=_is_metric,
        rotation=rotation,
        retention=5,
        enqueue=enqueue,
    )

    logger.info(f"Logging configured (level {level}). App log: {app_path}, metrics log: {metrics_path}")
    return logger

#
# End of Logging_Config.py
########################################################################################################################
