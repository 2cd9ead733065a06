# metrics_logger.py
# Description: Structured counters, gauges and histograms written through loguru's METRIC level.
#
# Imports
import functools
import time
from datetime import datetime, timezone
from typing import Any, Optional, Dict, Union, Callable
#
# Third-party Imports
from loguru import logger
#
# Local Imports
#
############################################################################################################
#
# Functions:

LabelValue = Union[str, int, float, bool]
LabelDict = Dict[str, LabelValue]

METRIC_LEVEL_NAME = "METRIC"

# Only the metrics sink accepts this level (see Logging_Config.py)
logger.level(METRIC_LEVEL_NAME, no=25, color="<blue>")


def _emit(name: str, kind: str, value: Any, labels: Optional[LabelDict] = None):
    logger.bind(
        event=name,
        type=kind,
        value=value,
        labels=labels or {},
        timestamp=datetime.now(timezone.utc).isoformat(),
    ).log(METRIC_LEVEL_NAME, f"{kind} {name}={value}")


def timed_request(metric_name: str):
    """
    Records the duration of an API coroutine as a histogram.

    The `outcome` label is "ok", or the exception class name when the call raised,
    so timeouts and server rejections can be told apart in the metrics log.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.perf_counter()
            outcome = "ok"
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                outcome = type(e).__name__
                raise
            finally:
                _emit(metric_name, "histogram", time.perf_counter() - started, {"outcome": outcome})

        return wrapper

    return decorator


class MetricsLogger:
    """Emits metrics that all carry the same base labels (e.g. the component name)."""

    def __init__(self, base_labels: Optional[LabelDict] = None):
        self._base_labels = base_labels or {}

    def _labels(self, labels: Optional[LabelDict]) -> LabelDict:
        return {**self._base_labels, **(labels or {})}

    def log_counter(self, name: str, value: int = 1, labels: Optional[LabelDict] = None):
        _emit(name, "counter", value, self._labels(labels))

    def log_gauge(self, name: str, value: float, labels: Optional[LabelDict] = None):
        _emit(name, "gauge", value, self._labels(labels))

    def log_histogram(self, name: str, value: float, labels: Optional[LabelDict] = None):
        _emit(name, "histogram", value, self._labels(labels))

#
# End of metrics_logger.py
############################################################################################################
