# test_config.py
#
# Tests for the TOML settings loader, device id persistence and the logging setup built on it.
#
# Imports
import json
import sys
import tomllib
#
# Third-party Libraries
import pytest
from loguru import logger
#
# Local Imports
from incident_sync import config
from incident_sync.Logging_Config import configure_logging
from incident_sync.Metrics.metrics_logger import MetricsLogger
from incident_sync.Sync.sync_service import SyncService
#
########################################################################################################################
#
# Fixtures

@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """Points the loader at a throwaway config file and clears its cache."""
    path = tmp_path / "config" / "config.toml"
    monkeypatch.setattr(config, "DEFAULT_CONFIG_PATH", path)
    monkeypatch.setattr(config, "_CONFIG_CACHE", None)
    return path


def write_user_config(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


########################################################################################################################
#
# Tests:

def test_missing_file_is_created_with_defaults(config_path):
    settings = config.load_settings()
    assert config_path.exists()
    assert settings["sync"]["poll_interval_seconds"] == 3.0
    assert settings["api"]["base_url"] == "http://localhost:3000"
    # The written template parses to the same defaults
    with open(config_path, "rb") as f:
        assert tomllib.load(f) == config.DEFAULT_CONFIG_FROM_TOML


def test_user_values_override_defaults(config_path):
    write_user_config(config_path, '[api]\nbase_url = "https://reportes.example.org"\n[sync]\nauto_sync = false\n')
    assert config.get_cli_setting("api", "base_url") == "https://reportes.example.org"
    assert config.get_cli_setting("sync", "auto_sync") is False
    # Untouched keys keep their defaults
    assert config.get_cli_setting("sync", "submit_timeout_seconds") == 15.0
    assert config.get_cli_setting("missing", "key", "fallback") == "fallback"


def test_invalid_toml_falls_back_to_defaults(config_path):
    write_user_config(config_path, "[api\nbase_url = ")
    settings = config.load_settings()
    assert settings == config.DEFAULT_CONFIG_FROM_TOML


def test_settings_are_cached_until_forced(config_path):
    first = config.load_settings()
    write_user_config(config_path, '[general]\nlog_level = "DEBUG"\n')
    assert config.load_settings() is first
    assert config.load_settings(force_reload=True)["general"]["log_level"] == "DEBUG"


def test_deep_merge_does_not_mutate_inputs():
    base = {"a": {"x": 1, "y": 2}, "b": 1}
    update = {"a": {"y": 3}, "c": 4}
    merged = config.deep_merge_dicts(base, update)
    assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}
    assert base == {"a": {"x": 1, "y": 2}, "b": 1}


def test_device_id_is_generated_once_and_persisted(config_path):
    config.load_settings()
    device_id = config.get_or_create_device_id()
    assert len(device_id) == 32

    config.load_settings(force_reload=True)
    assert config.get_or_create_device_id() == device_id
    assert f'device_id = "{device_id}"' in config_path.read_text(encoding="utf-8")


def test_paths_follow_database_setting(config_path, tmp_path):
    db_file = tmp_path / "data" / "records.db"
    write_user_config(config_path, f'[database]\nrecords_db_path = "{db_file.as_posix()}"\n')
    assert config.get_records_db_path() == db_file.resolve()
    assert config.get_log_file_path() == db_file.resolve().parent / "incident_sync.log"
    assert config.get_metrics_log_file_path().name == "incident_sync_metrics.json"


def test_configure_logging_writes_app_and_metric_sinks(config_path, tmp_path):
    app_log = tmp_path / "logs" / "app.log"
    metrics_log = tmp_path / "logs" / "metrics.json"
    configure_logging(log_level="INFO", app_log_path=app_log, metrics_log_path=metrics_log,
                      console=False, enqueue=False)
    try:
        logger.info("capture stored")
        MetricsLogger({"component": "test"}).log_counter("records_captured_total", 2, {"kind": "report"})
    finally:
        logger.remove()
        logger.add(sys.stderr)

    app_text = app_log.read_text(encoding="utf-8")
    assert "capture stored" in app_text
    assert "records_captured_total" not in app_text

    metric = json.loads(metrics_log.read_text(encoding="utf-8").strip().splitlines()[-1])
    assert metric["event"] == "records_captured_total"
    assert metric["type"] == "counter"
    assert metric["value"] == 2
    assert metric["labels"] == {"component": "test", "kind": "report"}


@pytest.mark.asyncio
async def test_service_from_config(config_path, tmp_path):
    write_user_config(config_path, (
        f'[database]\nrecords_db_path = "{(tmp_path / "records.db").as_posix()}"\n'
        '[api]\nbase_url = "http://reports.local:8080/"\ntoken = "tok"\n'
        '[sync]\nstart_online = false\npoll_interval_seconds = 7\nauto_sync = false\n'
    ))
    service = await SyncService.from_config()
    try:
        assert service.is_online is False
        assert service.auto_sync is False
        assert service.poller.interval == 7.0
        assert service.api.base_url == "http://reports.local:8080"
        assert service.api.token == "tok"
        assert service.store.db_path_str == str((tmp_path / "records.db").resolve())
    finally:
        await service.close()

#
# End of test_config.py
########################################################################################################################
