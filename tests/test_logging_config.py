"""Log format selection tests."""

import json
import logging

from backend.config import get_settings
from backend.main import _configure_logging


def test_log_format_comes_from_env(monkeypatch) -> None:
    monkeypatch.setenv("LOG_FORMAT", "json")
    get_settings.cache_clear()

    assert get_settings().log_format == "json"


def test_json_log_lines_carry_logger_and_level(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "prod")
    monkeypatch.setenv("LOG_FORMAT", "json")
    get_settings.cache_clear()

    _configure_logging()
    handlers = logging.getLogger().handlers
    assert handlers
    formatter = handlers[0].formatter
    assert formatter is not None

    record = logging.LogRecord(
        name="backend.services.daily",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="Assignment aborted for %s",
        args=("2024-03",),
        exc_info=None,
    )
    payload = json.loads(formatter.format(record))

    assert payload["message"] == "Assignment aborted for 2024-03"
    assert payload["name"] == "backend.services.daily"
    assert payload["levelname"] == "WARNING"
