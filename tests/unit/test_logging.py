"""
Tests for the logging wrapper.
"""

import logging

import pytest

from changepoint_jax.config.settings import reset_default_config
from changepoint_jax.utils.logging import (
    LevelColorFormatter,
    format_context,
    get_logger,
    log_function_call,
    setup_logging,
)


@pytest.fixture
def fresh_handlers():
    yield
    reset_default_config()
    setup_logging()


class TestFormatting:
    """Test message and record formatting."""

    def test_context_suffix(self):
        assert format_context("Compiled", {}) == "Compiled"
        assert format_context("Compiled", {"segments": 2, "family": "poisson"}) == (
            "Compiled | segments=2 family=poisson"
        )

    def test_colour_does_not_leak(self):
        record = logging.LogRecord("t", logging.WARNING, __file__, 1, "careful", None, None)
        text = LevelColorFormatter("%(levelname)s %(message)s").format(record)

        assert "\033[33m" in text
        assert record.levelname == "WARNING"


class TestLoggers:
    """Test logger caching and configuration."""

    def test_cached_by_name(self):
        assert get_logger("changepoint_jax.test") is get_logger("changepoint_jax.test")
        assert get_logger("changepoint_jax.test").logger.name == "changepoint_jax.test"

    def test_file_logging(self, tmp_path, fresh_handlers):
        log_file = tmp_path / "logs" / "run.log"
        setup_logging(level="debug", console=False, file_path=log_file)

        logger = get_logger("changepoint_jax.test.file")
        logger.debug("Parsed segment", segment=2)
        logger.info("Compiled segmented model")

        lines = log_file.read_text().splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("Parsed segment | segment=2")
        assert not get_logger("changepoint_jax.test.file").logger.propagate

    def test_level_filters(self, tmp_path, fresh_handlers):
        log_file = tmp_path / "run.log"
        setup_logging(level="WARNING", console=False, file_path=log_file)

        logger = get_logger("changepoint_jax.test.level")
        logger.info("hidden")
        logger.warning("shown")

        assert log_file.read_text().count("\n") == 1


class TestLogFunctionCall:
    """Test the call-logging decorator."""

    def test_wraps_and_reraises(self, monkeypatch):
        messages = []
        logger = get_logger(__name__)
        monkeypatch.setattr(logger, "error", lambda message, **kwargs: messages.append(kwargs))

        @log_function_call
        def explode():
            """Always fails."""
            raise KeyError("boom")

        assert explode.__name__ == "explode"
        assert explode.__doc__ == "Always fails."
        with pytest.raises(KeyError):
            explode()
        assert messages == [{"error": "KeyError"}]
