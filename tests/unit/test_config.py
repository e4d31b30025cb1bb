"""
Unit Tests for Engine Configuration and Logging
"""

import logging

import pytest

from science_buddy.config import DEFAULT_MODEL_CHAIN, EngineConfig
from science_buddy.logger import ColoredFormatter, StructuredLogger, get_logger


class TestEngineConfig:

    def test_defaults(self, monkeypatch):
        for name in ("GENERATION_MODELS", "RATE_LIMIT_BACKOFF_SECONDS", "RATE_LIMIT_RETRIES", "HISTORY_WINDOW"):
            monkeypatch.delenv(name, raising=False)

        config = EngineConfig()

        assert config.model_chain == DEFAULT_MODEL_CHAIN
        assert config.rate_limit_backoff_seconds == 1.2
        assert config.rate_limit_retries == 1
        assert config.history_window == 30
        assert config.context_list_limit == 5
        assert config.document_excerpt_chars == 15000

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("GENERATION_MODELS", "fast-model, backup-model ,")
        monkeypatch.setenv("RATE_LIMIT_RETRIES", "3")
        monkeypatch.setenv("GROQ_API_KEY", "gsk_test")

        config = EngineConfig()

        assert config.model_chain == ["fast-model", "backup-model"]
        assert config.rate_limit_retries == 3
        assert config.provider_api_key == "gsk_test"

    def test_from_env_accepts_overrides(self):
        config = EngineConfig.from_env(history_window=10)
        assert config.history_window == 10

    def test_validate_rejects_empty_chain(self):
        with pytest.raises(ValueError):
            EngineConfig(model_chain=[]).validate()

    def test_validate_rejects_negative_retries(self):
        with pytest.raises(ValueError):
            EngineConfig(model_chain=["m"], rate_limit_retries=-1).validate()

    @pytest.mark.parametrize("limit", [0, 6, 20])
    def test_validate_rejects_list_limit_outside_cap(self, limit):
        with pytest.raises(ValueError):
            EngineConfig(model_chain=["m"], context_list_limit=limit).validate()

    def test_validate_accepts_smaller_list_limit(self):
        EngineConfig(model_chain=["m"], context_list_limit=3).validate()


class TestLogging:

    def test_structured_logger_appends_data(self, caplog):
        logger = get_logger("science_buddy.test")
        assert isinstance(logger, StructuredLogger)

        with caplog.at_level(logging.INFO, logger="science_buddy.test"):
            logger.info("Turn complete", {"session": "abc", "messages": 2})

        assert "Turn complete" in caplog.text
        assert "session: abc" in caplog.text

    def test_error_includes_exception_type(self, caplog):
        logger = get_logger("science_buddy.test")

        with caplog.at_level(logging.ERROR, logger="science_buddy.test"):
            logger.error("Save failed.", error=ConnectionError("store down"))

        assert "ConnectionError: store down" in caplog.text

    def test_formatter_without_colors(self):
        formatter = ColoredFormatter(use_colors=False)
        record = logging.LogRecord(
            "science_buddy.generation_gateway", logging.INFO, __file__, 1, "served", None, None
        )

        output = formatter.format(record)

        assert "served" in output
        assert "\033[" not in output
