"""Tests for configuration loading."""

from pathlib import Path

from relpub.config import DEFAULT_MODEL, Settings, build_generator
from relpub.llm import OpenAIGenerator


def test_defaults_from_empty_environment():
    settings = Settings.from_env({})
    assert settings.api_key is None
    assert settings.llm_model == DEFAULT_MODEL
    assert settings.llm_enabled is True
    assert settings.auto_fill is True
    assert settings.max_auto_retries == 3
    assert settings.retry_backoff_seconds == 1.0
    assert settings.cache_dir == Path(".cache")
    assert settings.output_dir == Path("outputs")
    assert settings.log_file is None


def test_values_from_environment():
    settings = Settings.from_env(
        {
            "API_KEY": "secret",
            "BASE_URL": "https://gateway.example.com/v1",
            "LLM_MODEL": "gpt-test",
            "LLM_ENABLED": "0",
            "AUTO_FILL": "off",
            "MAX_AUTO_RETRIES": "5",
            "RETRY_BACKOFF_SECONDS": "0.5",
            "WORKER_THREADS": "2",
            "OUTPUT_DIR": "/tmp/store",
            "LOG_FILE": "logs/run.log",
        }
    )
    assert settings.api_key == "secret"
    assert settings.base_url == "https://gateway.example.com/v1"
    assert settings.llm_model == "gpt-test"
    assert settings.llm_enabled is False
    assert settings.auto_fill is False
    assert settings.max_auto_retries == 5
    assert settings.retry_backoff_seconds == 0.5
    assert settings.worker_threads == 2
    assert settings.output_dir == Path("/tmp/store")
    assert settings.log_file == Path("logs/run.log")


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("LLM_MODEL", "from-env")
    assert Settings.from_env().llm_model == "from-env"


def test_no_generator_without_api_key():
    assert build_generator(Settings()) is None


def test_no_generator_when_disabled():
    assert build_generator(Settings(api_key="secret", llm_enabled=False)) is None


def test_generator_with_api_key():
    generator = build_generator(Settings(api_key="secret", llm_model="gpt-test", llm_temperature=0.0))
    assert isinstance(generator, OpenAIGenerator)
    assert generator.model == "gpt-test"
    assert generator.temperature == 0.0
