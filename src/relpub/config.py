# src/relpub/config.py
"""
Runtime configuration from environment variables (.env is loaded by main.py).

Secrets (API_KEY) stay out of the codebase; everything else has a sensible
default so a local run needs no configuration at all. Without API_KEY, or with
LLM_ENABLED=0, the agent runs fully deterministic (keyword / catalogue
fallbacks only).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from relpub.llm import OpenAIGenerator, TextGenerator, get_client

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "azure-oai-gpt-4.1"


def _flag(raw: Optional[str], default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    llm_model: str = DEFAULT_MODEL
    llm_temperature: float = 0.2
    llm_enabled: bool = True
    auto_fill: bool = True
    max_auto_retries: int = 3
    retry_backoff_seconds: float = 1.0
    worker_threads: int = 4
    cache_dir: Path = Path(".cache")
    output_dir: Path = Path("outputs")
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        log_file = env.get("LOG_FILE", "").strip()
        return cls(
            api_key=env.get("API_KEY") or None,
            base_url=env.get("BASE_URL") or None,
            llm_model=env.get("LLM_MODEL", DEFAULT_MODEL),
            llm_temperature=float(env.get("LLM_TEMPERATURE", "0.2")),
            llm_enabled=_flag(env.get("LLM_ENABLED"), True),
            auto_fill=_flag(env.get("AUTO_FILL"), True),
            max_auto_retries=int(env.get("MAX_AUTO_RETRIES", "3")),
            retry_backoff_seconds=float(env.get("RETRY_BACKOFF_SECONDS", "1.0")),
            worker_threads=int(env.get("WORKER_THREADS", "4")),
            cache_dir=Path(env.get("CACHE_DIR", ".cache")),
            output_dir=Path(env.get("OUTPUT_DIR", "outputs")),
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_file=Path(log_file) if log_file else None,
        )


def build_generator(settings: Settings) -> Optional[TextGenerator]:
    if not settings.llm_enabled:
        logger.info("LLM disabled by configuration, using deterministic fallbacks")
        return None
    if not settings.api_key:
        logger.warning("API_KEY not set, using deterministic fallbacks")
        return None
    client = get_client(settings.api_key, settings.base_url)
    return OpenAIGenerator(
        client,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        operation="release_publish",
    )
