# src/relpub/logging_utils.py
"""
Logging setup for the publication agent.

One configuration for every module: console always, a log file on request
(LOG_FILE). Background workers log with their thread name so interleaved
sessions stay readable.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s"

# Chatty third-party loggers that would drown session events at DEBUG.
QUIET_LOGGERS = ("httpx", "httpcore", "openai")


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(log_level)

    logging.basicConfig(level=log_level, handlers=handlers, format=LOG_FORMAT, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
