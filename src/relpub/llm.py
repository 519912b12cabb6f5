# src/relpub/llm.py
"""
LLM client utilities.

Purpose:
- Centralize all interactions with the AI Gateway (OpenAI-compatible API)
  behind one small capability: TextGenerator.generate(messages) -> text.
- Provide a deterministic stand-in (CannedGenerator) usable anywhere the live
  client is, for tests and offline runs.
- Extract the single JSON block a structured reply is expected to embed.
- Add observability (latency + token usage) for cost/debugging.

Design choices:
- API key and gateway URL come from the environment (see relpub.config).
- Transport failures surface as CollaboratorError so analyzers can fall back.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence, Union

from openai import OpenAI, OpenAIError

from relpub.errors import AnalysisParseError, CollaboratorError

# Dedicated logger namespace so LLM telemetry can be filtered independently from the rest of the app logs.
logger = logging.getLogger("relpub.llm")


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


class TextGenerator(Protocol):
    def generate(self, messages: Sequence[ChatMessage]) -> str:
        ...


def get_client(api_key: str, base_url: Optional[str] = None) -> OpenAI:
    return OpenAI(api_key=api_key, base_url=base_url)


USAGE_KEYS = ("prompt_tokens", "completion_tokens", "total_tokens")


def usage_counts(usage: Any) -> Optional[Dict[str, int]]:
    """Token counts from an SDK usage object or a plain dict. None when absent or not numeric."""
    if usage is None:
        return None
    if isinstance(usage, dict):
        raw = [usage.get(key) for key in USAGE_KEYS]
    else:
        raw = [getattr(usage, key, None) for key in USAGE_KEYS]
    try:
        return {key: int(value or 0) for key, value in zip(USAGE_KEYS, raw)}
    except (TypeError, ValueError):
        return None


class OpenAIGenerator:
    """Live classifier backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        client: OpenAI,
        model: str = "azure-oai-gpt-4.1",
        temperature: float = 0.2,
        operation: str = "unspecified",
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature
        self.operation = operation

    def generate(self, messages: Sequence[ChatMessage]) -> str:
        t0 = time.perf_counter()
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=self.temperature,
            )
        except OpenAIError as e:
            raise CollaboratorError(f"LLM call failed: {e}") from e

        dt_ms = (time.perf_counter() - t0) * 1000.0
        usage = usage_counts(getattr(resp, "usage", None))

        logger.info(
            "llm_call op=%s model=%s latency_ms=%.1f usage=%s",
            self.operation,
            self.model,
            dt_ms,
            usage,
        )

        if not resp.choices or resp.choices[0].message.content is None:
            raise CollaboratorError("LLM returned empty content.")
        return resp.choices[0].message.content.strip()


Reply = Union[str, Exception]


class CannedGenerator:
    """
    Deterministic TextGenerator double.
    Replies are served in order; the last one repeats once the list is exhausted.
    An Exception instance in the list is raised instead of returned.
    """

    def __init__(self, replies: Sequence[Reply]) -> None:
        if not replies:
            raise ValueError("CannedGenerator needs at least one reply.")
        self._replies: List[Reply] = list(replies)
        self._lock = threading.Lock()
        self.calls: List[List[ChatMessage]] = []

    def generate(self, messages: Sequence[ChatMessage]) -> str:
        with self._lock:
            self.calls.append(list(messages))
            idx = min(len(self.calls), len(self._replies)) - 1
            reply = self._replies[idx]
        if isinstance(reply, Exception):
            raise reply
        return reply


def extract_json_block(text: str) -> Dict[str, Any]:
    """
    Return the first top-level JSON object embedded in `text`.
    Surrounding prose and ```json fences are tolerated.
    Raises AnalysisParseError when no object can be decoded.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)

    snippet = text.strip().replace("\n", " ")
    snippet = (snippet[:200] + "...") if len(snippet) > 200 else snippet
    raise AnalysisParseError(f"No JSON object found in LLM response. Snippet: {snippet}")
