"""Shared fixtures for the release publication tests."""

import threading
from typing import Dict, List, Optional, Union

import pytest

from relpub.collector import StaticCollector
from relpub.models import (
    CommitInfo,
    ProjectInfo,
    ReleaseAsset,
    ReleaseData,
    SessionContext,
    SourceRelease,
)
from relpub.publish import StorePayload
from relpub.session import ReleaseAgent


class RecordingPublisher:
    """StorePublisher double: records payloads, fails according to a script.

    `outcomes` is consumed one entry per attempt; an Exception entry is raised,
    None means success. Once exhausted every attempt succeeds.
    """

    def __init__(self, outcomes: Optional[List[Union[Exception, None]]] = None, always_fail: Optional[Exception] = None):
        self.outcomes = list(outcomes or [])
        self.always_fail = always_fail
        self.payloads: List[StorePayload] = []

    def publish(self, payload: StorePayload) -> None:
        self.payloads.append(payload)
        if self.always_fail is not None:
            raise self.always_fail
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if outcome is not None:
                raise outcome


class BlockingPublisher:
    """StorePublisher double that holds every call until `release` is set.

    Tracks how many publish calls run at the same time.
    """

    def __init__(self, timeout: float = 5.0):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.timeout = timeout
        self.payloads: List[StorePayload] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def publish(self, payload: StorePayload) -> None:
        with self._lock:
            self.payloads.append(payload)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            if not self.release.wait(self.timeout):
                raise RuntimeError("publish call was never released")
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def release_data() -> ReleaseData:
    return ReleaseData(
        release=SourceRelease(tag_name="v1.2.0", name="Snake 1.2.0", body="Faster snake, new levels"),
        asset=ReleaseAsset(name="snake-release.aab", download_url="https://example.com/snake.aab", size=1024),
        project=ProjectInfo(
            repo_name="snake-game",
            description="Classic snake arcade game",
            readme="# Snake\n\nA classic snake game for Android.",
            primary_language="Kotlin",
        ),
        commits=[
            CommitInfo(sha="a1b2c3d4e5f6", message="feat: add bonus levels"),
            CommitInfo(sha="0f9e8d7c6b5a", message="fix: crash on pause"),
        ],
        key_changes=["New: Add bonus levels", "Fixed: Crash on pause"],
        suggested_whats_new=["New bonus levels and a pause crash fix"],
    )


@pytest.fixture
def valid_answers() -> Dict[str, str]:
    return {
        "package_name": "com.example.snake",
        "app_name": "Snake",
        "app_type": "GAMES",
        "categories": "arcade,puzzle",
        "age_legal": "6+",
    }


@pytest.fixture
def make_context(release_data):
    def _make(collected: Optional[Dict[str, str]] = None, with_data: bool = True, **kwargs) -> SessionContext:
        return SessionContext(
            session_id="release_1_test",
            release_data=release_data if with_data else None,
            collected_responses=dict(collected or {}),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_agent(release_data):
    agents: List[ReleaseAgent] = []

    def _make(publisher=None, generator=None, collector=None, **kwargs) -> ReleaseAgent:
        kwargs.setdefault("retry_backoff_seconds", 0)
        agent = ReleaseAgent(
            collector=collector or StaticCollector(release_data),
            publisher=publisher or RecordingPublisher(),
            generator=generator,
            **kwargs,
        )
        agents.append(agent)
        return agent

    yield _make
    for agent in agents:
        agent.shutdown()


def answer_all(agent: ReleaseAgent, session_id: str, answers: Dict[str, str]) -> None:
    """Answer every pending request (in order) from `answers`; missing keys answer empty."""
    for req in agent.get_session(session_id).pending_requests:
        result = agent.process_user_response(session_id, req.field, answers.get(req.field, ""))
        assert result.valid, result.error_message
