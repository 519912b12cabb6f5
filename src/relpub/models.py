# src/relpub/models.py
"""
Domain model for release publication sessions.

Purpose:
- Describe the data flowing through one end-to-end publication attempt:
  upstream release data, outstanding questions, collected answers, progress of
  background collaborators and failure bookkeeping.
- Make the session lifecycle explicit: SessionStatus is a closed enumeration
  and every status change goes through ReleaseSession.transition(), which
  checks the transition table.

Ownership:
- Only relpub.session mutates ReleaseSession objects.
- Analyzers and the publish orchestrator receive a SessionContext snapshot
  (plain copies) and return new data.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Literal, Optional

from relpub.errors import InvalidTransitionError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    WAITING_USER = "waiting_user"
    PUBLISHING = "publishing"
    RETRY_NEEDED = "retry_needed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED}
)

# Allowed moves. Terminal states have no outgoing edges.
TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset(
        {
            SessionStatus.WAITING_USER,
            SessionStatus.PUBLISHING,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.WAITING_USER: frozenset(
        {
            SessionStatus.WAITING_USER,
            SessionStatus.PUBLISHING,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.PUBLISHING: frozenset(
        {
            SessionStatus.COMPLETED,
            SessionStatus.RETRY_NEEDED,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.RETRY_NEEDED: frozenset(
        {
            SessionStatus.WAITING_USER,
            SessionStatus.PUBLISHING,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]


# Statuses an external command may request. `completed`, `retry_needed` and
# `waiting_user` are owned by the publish loop and the analyzers; `publishing`
# is further gated by ReleaseAgent.complete_session.
CALLER_TARGETS: FrozenSet[SessionStatus] = frozenset(
    {SessionStatus.PUBLISHING, SessionStatus.FAILED, SessionStatus.CANCELLED}
)


ValidationType = Literal["text", "numeric", "url", "enum", "categories"]


@dataclass
class DataCollectionRequest:
    field: str
    display_name: str
    description: str
    required: bool
    suggestions: List[str] = field(default_factory=list)
    validation_type: ValidationType = "text"
    pattern: Optional[str] = None
    max_length: int = 0  # 0 = unlimited
    valid_values: List[str] = field(default_factory=list)
    max_categories: int = 0  # 0 = unlimited


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error_message: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, message: str, suggestions: Optional[List[str]] = None) -> "ValidationResult":
        return cls(valid=False, error_message=message, suggestions=list(suggestions or []))


AgentState = Literal["running", "completed", "failed"]


@dataclass
class AgentStatus:
    """Progress record of a background collaborator. Observational only."""

    name: str
    state: AgentState = "running"
    progress: int = 0
    message: str = ""
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    def update(self, state: AgentState, progress: int, message: str) -> None:
        self.state = state
        self.progress = max(0, min(100, int(progress)))
        self.message = message
        if state != "running" and self.completed_at is None:
            self.completed_at = utc_now()

    def fail(self, error: str) -> None:
        self.update("failed", self.progress, "Collection failed")
        self.error_message = error


# ---------- Upstream release data ----------

@dataclass(frozen=True)
class CommitInfo:
    sha: str
    message: str
    author: str = ""
    date: str = ""  # ISO-like string from git
    changed_files: List[str] = field(default_factory=list)

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


@dataclass(frozen=True)
class SourceRelease:
    tag_name: str
    name: str = ""
    body: str = ""
    prerelease: bool = False
    url: Optional[str] = None


@dataclass(frozen=True)
class ReleaseAsset:
    name: str
    download_url: str = ""
    size: int = 0

    @property
    def asset_type(self) -> str:
        lowered = self.name.lower()
        if lowered.endswith(".aab"):
            return "AAB"
        if lowered.endswith(".apk"):
            return "APK"
        return "Unknown"


@dataclass(frozen=True)
class ProjectInfo:
    repo_name: str
    description: str = ""
    readme: str = ""
    primary_language: str = ""
    topics: List[str] = field(default_factory=list)
    package_name: str = ""  # applicationId declared by the build, when found


@dataclass
class ReleaseData:
    release: Optional[SourceRelease] = None
    asset: Optional[ReleaseAsset] = None
    project: Optional[ProjectInfo] = None
    commits: List[CommitInfo] = field(default_factory=list)
    changed_files: List[str] = field(default_factory=list)
    key_changes: List[str] = field(default_factory=list)
    suggested_whats_new: List[str] = field(default_factory=list)
    confidence_score: float = 0.0
    created_at: datetime = field(default_factory=utc_now)


# ---------- Session ----------

@dataclass(frozen=True)
class SessionContext:
    """Read-only view of a session handed to analyzers and the orchestrator."""

    session_id: str
    release_data: Optional[ReleaseData]
    collected_responses: Dict[str, str]
    retry_count: int = 0
    last_error: Optional[str] = None
    failed_at_step: Optional[str] = None


@dataclass
class ReleaseSession:
    id: str
    user_id: int
    chat_id: int
    project_ref: str
    status: SessionStatus = SessionStatus.ACTIVE
    release_data: Optional[ReleaseData] = None
    agent_statuses: Dict[str, AgentStatus] = field(default_factory=dict)
    pending_requests: List[DataCollectionRequest] = field(default_factory=list)
    collected_responses: Dict[str, str] = field(default_factory=dict)
    previous_responses: Optional[Dict[str, str]] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    failed_at_step: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def transition(self, target: SessionStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransitionError(self.status.value, target.value)
        self.status = target
        self.touch()

    def pending_for(self, field_name: str) -> Optional[DataCollectionRequest]:
        for req in self.pending_requests:
            if req.field == field_name:
                return req
        return None

    def accept(self, field_name: str, value: str) -> None:
        """Move a validated answer from pending into collected."""
        self.collected_responses[field_name] = value
        self.pending_requests = [r for r in self.pending_requests if r.field != field_name]
        self.touch()

    def install_requests(self, requests: List[DataCollectionRequest]) -> None:
        """
        Replace the pending questions.
        Fields being asked again are dropped from collected_responses so a field
        is never pending and collected at the same time.
        """
        unique: List[DataCollectionRequest] = []
        seen = set()
        for req in requests:
            if req.field in seen:
                continue
            seen.add(req.field)
            unique.append(req)
        for name in seen:
            self.collected_responses.pop(name, None)
        self.pending_requests = unique
        self.touch()

    def context(self) -> SessionContext:
        return SessionContext(
            session_id=self.id,
            release_data=copy.deepcopy(self.release_data),
            collected_responses=dict(self.collected_responses),
            retry_count=self.retry_count,
            last_error=self.last_error,
            failed_at_step=self.failed_at_step,
        )
