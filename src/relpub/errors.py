# src/relpub/errors.py
"""
Exception taxonomy for the release publication workflow.

Groups:
- caller misuse (surfaced directly): SessionNotFoundError, UnknownFieldError,
  SessionClosedError, InvalidTransitionError
- collaborator failures (recovered by fallback or retry): CollaboratorError,
  SourceCollectionError, AnalysisParseError
- PublishError: feeds the error-recovery loop, never terminal by itself

Field-level validation problems are not exceptions: they come back as
ValidationResult objects from relpub.validation.
"""
from __future__ import annotations

from typing import Optional


class ReleaseWorkflowError(RuntimeError):
    pass


class SessionNotFoundError(ReleaseWorkflowError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Release session not found: {session_id}")
        self.session_id = session_id


class UnknownFieldError(ReleaseWorkflowError):
    def __init__(self, session_id: str, field: str) -> None:
        super().__init__(f"Field '{field}' is not pending in session {session_id}")
        self.session_id = session_id
        self.field = field


class SessionClosedError(ReleaseWorkflowError):
    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Release session {session_id} is already {status}")
        self.session_id = session_id
        self.status = status


class InvalidTransitionError(ReleaseWorkflowError):
    def __init__(self, current: str, target: str, reason: Optional[str] = None) -> None:
        message = f"Illegal session transition: {current} -> {target}"
        super().__init__(f"{message} ({reason})" if reason else message)
        self.current = current
        self.target = target
        self.reason = reason


class CollaboratorError(ReleaseWorkflowError):
    """An external call (LLM gateway, git, store) failed."""


class SourceCollectionError(CollaboratorError):
    pass


class AnalysisParseError(ReleaseWorkflowError):
    """The classifier replied in a shape we cannot use."""


class PublishError(ReleaseWorkflowError):
    """`step` names where the attempt broke: "build_payload" or "store_publish"."""

    def __init__(self, message: str, step: str = "store_publish") -> None:
        super().__init__(message)
        self.step = step
