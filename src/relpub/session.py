# src/relpub/session.py
"""
ReleaseAgent: the release publication session state machine.

Lifecycle of one session:
  start_session -> source collection (background)
               -> prefill (declared / detected package, existing listing)
               -> requirement analysis -> waiting_user
  answers      -> completion check -> publishing (background)
  publish ok   -> completed
  publish fail -> retry_needed -> error recovery
               -> waiting_user (corrective questions)
                | publishing (identical payload, bounded automatic retries)
                | failed

Concurrency:
- Sessions live in a dict guarded by a store lock; each session has its own
  RLock and every mutation happens under it.
- Collector, generator and publisher calls run outside the session lock on a
  SessionContext snapshot. Their results are applied under the lock and
  dropped when the session left the expected status meanwhile (cancelled,
  externally completed).
- A publish loop is dispatched only when a session enters `publishing` from
  outside the loop, and never while `_SessionEntry.publishing` is set. The
  loop clears that flag under the session lock in the same critical section
  where it gives up ownership, so at most one attempt is in flight.
- Callers may only request `cancelled`, `failed` or (once every question is
  answered) `publishing`; `completed` is reached through a successful publish.
"""
from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

from relpub.analysis import derive_requests, fallback_requests
from relpub.automation import prefill
from relpub.collector import SourceCollector
from relpub.errors import (
    CollaboratorError,
    InvalidTransitionError,
    SessionClosedError,
    SessionNotFoundError,
    UnknownFieldError,
)
from relpub.llm import TextGenerator
from relpub.models import (
    CALLER_TARGETS,
    AgentStatus,
    DataCollectionRequest,
    ReleaseSession,
    SessionContext,
    SessionStatus,
    ValidationResult,
    can_transition,
)
from relpub.publish import ListingLookup, StorePublisher, missing_mandatory_fields, publish_release
from relpub.recovery import derive_corrections
from relpub.render import render_session_summary
from relpub.validation import validate

logger = logging.getLogger(__name__)

SOURCE_AGENT = "source"


@dataclass
class _SessionEntry:
    session: ReleaseSession
    lock: threading.RLock = field(default_factory=threading.RLock)
    futures: List[Future] = field(default_factory=list)
    publishing: bool = False  # a publish loop owns the session


class ReleaseAgent:
    def __init__(
        self,
        collector: SourceCollector,
        publisher: StorePublisher,
        generator: Optional[TextGenerator] = None,
        *,
        max_auto_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        max_workers: int = 4,
        executor: Optional[Executor] = None,
        auto_fill: bool = True,
    ) -> None:
        self.collector = collector
        self.publisher = publisher
        self.generator = generator
        self.max_auto_retries = max_auto_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.auto_fill = auto_fill

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="relpub")
        self._store_lock = threading.Lock()
        self._sessions: Dict[str, _SessionEntry] = {}
        self._stopping = threading.Event()

    # ---------- caller surface ----------

    def start_session(self, user_id: int, chat_id: int, project_ref: str) -> ReleaseSession:
        session = ReleaseSession(
            id=f"release_{user_id}_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            chat_id=chat_id,
            project_ref=project_ref,
        )
        session.agent_statuses[SOURCE_AGENT] = AgentStatus(
            name=SOURCE_AGENT, state="running", message="Collecting release data..."
        )
        entry = _SessionEntry(session=session)
        with self._store_lock:
            self._sessions[session.id] = entry

        logger.info("Started release session %s for user %s (%s)", session.id, user_id, project_ref)
        with entry.lock:
            self._submit(entry, self._collect_source, entry)
            return copy.deepcopy(session)

    def process_user_response(self, session_id: str, field_name: str, value: str) -> ValidationResult:
        """
        Validate one answer against its pending request.
        Invalid answers leave the session untouched; the result says why.
        """
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            if session.status.is_terminal:
                raise SessionClosedError(session_id, session.status.value)
            req = session.pending_for(field_name)
            if req is None:
                raise UnknownFieldError(session_id, field_name)

            result = validate(value, req)
            if not result.valid:
                logger.info("Rejected value for %s in session %s: %s", field_name, session_id, result.error_message)
                return result

            session.accept(field_name, value.strip())
            logger.info(
                "Collected %s for session %s (%d pending)", field_name, session_id, len(session.pending_requests)
            )
            if not session.pending_requests:
                self._on_requests_drained(entry)
            return result

    def get_session(self, session_id: str) -> ReleaseSession:
        entry = self._entry(session_id)
        with entry.lock:
            return copy.deepcopy(entry.session)

    def is_ready_for_publishing(self, session_id: str) -> bool:
        with self._store_lock:
            entry = self._sessions.get(session_id)
        if entry is None:
            return False
        with entry.lock:
            return self._is_ready(entry.session)

    def complete_session(self, session_id: str, status: Union[SessionStatus, str]) -> ReleaseSession:
        """
        External status command.
        `cancelled` and `failed` follow the transition table. `publishing` is
        accepted only from `waiting_user` with no pending question, every
        mandatory field collected and no publish loop running.
        """
        target = SessionStatus(status)
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            current = session.status.value
            if target not in CALLER_TARGETS:
                raise InvalidTransitionError(current, target.value, "reached by the workflow only")
            if target == SessionStatus.PUBLISHING:
                reason = self._publish_blocker(entry)
                if reason:
                    raise InvalidTransitionError(current, target.value, reason)
                self._start_publishing(entry)
            else:
                session.transition(target)
            logger.info("Session %s moved to %s by caller", session_id, target.value)
            return copy.deepcopy(session)

    def cancel_session(self, session_id: str) -> ReleaseSession:
        return self.complete_session(session_id, SessionStatus.CANCELLED)

    def get_user_active_session(self, user_id: int) -> Optional[ReleaseSession]:
        with self._store_lock:
            entries = list(self._sessions.values())
        active: List[ReleaseSession] = []
        for entry in entries:
            with entry.lock:
                if entry.session.user_id == user_id and not entry.session.status.is_terminal:
                    active.append(copy.deepcopy(entry.session))
        if not active:
            return None
        return max(active, key=lambda s: s.created_at)

    def session_summary(self, session_id: str) -> str:
        return render_session_summary(self.get_session(session_id))

    def wait(self, session_id: str, timeout: Optional[float] = None) -> bool:
        """
        Block until the session has no background work left.
        Tasks may schedule follow-up tasks, so this drains repeatedly.
        Returns False on timeout.
        """
        entry = self._entry(session_id)
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with entry.lock:
                entry.futures = [f for f in entry.futures if not f.done()]
                pending = list(entry.futures)
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait_futures(pending, timeout=remaining)

    def shutdown(self, wait: bool = True) -> None:
        self._stopping.set()
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    # ---------- internals ----------

    def _entry(self, session_id: str) -> _SessionEntry:
        with self._store_lock:
            entry = self._sessions.get(session_id)
        if entry is None:
            raise SessionNotFoundError(session_id)
        return entry

    def _submit(self, entry: _SessionEntry, fn: Callable[..., None], *args) -> None:
        # caller holds entry.lock
        entry.futures.append(self._executor.submit(self._guarded, entry, fn, *args))

    def _guarded(self, entry: _SessionEntry, fn: Callable[..., None], *args) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.exception("Background task %s failed for session %s", fn.__name__, entry.session.id)
            with entry.lock:
                session = entry.session
                session.last_error = f"Internal error: {e}"
                if can_transition(session.status, SessionStatus.FAILED):
                    session.transition(SessionStatus.FAILED)
                if session.status.is_terminal:
                    entry.publishing = False

    @staticmethod
    def _is_ready(session: ReleaseSession) -> bool:
        return not missing_mandatory_fields(session.collected_responses)

    def _publish_blocker(self, entry: _SessionEntry) -> Optional[str]:
        # caller holds entry.lock
        session = entry.session
        if entry.publishing:
            return "a publish attempt is already in flight"
        if session.status != SessionStatus.WAITING_USER:
            return "publishing starts from waiting_user"
        if session.pending_requests:
            return "pending: " + ", ".join(r.field for r in session.pending_requests)
        missing = missing_mandatory_fields(session.collected_responses)
        if missing:
            return "missing mandatory fields: " + ", ".join(missing)
        return None

    def _collect_source(self, entry: _SessionEntry) -> None:
        session = entry.session
        status = session.agent_statuses[SOURCE_AGENT]

        def progress(state: str, percent: int, message: str) -> None:
            with entry.lock:
                status.update(state, percent, message)

        data = None
        error: Optional[str] = None
        try:
            data = self.collector.collect(session.project_ref, progress)
        except CollaboratorError as e:
            error = str(e)
            logger.warning("Source collection failed for session %s, continuing without it: %s", session.id, e)

        with entry.lock:
            if session.status != SessionStatus.ACTIVE:
                logger.info("Dropping collection result for session %s (%s)", session.id, session.status.value)
                return
            session.release_data = data
            if error is not None:
                status.fail(error)
            else:
                status.update("completed", 100, "Collection finished")
            session.touch()
            ctx = session.context()

        if self.auto_fill:
            lookup = self.publisher if isinstance(self.publisher, ListingLookup) else None
            filled = prefill(ctx, self.generator, lookup)
            with entry.lock:
                if session.status != SessionStatus.ACTIVE:
                    logger.info("Dropping prefilled values for session %s (%s)", session.id, session.status.value)
                    return
                for name, value in filled.items():
                    session.collected_responses.setdefault(name, value)
                if filled:
                    session.touch()
                ctx = session.context()

        self._install_requirements(entry, ctx)

    def _install_requirements(self, entry: _SessionEntry, ctx: SessionContext) -> None:
        requests = derive_requests(ctx, self.generator)

        with entry.lock:
            session = entry.session
            if session.status not in (SessionStatus.ACTIVE, SessionStatus.WAITING_USER):
                logger.info("Dropping requirement analysis for session %s (%s)", session.id, session.status.value)
                return
            # Answers may have arrived while the analyzer ran.
            requests = [r for r in requests if r.field not in session.collected_responses]
            if not requests and not self._is_ready(session):
                requests = self._missing_mandatory_requests(session)

            session.install_requests(requests)
            session.transition(SessionStatus.WAITING_USER)
            logger.info("Session %s waiting for %d fields", session.id, len(requests))
            if not session.pending_requests:
                self._on_requests_drained(entry)

    def _missing_mandatory_requests(self, session: ReleaseSession) -> List[DataCollectionRequest]:
        missing = set(missing_mandatory_fields(session.collected_responses))
        return [r for r in fallback_requests(session.context()) if r.field in missing]

    def _on_requests_drained(self, entry: _SessionEntry) -> None:
        # caller holds entry.lock
        session = entry.session
        if session.previous_responses is not None and session.collected_responses == session.previous_responses:
            logger.info("Session %s: retry data unchanged, publishing again", session.id)
            self._start_publishing(entry)
            return

        if not self._is_ready(session):
            logger.info(
                "Session %s still misses %s, analyzing requirements again",
                session.id,
                ", ".join(missing_mandatory_fields(session.collected_responses)),
            )
            self._submit(entry, self._install_requirements, entry, session.context())
            return

        self._start_publishing(entry)

    def _start_publishing(self, entry: _SessionEntry) -> None:
        # caller holds entry.lock
        if entry.publishing:
            logger.warning("Session %s already has a publish attempt in flight", entry.session.id)
            return
        entry.session.transition(SessionStatus.PUBLISHING)
        entry.publishing = True
        self._submit(entry, self._publish_loop, entry)

    def _publish_loop(self, entry: _SessionEntry) -> None:
        # Owns the session while entry.publishing is set. Every exit clears the
        # flag under entry.lock before the lock is released.
        session = entry.session
        auto_retries = 0
        while True:
            with entry.lock:
                if session.status != SessionStatus.PUBLISHING:
                    entry.publishing = False
                    return
                ctx = session.context()

            try:
                publish_release(ctx, self.publisher)
            except Exception as e:
                error: Exception = e
            else:
                with entry.lock:
                    if session.status == SessionStatus.PUBLISHING:
                        session.transition(SessionStatus.COMPLETED)
                        logger.info("Session %s published after %d retries", session.id, session.retry_count)
                    entry.publishing = False
                return

            with entry.lock:
                if session.status != SessionStatus.PUBLISHING:
                    entry.publishing = False
                    return
                session.last_error = str(error)
                session.failed_at_step = getattr(error, "step", "store_publish")
                session.retry_count += 1
                session.previous_responses = dict(session.collected_responses)
                session.transition(SessionStatus.RETRY_NEEDED)
                ctx = session.context()
            logger.warning(
                "Publish attempt %d failed for session %s at %s: %s",
                ctx.retry_count,
                session.id,
                ctx.failed_at_step,
                error,
            )

            try:
                requests = derive_corrections(ctx, error, self.generator)
            except Exception as e:
                logger.exception("Error recovery failed for session %s", session.id)
                with entry.lock:
                    if session.status == SessionStatus.RETRY_NEEDED:
                        session.last_error = f"{error} (recovery failed: {e})"
                        session.transition(SessionStatus.FAILED)
                    entry.publishing = False
                return

            with entry.lock:
                if session.status != SessionStatus.RETRY_NEEDED:
                    entry.publishing = False
                    return
                if requests:
                    session.install_requests(requests)
                    session.transition(SessionStatus.WAITING_USER)
                    entry.publishing = False
                    logger.info(
                        "Session %s needs corrections: %s", session.id, ", ".join(r.field for r in requests)
                    )
                    return

                auto_retries += 1
                if auto_retries > self.max_auto_retries:
                    session.last_error = f"{error} (gave up after {self.max_auto_retries} automatic retries)"
                    session.transition(SessionStatus.FAILED)
                    entry.publishing = False
                    logger.error("Session %s failed: %s", session.id, session.last_error)
                    return
                session.transition(SessionStatus.PUBLISHING)

            delay = self.retry_backoff_seconds * 2 ** (auto_retries - 1)
            logger.info("Session %s: retrying identical payload in %.1fs", session.id, delay)
            if delay > 0 and self._stopping.wait(delay):
                with entry.lock:
                    entry.publishing = False
                return
