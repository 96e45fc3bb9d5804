"""
Time-bound access sessions.

A session is created when an access request is approved and is active while
``expires_at > now``. The enforcement front-end asks ``has_active_session``
on every gated action, so answers come from a short-lived in-memory cache of
active sessions; the cache is reloaded from the store at most once per TTL
and dropped whenever session membership changes.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.config.logger import app_logger, log_performance
from app.db.store import Store, StoreKeys
from app.db.unit_of_work import run_unit_of_work
from app.models.access_request import AccessSession
from app.models.audit_log import SessionExpiredEvent
from app.services.audit_logger import AuditLogger
from app.utils.datetime_utils import Clock, utc_now
from app.utils.errors import ConflictError, StoreUnavailable


@dataclass
class SessionCache:
    """Active sessions as of ``refreshed_at``, trusted for ``ttl_seconds``.

    ``generation`` increases on every invalidation so a reload that started
    before a write cannot install its older snapshot afterwards.
    """

    ttl_seconds: float
    sessions: Optional[List[AccessSession]] = None
    refreshed_at: Optional[datetime] = None
    generation: int = 0
    hits: int = field(default=0, repr=False)
    misses: int = field(default=0, repr=False)

    def is_fresh(self, now: datetime) -> bool:
        if self.sessions is None or self.refreshed_at is None:
            return False
        age = (now - self.refreshed_at).total_seconds()
        return 0 <= age < self.ttl_seconds

    def replace(self, sessions: List[AccessSession], now: datetime, generation: int) -> bool:
        """Install a reloaded snapshot unless the cache was invalidated meanwhile."""
        if generation != self.generation:
            return False
        self.sessions = sessions
        self.refreshed_at = now
        return True

    def invalidate(self) -> None:
        self.sessions = None
        self.refreshed_at = None
        self.generation += 1

    def find(self, subject_id: str, resource_url: str, now: datetime) -> Optional[AccessSession]:
        for session in self.sessions or []:
            if session.matches(subject_id, resource_url) and session.is_active(now):
                return session
        return None


def parse_sessions(raw_sessions: Optional[List[Dict[str, Any]]]) -> List[AccessSession]:
    """Validate stored session dicts, skipping entries that no longer parse."""
    sessions = []
    for raw in raw_sessions or []:
        try:
            sessions.append(AccessSession.model_validate(raw))
        except PydanticValidationError:
            app_logger.warning(f"Skipping malformed session entry: {raw!r:.200}")
    return sessions


class SessionManager:
    """Owns session membership and the session-check cache."""

    def __init__(
        self,
        store: Store,
        audit: AuditLogger,
        cache_ttl_seconds: float = 5.0,
        clock: Clock = utc_now,
        max_retries: Optional[int] = None,
    ):
        self._store = store
        self._audit = audit
        self._clock = clock
        self._max_retries = max_retries
        self.cache = SessionCache(ttl_seconds=cache_ttl_seconds)
        self._unsubscribe = store.subscribe(self._on_store_change)

    def close(self) -> None:
        self._unsubscribe()

    def invalidate_cache(self) -> None:
        """Force the next check onto the slow path."""
        self.cache.invalidate()

    def _on_store_change(self, keys: Set[str]) -> None:
        if StoreKeys.SESSIONS in keys:
            self.cache.invalidate()

    @staticmethod
    def stage_session(
        raw_sessions: Optional[List[Dict[str, Any]]],
        request_id: str,
        subject_id: str,
        resource_url: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> Tuple[List[Dict[str, Any]], AccessSession]:
        """Return the session collection with a new session appended.

        Pure: used inside units of work, including the request ledger's
        approval, so a request is never approved without its session.

        Raises:
            ConflictError: If a session already exists for ``request_id``
        """
        sessions = list(raw_sessions or [])
        if any(raw.get("request_id") == request_id for raw in sessions):
            raise ConflictError(f"Session already exists for request {request_id}")

        session = AccessSession(
            request_id=request_id,
            subject_id=subject_id,
            resource_url=resource_url,
            created_at=created_at,
            expires_at=expires_at,
        )
        sessions.append(session.model_dump(mode="json"))
        return sessions, session

    async def create_session(
        self,
        request_id: str,
        subject_id: str,
        resource_url: str,
        expires_at: datetime,
    ) -> AccessSession:
        """Append a session for an approved request."""
        now = self._clock()

        def mutate(snapshot: Dict[str, Any]):
            sessions, session = self.stage_session(
                snapshot[StoreKeys.SESSIONS], request_id, subject_id, resource_url, now, expires_at
            )
            return {StoreKeys.SESSIONS: sessions}, session

        session = await run_unit_of_work(
            self._store, [StoreKeys.SESSIONS], mutate, max_retries=self._max_retries
        )
        self.invalidate_cache()
        app_logger.info(f"Session created for request {request_id} until {expires_at.isoformat()}")
        return session

    async def has_active_session(
        self, subject_id: str, resource_url: str
    ) -> Tuple[bool, Optional[AccessSession]]:
        """Check whether ``subject_id`` currently holds access to ``resource_url``.

        Never raises on store failure: an unreadable store means no access.
        """
        now = self._clock()
        if self.cache.is_fresh(now):
            self.cache.hits += 1
            session = self.cache.find(subject_id, resource_url, now)
            return session is not None, session

        self.cache.misses += 1
        generation = self.cache.generation
        try:
            entry = await self._store.get(StoreKeys.SESSIONS)
        except StoreUnavailable as e:
            app_logger.warning(f"Session check for {subject_id} fell back to 'no session': {e.message}")
            return False, None

        active = [s for s in parse_sessions(entry.value) if s.is_active(now)]
        self.cache.replace(active, now, generation)

        session = next((s for s in active if s.matches(subject_id, resource_url)), None)
        return session is not None, session

    async def list_sessions(self) -> List[AccessSession]:
        """Active sessions, soonest expiry first."""
        now = self._clock()
        entry = await self._store.get(StoreKeys.SESSIONS)
        active = [s for s in parse_sessions(entry.value) if s.is_active(now)]
        return sorted(active, key=lambda s: s.expires_at)

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Delete sessions whose ``expires_at`` has passed and log each expiry.

        The expiry predicate is evaluated against the snapshot being committed,
        so a session created while the sweep runs is never removed.

        Returns:
            Number of sessions removed
        """
        started = time.perf_counter()
        now = now or self._clock()

        def mutate(snapshot: Dict[str, Any]):
            remaining, expired = [], []
            for raw in snapshot[StoreKeys.SESSIONS] or []:
                try:
                    session = AccessSession.model_validate(raw)
                except PydanticValidationError:
                    remaining.append(raw)
                    continue
                if session.is_active(now):
                    remaining.append(raw)
                else:
                    expired.append(session)
            if not expired:
                return {}, []
            return {StoreKeys.SESSIONS: remaining}, expired

        expired = await run_unit_of_work(
            self._store, [StoreKeys.SESSIONS], mutate, max_retries=self._max_retries
        )
        if not expired:
            return 0

        self.invalidate_cache()
        for session in expired:
            self._audit.record(SessionExpiredEvent(
                timestamp=now,
                subject_id=session.subject_id,
                resource_url=session.resource_url,
                request_id=session.request_id,
                details="Session expired automatically",
            ))

        app_logger.info(f"Expired {len(expired)} session(s)")
        log_performance("session_sweep", time.perf_counter() - started, removed=len(expired))
        return len(expired)
