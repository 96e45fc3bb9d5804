"""
Access request lifecycle.

Requests move pending -> approved or pending -> denied, never back. Approval
updates the request and creates its session in one unit of work over the
``requests`` and ``sessions`` keys, so a crash or concurrent write can never
leave an approved request without a session (or a session without an
approved request).
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from app.config.logger import app_logger
from app.db.store import Store, StoreKeys
from app.db.unit_of_work import run_unit_of_work
from app.models.access_request import AccessRequest, DurationKind, RequestStatus
from app.models.audit_log import ApprovalEvent, DenialEvent, RequestEvent
from app.services.audit_logger import AuditLogger
from app.services.session_manager import SessionManager
from app.utils.datetime_utils import Clock, utc_now
from app.utils.errors import ConflictError, NotFoundError, ValidationError


def parse_requests(raw_requests: Optional[List[Dict[str, Any]]]) -> List[AccessRequest]:
    requests = []
    for raw in raw_requests or []:
        try:
            requests.append(AccessRequest.model_validate(raw))
        except PydanticValidationError:
            app_logger.warning(f"Skipping malformed request entry: {raw!r:.200}")
    return requests


def _find_request(raw_requests: List[Dict[str, Any]], request_id: str) -> Tuple[int, AccessRequest]:
    for index, raw in enumerate(raw_requests):
        if raw.get("id") == request_id:
            return index, AccessRequest.model_validate(raw)
    raise NotFoundError(f"Request not found: {request_id}")


class RequestLedger:
    """Creates access requests and resolves them."""

    def __init__(
        self,
        store: Store,
        sessions: SessionManager,
        audit: AuditLogger,
        clock: Clock = utc_now,
        custom_min_minutes: int = 1,
        custom_max_minutes: int = 1440,
        max_retries: Optional[int] = None,
    ):
        self._store = store
        self._sessions = sessions
        self._audit = audit
        self._clock = clock
        self.custom_min_minutes = custom_min_minutes
        self.custom_max_minutes = custom_max_minutes
        self._max_retries = max_retries

    def _validate(
        self,
        subject_id: str,
        resource_url: str,
        duration_minutes: int,
        duration_kind: Union[DurationKind, str],
    ) -> DurationKind:
        if not subject_id or not subject_id.strip():
            raise ValidationError("subject_id is required")
        if not resource_url or not resource_url.strip():
            raise ValidationError("resource_url is required")

        try:
            kind = DurationKind(duration_kind)
        except ValueError:
            raise ValidationError(f"Unknown duration kind: {duration_kind!r}")

        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationError("duration_minutes must be a whole number of minutes")

        if kind is DurationKind.CUSTOM:
            if not self.custom_min_minutes <= duration_minutes <= self.custom_max_minutes:
                raise ValidationError(
                    f"Custom duration must be between {self.custom_min_minutes} "
                    f"and {self.custom_max_minutes} minutes",
                    detail=f"Got {duration_minutes}",
                )
        elif duration_minutes <= 0:
            raise ValidationError("Preset duration must be positive", detail=f"Got {duration_minutes}")
        return kind

    async def submit(
        self,
        subject_id: str,
        resource_url: str,
        duration_minutes: int,
        duration_kind: Union[DurationKind, str] = DurationKind.PRESET,
    ) -> str:
        """Record a new pending request.

        Returns:
            The new request id

        Raises:
            ValidationError: On a missing field or an out-of-range duration
            StoreUnavailable: If the request could not be persisted
        """
        kind = self._validate(subject_id, resource_url, duration_minutes, duration_kind)
        request = AccessRequest(
            subject_id=subject_id.strip(),
            resource_url=resource_url.strip(),
            duration_minutes=duration_minutes,
            duration_kind=kind,
            created_at=self._clock(),
        )

        def mutate(snapshot: Dict[str, Any]):
            requests = list(snapshot[StoreKeys.REQUESTS] or [])
            requests.append(request.model_dump(mode="json"))
            return {StoreKeys.REQUESTS: requests}, request.id

        await run_unit_of_work(self._store, [StoreKeys.REQUESTS], mutate, max_retries=self._max_retries)

        app_logger.info(f"Access request {request.id} submitted by {request.subject_id}")
        self._audit.record(RequestEvent(
            timestamp=request.created_at,
            subject_id=request.subject_id,
            resource_url=request.resource_url,
            request_id=request.id,
            duration_minutes=request.duration_minutes,
            duration_kind=kind.value,
            details=f"Requested {request.duration_minutes} minutes access ({kind.value})",
        ))
        return request.id

    async def approve(self, request_id: str, approver_id: str) -> AccessRequest:
        """Approve a pending request and open its session.

        Raises:
            NotFoundError: If the request does not exist
            ConflictError: If it is already resolved; carries the current status
            StoreUnavailable: If nothing could be committed
        """
        now = self._clock()

        def mutate(snapshot: Dict[str, Any]):
            requests = list(snapshot[StoreKeys.REQUESTS] or [])
            index, request = _find_request(requests, request_id)
            if request.status.is_terminal:
                raise ConflictError(
                    f"Request {request_id} is already {request.status.value}",
                    current_status=request.status.value,
                )

            expires_at = now + timedelta(minutes=request.duration_minutes)
            approved = request.model_copy(update={
                "status": RequestStatus.APPROVED,
                "approved_by": approver_id,
                "approved_at": now,
                "expires_at": expires_at,
            })
            requests[index] = {**requests[index], **approved.model_dump(mode="json")}

            sessions, _ = self._sessions.stage_session(
                snapshot[StoreKeys.SESSIONS],
                request_id=approved.id,
                subject_id=approved.subject_id,
                resource_url=approved.resource_url,
                created_at=now,
                expires_at=expires_at,
            )
            return {StoreKeys.REQUESTS: requests, StoreKeys.SESSIONS: sessions}, approved

        approved = await run_unit_of_work(
            self._store,
            [StoreKeys.REQUESTS, StoreKeys.SESSIONS],
            mutate,
            max_retries=self._max_retries,
        )
        self._sessions.invalidate_cache()

        app_logger.info(f"Request {request_id} approved by {approver_id} until {approved.expires_at.isoformat()}")
        self._audit.record(ApprovalEvent(
            timestamp=now,
            subject_id=approved.subject_id,
            resource_url=approved.resource_url,
            request_id=approved.id,
            approver_id=approver_id,
            duration_minutes=approved.duration_minutes,
            expires_at=approved.expires_at,
            details=f"Approved by {approver_id} for {approved.duration_minutes} minutes",
        ))
        return approved

    async def deny(self, request_id: str, approver_id: str) -> AccessRequest:
        """Deny a pending request.

        Raises:
            NotFoundError: If the request does not exist
            ConflictError: If it is already resolved; carries the current status
            StoreUnavailable: If nothing could be committed
        """
        now = self._clock()

        def mutate(snapshot: Dict[str, Any]):
            requests = list(snapshot[StoreKeys.REQUESTS] or [])
            index, request = _find_request(requests, request_id)
            if request.status.is_terminal:
                raise ConflictError(
                    f"Request {request_id} is already {request.status.value}",
                    current_status=request.status.value,
                )

            denied = request.model_copy(update={
                "status": RequestStatus.DENIED,
                "denied_by": approver_id,
                "denied_at": now,
            })
            requests[index] = {**requests[index], **denied.model_dump(mode="json")}
            return {StoreKeys.REQUESTS: requests}, denied

        denied = await run_unit_of_work(
            self._store, [StoreKeys.REQUESTS], mutate, max_retries=self._max_retries
        )

        app_logger.info(f"Request {request_id} denied by {approver_id}")
        self._audit.record(DenialEvent(
            timestamp=now,
            subject_id=denied.subject_id,
            resource_url=denied.resource_url,
            request_id=denied.id,
            approver_id=approver_id,
            details=f"Denied by {approver_id}",
        ))
        return denied

    async def get(self, request_id: str) -> AccessRequest:
        entry = await self._store.get(StoreKeys.REQUESTS)
        _, request = _find_request(list(entry.value or []), request_id)
        return request

    async def list_all(
        self,
        status: Optional[Union[RequestStatus, str]] = None,
        subject_contains: Optional[str] = None,
    ) -> List[AccessRequest]:
        """All requests, newest first, optionally filtered."""
        entry = await self._store.get(StoreKeys.REQUESTS)
        requests = parse_requests(entry.value)

        if status:
            wanted = RequestStatus(status)
            requests = [r for r in requests if r.status is wanted]
        if subject_contains:
            needle = subject_contains.lower()
            requests = [r for r in requests if needle in r.subject_id.lower()]

        return sorted(requests, key=lambda r: r.created_at, reverse=True)

    async def list_pending(self) -> List[AccessRequest]:
        return await self.list_all(status=RequestStatus.PENDING)

    async def pending_count(self) -> int:
        return len(await self.list_pending())
