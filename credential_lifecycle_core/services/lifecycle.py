"""
Integration state machine.

Statuses move pending -> connected -> error -> connected, and any status
can move to disconnected on an explicit revoke. ``error`` is not terminal:
the health sweep retries it. A disconnected integration only comes back
through a new pending cycle (a fresh credential save).

Every transition writes an integration log row in the caller's unit of
work and queues a best-effort status event that is published once the
caller commits.
"""

from datetime import UTC, datetime, timedelta
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..config import LifecycleConfig
from ..constants import (
    CredentialKind,
    EventName,
    IntegrationAction,
    IntegrationLogLevel,
    IntegrationStatus,
    Limits,
    Timeouts,
)
from ..db.db_base import ensure_utc, utc_now
from ..db.db_integration_models import Integration
from ..exceptions import InvalidStateTransitionError
from ..utils.events import EventBus
from .base_service import SessionService
from .integration_log_service import IntegrationLogService

Status = IntegrationStatus

ALLOWED_TRANSITIONS: Mapping[Status, FrozenSet[Status]] = {
    Status.PENDING: frozenset({Status.PENDING, Status.CONNECTED, Status.ERROR, Status.DISCONNECTED}),
    Status.CONNECTED: frozenset({Status.CONNECTED, Status.PENDING, Status.ERROR, Status.DISCONNECTED}),
    Status.ERROR: frozenset({Status.ERROR, Status.PENDING, Status.CONNECTED, Status.DISCONNECTED}),
    Status.DISCONNECTED: frozenset({Status.DISCONNECTED, Status.PENDING}),
}


def can_transition(current: Union[Status, str], target: Union[Status, str]) -> bool:
    return Status(target) in ALLOWED_TRANSITIONS[Status(current)]


def clamp_health(score: int) -> int:
    return max(Limits.MIN_HEALTH_SCORE, min(Limits.MAX_HEALTH_SCORE, score))


def apply_failure_penalty(score: Optional[int], penalty: int = Limits.HEALTH_PENALTY) -> int:
    """Health after one failure: decremented, never below zero."""
    current = Limits.MAX_HEALTH_SCORE if score is None else clamp_health(score)
    return clamp_health(current - penalty)


def is_refresh_due(
    kind: Union[CredentialKind, str],
    expires_at: Optional[datetime],
    now: Optional[datetime] = None,
    threshold_seconds: int = Timeouts.REFRESH_THRESHOLD,
) -> bool:
    """
    An oauth credential is due when it expires within the threshold.

    Credentials without an expiry, and non-oauth credentials, are never due.
    """
    if expires_at is None or CredentialKind(kind) != CredentialKind.OAUTH:
        return False
    now = ensure_utc(now) or datetime.now(UTC)
    return ensure_utc(expires_at) - now <= timedelta(seconds=threshold_seconds)


class IntegrationLifecycle:
    """Applies status transitions to Integration rows."""

    def __init__(
        self,
        session: Session,
        config: Optional[LifecycleConfig] = None,
        events: Optional[EventBus] = None,
        log_service: Optional[IntegrationLogService] = None,
    ):
        self.session = session
        self.config = config or LifecycleConfig()
        self.events = events
        self.log_service = log_service or IntegrationLogService(session)
        self._pending_events: List[Tuple[EventName, Dict[str, Any]]] = []

    def transition(
        self,
        integration: Integration,
        target: Status,
        *,
        action: IntegrationAction,
        message: str,
        level: IntegrationLogLevel = IntegrationLogLevel.INFO,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> Status:
        """
        Move an integration to ``target`` and record it.

        Returns:
            The previous status

        Raises:
            InvalidStateTransitionError: If the move is not allowed
        """
        previous = Status(integration.status)
        if not can_transition(previous, target):
            raise InvalidStateTransitionError(
                previous.value, target.value, integration_id=integration.id
            )

        integration.status = target.value
        integration.updated_at = utc_now()

        self.log_service.write(
            user_id=integration.user_id,
            platform=integration.provider_key,
            action=action,
            status=target,
            level=level,
            message=message,
            error_details=error_details,
        )

        if previous != target:
            self.queue_event(
                EventName.STATUS_CHANGED,
                {
                    "integration_id": integration.id,
                    "user_id": integration.user_id,
                    "provider_key": integration.provider_key,
                    "previous_status": previous.value,
                    "status": target.value,
                },
            )
        return previous

    def queue_event(self, event: EventName, payload: Dict[str, Any]) -> None:
        """Hold an event until the unit of work commits."""
        self._pending_events.append((event, payload))

    def publish_pending(self) -> None:
        """Publish events queued since the last commit. Call after commit."""
        pending, self._pending_events = self._pending_events, []
        if self.events is None:
            return
        for event, payload in pending:
            self.events.publish(event, payload)

    def discard_pending(self) -> None:
        """Drop events of a rolled-back unit of work."""
        self._pending_events = []

    def mark_pending(self, integration: Integration, *, action: IntegrationAction, message: str) -> Status:
        """Start a new connection cycle."""
        integration.error_message = None
        return self.transition(
            integration, Status.PENDING, action=action, message=message, level=IntegrationLogLevel.SUCCESS
        )

    def mark_connected(
        self,
        integration: Integration,
        *,
        action: IntegrationAction,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        synced: bool = False,
    ) -> Status:
        """Bootstrap or refresh succeeded: health back to 100, error cleared."""
        previous = self.transition(
            integration, Status.CONNECTED, action=action, message=message, level=IntegrationLogLevel.SUCCESS
        )
        integration.health_score = Limits.MAX_HEALTH_SCORE
        integration.error_message = None
        if metadata:
            # Shallow merge, new keys win
            integration.metadata_ = {**(integration.metadata_ or {}), **metadata}
        if synced:
            now = utc_now()
            integration.last_sync_at = now
            integration.next_sync_at = now + timedelta(seconds=self.config.next_sync_offset_seconds)
        return previous

    def mark_error(
        self,
        integration: Integration,
        error_message: str,
        *,
        action: IntegrationAction,
        log_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> Status:
        """Record a failure verbatim and apply the health penalty."""
        previous = self.transition(
            integration,
            Status.ERROR,
            action=action,
            message=log_message or error_message,
            level=IntegrationLogLevel.ERROR,
            error_details={"error": error_message, **(error_details or {})},
        )
        integration.error_message = error_message
        integration.health_score = apply_failure_penalty(integration.health_score, self.config.health_penalty)
        return previous

    def mark_disconnected(
        self,
        integration: Integration,
        *,
        action: IntegrationAction,
        message: str,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> Status:
        integration.error_message = None
        return self.transition(
            integration,
            Status.DISCONNECTED,
            action=action,
            message=message,
            level=IntegrationLogLevel.INFO,
            error_details=error_details,
        )


class LifecycleBoundService(SessionService):
    """Session service that owns an IntegrationLifecycle and publishes its events on commit."""

    def __init__(
        self,
        session: Session,
        lifecycle_config: Optional[LifecycleConfig] = None,
        events: Optional[EventBus] = None,
    ):
        super().__init__(session)
        self.log_service = IntegrationLogService(session)
        self.lifecycle = IntegrationLifecycle(
            session, config=lifecycle_config, events=events, log_service=self.log_service
        )

    def _after_commit(self) -> None:
        self.lifecycle.publish_pending()

    def _after_rollback(self) -> None:
        self.lifecycle.discard_pending()
