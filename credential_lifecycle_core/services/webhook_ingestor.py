"""
Webhook ingestor.

Stores raw provider push events. The event is attributed to an
integration through the provider's webhook id header; events that match
no registration are kept unattributed. Processing the event body is left
to downstream consumers, which pick up rows with ``processed = false``.
"""

from typing import Any, Dict, Mapping, Optional, Union

from sqlalchemy.orm import Session

from ..constants import (
    DEFAULT_EVENT_TYPE,
    EVENT_TYPE_HEADER,
    EventName,
    IntegrationAction,
    IntegrationLogLevel,
)
from ..context.operation_context import operation
from ..db.db_base import utc_now
from ..db.db_integration_models import Integration, IntegrationEvent, IntegrationWebhook
from ..providers.registry import ProviderRegistry
from ..schemas.result_schemas import WebhookReceipt
from ..utils.events import EventBus
from ..utils.json_utils import loads
from .base_service import SessionService
from .integration_log_service import IntegrationLogService

# Never persisted with the event
REDACTED_HEADERS = frozenset({"authorization", "cookie", "proxy-authorization"})


def normalize_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Lowercase header names and drop credentials."""
    normalized = {}
    for name, value in (headers or {}).items():
        key = str(name).lower()
        if key in REDACTED_HEADERS:
            continue
        normalized[key] = str(value)
    return normalized


def parse_body(body: Union[str, bytes, Dict[str, Any], None]) -> Dict[str, Any]:
    """Parsed JSON object, or the raw text under ``rawData``."""
    if body is None:
        return {}
    if isinstance(body, dict):
        return body
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    try:
        parsed = loads(body)
    except ValueError:
        return {"rawData": body}
    return parsed if isinstance(parsed, dict) else {"data": parsed}


class WebhookIngestor(SessionService):
    def __init__(self, session: Session, registry: ProviderRegistry, events: Optional[EventBus] = None):
        super().__init__(session)
        self.registry = registry
        self.events = events
        self.log_service = IntegrationLogService(session)
        self._published = None

    @operation(name="webhook_ingestor.receive")
    def receive(
        self,
        provider_key: str,
        headers: Optional[Mapping[str, Any]],
        body: Union[str, bytes, Dict[str, Any], None],
    ) -> WebhookReceipt:
        """
        Persist one inbound webhook event.

        Raises:
            ProviderNotFoundError: If ``provider_key`` is not registered
        """
        provider = self.registry.get(provider_key)
        headers = normalize_headers(headers)
        webhook_id = headers.get(provider.config.webhook_id_header)
        event_type = headers.get(EVENT_TYPE_HEADER) or DEFAULT_EVENT_TYPE

        with self.transaction():
            registration = self._find_registration(webhook_id)
            integration = (
                self.session.get(Integration, registration.integration_id) if registration else None
            )

            event = IntegrationEvent(
                integration_id=integration.id if integration else None,
                user_id=integration.user_id if integration else None,
                provider=provider.key,
                webhook_id=webhook_id,
                event_type=event_type,
                payload=parse_body(body),
                headers=headers,
                processed=False,
                received_at=utc_now(),
            )
            self.session.add(event)
            self.session.flush()

            if integration is not None:
                registration.last_triggered_at = event.received_at
                self.log_service.write(
                    user_id=integration.user_id,
                    platform=integration.provider_key,
                    action=IntegrationAction.WEBHOOK_RECEIVED,
                    status=integration.status,
                    level=IntegrationLogLevel.INFO,
                    message=f"Webhook received: {event_type}",
                    error_details={"eventId": event.id},
                )
            self._published = {
                "event_id": event.id,
                "integration_id": event.integration_id,
                "provider_key": provider.key,
                "event_type": event_type,
            }

        if integration is None:
            self.logger.warning(
                "Unattributed webhook event stored",
                extra={"provider": provider.key, "webhook_id": webhook_id, "event_id": event.id},
            )
        else:
            self.logger.info(
                "Webhook event stored",
                extra={"provider": provider.key, "integration_id": integration.id, "event_id": event.id},
            )

        return WebhookReceipt(
            success=True,
            event_id=event.id,
            integration_id=event.integration_id,
            attributed=integration is not None,
        )

    def _find_registration(self, webhook_id: Optional[str]) -> Optional[IntegrationWebhook]:
        if not webhook_id:
            return None
        return (
            self.session.query(IntegrationWebhook)
            .filter(IntegrationWebhook.webhook_id == webhook_id, IntegrationWebhook.is_active.is_(True))
            .first()
        )

    def _after_commit(self) -> None:
        payload, self._published = self._published, None
        if payload and self.events is not None:
            self.events.publish(EventName.WEBHOOK_RECEIVED, payload)

    def _after_rollback(self) -> None:
        self._published = None
