"""Tests for WebhookIngestor."""

import pytest

from credential_lifecycle_core.constants import EventName
from credential_lifecycle_core.db import IntegrationEvent, IntegrationLog
from credential_lifecycle_core.exceptions import ProviderNotFoundError
from credential_lifecycle_core.services.webhook_ingestor import normalize_headers, parse_body
from tests.fixtures.factories import IntegrationFactory, IntegrationWebhookFactory


class TestHelpers:
    """Test header and body normalization."""

    def test_headers_lowercased_and_credentials_dropped(self):
        headers = normalize_headers(
            {"X-Fake-Webhook-Id": "wh_1", "Authorization": "Bearer secret", "Cookie": "s=1"}
        )

        assert headers == {"x-fake-webhook-id": "wh_1"}

    def test_none_headers(self):
        assert normalize_headers(None) == {}

    @pytest.mark.parametrize(
        "body,expected",
        [
            ('{"a": 1}', {"a": 1}),
            (b'{"a": 1}', {"a": 1}),
            ({"a": 1}, {"a": 1}),
            ("[1, 2]", {"data": [1, 2]}),
            ("plain text", {"rawData": "plain text"}),
            (None, {}),
        ],
    )
    def test_parse_body(self, body, expected):
        assert parse_body(body) == expected


class TestReceive:
    """Test storing inbound events."""

    def test_attributed_event(self, webhook_ingestor, db_session, published):
        """An event whose header matches a registration is tied to its integration."""
        integration = IntegrationFactory.create()
        webhook = IntegrationWebhookFactory.create(integration_id=integration.id, webhook_id="wh_42")

        receipt = webhook_ingestor.receive(
            "fakeoauth",
            {"X-Fake-Webhook-Id": "wh_42", "X-Event-Type": "message.created"},
            '{"text": "hi"}',
        )

        assert receipt.success is True
        assert receipt.attributed is True
        assert receipt.integration_id == integration.id

        event = db_session.get(IntegrationEvent, receipt.event_id)
        assert event.user_id == integration.user_id
        assert event.event_type == "message.created"
        assert event.payload == {"text": "hi"}
        assert event.processed is False

        db_session.refresh(webhook)
        assert webhook.last_triggered_at is not None

        log = db_session.query(IntegrationLog).filter_by(user_id=integration.user_id).one()
        assert log.message == "Webhook received: message.created"
        assert log.error_details == {"eventId": receipt.event_id}

        assert published[-1][0] == EventName.WEBHOOK_RECEIVED.value
        assert published[-1][1]["event_id"] == receipt.event_id

    def test_unattributed_event_is_kept(self, webhook_ingestor, db_session):
        """Events for unknown webhook ids are stored without an integration."""
        receipt = webhook_ingestor.receive("fakeoauth", {"x-fake-webhook-id": "unknown"}, "{}")

        assert receipt.success is True
        assert receipt.attributed is False
        event = db_session.get(IntegrationEvent, receipt.event_id)
        assert event.integration_id is None
        assert event.webhook_id == "unknown"
        assert event.event_type == "webhook"
        assert db_session.query(IntegrationLog).count() == 0

    def test_generic_header_not_used_for_other_providers(self, webhook_ingestor):
        """Only the provider's own webhook id header attributes an event."""
        integration = IntegrationFactory.create()
        IntegrationWebhookFactory.create(integration_id=integration.id, webhook_id="wh_7")

        receipt = webhook_ingestor.receive("fakeoauth", {"x-webhook-id": "wh_7"}, "{}")

        assert receipt.attributed is False

    def test_inactive_registration_not_attributed(self, webhook_ingestor):
        integration = IntegrationFactory.create()
        IntegrationWebhookFactory.create(integration_id=integration.id, webhook_id="wh_9", is_active=False)

        receipt = webhook_ingestor.receive("fakeoauth", {"x-fake-webhook-id": "wh_9"}, "{}")

        assert receipt.attributed is False

    def test_authorization_header_not_stored(self, webhook_ingestor, db_session):
        receipt = webhook_ingestor.receive(
            "fakeoauth", {"Authorization": "Bearer abc", "X-Event-Type": "ping"}, "not json"
        )

        event = db_session.get(IntegrationEvent, receipt.event_id)
        assert "authorization" not in event.headers
        assert event.payload == {"rawData": "not json"}

    def test_unknown_provider(self, webhook_ingestor):
        with pytest.raises(ProviderNotFoundError):
            webhook_ingestor.receive("nope", {}, "{}")
