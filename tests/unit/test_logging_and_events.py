"""Tests for the logger wrapper, queue handler and event bus."""

import logging
from unittest.mock import Mock, patch

from credential_lifecycle_core.constants import EventName
from credential_lifecycle_core.context.operation_context import operation
from credential_lifecycle_core.exceptions import get_correlation_id
from credential_lifecycle_core.utils.events import EventBus
from credential_lifecycle_core.utils.logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    configure_logging,
    reset_logging,
)
from credential_lifecycle_core.utils.token_utils import code_challenge_s256, mask_token


class TestContextAwareLogger:
    def test_extras_appended_to_message(self, caplog):
        logger = ContextAwareLogger(logging.getLogger("test.context"))

        with caplog.at_level(logging.INFO, logger="test.context"):
            logger.info("Token refreshed", extra={"integration_id": "int-1", "platform": "gmail"})

        record = caplog.records[-1]
        assert record.getMessage() == "Token refreshed | integration_id=int-1 | platform=gmail"
        assert record.integration_id == "int-1"

    def test_configure_logging_without_queue(self):
        try:
            logger = configure_logging("tests", log_level="DEBUG", enable_queue=False)
            assert logger.logger.name == "credential_lifecycle.tests"
            assert not any(isinstance(h, AzureQueueHandler) for h in logger.logger.handlers)
        finally:
            reset_logging()


class TestAzureQueueHandler:
    def test_entry_structure(self):
        handler = AzureQueueHandler(connection_string="", batch_size=10)
        record = logging.LogRecord("svc", logging.WARNING, __file__, 10, "Sweep done", None, None)
        record.integration_id = "int-1"

        entry = handler.build_entry(record)

        assert entry["level"] == "WARNING"
        assert entry["message"] == "Sweep done"
        assert entry["context"] == {"integration_id": "int-1"}

    def test_flush_sends_buffered_entries(self):
        with patch.object(AzureQueueHandler, "_ensure_queue_exists", return_value=True):
            handler = AzureQueueHandler(connection_string="UseDevelopmentStorage=true", batch_size=2)
        client = Mock()
        with patch("credential_lifecycle_core.utils.logger.QueueClient") as queue_client_cls:
            queue_client_cls.from_connection_string.return_value = client
            handler.emit(logging.LogRecord("svc", logging.INFO, __file__, 1, "one", None, None))
            handler.emit(logging.LogRecord("svc", logging.INFO, __file__, 2, "two", None, None))

        assert client.send_message.call_count == 2
        assert handler.log_buffer == []


class TestEventBus:
    def test_publish_to_subscribers(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventName.STATUS_CHANGED, lambda name, payload: received.append((name, payload)))

        delivered = bus.publish(EventName.STATUS_CHANGED, {"status": "connected"})

        assert delivered == 1
        assert received == [("integration.status_changed", {"status": "connected"})]

    def test_failing_subscriber_is_isolated(self):
        bus = EventBus()
        received = []

        def broken(name, payload):
            raise RuntimeError("subscriber bug")

        bus.subscribe("bootstrap.completed", broken)
        bus.subscribe("bootstrap.completed", lambda name, payload: received.append(payload))

        assert bus.publish(EventName.BOOTSTRAP_COMPLETED, {"job_id": "j1"}) == 1
        assert received == [{"job_id": "j1"}]

    def test_unsubscribe(self):
        bus = EventBus()
        callback = Mock()
        bus.subscribe(EventName.WEBHOOK_RECEIVED, callback)
        bus.unsubscribe(EventName.WEBHOOK_RECEIVED, callback)

        assert bus.publish(EventName.WEBHOOK_RECEIVED, {}) == 0
        callback.assert_not_called()


class TestOperationDecorator:
    def test_sets_correlation_id(self):
        @operation(name="tests.sample")
        def sample():
            return get_correlation_id()

        assert sample() is not None


class TestTokenUtils:
    def test_mask_token(self):
        assert mask_token("sk-abc123def456ghi789") == "sk-a...i789"
        assert mask_token("short") == "***"
        assert mask_token(None) == "***"

    def test_code_challenge_is_unpadded_sha256(self):
        challenge = code_challenge_s256("verifier-value")

        assert challenge == code_challenge_s256("verifier-value")
        assert len(challenge) == 43
        assert "=" not in challenge
