"""
Integration tests for EventPublisher: store read, matching, signed delivery
and delivery logging, against moto-backed DynamoDB and an HTTP stub.
"""

import json
from unittest.mock import Mock

import pytest
from botocore.exceptions import EndpointConnectionError

from action_dispatch.config.settings import Settings
from action_dispatch.database.dynamodb_client import ActionConfigRepository, DeliveryLogRepository
from action_dispatch.database.exceptions import ThrottlingError
from action_dispatch.domain.action import ActionConfig, ActionType
from action_dispatch.domain.event import EventKind
from action_dispatch.notifications.webhook_service import WebhookClient
from action_dispatch.publisher import EventPublisher
from action_dispatch.rules.dispatcher import Dispatcher
from action_dispatch.rules.signing import sign
from conftest import ChatSenderStub, HttpStub

HOOK_URL = "https://crm.example.com/hooks/leads"
VIP_URL = "https://crm.example.com/hooks/vip"


@pytest.fixture
def stub():
    return HttpStub()


@pytest.fixture
def chat():
    return ChatSenderStub()


@pytest.fixture
def repositories(dynamodb):
    return (
        ActionConfigRepository(dynamodb_resource=dynamodb, backoff_base=0),
        DeliveryLogRepository(dynamodb_resource=dynamodb, backoff_base=0),
    )


@pytest.fixture
def dispatcher(stub, chat):
    dispatcher = Dispatcher(
        webhook_client=WebhookClient(http_client=stub), chat_sender=chat, settings=Settings()
    )
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def publisher(repositories, dispatcher):
    repository, log_repository = repositories
    return EventPublisher(
        repository,
        dispatcher,
        log_repository=log_repository,
        credentials_loader=lambda tenant_id: {
            "api_url": "https://evolution.example.com",
            "api_key": "k",
            "instance_name": tenant_id,
        },
    )


class TestPublishRoundTrip:
    """End-to-end publish behaviour."""

    def test_signed_webhook_round_trip(self, publisher, repositories, stub):
        repository, _ = repositories
        repository.create(
            "tenant-1",
            {
                "name": "CRM",
                "type": "webhook",
                "event": "lead_qualified",
                "isActive": True,
                "url": HOOK_URL,
                "secret": "s3cr3t",
            },
        )

        batch = publisher.publish(
            "tenant-1",
            "lead_qualified",
            {"conversationId": "5511999998888", "reason": "budget approved"},
        )
        results = batch.results(timeout=5)

        assert [r.success for r in results] == [True]
        request = stub.requests[0]
        body = request["data"]
        assert request["headers"]["x-hub-signature-256"] == "sha256=" + sign("s3cr3t", body)
        payload = json.loads(body)
        assert payload["event"] == "lead_qualified"
        assert payload["userId"] == "tenant-1"
        assert payload["data"]["reason"] == "budget approved"
        assert payload["data"]["conversationId"] == "5511999998888"

    def test_tag_filtering_through_publish(self, publisher, repositories, stub):
        repository, _ = repositories
        for name, url, tags in (("vip", VIP_URL, ["VIP"]), ("budget", HOOK_URL, ["Budget"])):
            repository.create(
                "tenant-1",
                {
                    "name": name,
                    "type": "webhook",
                    "event": "tag_added",
                    "isActive": True,
                    "url": url,
                    "triggerTags": tags,
                },
            )

        batch = publisher.publish(
            "tenant-1", EventKind.TAG_ADDED, {"conversationId": "5511999998888", "tag": "vip"}
        )
        batch.results(timeout=5)

        assert [r["url"] for r in stub.requests] == [VIP_URL]

    def test_chat_action_receives_credentials_and_client_data(
        self, repositories, dispatcher, chat
    ):
        repository, log_repository = repositories
        repository.create(
            "tenant-1",
            {
                "name": "Owner alert",
                "type": "chat_message",
                "event": "human_support_requested",
                "isActive": True,
                "recipient": "5511988887777",
                "messageTemplate": "{{data.clientData.name}} asked for help: {{data.reason}}",
            },
        )
        lookup = Mock(return_value={"name": "Maria"})
        publisher = EventPublisher(
            repository,
            dispatcher,
            client_lookup=lookup,
            credentials_loader=lambda tenant_id: {"instance_name": tenant_id},
        )

        batch = publisher.publish(
            "tenant-1",
            "human_support_requested",
            {"conversationId": "5511999998888", "reason": "billing"},
        )
        batch.results(timeout=5)

        lookup.assert_called_once_with("tenant-1", "5511999998888")
        assert chat.calls[0]["text"] == "Maria asked for help: billing"
        assert chat.calls[0]["credentials"] == {"instance_name": "tenant-1"}

    def test_results_are_logged(self, publisher, repositories, dispatcher):
        repository, log_repository = repositories
        action = repository.create(
            "tenant-1",
            {
                "name": "CRM",
                "type": "webhook",
                "event": "conversation_ended_by_ai",
                "isActive": True,
                "url": HOOK_URL,
            },
        )

        batch = publisher.publish("tenant-1", "conversation_ended_by_ai", {"summary": "done"})
        batch.results(timeout=5)
        dispatcher.shutdown(wait=True)

        logs = log_repository.list_by_tenant("tenant-1")
        assert len(logs) == 1
        assert logs[0]["actionId"] == action.id
        assert logs[0]["actionName"] == "CRM"
        assert logs[0]["success"] is True


class TestPublishNeverRaises:
    """publish() swallows every failure."""

    def test_no_matching_actions(self, publisher, stub):
        assert publisher.publish("tenant-1", "lead_qualified", {}) is None
        assert stub.requests == []

    def test_inactive_actions_are_skipped(self, publisher, repositories, stub):
        repository, _ = repositories
        repository.create(
            "tenant-1",
            {
                "name": "Off",
                "type": "webhook",
                "event": "lead_qualified",
                "isActive": False,
                "url": HOOK_URL,
            },
        )

        assert publisher.publish("tenant-1", "lead_qualified", {}) is None
        assert stub.requests == []

    def test_unknown_event_is_ignored(self, publisher):
        assert publisher.publish("tenant-1", "invoice_paid", {}) is None

    def test_store_failure_is_swallowed(self, dispatcher):
        repository = Mock()
        repository.list_by_tenant.side_effect = ThrottlingError("throttled")
        publisher = EventPublisher(repository, dispatcher)

        assert publisher.publish("tenant-1", "lead_qualified", {}) is None

    def test_unexpected_failure_is_swallowed(self, dispatcher):
        repository = Mock()
        repository.list_by_tenant.side_effect = KeyError("boom")
        publisher = EventPublisher(repository, dispatcher)

        assert publisher.publish("tenant-1", "lead_qualified", {}) is None

    def test_failed_lookup_and_credentials_do_not_block_delivery(self, dispatcher, stub):
        repository = Mock()
        repository.list_by_tenant.return_value = [
            ActionConfig(
                tenant_id="tenant-1",
                name="hook",
                type=ActionType.WEBHOOK,
                event=EventKind.LEAD_QUALIFIED,
                id="a1",
                url=HOOK_URL,
            ),
            ActionConfig(
                tenant_id="tenant-1",
                name="chat",
                type=ActionType.CHAT_MESSAGE,
                event=EventKind.LEAD_QUALIFIED,
                id="a2",
                recipient="5511999998888",
                message_template="hi",
            ),
        ]

        def broken_loader(tenant_id):
            raise RuntimeError("secret missing")

        publisher = EventPublisher(
            repository,
            dispatcher,
            client_lookup=Mock(side_effect=ConnectionError("crm down")),
            credentials_loader=broken_loader,
        )

        batch = publisher.publish("tenant-1", "lead_qualified", {"conversationId": "55"})
        results = {r.action_id: r for r in batch.results(timeout=5)}

        assert results["a1"].success is True
        assert len(stub.requests) == 1

    def test_botocore_failure_in_loader_still_delivers_webhooks(self, dispatcher, stub, chat):
        repository = Mock()
        repository.list_by_tenant.return_value = [
            ActionConfig(
                tenant_id="tenant-1",
                name="hook",
                type=ActionType.WEBHOOK,
                event=EventKind.LEAD_QUALIFIED,
                id="a1",
                url=HOOK_URL,
            ),
            ActionConfig(
                tenant_id="tenant-1",
                name="chat",
                type=ActionType.CHAT_MESSAGE,
                event=EventKind.LEAD_QUALIFIED,
                id="a2",
                recipient="5511999998888",
                message_template="hi",
            ),
        ]
        loader = Mock(
            side_effect=EndpointConnectionError(
                endpoint_url="https://secretsmanager.sa-east-1.amazonaws.com"
            )
        )
        publisher = EventPublisher(repository, dispatcher, credentials_loader=loader)

        batch = publisher.publish("tenant-1", "lead_qualified", {"conversationId": "55"})

        assert batch is not None
        results = {r.action_id: r for r in batch.results(timeout=5)}
        assert results["a1"].success is True
        assert len(stub.requests) == 1
        assert chat.calls[0]["credentials"] is None
