"""
Integration tests for the configuration surface and Lambda routing in
action_dispatch/main.py.
"""

import json
from unittest.mock import Mock

import pytest
from botocore.exceptions import EndpointConnectionError

from action_dispatch import main
from action_dispatch.config.settings import Settings
from action_dispatch.notifications.webhook_service import WebhookClient
from conftest import ChatSenderStub, HttpStub

HOOK_URL = "https://crm.example.com/hooks"


@pytest.fixture
def stub():
    return HttpStub()


@pytest.fixture
def services(dynamodb, stub, monkeypatch, tmp_path):
    secrets_file = tmp_path / "secrets.json"
    secrets_file.write_text(
        json.dumps(
            {
                "gateway": {
                    "tenant-1": {
                        "api_url": "https://evolution.example.com",
                        "api_key": "k",
                        "instance_name": "clinic",
                    }
                }
            }
        )
    )
    monkeypatch.setenv("USE_LOCAL_SECRETS_FILE", "true")
    monkeypatch.setenv("LOCAL_SECRETS_FILE_PATH", str(secrets_file))

    services = main.build_services(
        settings=Settings(),
        dynamodb_resource=dynamodb,
        webhook_client=WebhookClient(http_client=stub),
        chat_sender=ChatSenderStub(),
    )
    monkeypatch.setattr(main, "_services", services)
    yield services
    services.dispatcher.shutdown()


def webhook_config(**overrides):
    config = {
        "name": "CRM",
        "type": "webhook",
        "event": "lead_qualified",
        "isActive": True,
        "url": HOOK_URL,
    }
    config.update(overrides)
    return config


class TestSaveActionConfig:
    """Tests for save_action_config()."""

    def test_create_update_delete(self, services):
        created = main.save_action_config(
            {"userId": "tenant-1", "action": "create", "config": webhook_config()}
        )
        assert created["success"] is True

        updated = main.save_action_config(
            {
                "userId": "tenant-1",
                "action": "update",
                "configId": created["id"],
                "config": {"name": "CRM v2"},
            }
        )
        assert updated == {"success": True, "id": created["id"]}
        assert main.list_action_configs("tenant-1")[0]["name"] == "CRM v2"

        deleted = main.save_action_config(
            {"userId": "tenant-1", "action": "delete", "configId": created["id"]}
        )
        assert deleted["success"] is True
        assert main.list_action_configs("tenant-1") == []

    def test_validation_error_is_reported(self, services):
        result = main.save_action_config(
            {"userId": "tenant-1", "action": "create", "config": webhook_config(url=None)}
        )

        assert result["success"] is False
        assert "url" in result["error"]

    def test_update_missing_action(self, services):
        result = main.save_action_config(
            {"userId": "tenant-1", "action": "update", "configId": "nope", "config": {"name": "x"}}
        )

        assert result["success"] is False
        assert "not found" in result["error"]

    def test_missing_ids(self, services):
        assert main.save_action_config({"action": "create"})["success"] is False
        assert main.save_action_config({"userId": "t", "action": "delete"})["success"] is False
        assert main.save_action_config({"userId": "t", "action": "create"})["success"] is False

    def test_unknown_operation(self, services):
        result = main.save_action_config(
            {"userId": "tenant-1", "action": "archive", "config": webhook_config()}
        )

        assert result["success"] is False


class TestSendTestAction:
    """Tests for send_test_action()."""

    def test_webhook_test(self, services, stub):
        result = main.send_test_action(
            "tenant-1", webhook_config(event="tag_added"), filter_tags=["VIP"]
        )

        assert result["success"] is True
        assert json.loads(stub.requests[0]["data"])["data"]["tag"] == "VIP"

    def test_chat_test_loads_gateway_credentials(self, services):
        result = main.send_test_action(
            "tenant-1",
            {"type": "whatsapp", "phoneNumber": "5511999998888", "messageTemplate": "Hi"},
        )

        assert result["success"] is True
        assert services.dispatcher.chat_sender.calls[0]["credentials"]["instance_name"] == "clinic"

    def test_chat_test_without_gateway(self, services):
        result = main.send_test_action(
            "tenant-2",
            {"type": "chat_message", "recipient": "5511999998888", "messageTemplate": "Hi"},
        )

        assert result["success"] is False
        assert "Chat gateway not configured" in result["message"]

    def test_chat_test_with_unreachable_secrets_manager(self, services, monkeypatch):
        monkeypatch.setattr("action_dispatch.config.settings.time.sleep", lambda _: None)
        services.settings.use_local_secrets = False
        services.settings.secrets_client = Mock(
            get_secret_value=Mock(
                side_effect=EndpointConnectionError(
                    endpoint_url="https://secretsmanager.sa-east-1.amazonaws.com"
                )
            )
        )

        response = main.lambda_handler(
            {
                "operation": "send_test_action",
                "userId": "tenant-3",
                "config": {
                    "type": "chat_message",
                    "recipient": "5511999998888",
                    "messageTemplate": "Hi",
                },
            },
            None,
        )

        body = json.loads(response["body"])
        assert response["statusCode"] == 200
        assert body["success"] is False
        assert "Chat gateway not configured" in body["message"]
        assert services.dispatcher.chat_sender.calls == []


class TestLambdaHandler:
    """Tests for lambda_handler routing."""

    def test_publish_event_waits_for_results(self, services, stub):
        services.repository.create("tenant-1", webhook_config())

        response = main.lambda_handler(
            {
                "operation": "publish_event",
                "userId": "tenant-1",
                "event": "lead_qualified",
                "data": {"reason": "ready"},
            },
            None,
        )

        body = json.loads(response["body"])
        assert response["statusCode"] == 200
        assert body["results"][0]["success"] is True
        assert len(stub.requests) == 1

    def test_delivery_logs_list_and_clear(self, services):
        services.repository.create("tenant-1", webhook_config())
        main.lambda_handler(
            {"operation": "publish_event", "userId": "tenant-1", "event": "lead_qualified"}, None
        )
        services.dispatcher.shutdown(wait=True)

        listed = json.loads(
            main.lambda_handler({"operation": "list_delivery_logs", "userId": "tenant-1"}, None)[
                "body"
            ]
        )
        assert len(listed["logs"]) == 1

        cleared = json.loads(
            main.lambda_handler({"operation": "clear_delivery_logs", "userId": "tenant-1"}, None)[
                "body"
            ]
        )
        assert cleared == {"success": True, "deleted": 1}

    def test_non_numeric_limit_is_rejected(self, services):
        response = main.lambda_handler(
            {"operation": "list_delivery_logs", "userId": "tenant-1", "limit": "lots"}, None
        )

        assert response["statusCode"] == 400
        assert "limit" in json.loads(response["body"])["error"]

    def test_list_template_variables(self, services):
        response = main.lambda_handler(
            {"operation": "list_template_variables", "event": "appointment_scheduled"}, None
        )

        variables = json.loads(response["body"])["variables"]
        assert variables["data.appointment.time"]["example"] == "15:30"

    def test_save_action_config_route(self, services):
        response = main.lambda_handler(
            {
                "operation": "save_action_config",
                "userId": "tenant-1",
                "action": "create",
                "config": webhook_config(),
            },
            None,
        )

        assert response["statusCode"] == 200
        listed = main.lambda_handler(
            {"operation": "list_action_configs", "userId": "tenant-1"}, None
        )
        assert len(json.loads(listed["body"])["actions"]) == 1

    def test_unknown_operation(self, services):
        response = main.lambda_handler({"operation": "explode", "userId": "tenant-1"}, None)

        assert response["statusCode"] == 400

    def test_missing_tenant(self, services):
        response = main.lambda_handler({"operation": "list_action_configs"}, None)

        assert response["statusCode"] == 400
