"""Shared fixtures and HTTP/chat stubs for the dispatch engine tests."""

import os
import threading
from types import SimpleNamespace

import boto3
import pytest
from moto import mock_aws

from action_dispatch.notifications.chat_service import ChatSendResult

REGION = "sa-east-1"
ENV_OVERRIDES = ("USE_LOCAL_SECRETS_FILE", "LOCAL_SECRETS_FILE_PATH", "DELIVERY_LOG_ENABLED")


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    for name in list(os.environ):
        if name.startswith("ACTIONS_") or name in ENV_OVERRIDES:
            monkeypatch.delenv(name, raising=False)


class HttpStub:
    """
    requests-like session recording every POST.

    ``responses`` maps a URL to a status code or an exception instance to
    raise; unknown URLs answer ``default_status``.
    """

    def __init__(self, responses=None, default_status=200):
        self.responses = responses or {}
        self.default_status = default_status
        self.requests = []
        self._lock = threading.Lock()

    def post(self, url, headers=None, data=None, json=None, timeout=None):
        with self._lock:
            self.requests.append(
                {"url": url, "headers": headers, "data": data, "json": json, "timeout": timeout}
            )
        outcome = self.responses.get(url, self.default_status)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, list):
            with self._lock:
                outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
            if isinstance(outcome, BaseException):
                raise outcome
        text = "error" if outcome >= 400 else "ok"
        return SimpleNamespace(status_code=outcome, text=text, json=lambda: {})

    def requests_to(self, url):
        return [request for request in self.requests if request["url"] == url]


class ChatSenderStub:
    """Records chat sends; answers ``result`` (a ChatSendResult)."""

    def __init__(self, result=None):
        self.result = result or ChatSendResult(success=True, message_id="MSG-1")
        self.calls = []

    def __call__(self, tenant_id, recipient, text, credentials=None):
        self.calls.append(
            {
                "tenant_id": tenant_id,
                "recipient": recipient,
                "text": text,
                "credentials": credentials,
            }
        )
        return self.result


@pytest.fixture
def http_stub():
    return HttpStub()


@pytest.fixture
def chat_stub():
    return ChatSenderStub()


def create_tables(dynamodb):
    """Create the actions and delivery log tables with their key schemas."""
    dynamodb.create_table(
        TableName="actions",
        KeySchema=[
            {"AttributeName": "tenant_id", "KeyType": "HASH"},
            {"AttributeName": "action_id", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "tenant_id", "AttributeType": "S"},
            {"AttributeName": "action_id", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    dynamodb.create_table(
        TableName="action_delivery_logs",
        KeySchema=[
            {"AttributeName": "tenant_id", "KeyType": "HASH"},
            {"AttributeName": "log_id", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "tenant_id", "AttributeType": "S"},
            {"AttributeName": "log_id", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def dynamodb():
    """Mocked DynamoDB resource with both tables created."""
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name=REGION)
        create_tables(resource)
        yield resource
