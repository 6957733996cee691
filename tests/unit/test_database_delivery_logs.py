"""
Unit tests for DeliveryLogRepository.
"""

import pytest

from action_dispatch.database.dynamodb_client import DeliveryLogRepository
from action_dispatch.domain.event import DeliveryResult


@pytest.fixture
def log_repository(dynamodb):
    return DeliveryLogRepository(dynamodb_resource=dynamodb, backoff_base=0)


def result(action_id, timestamp, success=True, status_code=200):
    return DeliveryResult(
        action_id=action_id,
        success=success,
        message="ok" if success else "HTTP 500",
        timestamp=timestamp,
        status_code=status_code,
        event="lead_qualified",
        action_type="webhook",
        target="https://crm.example.com/hooks",
    )


class TestDeliveryLogRepository:
    """Tests for record / list_by_tenant / clear_by_tenant."""

    def test_record_and_list_newest_first(self, log_repository):
        log_repository.record("tenant-1", result("a1", "2024-12-25T10:00:00.000Z"), "First")
        log_repository.record("tenant-1", result("a2", "2024-12-25T11:00:00.000Z"), "Second")

        logs = log_repository.list_by_tenant("tenant-1")

        assert [entry["actionId"] for entry in logs] == ["a2", "a1"]
        assert logs[0]["actionName"] == "Second"
        assert logs[0]["statusCode"] == 200
        assert isinstance(logs[0]["statusCode"], int)
        assert "tenant_id" not in logs[0]
        assert logs[0]["logId"].startswith("2024-12-25T11:00:00.000Z#")

    def test_list_respects_limit(self, log_repository):
        for hour in range(5):
            log_repository.record("tenant-1", result(f"a{hour}", f"2024-12-25T1{hour}:00:00.000Z"))

        logs = log_repository.list_by_tenant("tenant-1", limit=2)

        assert [entry["actionId"] for entry in logs] == ["a4", "a3"]

    def test_failures_are_recorded(self, log_repository):
        log_repository.record(
            "tenant-1", result("a1", "2024-12-25T10:00:00.000Z", success=False, status_code=500)
        )

        logs = log_repository.list_by_tenant("tenant-1")

        assert logs[0]["success"] is False
        assert logs[0]["message"] == "HTTP 500"

    def test_clear_only_affects_tenant(self, log_repository):
        log_repository.record("tenant-1", result("a1", "2024-12-25T10:00:00.000Z"))
        log_repository.record("tenant-1", result("a2", "2024-12-25T11:00:00.000Z"))
        log_repository.record("tenant-2", result("b1", "2024-12-25T10:00:00.000Z"))

        deleted = log_repository.clear_by_tenant("tenant-1")

        assert deleted == 2
        assert log_repository.list_by_tenant("tenant-1") == []
        assert len(log_repository.list_by_tenant("tenant-2")) == 1

    def test_clear_empty_tenant(self, log_repository):
        assert log_repository.clear_by_tenant("nobody") == 0
