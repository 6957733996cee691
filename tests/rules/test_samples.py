"""
Unit tests for sample envelopes and the template variable catalogue.
"""

import pytest

from action_dispatch.domain.event import EventKind
from action_dispatch.rules.samples import (
    available_variables,
    build_sample_envelope,
    load_sample_catalog,
)


class TestBuildSampleEnvelope:
    """Tests for build_sample_envelope()."""

    @pytest.mark.parametrize("event", list(EventKind))
    def test_every_event_has_client_data(self, event):
        envelope = build_sample_envelope("tenant-1", event)

        body = envelope.to_dict()
        assert body["event"] == event.value
        assert body["userId"] == "tenant-1"
        assert body["data"]["conversationId"] == "5511999998888"
        assert body["data"]["clientData"]["name"] == "João Silva"

    def test_appointment_sample(self):
        data = build_sample_envelope("tenant-1", EventKind.APPOINTMENT_SCHEDULED).to_dict()["data"]

        assert data["appointment"]["serviceName"] == "Routine Consultation"
        assert data["appointment"]["date"] == "25/12/2024"
        assert data["appointment"]["time"] == "15:30"

    def test_tag_added_uses_first_trigger_tag(self):
        data = build_sample_envelope("tenant-1", EventKind.TAG_ADDED, ["VIP", "Budget"]).to_dict()

        assert data["data"]["tag"] == "VIP"
        assert data["data"]["tags"] == ["VIP", "Budget"]

    def test_tag_added_default_tag(self):
        data = build_sample_envelope("tenant-1", EventKind.TAG_ADDED).to_dict()

        assert data["data"]["tag"] == "SampleTag"

    def test_samples_do_not_share_state(self):
        first = build_sample_envelope("tenant-1", EventKind.TEST_EVENT)
        first.data.client_data["name"] = "Changed"

        second = build_sample_envelope("tenant-1", EventKind.TEST_EVENT)

        assert second.data.client_data["name"] == "João Silva"

    def test_same_input_same_payload(self):
        a = build_sample_envelope("tenant-1", EventKind.MESSAGE_SENT, timestamp="t").to_dict()
        b = build_sample_envelope("tenant-1", EventKind.MESSAGE_SENT, timestamp="t").to_dict()

        assert a == b

    def test_catalog_covers_every_event(self):
        assert set(load_sample_catalog()["events"]) == set(EventKind.values())


class TestAvailableVariables:
    """Tests for available_variables()."""

    def test_common_variables_present(self):
        variables = available_variables(EventKind.LEAD_QUALIFIED)

        assert variables["data.clientData.name"]["example"] == "João Silva"
        assert variables["data.reason"]["example"] == "Lead qualified and ready for service."
        assert "data.appointment.date" not in variables

    def test_event_specific_variables(self):
        variables = available_variables(EventKind.APPOINTMENT_SCHEDULED)

        assert variables["data.appointment.date"]["example"] == "25/12/2024"
        assert variables["data.appointment.date"]["description"]

    def test_every_listed_variable_resolves(self):
        for event in EventKind:
            for path, info in available_variables(event).items():
                assert info["example"] != "", f"{event.value}: {path} has no sample value"
