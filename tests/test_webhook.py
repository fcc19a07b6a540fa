import asyncio
import json
from unittest.mock import Mock

import pytest

from payconnect.core.models import OrderState, PendingTransaction
from payconnect.core.webhook import compose_sms, handle_webhook, is_express, reconcile
from payconnect.errors import UpstreamError
from payconnect.services import airtable_service, hubtel_service


@pytest.fixture
def collaborators(monkeypatch):
    fakes = {
        "find_orders": Mock(return_value=[]),
        "create_order": Mock(return_value={"id": "recXYZ"}),
        "send_sms": Mock(return_value={"success": True, "data": {"messageId": "m-1"}}),
    }
    monkeypatch.setattr(airtable_service, "find_orders", fakes["find_orders"])
    monkeypatch.setattr(airtable_service, "create_order", fakes["create_order"])
    monkeypatch.setattr(hubtel_service, "send_sms", fakes["send_sms"])
    return fakes


def _payload(externalref="ORDER-1", txstatus=1, secret="whsec_test", **data):
    body = {"txstatus": txstatus, "externalref": externalref, "payer": "MTN Mobile Money (233531300654)",
            "amount": "10.00", "secret": secret}
    body.update(data)
    return {"status": 1, "code": "P01", "data": body}


def _pending(order_id="ORDER-1", **metadata):
    return PendingTransaction(order_id=order_id, payer="0531300654", amount="10.00", channel=13,
                              metadata=metadata, state=OrderState.PROMPT_SENT)


def _handle(payload, settings, store, window):
    return asyncio.run(handle_webhook(payload, settings, store, window))


def _created_fields(collaborators):
    args, _ = collaborators["create_order"].call_args
    return args[1]


class TestAuthentication:
    def test_wrong_secret_has_no_side_effects(self, settings, store, window, collaborators):
        store.put("ORDER-1", _pending(dataPlan="2GB"))

        ack = _handle(_payload(secret="guess"), settings, store, window)

        assert ack.to_response() == {"success": False, "message": "Invalid secret"}
        collaborators["send_sms"].assert_not_called()
        collaborators["create_order"].assert_not_called()
        assert "ORDER-1" in store
        assert window.should_process("ORDER-1")

    def test_top_level_secret_accepted(self, settings, store, window, collaborators):
        payload = _payload(secret="")
        payload["secret"] = "whsec_test"

        ack = _handle(payload, settings, store, window)

        assert ack.success is True
        collaborators["create_order"].assert_called_once()

    def test_unconfigured_secret_rejects_everything(self, settings, store, window, collaborators):
        settings.moolre_secret = ""

        ack = _handle(_payload(secret=""), settings, store, window)

        assert ack.message == "Invalid secret"
        collaborators["create_order"].assert_not_called()


class TestGuards:
    def test_missing_reference(self, settings, store, window, collaborators):
        ack = _handle(_payload(externalref=""), settings, store, window)

        assert ack.to_response() == {"success": False, "message": "Missing externalref"}
        collaborators["find_orders"].assert_not_called()

    def test_duplicate_within_window_is_noop(self, settings, store, window, collaborators):
        store.put("ORDER-1", _pending(dataPlan="2GB"))

        first = _handle(_payload(), settings, store, window)
        second = _handle(_payload(), settings, store, window)

        assert first.message == "SMS sent and Airtable record created"
        assert second.to_response() == {"success": True, "message": "Duplicate webhook ignored"}
        assert collaborators["send_sms"].call_count == 1
        assert collaborators["create_order"].call_count == 1

    def test_existing_order_record_blocks_reprocessing(self, settings, store, window, collaborators):
        collaborators["find_orders"].return_value = [{"id": "recOLD", "fields": {"Order ID": "ORDER-1"}}]
        store.put("ORDER-1", _pending(dataPlan="2GB"))

        ack = _handle(_payload(), settings, store, window)

        assert ack.to_response() == {"success": True, "message": "Order already recorded"}
        collaborators["send_sms"].assert_not_called()
        collaborators["create_order"].assert_not_called()
        assert "ORDER-1" not in store

    def test_replay_after_window_hits_durable_guard(self, settings, store, window, collaborators, clock):
        _handle(_payload(), settings, store, window)
        clock.advance(61)
        collaborators["find_orders"].return_value = [{"id": "recXYZ"}]

        ack = _handle(_payload(), settings, store, window)

        assert ack.message == "Order already recorded"
        assert collaborators["create_order"].call_count == 1
        assert collaborators["send_sms"].call_count == 1

    @pytest.mark.parametrize("txstatus", [0, 2, "2", None])
    def test_unsuccessful_payment(self, txstatus, settings, store, window, collaborators):
        store.put("ORDER-1", _pending(dataPlan="2GB"))

        ack = _handle(_payload(txstatus=txstatus), settings, store, window)

        assert ack.to_response() == {"success": True, "message": "Payment not successful"}
        assert ack.state == OrderState.FAILED
        assert "ORDER-1" in store
        assert window.should_process("ORDER-1")
        collaborators["find_orders"].assert_not_called()
        collaborators["send_sms"].assert_not_called()

    def test_pending_status_then_success_is_recorded(self, settings, store, window, collaborators):
        store.put("ORDER-1", _pending(dataPlan="2GB", recipient="0241112222"))

        first = _handle(_payload(txstatus=0), settings, store, window)
        second = _handle(_payload(txstatus=1), settings, store, window)

        assert first.message == "Payment not successful"
        assert second.to_response() == {"success": True, "message": "SMS sent and Airtable record created"}
        assert second.state == OrderState.CONFIRMED
        assert collaborators["send_sms"].call_count == 1
        assert collaborators["create_order"].call_count == 1
        fields = _created_fields(collaborators)
        assert fields["Data Plan"] == "2GB"
        assert fields["Data Recipient Number"] == "0241112222"

    def test_late_failure_after_success_is_duplicate(self, settings, store, window, collaborators):
        store.put("ORDER-1", _pending(dataPlan="2GB"))

        _handle(_payload(), settings, store, window)
        ack = _handle(_payload(txstatus=2), settings, store, window)

        assert ack.to_response() == {"success": True, "message": "Duplicate webhook ignored"}
        assert collaborators["create_order"].call_count == 1


class TestSuccess:
    def test_record_uses_pending_metadata(self, settings, store, window, collaborators):
        store.put("ORDER-1", _pending(dataPlan="2GB (Express)", recipient="0241112222", email="kofi@example.com"))
        payload = _payload()

        ack = _handle(payload, settings, store, window)

        assert ack.success is True
        assert ack.state == OrderState.CONFIRMED
        assert "ORDER-1" not in store

        phone, text = collaborators["send_sms"].call_args[0][1:]
        assert phone == "233531300654"
        assert "5-30 minutes" in text
        assert "2GB (Express) for 0241112222" in text
        assert "Order ID: ORDER-1" in text

        fields = _created_fields(collaborators)
        assert fields["Order ID"] == "ORDER-1"
        assert fields["Customer Phone"] == "233531300654"
        assert fields["Customer Email"] == "kofi@example.com"
        assert fields["Data Recipient Number"] == "0241112222"
        assert fields["Data Plan"] == "2GB (Express)"
        assert fields["Amount"] == 10.0
        assert fields["Status"] == "Pending"
        assert fields["Hubtel Sent"] is True
        assert json.loads(fields["Hubtel Response"]) == {"messageId": "m-1"}
        assert json.loads(fields["Moolre Response"]) == payload

    def test_lost_pending_entry_records_placeholders(self, settings, store, window, collaborators):
        ack = _handle(_payload(), settings, store, window)

        assert ack.success is True
        assert ack.state == OrderState.PENDING_CONFIRMATION_LOST
        fields = _created_fields(collaborators)
        assert fields["Data Plan"] == "N/A"
        assert fields["Data Recipient Number"] == "N/A"
        assert fields["Customer Email"] == "N/A"
        assert "30 min-4 hours" in collaborators["send_sms"].call_args[0][2]

    def test_falls_back_to_processor_metadata(self, settings, store, window, collaborators):
        payload = _payload(payer="", metadata={"customer_id": "+233 24 111 2222", "dataPlan": "1GB",
                                               "recipient": "0209998888"})

        _handle(payload, settings, store, window)

        fields = _created_fields(collaborators)
        assert fields["Data Plan"] == "1GB"
        assert fields["Data Recipient Number"] == "0209998888"
        assert fields["Customer Phone"] == "233241112222"

    def test_sms_failure_still_records(self, settings, store, window, collaborators):
        collaborators["send_sms"].return_value = {"success": False, "error": "Hubtel credentials missing."}
        store.put("ORDER-1", _pending(dataPlan="2GB"))

        ack = _handle(_payload(), settings, store, window)

        assert ack.success is True
        fields = _created_fields(collaborators)
        assert fields["Hubtel Sent"] is False
        assert json.loads(fields["Hubtel Response"]) == "Hubtel credentials missing."

    def test_internal_error_acknowledged(self, settings, store, window, collaborators):
        collaborators["create_order"].side_effect = UpstreamError("Failed to create record in Airtable.")

        ack = _handle(_payload(), settings, store, window)

        assert ack.to_response() == {"success": False, "message": "Internal webhook error"}

    def test_non_dict_payload(self, settings, store, window, collaborators):
        ack = _handle(["not", "a", "dict"], settings, store, window)

        assert ack.success is False
        collaborators["create_order"].assert_not_called()


class TestReconcileHelpers:
    def test_pending_beats_processor_metadata(self):
        data = {"payer": "", "metadata": {"dataPlan": "1GB"}, "amount": None}
        order = reconcile("ORDER-1", data, _pending(dataPlan="5GB"))

        assert order["plan"] == "5GB"
        assert order["customer_phone"] == "0531300654"
        assert order["amount"] == 10.0

    @pytest.mark.parametrize(
        "plan,delivery,expected",
        [
            ("2GB (EXPRESS)", None, True),
            ("2GB", "express", True),
            ("2GB", "standard", False),
            ("N/A", None, False),
        ],
    )
    def test_delivery_class(self, plan, delivery, expected):
        assert is_express(plan, delivery) is expected

    def test_standard_message(self):
        text = compose_sms("T1", "1GB", "0241112222", None, "233531300654")
        assert text == ("Your data purchase of 1GB for 0241112222 will be delivered in 30 min-4 hours. "
                        "Order ID: T1. Support: 233531300654")
