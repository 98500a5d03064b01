from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import stripe

from maroon_backend.checkout.errors import (
    CardDeclined,
    ConfigurationError,
    InvalidTransition,
    SettlementNotRecorded,
    ValidationError,
)
from maroon_backend.checkout.models import OrderStatus, TradeConfirmation, TradeStatus
from maroon_backend.rails import card, stripe_client

from checkout_factories import TEST_CUSTOMER_ID, make_lines, make_order


def _intent(status="succeeded", amount=103500, order_id="ord-1", is_deposit="false", **extra):
    data = {
        "id": "pi_1",
        "status": status,
        "amount": amount,
        "amount_received": amount if status == "succeeded" else 0,
        "metadata": {"order_id": order_id, "is_deposit": is_deposit, "al_account_number": "AL-000123"},
    }
    data.update(extra)
    return data


@pytest.fixture
def orders(monkeypatch):
    """Faux stockage de commande: get_order relit l'état mis à jour par mark_status."""
    state = {"order": make_order(make_lines("1000"))}

    def _get(order_id):
        return state["order"]

    def _mark(order_id, status, **facts):
        current = state["order"]
        if current.status != OrderStatus.PENDING:
            return None
        state["order"] = current.model_copy(
            update={
                "status": status,
                "payment_intent_id": facts.get("payment_intent_id"),
                "amount_paid": Decimal(facts["amount_paid"]),
            }
        )
        return state["order"]

    def _record(order_id, trade):
        state["order"] = state["order"].model_copy(update={"trade_confirmation": trade})
        return True

    get_mock = MagicMock(side_effect=_get)
    mark_mock = MagicMock(side_effect=_mark)
    record_mock = MagicMock(side_effect=_record)
    monkeypatch.setattr("maroon_backend.rails.card.orders_service.get_order", get_mock)
    monkeypatch.setattr("maroon_backend.rails.card.orders_service.mark_status", mark_mock)
    monkeypatch.setattr("maroon_backend.rails.card.orders_service.record_trade_confirmation", record_mock)
    return {"state": state, "get": get_mock, "mark": mark_mock, "record": record_mock}


@pytest.fixture
def trade_desk(monkeypatch):
    mock = MagicMock(return_value=TradeConfirmation(status=TradeStatus.CONFIRMED, confirmation="FT-555"))
    monkeypatch.setattr("maroon_backend.rails.card.trade.execute_trade", mock)
    return mock


def test_create_intent_full_payment(monkeypatch):
    create = MagicMock(return_value={"id": "pi_1", "client_secret": "pi_1_secret"})
    monkeypatch.setattr("maroon_backend.rails.card.stripe_client.create_payment_intent", create)
    order = make_order(make_lines("5000"))

    intent = card.create_card_intent(TEST_CUSTOMER_ID, order, is_deposit=False)

    assert intent.payment_intent_id == "pi_1"
    assert intent.client_token == "pi_1_secret"
    assert intent.charge_breakdown.charge_total == Decimal("5175.00")
    kwargs = create.call_args.kwargs
    assert kwargs["amount_cents"] == 517500
    assert kwargs["idempotency_key"] == "intent-ord-1-full"
    assert kwargs["metadata"]["order_id"] == "ord-1"
    assert kwargs["metadata"]["is_deposit"] == "false"


def test_create_intent_deposit_charges_deposit_plus_fee(monkeypatch):
    create = MagicMock(return_value={"id": "pi_2", "client_secret": "pi_2_secret"})
    monkeypatch.setattr("maroon_backend.rails.card.stripe_client.create_payment_intent", create)
    order = make_order(make_lines("10000"))

    intent = card.create_card_intent(TEST_CUSTOMER_ID, order, is_deposit=True, al_account_number="AL-000123")

    assert intent.is_deposit is True
    assert intent.charge_breakdown.charge_total == Decimal("1035.00")
    assert intent.charge_breakdown.wire_amount_due == Decimal("9000.00")
    kwargs = create.call_args.kwargs
    assert kwargs["amount_cents"] == 103500
    assert kwargs["idempotency_key"] == "intent-ord-1-deposit"
    assert kwargs["metadata"]["al_account_number"] == "AL-000123"


def test_create_intent_without_keys_is_configuration_error(monkeypatch):
    monkeypatch.setattr("maroon_backend.rails.stripe_client.config.STRIPE_SECRET_KEY", "")
    order = make_order(make_lines("100"))
    with pytest.raises(ConfigurationError):
        card.create_card_intent(TEST_CUSTOMER_ID, order, is_deposit=False)


def test_create_intent_stripe_error_is_declined(monkeypatch):
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.create_payment_intent",
        MagicMock(side_effect=stripe.StripeError("boom")),
    )
    order = make_order(make_lines("100"))
    with pytest.raises(CardDeclined) as exc:
        card.create_card_intent(TEST_CUSTOMER_ID, order, is_deposit=False)
    assert "boom" in exc.value.message


def test_confirm_marks_paid_and_runs_trade(monkeypatch, orders, trade_desk):
    retrieve = MagicMock(return_value=_intent())
    monkeypatch.setattr("maroon_backend.rails.card.stripe_client.retrieve_payment_intent", retrieve)

    res = card.confirm_card_payment("ord-1", "pi_1")

    assert res.settled is True
    assert res.already_processed is False
    assert res.amount_charged == Decimal("1035.00")
    assert res.trade_confirmation.confirmation == "FT-555"
    assert orders["mark"].call_args.args[1] == OrderStatus.PAID
    assert orders["mark"].call_args.kwargs["payment_intent_id"] == "pi_1"
    trade_desk.assert_called_once()
    orders["record"].assert_called_once()


def test_double_confirm_is_idempotent(monkeypatch, orders, trade_desk):
    retrieve = MagicMock(return_value=_intent())
    monkeypatch.setattr("maroon_backend.rails.card.stripe_client.retrieve_payment_intent", retrieve)

    first = card.confirm_card_payment("ord-1", "pi_1")
    second = card.confirm_card_payment("ord-1", "pi_1")

    assert second.already_processed is True
    assert second.amount_charged == first.amount_charged
    assert second.trade_confirmation.confirmation == "FT-555"
    assert orders["state"]["order"].status == OrderStatus.PAID
    assert retrieve.call_count == 1
    assert orders["mark"].call_count == 1
    trade_desk.assert_called_once()


def test_confirm_deposit_sets_deadline_and_wire(monkeypatch, orders, trade_desk):
    orders["state"]["order"] = make_order(make_lines("10000"))
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent(amount=103500, is_deposit="true")),
    )
    before = datetime.now(timezone.utc)

    res = card.confirm_card_payment("ord-1", "pi_1")

    assert res.is_deposit is True
    assert res.deposit_breakdown.deposit_total == Decimal("1035.00")
    assert res.deposit_breakdown.wire_amount_due == Decimal("9000.00")
    assert res.deposit_breakdown.wire_due_by >= before + timedelta(hours=48)
    assert res.wire_instructions.memo == "AL-000123"
    assert orders["mark"].call_args.args[1] == OrderStatus.DEPOSIT_PAID


def test_confirm_declined_uses_processor_message(monkeypatch, orders, trade_desk):
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent(status="requires_payment_method", last_payment_error={"message": "Your card was declined."})),
    )
    with pytest.raises(CardDeclined) as exc:
        card.confirm_card_payment("ord-1", "pi_1")
    assert exc.value.message == "Your card was declined."
    orders["mark"].assert_not_called()
    trade_desk.assert_not_called()


def test_confirm_rejects_intent_of_other_order(monkeypatch, orders, trade_desk):
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent(order_id="ord-other")),
    )
    with pytest.raises(ValidationError):
        card.confirm_card_payment("ord-1", "pi_1")
    orders["mark"].assert_not_called()


def test_confirm_rejects_order_paid_by_other_intent(orders, trade_desk):
    orders["state"]["order"] = orders["state"]["order"].model_copy(
        update={"status": OrderStatus.PAID, "payment_intent_id": "pi_other"}
    )
    with pytest.raises(InvalidTransition):
        card.confirm_card_payment("ord-1", "pi_1")


def test_trade_failure_does_not_undo_payment(monkeypatch, orders, trade_desk):
    trade_desk.return_value = TradeConfirmation(status=TradeStatus.FAILED, error="HTTP 502", busted_items=["SKU-1"])
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent()),
    )
    res = card.confirm_card_payment("ord-1", "pi_1")
    assert res.settled is True
    assert res.trade_confirmation.status == TradeStatus.FAILED
    assert orders["state"]["order"].status == OrderStatus.PAID


def test_new_attempt_after_cancel_uses_fresh_idempotency_key(monkeypatch):
    create = MagicMock(return_value={"id": "pi_3", "client_secret": "pi_3_secret"})
    monkeypatch.setattr("maroon_backend.rails.card.stripe_client.create_payment_intent", create)
    order = make_order(make_lines("5000"))

    card.create_card_intent(TEST_CUSTOMER_ID, order, is_deposit=False, intent_seq=2)

    assert create.call_args.kwargs["idempotency_key"] == "intent-ord-1-full-2"


def test_cancel_card_intent_cancels_open_intent(monkeypatch):
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent(status="requires_payment_method")),
    )
    cancel = MagicMock(return_value={"id": "pi_1", "status": "canceled"})
    monkeypatch.setattr("maroon_backend.rails.card.stripe_client.cancel_payment_intent", cancel)

    card.cancel_card_intent("pi_1")

    cancel.assert_called_once_with("pi_1")


def test_cancel_card_intent_skips_already_canceled(monkeypatch):
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent(status="canceled")),
    )
    cancel = MagicMock()
    monkeypatch.setattr("maroon_backend.rails.card.stripe_client.cancel_payment_intent", cancel)

    card.cancel_card_intent("pi_1")

    cancel.assert_not_called()


def test_cancel_card_intent_refuses_captured_payment(monkeypatch):
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent(status="succeeded")),
    )
    cancel = MagicMock()
    monkeypatch.setattr("maroon_backend.rails.card.stripe_client.cancel_payment_intent", cancel)

    with pytest.raises(InvalidTransition):
        card.cancel_card_intent("pi_1")
    cancel.assert_not_called()


def test_cancel_card_intent_stripe_error_is_invalid_transition(monkeypatch):
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent(status="requires_payment_method")),
    )
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.cancel_payment_intent",
        MagicMock(side_effect=stripe.StripeError("network")),
    )
    with pytest.raises(InvalidTransition):
        card.cancel_card_intent("pi_1")


def test_cancel_payment_intent_calls_stripe(monkeypatch):
    monkeypatch.setattr("maroon_backend.rails.stripe_client.config.STRIPE_SECRET_KEY", "sk_test_1")
    monkeypatch.setattr("maroon_backend.rails.stripe_client.config.STRIPE_PUBLIC_KEY", "pk_test_1")
    cancel = MagicMock(return_value={"id": "pi_1", "status": "canceled"})
    monkeypatch.setattr("maroon_backend.rails.stripe_client.stripe.PaymentIntent.cancel", cancel)

    assert stripe_client.cancel_payment_intent("pi_1")["status"] == "canceled"
    cancel.assert_called_once_with("pi_1")


def test_captured_payment_without_status_update_is_not_recorded(monkeypatch, orders, trade_desk):
    monkeypatch.setattr(
        "maroon_backend.rails.card.stripe_client.retrieve_payment_intent",
        MagicMock(return_value=_intent()),
    )
    orders["mark"].side_effect = None
    orders["mark"].return_value = None

    with pytest.raises(SettlementNotRecorded):
        card.confirm_card_payment("ord-1", "pi_1")
    trade_desk.assert_not_called()
