from unittest.mock import MagicMock, patch

from maroon_backend.checkout.models import OrderStatus
from maroon_backend.orders import repository


def test_insert_order_writes_order_then_items():
    mock_client = MagicMock()
    orders_table = MagicMock()
    items_table = MagicMock()
    mock_client.table.side_effect = lambda name: orders_table if name == "orders" else items_table
    orders_table.insert.return_value.execute.return_value = MagicMock(data=[{"id": "ord-1", "status": "pending"}])

    with patch("maroon_backend.infra.supabase_client.get_service_supabase", return_value=mock_client):
        row = repository.insert_order(order={"customer_id": "c1", "total": "10.00"}, items=[{"sku": "A", "quantity": 1}])

    assert row == {"id": "ord-1", "status": "pending"}
    orders_table.insert.assert_called_once_with({"customer_id": "c1", "total": "10.00"})
    items_table.insert.assert_called_once_with([{"sku": "A", "quantity": 1, "order_id": "ord-1"}])


def test_insert_order_exception_returns_none():
    with patch("maroon_backend.infra.supabase_client.get_service_supabase", side_effect=Exception("Test exception")):
        row = repository.insert_order(order={"customer_id": "c1"}, items=[])
    assert row is None


def test_update_order_status_is_conditional_on_current_status():
    mock_client = MagicMock()
    chain = mock_client.table.return_value.update.return_value.eq.return_value
    chain.in_.return_value.execute.return_value = MagicMock(data=[{"id": "ord-1", "status": "paid"}])

    with patch("maroon_backend.infra.supabase_client.get_service_supabase", return_value=mock_client):
        row = repository.update_order_status("ord-1", OrderStatus.PAID, payment_method="card")

    assert row["status"] == "paid"
    mock_client.table.return_value.update.assert_called_once_with({"status": "paid", "payment_method": "card"})
    chain.in_.assert_called_once_with("status", ["pending"])


def test_update_order_status_noop_when_already_settled():
    mock_client = MagicMock()
    chain = mock_client.table.return_value.update.return_value.eq.return_value
    chain.in_.return_value.execute.return_value = MagicMock(data=[])

    with patch("maroon_backend.infra.supabase_client.get_service_supabase", return_value=mock_client):
        assert repository.update_order_status("ord-1", OrderStatus.PAID) is None


def test_update_to_pending_is_never_attempted():
    mock_client = MagicMock()
    with patch("maroon_backend.infra.supabase_client.get_service_supabase", return_value=mock_client):
        assert repository.update_order_status("ord-1", OrderStatus.PENDING) is None
    mock_client.table.assert_not_called()


def test_cancel_allowed_from_pending_and_deposit_paid():
    mock_client = MagicMock()
    chain = mock_client.table.return_value.update.return_value.eq.return_value
    chain.in_.return_value.execute.return_value = MagicMock(data=[{"id": "ord-1"}])

    with patch("maroon_backend.infra.supabase_client.get_service_supabase", return_value=mock_client):
        repository.update_order_status("ord-1", OrderStatus.CANCELLED)

    field, allowed = chain.in_.call_args.args
    assert field == "status"
    assert set(allowed) == {"pending", "deposit_paid"}


def test_get_order_returns_first_row():
    mock_client = MagicMock()
    select_chain = mock_client.table.return_value.select.return_value.eq.return_value.limit.return_value
    select_chain.execute.return_value = MagicMock(data=[{"id": "ord-1"}])

    with patch("maroon_backend.infra.supabase_client.get_service_supabase", return_value=mock_client):
        assert repository.get_order("ord-1") == {"id": "ord-1"}


def test_record_payment_facts_exception_returns_false():
    with patch("maroon_backend.infra.supabase_client.get_service_supabase", side_effect=Exception("down")):
        assert repository.record_payment_facts("ord-1", trade_confirmation={}) is False
