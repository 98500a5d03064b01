"""
Rail 'balance': débit atomique du solde financé du client.

Le grand livre expose une RPC Supabase checkout_with_balance(p_order_id, p_customer_id)
qui débite le solde en une seule opération (tout ou rien) et renvoie le nouveau solde.
Aucun état partiel à réconcilier ici.
"""
import logging

import maroon_backend.infra.supabase_client as supabase_client
from maroon_backend.checkout.errors import InsufficientFunds
from maroon_backend.checkout.models import BalancePayment, Order, OrderStatus, Tier
from maroon_backend.orders import service as orders_service

logger = logging.getLogger(__name__)

# Codes du grand livre signalant un solde insuffisant ou un débit concurrent
LEDGER_DECLINE_CODES = ("INSUFFICIENT_FUNDS", "BALANCE_CHANGED")


def _ledger_message(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc)


def pay_with_balance(order: Order, customer_id: str) -> BalancePayment:
    """payWithBalance(orderId, customerId) -> {newBalance} ou InsufficientFunds."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .rpc("checkout_with_balance", {"p_order_id": order.id, "p_customer_id": customer_id})
            .execute()
        )
    except Exception as e:
        message = _ledger_message(e)
        if any(code in message.upper() for code in LEDGER_DECLINE_CODES):
            logger.info("balance.pay_with_balance declined order_id=%s reason=%s", order.id, message)
            raise InsufficientFunds(message) from e
        logger.exception("balance.pay_with_balance ledger error order_id=%s", order.id)
        raise

    data = res.data or {}
    if isinstance(data, list):
        data = data[0] if data else {}
    if not data.get("success", True):
        raise InsufficientFunds(data.get("error") or "Solde insuffisant")

    payment = BalancePayment(
        amount_paid=data.get("amount_paid") or order.total,
        new_balance=data.get("new_balance") or 0,
        transaction_id=str(data["transaction_id"]) if data.get("transaction_id") else None,
    )
    orders_service.settle(
        order.id,
        OrderStatus.PAID,
        Tier.BALANCE,
        amount_paid=str(payment.amount_paid),
    )
    logger.info("balance.pay_with_balance ok order_id=%s new_balance=%s", order.id, payment.new_balance)
    return payment
