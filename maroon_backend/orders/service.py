"""Couche service de la provision des commandes.
Rôles:
- Créer une commande « pending » immuable à partir du panier, avant toute tentative de paiement.
- Relire une commande et appliquer les transitions de statut demandées par les rails.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import secrets

from maroon_backend.checkout.errors import OrderCreationError, SettlementNotRecorded, ValidationError
from maroon_backend.checkout.models import (
    CartLine,
    FulfillmentType,
    Order,
    OrderStatus,
    Tier,
    TradeConfirmation,
    cart_total,
)
from maroon_backend.orders import repository

logger = logging.getLogger(__name__)


def make_order_number(now: Optional[datetime] = None) -> str:
    """Numéro lisible: AL-AAMMJJ-XXXXXX."""
    now = now or datetime.now(timezone.utc)
    return f"AL-{now:%y%m%d}-{secrets.token_hex(3).upper()}"


def _row_to_order(row: Dict[str, Any], lines: Optional[List[CartLine]] = None) -> Order:
    items = row.get("order_items")
    if lines is None:
        lines = [CartLine(**item) for item in (items or [])]
    return Order(
        id=str(row["id"]),
        order_number=row.get("order_number") or "",
        customer_id=str(row.get("customer_id") or ""),
        lines=lines,
        total=row.get("total") or 0,
        fulfillment_type=row.get("fulfillment_type") or FulfillmentType.VAULT,
        status=row.get("status") or OrderStatus.PENDING,
        payment_method=row.get("payment_method"),
        amount_paid=row.get("amount_paid"),
        payment_intent_id=row.get("payment_intent_id"),
        ach_transfer_id=row.get("ach_transfer_id"),
        deposit_breakdown=row.get("deposit_breakdown"),
        trade_confirmation=row.get("trade_confirmation"),
    )


def create_order(customer_id: str, lines: List[CartLine], fulfillment_type: FulfillmentType = FulfillmentType.VAULT) -> Order:
    """Crée la commande 'pending' (appelé une seule fois par session).
    - Le total est recalculé depuis les lignes (jamais fourni par l'appelant).
    - Lève OrderCreationError si l'écriture échoue: fatal pour la session.
    """
    if not customer_id:
        raise ValidationError("Client inconnu")
    if not lines:
        raise ValidationError("Panier vide")

    total = cart_total(lines)
    order_row = {
        "order_number": make_order_number(),
        "customer_id": customer_id,
        "total": str(total),
        "fulfillment_type": FulfillmentType(fulfillment_type).value,
        "status": OrderStatus.PENDING.value,
    }
    items = [line.model_dump(mode="json") for line in lines]
    row = repository.insert_order(order=order_row, items=items)
    if not row:
        raise OrderCreationError("Impossible de créer la commande")

    order = _row_to_order({**order_row, **row}, lines=list(lines))
    logger.info("orders.create_order order_id=%s number=%s total=%s", order.id, order.order_number, total)
    return order


def get_order(order_id: str) -> Optional[Order]:
    row = repository.get_order(order_id)
    return _row_to_order(row) if row else None


def mark_status(order_id: str, status: OrderStatus, **payment_facts: Any) -> Optional[Order]:
    """Applique une transition monotone; None si la commande avait déjà quitté 'pending'."""
    row = repository.update_order_status(order_id, status, **payment_facts)
    if not row:
        logger.warning("orders.mark_status noop order_id=%s status=%s", order_id, status)
        return None
    return _row_to_order(row, lines=[])


def settle(order_id: str, status: OrderStatus, payment_method: Tier, *, match: Optional[Dict[str, Any]] = None, **payment_facts: Any) -> Order:
    """
    Enregistre le règlement d'un rail dont les fonds sont déjà prélevés.
    - Transition appliquée → commande mise à jour.
    - Transition refusée mais commande déjà réglée par ce même paiement (match) → rejeu.
    - Sinon SettlementNotRecorded: jamais de succès tant que la commande reste 'pending'.
    """
    updated = mark_status(order_id, status, payment_method=Tier(payment_method).value, **payment_facts)
    if updated is not None:
        return updated
    current = get_order(order_id)
    if (
        current is not None
        and current.status == OrderStatus(status)
        and current.payment_method == Tier(payment_method)
        and all(getattr(current, k, None) == v for k, v in (match or {}).items())
    ):
        logger.info("orders.settle replay order_id=%s status=%s", order_id, current.status.value)
        return current
    logger.error(
        "orders.settle not recorded order_id=%s target=%s current=%s",
        order_id, OrderStatus(status).value, current.status.value if current else None,
    )
    raise SettlementNotRecorded(
        "Paiement reçu mais la commande n'a pas pu être mise à jour. Ne relancez pas le paiement: le support va régulariser."
    )


TRADE_RECORD_ATTEMPTS = 3


def record_trade_confirmation(order_id: str, trade: TradeConfirmation) -> bool:
    """Enregistre le résultat du desk; réessaie l'écriture pour que les rejeux renvoient le même code."""
    facts = trade.model_dump(mode="json")
    for attempt in range(1, TRADE_RECORD_ATTEMPTS + 1):
        if repository.record_payment_facts(order_id, trade_confirmation=facts):
            return True
        logger.warning("orders.record_trade_confirmation attempt %s failed order_id=%s", attempt, order_id)
    logger.error(
        "orders.record_trade_confirmation failed order_id=%s trade=%s confirmation=%s",
        order_id, trade.status.value, trade.confirmation,
    )
    return False
