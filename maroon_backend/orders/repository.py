"""
Accès aux données pour la feature 'orders' (tables orders + order_items).
- Les fonctions ne lèvent pas: elles journalisent et renvoient None/[] en cas d'erreur,
  le service décide de ce qui est fatal.
- Les changements de statut sont conditionnels (WHERE status IN ...) pour garantir
  la monotonie: une commande ne revient jamais à 'pending'.
"""
from typing import Any, Dict, List, Optional
import logging

import maroon_backend.infra.supabase_client as supabase_client
from maroon_backend.checkout.models import ORDER_TRANSITIONS, OrderStatus

logger = logging.getLogger(__name__)

ORDER_COLUMNS = (
    "id, order_number, customer_id, total, fulfillment_type, status, payment_method, amount_paid, "
    "payment_intent_id, ach_transfer_id, deposit_breakdown, trade_confirmation, "
    "order_items(sku, description, metal_type, weight_ozt, quantity, unit_price, extended_price, product_id, spot_at_order)"
)

# module maroon_backend.orders.repository
def insert_order(*, order: Dict[str, Any], items: List[Dict[str, Any]]) -> Optional[dict]:
    """
    Insère la commande 'pending' puis ses lignes (service-role).
    Retourne la ligne orders insérée, ou None si l'une des écritures échoue.
    """
    try:
        client = supabase_client.get_service_supabase()
        res = client.table("orders").insert(order).execute()
        rows = res.data or []
        if not rows:
            return None
        row = rows[0]
        if items:
            client.table("order_items").insert(
                [{**item, "order_id": row["id"]} for item in items]
            ).execute()
        return row
    except Exception:
        logger.exception("orders.repository.insert_order failed customer_id=%s", order.get("customer_id"))
        return None


def get_order(order_id: str) -> Optional[dict]:
    """Relit une commande avec ses lignes; None si introuvable ou en erreur."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select(ORDER_COLUMNS)
            .eq("id", order_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("orders.repository.get_order failed order_id=%s", order_id)
        return None


def update_order_status(order_id: str, new_status: OrderStatus, **payment_facts: Any) -> Optional[dict]:
    """
    Passe la commande au statut demandé si (et seulement si) la transition est permise
    depuis son statut actuel. Retourne la ligne mise à jour, None sinon
    (commande déjà sortie de 'pending', ou erreur).
    """
    allowed_from = [s.value for s, targets in ORDER_TRANSITIONS.items() if OrderStatus(new_status) in targets]
    if not allowed_from:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .update({"status": OrderStatus(new_status).value, **payment_facts})
            .eq("id", order_id)
            .in_("status", allowed_from)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("orders.repository.update_order_status failed order_id=%s status=%s", order_id, new_status)
        return None


def record_payment_facts(order_id: str, **payment_facts: Any) -> bool:
    """Complète les faits de paiement (ex: résultat du desk de trading) sans toucher au statut."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .update(payment_facts)
            .eq("id", order_id)
            .execute()
        )
        return len(res.data or []) > 0
    except Exception:
        logger.exception("orders.repository.record_payment_facts failed order_id=%s", order_id)
        return False
