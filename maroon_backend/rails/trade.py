"""
Effet de bord de confirmation de trade (desk de trading / fournisseur de métaux).

Appelé après la première confirmation carte réussie. Le résultat est rattaché à la
réponse et à la commande, mais un échec n'annule jamais le paiement capturé:
le trade est signalé « failed » et traité hors bande.
"""
from typing import Any, Dict, List
import logging

import httpx

from maroon_backend import config
from maroon_backend.checkout.models import CartLine, Order, TradeConfirmation, TradeStatus

logger = logging.getLogger(__name__)


def is_enabled() -> bool:
    return bool(config.TRADE_API_URL)


def _trade_items(lines: List[CartLine]) -> List[Dict[str, Any]]:
    return [
        {
            "code": line.sku,
            "qty": line.quantity,
            "price": str(line.unit_price),
        }
        for line in lines
    ]


def execute_trade(order: Order) -> TradeConfirmation:
    """
    Exécute le trade de la commande; ne lève jamais.
    - Désactivé (TRADE_API_URL vide) → status=skipped
    - Réponse sans confirmation ou erreur HTTP → status=failed + détail
    """
    if not is_enabled():
        return TradeConfirmation(status=TradeStatus.SKIPPED)

    headers = {"Authorization": f"Bearer {config.TRADE_API_TOKEN}"} if config.TRADE_API_TOKEN else {}
    payload = {
        "reference": order.order_number,
        "transaction_id": order.id,
        "items": _trade_items(order.lines),
    }
    try:
        resp = httpx.post(f"{config.TRADE_API_URL}/execute-trade", json=payload, headers=headers, timeout=15)
        data = resp.json() if resp.content else {}
        if resp.status_code >= 400 or not data.get("confirmation"):
            error = data.get("error") or f"HTTP {resp.status_code}"
            logger.warning("trade.execute_trade failed order_id=%s error=%s", order.id, error)
            return TradeConfirmation(
                status=TradeStatus.FAILED,
                error=error,
                busted_items=[str(i) for i in data.get("busted_items") or []],
            )
        logger.info("trade.execute_trade confirmed order_id=%s confirmation=%s", order.id, data["confirmation"])
        return TradeConfirmation(status=TradeStatus.CONFIRMED, confirmation=str(data["confirmation"]))
    except Exception as e:
        logger.exception("trade.execute_trade error order_id=%s", order.id)
        return TradeConfirmation(status=TradeStatus.FAILED, error=str(e))
