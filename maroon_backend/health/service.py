"""
Sondes de santé des dépendances du checkout (Supabase, Stripe, Plaid, desk de trading).
Ne lèvent jamais: chaque sonde renvoie un dict décrivant l'état observé.
"""
from typing import Any, Dict
import logging

import maroon_backend.infra.supabase_client as supabase_client
from maroon_backend import config
from maroon_backend.rails import trade

logger = logging.getLogger(__name__)


def health_supabase_info() -> Dict[str, Any]:
    info: Dict[str, Any] = {
        "url_set": bool(config.SUPABASE_URL),
        "service_key_set": bool(config.SUPABASE_SERVICE_KEY),
        "connect_ok": False,
    }
    try:
        supabase_client.get_service_supabase().table("orders").select("id").limit(1).execute()
        info["connect_ok"] = True
    except Exception as e:
        logger.warning("health.supabase check failed: %s", e)
        info["error"] = str(e)
    return info


def health_rails_info() -> Dict[str, Any]:
    """Configuration des rails (sans appel réseau): un rail non configuré reste désactivé."""
    return {
        "balance": {"configured": bool(config.SUPABASE_SERVICE_KEY)},
        "ach": {"configured": bool(config.PLAID_CLIENT_ID and config.PLAID_SECRET), "env": config.PLAID_ENV},
        "card": {"configured": bool(config.STRIPE_SECRET_KEY and config.STRIPE_PUBLIC_KEY)},
        "trade_desk": {"enabled": trade.is_enabled()},
    }
