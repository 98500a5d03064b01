"""
Clients Supabase partagés par les repositories du checkout.
- anon: vérification des tokens clients (auth.get_user)
- service-role (bypass RLS): commandes, débit du solde (RPC), comptes bancaires liés
Les deux instances sont créées à la première utilisation puis réutilisées.
"""
from typing import Dict
import logging

from supabase import create_client, Client

from maroon_backend import config

logger = logging.getLogger(__name__)

_clients: Dict[str, Client] = {}


def _client(role: str, key: str) -> Client:
    if role not in _clients:
        if not config.SUPABASE_URL or not key:
            raise RuntimeError(f"Configuration Supabase incomplète pour le client '{role}' (URL ou clé manquante)")
        _clients[role] = create_client(config.SUPABASE_URL, key)
        logger.info("supabase client '%s' initialisé", role)
    return _clients[role]


def get_supabase() -> Client:
    return _client("anon", config.SUPABASE_ANON)


def get_service_supabase() -> Client:
    return _client("service", config.SUPABASE_SERVICE_KEY)
