"""
Accès aux données 'funding': solde disponible, comptes bancaires liés (Plaid), KYC.
Tables: customer_funding (une ligne par client), linked_bank_accounts.
"""
from typing import List, Optional
import logging

import maroon_backend.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# Colonnes exposées au front; les handles Plaid restent côté serveur
BANK_PUBLIC_COLUMNS = "bank_account_id, institution_name, account_mask, account_type"
BANK_PROVIDER_COLUMNS = BANK_PUBLIC_COLUMNS + ", plaid_access_token, plaid_account_id, owner_legal_name"

# module maroon_backend.funding.repository
def fetch_funding_account(customer_id: str) -> Optional[dict]:
    """
    Lit l'état de financement du client.
    - Retourne {} si le client n'a pas encore de ligne (solde nul).
    - Retourne None en cas d'erreur d'accès (le service lève PolicyUnavailable).
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("customer_funding")
            .select("customer_id, available_balance, cash_balance, al_account_number, kyc_status")
            .eq("customer_id", customer_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else {}
    except Exception:
        logger.exception("funding.repository.fetch_funding_account failed customer_id=%s", customer_id)
        return None


def fetch_linked_banks(customer_id: str) -> Optional[List[dict]]:
    """Comptes bancaires actifs du client (colonnes publiques); None en cas d'erreur."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("linked_bank_accounts")
            .select(BANK_PUBLIC_COLUMNS)
            .eq("customer_id", customer_id)
            .eq("status", "active")
            .order("created_at", desc=True)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("funding.repository.fetch_linked_banks failed customer_id=%s", customer_id)
        return None


def get_linked_bank_credentials(customer_id: str, bank_account_id: str) -> Optional[dict]:
    """Compte lié avec ses handles Plaid (access_token, account_id) pour initier un prélèvement."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("linked_bank_accounts")
            .select(BANK_PROVIDER_COLUMNS)
            .eq("customer_id", customer_id)
            .eq("bank_account_id", bank_account_id)
            .eq("status", "active")
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("funding.repository.get_linked_bank_credentials failed bank_account_id=%s", bank_account_id)
        return None
