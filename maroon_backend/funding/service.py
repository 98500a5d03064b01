"""
Cas d'usage 'funding': instantané de financement, résolution des moyens de paiement,
instructions de virement et alimentation du compte (fundAccount).
"""
from decimal import Decimal
from typing import Any, Dict
import logging

from maroon_backend.checkout import deposit, policy
from maroon_backend.checkout.errors import PolicyUnavailable, ValidationError
from maroon_backend.checkout.models import (
    FundingSnapshot,
    LinkedBank,
    MethodResolution,
    WireInstructions,
    round2,
)
from maroon_backend.funding import repository

logger = logging.getLogger(__name__)

# Délais indicatifs affichés avec les instructions
FUNDING_TIMING = {
    "wire": "Same business day if received before 4pm ET",
    "ach": "2-3 business days",
}


def get_funding_snapshot(customer_id: str) -> FundingSnapshot:
    """Agrège solde + banques liées; lève PolicyUnavailable si l'une des lectures échoue."""
    account = repository.fetch_funding_account(customer_id)
    banks = repository.fetch_linked_banks(customer_id)
    if account is None or banks is None:
        raise PolicyUnavailable("Impossible de charger les moyens de paiement, réessayez")
    return FundingSnapshot(
        customer_id=customer_id,
        available_balance=account.get("available_balance") or 0,
        cash_balance=account.get("cash_balance") or 0,
        linked_banks=[LinkedBank(**b) for b in banks],
        kyc_status=account.get("kyc_status") or "unknown",
        al_account_number=account.get("al_account_number") or "",
    )


def resolve_methods(customer_id: str, cart_total) -> MethodResolution:
    """resolveMethods(customerId, cartTotal): options, manque à financer, numéro AL."""
    snapshot = get_funding_snapshot(customer_id)
    resolution = policy.resolve(snapshot, cart_total)
    logger.info(
        "funding.resolve_methods customer_id=%s total=%s recommended=%s",
        customer_id,
        resolution.cart_total,
        resolution.recommended.tier.value if resolution.recommended else None,
    )
    return resolution


def get_al_account_number(customer_id: str) -> str:
    account = repository.fetch_funding_account(customer_id)
    if account is None:
        raise PolicyUnavailable("Compte de financement indisponible")
    return account.get("al_account_number") or ""


def get_wire_instructions(customer_id: str) -> WireInstructions:
    """Instructions de virement (memo = numéro AL du client)."""
    return deposit.build_wire_instructions(get_al_account_number(customer_id))


def fund_account(customer_id: str, shortfall) -> Dict[str, Any]:
    """
    Échappatoire quand le solde est insuffisant: montant à virer + coordonnées + banques liées
    (pour un prélèvement ACH d'alimentation initié ailleurs).
    """
    amount = round2(shortfall or 0)
    if amount < Decimal("0"):
        raise ValidationError("Montant à financer invalide")
    snapshot = get_funding_snapshot(customer_id)
    return {
        "amount": amount,
        "al_account_number": snapshot.al_account_number,
        "wire_instructions": deposit.build_wire_instructions(snapshot.al_account_number),
        "memo_instructions": (
            f"Include {snapshot.al_account_number} in the wire memo so the deposit is matched to your account"
            if snapshot.al_account_number
            else "Contact support to obtain your account reference before wiring funds"
        ),
        "linked_banks": snapshot.linked_banks,
        "timing": FUNDING_TIMING,
    }
