"""
Calculateur acompte / virement (logique pure, pas de DB, pas de rail).

- compute(): ventilation acompte + reste à virer, échéance = confirmation + 48h.
- quote(): mêmes montants, sans échéance (devis affiché avant paiement).
- charge_breakdown(): montant débité par le rail carte (plein ou acompte) + frais.
- build_wire_instructions(): constructeur unique des instructions de virement,
  partagé par l'acompte ACH, l'acompte carte et l'alimentation du compte.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from maroon_backend import config
from maroon_backend.checkout.models import (
    ChargeBreakdown,
    DepositBreakdown,
    Tier,
    WireInstructions,
    round2,
)

# module maroon_backend.checkout.deposit
def _fee_for(tier: Tier, fee_percent) -> Decimal:
    # Seul le rail carte porte des frais; l'ACH est toujours à 0
    if Tier(tier) != Tier.CARD:
        return Decimal("0")
    return Decimal(str(fee_percent))


def quote(order_total, tier: Tier, fee_percent) -> DepositBreakdown:
    """
    Devis d'acompte:
    - deposit_base = round2(total * 10 %)
    - fee_amount = round2(deposit_base * fee_percent) (0 pour l'ACH)
    - deposit_total = base + frais (montant débité maintenant)
    - wire_amount_due = total - base (les frais ne réduisent jamais le reste à virer)
    """
    total = round2(order_total)
    fee_percent = _fee_for(tier, fee_percent)
    deposit_base = round2(total * config.DEPOSIT_PERCENT)
    fee_amount = round2(deposit_base * fee_percent)
    return DepositBreakdown(
        order_total=total,
        deposit_percent=config.DEPOSIT_PERCENT,
        deposit_base=deposit_base,
        fee_percent=fee_percent,
        fee_amount=fee_amount,
        deposit_total=deposit_base + fee_amount,
        wire_amount_due=total - deposit_base,
        wire_deadline_hours=config.WIRE_DEADLINE_HOURS,
        wire_due_by=None,
    )


def compute(order_total, tier: Tier, fee_percent, confirmed_at: Optional[datetime] = None) -> DepositBreakdown:
    """
    Ventilation définitive, calculée au moment où l'acompte est confirmé par le rail
    (et non à la création de l'intent): wire_due_by = confirmed_at + 48h.
    """
    confirmed_at = confirmed_at or datetime.now(timezone.utc)
    breakdown = quote(order_total, tier, fee_percent)
    return breakdown.model_copy(
        update={"wire_due_by": confirmed_at + timedelta(hours=config.WIRE_DEADLINE_HOURS)}
    )


def charge_breakdown(order_total, fee_percent, is_deposit: bool) -> ChargeBreakdown:
    """Montant à débiter sur la carte: total complet ou deposit_base, frais carte en sus."""
    total = round2(order_total)
    fee_percent = Decimal(str(fee_percent))
    if is_deposit:
        dep = quote(total, Tier.CARD, fee_percent)
        return ChargeBreakdown(
            order_total=total,
            charge_base=dep.deposit_base,
            fee_percent=fee_percent,
            fee_amount=dep.fee_amount,
            charge_total=dep.deposit_total,
            deposit_base=dep.deposit_base,
            wire_amount_due=dep.wire_amount_due,
        )
    fee_amount = round2(total * fee_percent)
    return ChargeBreakdown(
        order_total=total,
        charge_base=total,
        fee_percent=fee_percent,
        fee_amount=fee_amount,
        charge_total=total + fee_amount,
    )


def build_wire_instructions(al_account_number: str) -> WireInstructions:
    """Coordonnées de virement; le memo (numéro AL) sert au rapprochement du virement entrant."""
    return WireInstructions(
        bank_name=config.WIRE_BANK_NAME,
        bank_address=config.WIRE_BANK_ADDRESS,
        routing_number=config.WIRE_ROUTING_NUMBER,
        account_number=config.WIRE_ACCOUNT_NUMBER,
        beneficiary_name=config.WIRE_BENEFICIARY_NAME,
        beneficiary_address=config.WIRE_BENEFICIARY_ADDRESS,
        memo=al_account_number or "",
    )
