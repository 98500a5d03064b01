"""
Politique de frais et d'éligibilité (fonction pure).

Entrée: instantané de financement du client + total du panier.
Sortie: MethodResolution avec les options [balance, ach, card], dans cet ordre.
Règles:
- total > seuil (8 000 $): ACH et carte passent en acompte + virement; la carte
  n'accepte jamais le paiement complet. Le solde, s'il suffit, paie toujours en entier.
- Frais: solde 0 %, ACH 0 %, carte 3,5 % de la base débitée (total ou deposit_base).
- Une seule option recommandée: la moins chère parmi les suffisantes, balance > ach > card.
"""
from decimal import Decimal
from typing import List, Optional

from maroon_backend import config
from maroon_backend.checkout import deposit
from maroon_backend.checkout.models import (
    TIER_RANK,
    FundingSnapshot,
    MethodResolution,
    PaymentMethodOption,
    Tier,
    round2,
)

# module maroon_backend.checkout.policy
def is_large_order(total) -> bool:
    return round2(total) > config.LARGE_ORDER_THRESHOLD


def fee_percent_for(tier: Tier) -> Decimal:
    return config.CARD_FEE_PERCENT if Tier(tier) == Tier.CARD else Decimal("0")


def _balance_option(snapshot: FundingSnapshot, total: Decimal) -> PaymentMethodOption:
    available = round2(snapshot.available_balance)
    return PaymentMethodOption(
        tier=Tier.BALANCE,
        tier_rank=TIER_RANK[Tier.BALANCE],
        name="Pay with Balance",
        description="Instant, no fee",
        available=available,
        sufficient=available >= total,
    )


def _ach_option(snapshot: FundingSnapshot, total: Decimal, large: bool) -> PaymentMethodOption:
    bank = snapshot.linked_banks[0] if snapshot.linked_banks else None
    option = PaymentMethodOption(
        tier=Tier.ACH,
        tier_rank=TIER_RANK[Tier.ACH],
        name="Pay from Bank Account",
        description="ACH transfer, no fee, clears in 2-3 business days",
        sufficient=bank is not None,
        linked_bank=bank,
    )
    if large:
        option.is_deposit_flow = True
        option.deposit_breakdown = deposit.quote(total, Tier.ACH, Decimal("0"))
        option.description = (
            f"{int(config.DEPOSIT_PERCENT * 100)}% ACH deposit now, wire the remainder "
            f"within {config.WIRE_DEADLINE_HOURS}h"
        )
    return option


def _card_option(snapshot: FundingSnapshot, total: Decimal, large: bool) -> PaymentMethodOption:
    fee_percent = config.CARD_FEE_PERCENT
    option = PaymentMethodOption(
        tier=Tier.CARD,
        tier_rank=TIER_RANK[Tier.CARD],
        name="Pay by Card",
        description=f"{fee_percent * 100:.1f}% processing fee",
        sufficient=True,
        fee_percent=fee_percent,
        max_full_payment=config.LARGE_ORDER_THRESHOLD,
    )
    if large:
        quoted = deposit.quote(total, Tier.CARD, fee_percent)
        option.is_deposit_only = True
        option.deposit_breakdown = quoted
        option.fee_amount = quoted.fee_amount
        option.description = (
            f"Orders over ${config.LARGE_ORDER_THRESHOLD:,.0f} require a "
            f"{int(config.DEPOSIT_PERCENT * 100)}% card deposit + wire"
        )
    else:
        option.fee_amount = round2(total * fee_percent)
    if snapshot.linked_banks and option.fee_amount > 0:
        option.savings_with_bank = option.fee_amount
        option.bank_nudge = f"Save ${option.fee_amount:,.2f} by paying from your linked bank"
    return option


def _mark_recommended(options: List[PaymentMethodOption]) -> Optional[PaymentMethodOption]:
    candidates = [o for o in options if o.sufficient]
    if not candidates:
        return None
    best = min(candidates, key=lambda o: (o.fee_amount, o.tier_rank))
    best.recommended = True
    return best


def resolve(snapshot: FundingSnapshot, cart_total) -> MethodResolution:
    """Calcule les options de paiement pour un total et un état de financement donnés."""
    total = round2(cart_total)
    large = is_large_order(total)
    options = [
        _balance_option(snapshot, total),
        _ach_option(snapshot, total, large),
        _card_option(snapshot, total, large),
    ]
    _mark_recommended(options)

    balance = round2(snapshot.available_balance)
    shortfall = max(Decimal("0.00"), total - balance)
    needs_funding = shortfall > 0
    fund_prompt = None
    if needs_funding:
        fund_prompt = (
            f"Add ${shortfall:,.2f} to your balance to pay with 0% fees. "
            f"Wire funds using memo {snapshot.al_account_number}."
            if snapshot.al_account_number
            else f"Add ${shortfall:,.2f} to your balance to pay with 0% fees."
        )

    return MethodResolution(
        cart_total=total,
        methods=options,
        has_linked_bank=bool(snapshot.linked_banks),
        linked_banks=list(snapshot.linked_banks),
        needs_funding=needs_funding,
        funding_shortfall=round2(shortfall),
        al_account_number=snapshot.al_account_number,
        kyc_status=snapshot.kyc_status,
        fund_prompt=fund_prompt,
    )


def without_tiers(resolution: MethodResolution, disabled) -> MethodResolution:
    """Rend indisponibles les rails désactivés pour la session et recalcule la recommandation."""
    disabled = {Tier(t) for t in disabled or ()}
    if not disabled:
        return resolution
    options = [
        o.model_copy(update={"sufficient": o.sufficient and o.tier not in disabled, "recommended": False})
        for o in resolution.methods
    ]
    _mark_recommended(options)
    return resolution.model_copy(update={"methods": options})
