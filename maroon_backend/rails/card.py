"""
Rail 'card': PaymentIntent Stripe en deux temps.

1) create_card_intent: montant = total (ou acompte) + frais carte, metadata reliant
   l'intent à la commande; le client confirme la carte avec le client_token.
2) confirm_card_payment: vérifie l'intent côté serveur puis passe la commande au statut
   payé. Idempotent: une seconde confirmation du même intent renvoie already_processed
   sans nouvel effet de bord (ni statut, ni trade).
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import logging

import stripe

from maroon_backend import config
from maroon_backend.checkout import deposit
from maroon_backend.checkout.errors import CardDeclined, InvalidTransition, SettlementNotRecorded, ValidationError
from maroon_backend.checkout.models import (
    CardConfirmation,
    CardIntent,
    Order,
    OrderStatus,
    Tier,
    round2,
)
from maroon_backend.orders import service as orders_service
from maroon_backend.rails import stripe_client, trade

logger = logging.getLogger(__name__)

SETTLED_STATUSES = (OrderStatus.PAID, OrderStatus.DEPOSIT_PAID)


def to_cents(amount) -> int:
    return int(round2(amount) * 100)


def intent_key(order: Order, is_deposit: bool, intent_seq: int = 1) -> str:
    # Un intent annulé ne doit pas être renvoyé par la clé de la tentative précédente
    key = f"intent-{order.id}-{'deposit' if is_deposit else 'full'}"
    return key if intent_seq <= 1 else f"{key}-{intent_seq}"


def create_card_intent(
    customer_id: str,
    order: Order,
    is_deposit: bool,
    *,
    fee_percent=None,
    al_account_number: str = "",
    intent_seq: int = 1,
) -> CardIntent:
    """createCardIntent(customerId, orderId, isDeposit) -> {paymentIntentId, clientToken, breakdown}."""
    fee_percent = config.CARD_FEE_PERCENT if fee_percent is None else Decimal(str(fee_percent))
    breakdown = deposit.charge_breakdown(order.total, fee_percent, is_deposit)
    metadata = {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_id": customer_id,
        "is_deposit": "true" if is_deposit else "false",
        "charge_base": str(breakdown.charge_base),
        "fee_amount": str(breakdown.fee_amount),
        "al_account_number": al_account_number or "",
    }
    try:
        intent = stripe_client.create_payment_intent(
            amount_cents=to_cents(breakdown.charge_total),
            currency=config.CHECKOUT_CURRENCY,
            metadata=metadata,
            description=f"Order {order.order_number}" + (" (deposit)" if is_deposit else ""),
            idempotency_key=intent_key(order, is_deposit, intent_seq),
        )
    except stripe.StripeError as e:
        logger.warning("card.create_card_intent stripe error order_id=%s", order.id)
        raise CardDeclined(getattr(e, "user_message", None) or str(e)) from e

    payment_intent_id = stripe_client.field(intent, "id")
    client_token = stripe_client.field(intent, "client_secret")
    if not payment_intent_id or not client_token:
        raise CardDeclined("Paiement par carte indisponible, réessayez")
    logger.info(
        "card.create_card_intent order_id=%s intent=%s charge_total=%s deposit=%s",
        order.id, payment_intent_id, breakdown.charge_total, is_deposit,
    )
    return CardIntent(
        payment_intent_id=payment_intent_id,
        client_token=client_token,
        is_deposit=is_deposit,
        charge_breakdown=breakdown,
    )


def _already_processed(order: Order, payment_intent_id: str, al_account_number: str) -> CardConfirmation:
    """Confirmation rejouée: renvoie les faits déjà enregistrés, sans effet de bord."""
    is_deposit = order.status == OrderStatus.DEPOSIT_PAID
    wire = deposit.build_wire_instructions(al_account_number) if is_deposit else None
    logger.info("card.confirm_card_payment already processed order_id=%s intent=%s", order.id, payment_intent_id)
    return CardConfirmation(
        settled=True,
        order_id=order.id,
        payment_intent_id=payment_intent_id,
        is_deposit=is_deposit,
        amount_charged=order.amount_paid if order.amount_paid is not None else order.total,
        already_processed=True,
        al_account_number=al_account_number,
        deposit_breakdown=order.deposit_breakdown,
        wire_instructions=wire,
        trade_confirmation=order.trade_confirmation,
    )


def _check_settled_order(order: Order, payment_intent_id: str, al_account_number: str = "") -> Optional[CardConfirmation]:
    if order.status in SETTLED_STATUSES:
        if order.payment_intent_id == payment_intent_id:
            return _already_processed(order, payment_intent_id, al_account_number)
        raise InvalidTransition("Commande déjà réglée par un autre paiement")
    if order.status == OrderStatus.CANCELLED:
        raise InvalidTransition("Commande annulée")
    return None


def confirm_card_payment(order_id: str, payment_intent_id: str, al_account_number: str = "") -> CardConfirmation:
    """
    confirmCardPayment(orderId, paymentIntentId):
    - intent non 'succeeded' → CardDeclined (message du processeur)
    - commande déjà réglée par ce même intent → already_processed
    - sinon: statut 'paid' / 'deposit_paid', ventilation d'acompte calculée maintenant,
      puis confirmation du trade (son échec n'annule pas le paiement)
    """
    if not payment_intent_id:
        raise ValidationError("Référence de paiement manquante")
    order = orders_service.get_order(order_id)
    if order is None:
        raise ValidationError("Commande introuvable")
    replay = _check_settled_order(order, payment_intent_id, al_account_number)
    if replay is not None:
        return replay

    try:
        intent = stripe_client.retrieve_payment_intent(payment_intent_id)
    except stripe.StripeError as e:
        logger.warning("card.confirm_card_payment retrieve failed intent=%s", payment_intent_id)
        raise CardDeclined(getattr(e, "user_message", None) or str(e)) from e

    status = stripe_client.field(intent, "status") or ""
    if status != "succeeded":
        last_error = stripe_client.field(intent, "last_payment_error")
        message = stripe_client.field(last_error, "message") or f"Paiement non confirmé (status={status})"
        raise CardDeclined(message)

    metadata = stripe_client.field(intent, "metadata") or {}
    meta_order_id = stripe_client.field(metadata, "order_id")
    if meta_order_id and str(meta_order_id) != order.id:
        raise ValidationError("Paiement rattaché à une autre commande")

    is_deposit = stripe_client.field(metadata, "is_deposit") == "true"
    al_account_number = stripe_client.field(metadata, "al_account_number") or al_account_number
    received = stripe_client.field(intent, "amount_received") or stripe_client.field(intent, "amount") or 0
    amount_charged = round2(Decimal(int(received)) / 100)

    breakdown = None
    wire = None
    if is_deposit:
        # Le compte à rebours des 48h démarre à la confirmation, pas à la création de l'intent
        breakdown = deposit.compute(
            order.total, Tier.CARD, config.CARD_FEE_PERCENT, confirmed_at=datetime.now(timezone.utc)
        )
        wire = deposit.build_wire_instructions(al_account_number)

    updated = orders_service.mark_status(
        order.id,
        OrderStatus.DEPOSIT_PAID if is_deposit else OrderStatus.PAID,
        payment_method=Tier.CARD.value,
        payment_intent_id=payment_intent_id,
        amount_paid=str(amount_charged),
        deposit_breakdown=breakdown.model_dump(mode="json") if breakdown else None,
    )
    if updated is None:
        # Confirmation concurrente: l'autre appel a déjà appliqué la transition
        current = orders_service.get_order(order.id)
        if current is not None:
            replay = _check_settled_order(current, payment_intent_id, al_account_number)
            if replay is not None:
                return replay
        logger.error("card.confirm_card_payment not recorded order_id=%s intent=%s", order.id, payment_intent_id)
        raise SettlementNotRecorded(
            "Paiement reçu mais la commande n'a pas pu être mise à jour. Ne relancez pas le paiement: le support va régulariser."
        )

    trade_confirmation = trade.execute_trade(order)
    orders_service.record_trade_confirmation(order.id, trade_confirmation)

    logger.info(
        "card.confirm_card_payment settled order_id=%s intent=%s amount=%s deposit=%s trade=%s",
        order.id, payment_intent_id, amount_charged, is_deposit, trade_confirmation.status.value,
    )
    return CardConfirmation(
        settled=True,
        order_id=order.id,
        payment_intent_id=payment_intent_id,
        is_deposit=is_deposit,
        amount_charged=amount_charged,
        al_account_number=al_account_number,
        deposit_breakdown=breakdown,
        wire_instructions=wire,
        trade_confirmation=trade_confirmation,
    )


# Statuts d'un intent dont les fonds sont engagés: plus d'annulation possible côté checkout
COMMITTED_INTENT_STATUSES = ("succeeded", "processing")


def cancel_card_intent(payment_intent_id: str) -> None:
    """
    Annule l'intent d'une tentative carte abandonnée (retour au choix du moyen, abandon).
    - déjà annulé → rien à faire
    - 'succeeded' / 'processing' → InvalidTransition: le paiement doit être confirmé
    """
    try:
        intent = stripe_client.retrieve_payment_intent(payment_intent_id)
        status = stripe_client.field(intent, "status") or ""
        if status == "canceled":
            return
        if status in COMMITTED_INTENT_STATUSES:
            raise InvalidTransition("Paiement carte déjà en cours: confirmez-le avant de changer de moyen")
        stripe_client.cancel_payment_intent(payment_intent_id)
    except stripe.StripeError as e:
        logger.warning("card.cancel_card_intent stripe error intent=%s", payment_intent_id)
        raise InvalidTransition("Annulation du paiement carte impossible, réessayez") from e
    logger.info("card.cancel_card_intent intent=%s previous_status=%s", payment_intent_id, status)
