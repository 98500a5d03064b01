"""
Orchestrateur du checkout: machine à états d'une session de paiement.

REVIEW → SELECT_METHOD → ORDER_CREATED → (SETTLED_SUCCESS | WIRE_PENDING | CARD_CAPTURE) → DONE

- La table de transitions est pure (next_state); tout le reste est du câblage
  vers les collaborateurs (funding, orders, rails).
- Une seule commande par session: elle est créée au premier submit puis réutilisée
  à chaque nouvelle tentative, quel que soit le rail choisi.
- Un seul appel en cours à la fois: un submit/confirm concurrent est ignoré (no-op).
- Les erreurs de rail ne sortent pas d'ici: elles deviennent un message sur la session
  et l'état revient à un point actionnable (SELECT_METHOD ou CARD_CAPTURE).
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple
from uuid import uuid4
import logging
import threading

from maroon_backend.checkout import policy
from maroon_backend.checkout.errors import (
    RAIL_ERRORS,
    CheckoutError,
    ConfigurationError,
    InvalidTransition,
    OrderCreationError,
    SettlementNotRecorded,
    ValidationError,
)
from maroon_backend.checkout.models import (
    CartLine,
    FulfillmentType,
    MethodResolution,
    Order,
    OrderStatus,
    PaymentAttempt,
    PaymentMethodOption,
    SettlementResult,
    Tier,
    cart_total,
)
from maroon_backend.funding import service as funding_service
from maroon_backend.orders import service as orders_service
from maroon_backend.rails import ach, balance, card

logger = logging.getLogger(__name__)

GENERIC_RAIL_MESSAGE = "Le paiement n'a pas pu aboutir, réessayez ou choisissez un autre moyen de paiement"


class CheckoutState(str, Enum):
    REVIEW = "review"
    SELECT_METHOD = "select_method"
    ORDER_CREATED = "order_created"
    CARD_CAPTURE = "card_capture"
    WIRE_PENDING = "wire_pending"
    SETTLED_SUCCESS = "settled_success"
    DONE = "done"
    FAILED = "failed"
    ABANDONED = "abandoned"


class CheckoutEvent(str, Enum):
    CONFIRM_CART = "confirm_cart"
    SUBMIT = "submit"
    ORDER_FAILED = "order_failed"
    PAYMENT_SETTLED = "payment_settled"
    DEPOSIT_ACCEPTED = "deposit_accepted"
    CARD_INTENT_CREATED = "card_intent_created"
    RAIL_FAILED = "rail_failed"
    CARD_UNAVAILABLE = "card_unavailable"
    BACK = "back"
    ACKNOWLEDGE = "acknowledge"
    ABANDON = "abandon"


S = CheckoutState
E = CheckoutEvent

TRANSITIONS: Dict[Tuple[CheckoutState, CheckoutEvent], CheckoutState] = {
    (S.REVIEW, E.CONFIRM_CART): S.SELECT_METHOD,
    (S.REVIEW, E.ABANDON): S.ABANDONED,
    (S.SELECT_METHOD, E.SUBMIT): S.ORDER_CREATED,
    (S.SELECT_METHOD, E.ORDER_FAILED): S.FAILED,
    (S.SELECT_METHOD, E.BACK): S.REVIEW,
    (S.SELECT_METHOD, E.ABANDON): S.ABANDONED,
    (S.ORDER_CREATED, E.PAYMENT_SETTLED): S.SETTLED_SUCCESS,
    (S.ORDER_CREATED, E.DEPOSIT_ACCEPTED): S.WIRE_PENDING,
    (S.ORDER_CREATED, E.CARD_INTENT_CREATED): S.CARD_CAPTURE,
    (S.ORDER_CREATED, E.RAIL_FAILED): S.SELECT_METHOD,
    (S.ORDER_CREATED, E.CARD_UNAVAILABLE): S.SELECT_METHOD,
    (S.CARD_CAPTURE, E.PAYMENT_SETTLED): S.SETTLED_SUCCESS,
    (S.CARD_CAPTURE, E.DEPOSIT_ACCEPTED): S.WIRE_PENDING,
    (S.CARD_CAPTURE, E.RAIL_FAILED): S.CARD_CAPTURE,
    (S.CARD_CAPTURE, E.CARD_UNAVAILABLE): S.SELECT_METHOD,
    (S.CARD_CAPTURE, E.BACK): S.SELECT_METHOD,
    (S.CARD_CAPTURE, E.ABANDON): S.ABANDONED,
    (S.WIRE_PENDING, E.ACKNOWLEDGE): S.DONE,
    (S.SETTLED_SUCCESS, E.ACKNOWLEDGE): S.DONE,
}

TERMINAL_STATES = {S.DONE, S.FAILED, S.ABANDONED}


def next_state(state: CheckoutState, event: CheckoutEvent) -> CheckoutState:
    """Transition pure; InvalidTransition pour toute paire (état, événement) non prévue."""
    try:
        return TRANSITIONS[(CheckoutState(state), CheckoutEvent(event))]
    except (KeyError, ValueError):
        label = getattr(event, "value", event)
        raise InvalidTransition(f"Action '{label}' impossible depuis l'état '{getattr(state, 'value', state)}'") from None


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CheckoutSession:
    customer_id: str
    lines: List[CartLine]
    fulfillment_type: FulfillmentType = FulfillmentType.VAULT
    id: str = field(default_factory=lambda: uuid4().hex)
    state: CheckoutState = CheckoutState.REVIEW
    methods: Optional[MethodResolution] = None
    selected_tier: Optional[Tier] = None
    selected_bank_id: Optional[str] = None
    order: Optional[Order] = None
    attempt: Optional[PaymentAttempt] = None
    result: Optional[SettlementResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    processing: bool = False
    disabled_tiers: Set[Tier] = field(default_factory=set)
    card_intents: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def total(self):
        return cart_total(self.lines)

    def fire(self, event: CheckoutEvent) -> CheckoutState:
        previous = self.state
        self.state = next_state(self.state, event)
        self.updated_at = _now()
        logger.info(
            "checkout.session %s %s --%s--> %s",
            self.id, previous.value, CheckoutEvent(event).value, self.state.value,
        )
        return self.state

    def set_error(self, exc: Optional[BaseException]) -> None:
        if exc is None:
            self.error = None
            self.error_code = None
        elif isinstance(exc, CheckoutError):
            self.error = exc.message
            self.error_code = exc.code
        else:
            self.error = GENERIC_RAIL_MESSAGE
            self.error_code = "rail_error"

    def to_view(self) -> dict:
        """Vue sérialisable (JSON) de la session pour l'API."""
        return {
            "id": self.id,
            "state": self.state.value,
            "total": str(self.total),
            "fulfillment_type": self.fulfillment_type.value,
            "lines": [line.model_dump(mode="json") for line in self.lines],
            "methods": self.methods.model_dump(mode="json") if self.methods else None,
            "selected_tier": self.selected_tier.value if self.selected_tier else None,
            "selected_bank_id": self.selected_bank_id,
            "order": (
                {
                    "id": self.order.id,
                    "order_number": self.order.order_number,
                    "status": self.order.status.value,
                }
                if self.order
                else None
            ),
            "attempt": self.attempt.model_dump(mode="json") if self.attempt else None,
            "result": self.result.model_dump(mode="json") if self.result else None,
            "error": self.error,
            "error_code": self.error_code,
            "processing": self.processing,
            "disabled_tiers": sorted(t.value for t in self.disabled_tiers),
        }


@contextmanager
def _single_flight(session: CheckoutSession):
    """Un seul appel sortant par session; un second appel concurrent obtient False."""
    if session.processing or not session._lock.acquire(blocking=False):
        yield False
        return
    session.processing = True
    try:
        yield True
    finally:
        session.processing = False
        session._lock.release()


def start_session(
    customer_id: str,
    lines: List[CartLine],
    fulfillment_type: FulfillmentType = FulfillmentType.VAULT,
) -> CheckoutSession:
    if not customer_id:
        raise ValidationError("Client inconnu")
    if not lines:
        raise ValidationError("Panier vide")
    session = CheckoutSession(customer_id=customer_id, lines=list(lines), fulfillment_type=FulfillmentType(fulfillment_type))
    logger.info("checkout.start_session id=%s customer_id=%s total=%s", session.id, customer_id, session.total)
    return session


def _auto_select(session: CheckoutSession) -> None:
    current = session.methods.option(session.selected_tier) if session.selected_tier else None
    if current is not None and current.sufficient:
        return
    recommended = session.methods.recommended
    session.selected_tier = recommended.tier if recommended else None
    session.selected_bank_id = (
        recommended.linked_bank.bank_account_id if recommended and recommended.linked_bank else None
    )


def _refresh_methods(session: CheckoutSession) -> None:
    resolution = funding_service.resolve_methods(session.customer_id, session.total)
    session.methods = policy.without_tiers(resolution, session.disabled_tiers)
    _auto_select(session)


def load_methods(session: CheckoutSession) -> CheckoutSession:
    """(Re)charge les moyens de paiement; PolicyUnavailable remonte (réessayable)."""
    if session.state != CheckoutState.SELECT_METHOD:
        raise InvalidTransition("Les moyens de paiement se chargent à l'étape de sélection")
    with _single_flight(session) as acquired:
        if not acquired:
            logger.info("checkout.load_methods ignored (processing) id=%s", session.id)
            return session
        try:
            _refresh_methods(session)
        except CheckoutError as e:
            session.set_error(e)
            raise
        session.set_error(None)
    return session


def confirm_cart(session: CheckoutSession) -> CheckoutSession:
    session.fire(CheckoutEvent.CONFIRM_CART)
    return load_methods(session)


def select_method(session: CheckoutSession, tier: Tier, bank_account_id: Optional[str] = None) -> CheckoutSession:
    if session.state != CheckoutState.SELECT_METHOD:
        raise InvalidTransition("Le moyen de paiement se choisit à l'étape de sélection")
    if session.methods is None:
        raise ValidationError("Moyens de paiement non chargés")
    tier = Tier(tier)
    option = session.methods.option(tier)
    if option is None or not option.sufficient:
        raise ValidationError("Moyen de paiement indisponible pour cette commande")

    bank_id = None
    if tier == Tier.ACH:
        known = {b.bank_account_id for b in session.methods.linked_banks}
        bank_id = bank_account_id or (option.linked_bank.bank_account_id if option.linked_bank else None)
        if not bank_id or bank_id not in known:
            raise ValidationError("Compte bancaire lié requis pour le paiement ACH")

    session.selected_tier = tier
    session.selected_bank_id = bank_id
    session.set_error(None)
    return session


def _selected_option(session: CheckoutSession) -> PaymentMethodOption:
    if session.methods is None or session.selected_tier is None:
        raise ValidationError("Aucun moyen de paiement sélectionné")
    option = session.methods.option(session.selected_tier)
    if option is None or not option.sufficient:
        raise ValidationError("Moyen de paiement indisponible pour cette commande")
    if option.tier == Tier.ACH and not session.selected_bank_id:
        raise ValidationError("Compte bancaire lié requis pour le paiement ACH")
    return option


def _ensure_order(session: CheckoutSession) -> Order:
    if session.order is not None:
        return session.order
    try:
        session.order = orders_service.create_order(session.customer_id, session.lines, session.fulfillment_type)
    except OrderCreationError as e:
        session.set_error(e)
        session.fire(CheckoutEvent.ORDER_FAILED)
        raise
    return session.order


def _record_settlement(session: CheckoutSession, tier: Tier, is_deposit: bool) -> None:
    """Reflète sur la commande de la session le statut écrit par le rail."""
    status = OrderStatus.DEPOSIT_PAID if is_deposit else OrderStatus.PAID
    session.order = session.order.model_copy(update={"status": status, "payment_method": tier})


def _pay_balance(session: CheckoutSession, order: Order) -> CheckoutEvent:
    payment = balance.pay_with_balance(order, session.customer_id)
    _record_settlement(session, Tier.BALANCE, False)
    session.result = SettlementResult(
        tier=Tier.BALANCE,
        amount_paid=payment.amount_paid,
        new_balance=payment.new_balance,
    )
    session.attempt.confirmed = True
    return CheckoutEvent.PAYMENT_SETTLED


def _pay_ach(session: CheckoutSession, order: Order, option: PaymentMethodOption) -> CheckoutEvent:
    is_deposit = option.is_deposit
    amount = option.deposit_breakdown.deposit_base if is_deposit and option.deposit_breakdown else order.total
    pull = ach.initiate_ach_pull(
        session.customer_id,
        order,
        amount,
        session.selected_bank_id,
        is_deposit=is_deposit,
        al_account_number=session.methods.al_account_number,
    )
    _record_settlement(session, Tier.ACH, is_deposit)
    session.attempt.ach_transfer_id = pull.transfer_id
    session.attempt.ach_authorization_id = pull.authorization_id
    session.attempt.confirmed = True
    session.result = SettlementResult(
        tier=Tier.ACH,
        amount_paid=pull.amount,
        is_deposit=is_deposit,
        linked_bank=pull.linked_bank,
        deposit_breakdown=pull.deposit_breakdown,
        wire_instructions=pull.wire_instructions,
    )
    return CheckoutEvent.DEPOSIT_ACCEPTED if is_deposit else CheckoutEvent.PAYMENT_SETTLED


def _start_card(session: CheckoutSession, order: Order, option: PaymentMethodOption) -> CheckoutEvent:
    session.card_intents += 1
    intent = card.create_card_intent(
        session.customer_id,
        order,
        option.is_deposit,
        al_account_number=session.methods.al_account_number,
        intent_seq=session.card_intents,
    )
    session.attempt.payment_intent_id = intent.payment_intent_id
    session.attempt.client_token = intent.client_token
    session.attempt.charge_breakdown = intent.charge_breakdown
    return CheckoutEvent.CARD_INTENT_CREATED


def _disable_card(session: CheckoutSession, exc: ConfigurationError) -> None:
    session.disabled_tiers.add(Tier.CARD)
    session.attempt = None
    session.set_error(exc)
    if session.methods is not None:
        session.methods = policy.without_tiers(session.methods, session.disabled_tiers)
        _auto_select(session)
    logger.error("checkout.card disabled for session id=%s: %s", session.id, exc.message)


def submit(session: CheckoutSession) -> CheckoutSession:
    """
    Soumet le paiement avec le moyen sélectionné.
    - Ignoré (no-op) si un appel est déjà en cours pour cette session.
    - Crée la commande au premier passage, la réutilise ensuite.
    - Erreur de rail → retour à SELECT_METHOD avec un message.
    """
    with _single_flight(session) as acquired:
        if not acquired:
            logger.info("checkout.submit ignored (processing) id=%s", session.id)
            return session

        next_state(session.state, CheckoutEvent.SUBMIT)
        option = _selected_option(session)
        order = _ensure_order(session)

        session.set_error(None)
        session.result = None
        session.attempt = PaymentAttempt(
            tier=option.tier,
            bank_account_id=session.selected_bank_id if option.tier == Tier.ACH else None,
            is_deposit=option.is_deposit,
        )
        session.fire(CheckoutEvent.SUBMIT)

        try:
            if option.tier == Tier.BALANCE:
                event = _pay_balance(session, order)
            elif option.tier == Tier.ACH:
                event = _pay_ach(session, order, option)
            else:
                event = _start_card(session, order, option)
        except ConfigurationError as e:
            _disable_card(session, e)
            session.fire(CheckoutEvent.CARD_UNAVAILABLE)
            return session
        except SettlementNotRecorded as e:
            # Fonds prélevés: la tentative reste sur la session pour le support
            logger.exception("checkout.submit settlement not recorded id=%s order_id=%s tier=%s", session.id, order.id, option.tier.value)
            session.set_error(e)
            session.fire(CheckoutEvent.RAIL_FAILED)
            return session
        except RAIL_ERRORS as e:
            logger.info("checkout.submit rail error id=%s tier=%s code=%s", session.id, option.tier.value, e.code)
            session.set_error(e)
            session.attempt = None
            session.fire(CheckoutEvent.RAIL_FAILED)
            return session
        except Exception as e:
            logger.exception("checkout.submit unexpected rail failure id=%s tier=%s", session.id, option.tier.value)
            session.set_error(e)
            session.attempt = None
            session.fire(CheckoutEvent.RAIL_FAILED)
            return session

        session.fire(event)
    return session


def _card_result(confirmation) -> SettlementResult:
    return SettlementResult(
        tier=Tier.CARD,
        amount_paid=confirmation.amount_charged,
        is_deposit=confirmation.is_deposit,
        deposit_breakdown=confirmation.deposit_breakdown,
        wire_instructions=confirmation.wire_instructions,
        trade_confirmation=confirmation.trade_confirmation,
        already_processed=confirmation.already_processed,
    )


def confirm_card(session: CheckoutSession, authorization_ref: Optional[str] = None) -> CheckoutSession:
    """
    Confirme le paiement carte après l'authentification côté client.
    Une confirmation rejouée sur une session déjà réglée renvoie already_processed
    sans changer d'état.
    """
    settled = session.state in (CheckoutState.SETTLED_SUCCESS, CheckoutState.WIRE_PENDING)
    if session.state != CheckoutState.CARD_CAPTURE and not (
        settled and session.attempt is not None and session.attempt.tier == Tier.CARD
    ):
        raise InvalidTransition("Aucun paiement carte en attente de confirmation")
    expected = session.attempt.payment_intent_id if session.attempt else None
    ref = authorization_ref or expected
    if not ref or (expected and ref != expected):
        raise ValidationError("Référence de paiement inconnue pour cette session")

    with _single_flight(session) as acquired:
        if not acquired:
            logger.info("checkout.confirm_card ignored (processing) id=%s", session.id)
            return session
        try:
            confirmation = card.confirm_card_payment(session.order.id, ref, session.methods.al_account_number if session.methods else "")
        except ConfigurationError as e:
            if settled:
                raise
            _disable_card(session, e)
            session.fire(CheckoutEvent.CARD_UNAVAILABLE)
            return session
        except SettlementNotRecorded as e:
            logger.exception("checkout.confirm_card settlement not recorded id=%s order_id=%s", session.id, session.order.id)
            session.set_error(e)
            raise
        except RAIL_ERRORS as e:
            if settled:
                raise
            logger.info("checkout.confirm_card declined id=%s code=%s", session.id, e.code)
            session.set_error(e)
            session.fire(CheckoutEvent.RAIL_FAILED)
            return session

        session.result = _card_result(confirmation)
        _record_settlement(session, Tier.CARD, confirmation.is_deposit)
        session.attempt.confirmed = True
        session.set_error(None)
        if not settled:
            session.fire(CheckoutEvent.DEPOSIT_ACCEPTED if confirmation.is_deposit else CheckoutEvent.PAYMENT_SETTLED)
    return session


def _cancel_open_intent(session: CheckoutSession) -> None:
    """L'intent d'une capture carte quittée est annulé avant la transition (InvalidTransition si déjà payé)."""
    if session.state != CheckoutState.CARD_CAPTURE or session.attempt is None or not session.attempt.payment_intent_id:
        return
    card.cancel_card_intent(session.attempt.payment_intent_id)
    session.attempt.client_token = None


def back(session: CheckoutSession) -> CheckoutSession:
    """Retour arrière: CARD_CAPTURE → SELECT_METHOD (intent annulé, commande conservée), SELECT_METHOD → REVIEW."""
    if session.processing:
        raise InvalidTransition("Paiement en cours")
    next_state(session.state, CheckoutEvent.BACK)
    _cancel_open_intent(session)
    session.fire(CheckoutEvent.BACK)
    if session.state == CheckoutState.SELECT_METHOD:
        session.attempt = None
    session.set_error(None)
    return session


def acknowledge(session: CheckoutSession) -> Dict[str, str]:
    """Clôt la session réussie; renvoie {order_id, order_number}."""
    session.fire(CheckoutEvent.ACKNOWLEDGE)
    return {"order_id": session.order.id, "order_number": session.order.order_number}


def abandon(session: CheckoutSession) -> CheckoutSession:
    """Abandon: sans commande, aucun effet de bord; sinon l'intent carte ouvert est annulé et la commande 'pending' expire hors session."""
    if session.processing:
        raise InvalidTransition("Paiement en cours")
    next_state(session.state, CheckoutEvent.ABANDON)
    _cancel_open_intent(session)
    session.fire(CheckoutEvent.ABANDON)
    if session.order is not None:
        logger.info("checkout.abandon id=%s leaves pending order_id=%s", session.id, session.order.id)
    return session
