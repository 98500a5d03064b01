import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from maroon_backend.app_setup.exceptions import checkout_error_detail
from maroon_backend.checkout import orchestrator
from maroon_backend.checkout.errors import CheckoutError
from maroon_backend.checkout.models import CartLine, FulfillmentType, Tier
from maroon_backend.checkout.orchestrator import TERMINAL_STATES, CheckoutSession
from maroon_backend.checkout.sessions import store
from maroon_backend.funding import service as funding_service
from maroon_backend.utils.rate_limit import optional_rate_limit
from maroon_backend.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])
funding_router = APIRouter(prefix="/api/v1/checkout/funding", tags=["Funding API"])


class StartSessionBody(BaseModel):
    lines: List[CartLine] = Field(min_length=1)
    fulfillment_type: FulfillmentType = FulfillmentType.VAULT


class SelectMethodBody(BaseModel):
    tier: Tier
    bank_account_id: Optional[str] = None


class CardConfirmBody(BaseModel):
    authorization_ref: Optional[str] = None


class FundAccountBody(BaseModel):
    shortfall: Decimal = Field(ge=0)


# module maroon_backend.checkout.views
@contextmanager
def _checkout_errors(action: str):
    """Traduit les erreurs du checkout en HTTPException (code + message + retryable)."""
    try:
        yield
    except HTTPException:
        raise
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=checkout_error_detail(e))
    except Exception:
        logger.exception("Erreur checkout (%s)", action)
        raise HTTPException(status_code=500, detail="Erreur interne du checkout")


def _customer_id(user: Dict[str, Any]) -> str:
    customer_id = str(user.get("id") or "")
    if not customer_id:
        raise HTTPException(status_code=401, detail="Non authentifié")
    return customer_id


def _owned_session(session_id: str, user: Dict[str, Any]) -> CheckoutSession:
    session = store.get(session_id)
    if session.customer_id != _customer_id(user):
        raise HTTPException(status_code=403, detail="Session appartenant à un autre client")
    return session


def _release_if_terminal(session: CheckoutSession) -> None:
    if session.state in TERMINAL_STATES:
        store.discard(session.id)


@router.post("/sessions", status_code=201, dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def start_session(body: StartSessionBody, user: dict = Depends(require_user)):
    """
    Démarre une session de checkout (état REVIEW) à partir des lignes du panier.
    Le panier est figé pour toute la session; le total est recalculé côté serveur.
    """
    with _checkout_errors("start_session"):
        session = orchestrator.start_session(_customer_id(user), body.lines, body.fulfillment_type)
        store.add(session)
        return session.to_view()


@router.get("/sessions/{session_id}")
def get_session(session_id: str, user: dict = Depends(require_user)):
    with _checkout_errors("get_session"):
        return _owned_session(session_id, user).to_view()


@router.post("/sessions/{session_id}/confirm-cart", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def confirm_cart(session_id: str, user: dict = Depends(require_user)):
    """REVIEW → SELECT_METHOD puis chargement des moyens (503 réessayable si indisponible)."""
    with _checkout_errors("confirm_cart"):
        session = _owned_session(session_id, user)
        orchestrator.confirm_cart(session)
        return session.to_view()


@router.get("/sessions/{session_id}/methods", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def load_methods(session_id: str, user: dict = Depends(require_user)):
    with _checkout_errors("load_methods"):
        session = _owned_session(session_id, user)
        orchestrator.load_methods(session)
        return session.to_view()


@router.post("/sessions/{session_id}/select")
def select_method(session_id: str, body: SelectMethodBody, user: dict = Depends(require_user)):
    with _checkout_errors("select_method"):
        session = _owned_session(session_id, user)
        orchestrator.select_method(session, body.tier, body.bank_account_id)
        return session.to_view()


@router.post("/sessions/{session_id}/pay", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def pay(session_id: str, user: dict = Depends(require_user)):
    """
    Soumet le paiement avec le moyen sélectionné.
    - balance / ach: réponse finale (SETTLED_SUCCESS, WIRE_PENDING) ou retour à SELECT_METHOD + error
    - card: CARD_CAPTURE avec attempt.client_token pour la confirmation côté client
    - 500 si la commande n'a pas pu être créée (session FAILED)
    """
    with _checkout_errors("pay"):
        session = _owned_session(session_id, user)
        try:
            orchestrator.submit(session)
        finally:
            _release_if_terminal(session)
        return session.to_view()


@router.post("/sessions/{session_id}/card/confirm", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def confirm_card(session_id: str, body: CardConfirmBody, user: dict = Depends(require_user)):
    with _checkout_errors("confirm_card"):
        session = _owned_session(session_id, user)
        orchestrator.confirm_card(session, body.authorization_ref)
        return session.to_view()


@router.post("/sessions/{session_id}/back")
def back(session_id: str, user: dict = Depends(require_user)):
    with _checkout_errors("back"):
        session = _owned_session(session_id, user)
        orchestrator.back(session)
        return session.to_view()


@router.post("/sessions/{session_id}/acknowledge")
def acknowledge(session_id: str, user: dict = Depends(require_user)):
    """Clôt la session (DONE) et renvoie {order_id, order_number}; la session est supprimée."""
    with _checkout_errors("acknowledge"):
        session = _owned_session(session_id, user)
        result = orchestrator.acknowledge(session)
        store.discard(session.id)
        return result


@router.delete("/sessions/{session_id}", status_code=204)
def abandon(session_id: str, user: dict = Depends(require_user)):
    with _checkout_errors("abandon"):
        session = _owned_session(session_id, user)
        orchestrator.abandon(session)
        store.discard(session.id)


@funding_router.get("/wire-instructions")
def wire_instructions(user: dict = Depends(require_user)):
    with _checkout_errors("wire_instructions"):
        return funding_service.get_wire_instructions(_customer_id(user)).model_dump(mode="json")


@funding_router.post("/fund-account", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def fund_account(body: FundAccountBody, user: dict = Depends(require_user)):
    """Échappatoire « solde insuffisant »: montant à virer, coordonnées et banques liées."""
    with _checkout_errors("fund_account"):
        res = funding_service.fund_account(_customer_id(user), body.shortfall)
        return {
            "amount": str(res["amount"]),
            "al_account_number": res["al_account_number"],
            "wire_instructions": res["wire_instructions"].model_dump(mode="json"),
            "memo_instructions": res["memo_instructions"],
            "linked_banks": [b.model_dump(mode="json") for b in res["linked_banks"]],
            "timing": res["timing"],
        }
