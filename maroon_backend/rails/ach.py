"""
Rail 'ach': prélèvement bancaire via Plaid Transfer.

- Montant: total complet, ou deposit_base en mode acompte (commande > seuil).
- Échecs synchrones (compte lié invalide, autorisation refusée, score Signal trop
  risqué, erreur Plaid) → AchError(reason); l'orchestrateur revient au choix du moyen.
- Succès = prélèvement accepté (pas réglé): la commande passe 'paid' ou 'deposit_paid'
  et l'identifiant de transfert est enregistré. Le règlement (2-3 jours) n'est pas attendu.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import hashlib
import logging

from maroon_backend import config
from maroon_backend.checkout import deposit
from maroon_backend.checkout.errors import AchError
from maroon_backend.checkout.models import AchPull, LinkedBank, Order, OrderStatus, Tier, round2
from maroon_backend.funding import repository as funding_repository
from maroon_backend.orders import service as orders_service
from maroon_backend.rails.plaid_client import PlaidClient, PlaidClientError

logger = logging.getLogger(__name__)


def get_plaid_client() -> PlaidClient:
    return PlaidClient.from_config()


def _check_signal(client: PlaidClient, creds: dict, order: Order, amount: Decimal) -> Optional[int]:
    if config.ACH_SIGNAL_MAX_RISK_SCORE <= 0:
        return None
    score = client.evaluate_signal(
        access_token=creds["plaid_access_token"],
        account_id=creds["plaid_account_id"],
        client_transaction_id=f"{order.id}-signal",
        amount=amount,
    )
    if score is not None and score > config.ACH_SIGNAL_MAX_RISK_SCORE:
        raise AchError("Ce compte bancaire ne peut pas être utilisé pour ce montant. Choisissez un autre moyen de paiement.")
    return score


def authorization_key(order: Order, bank_account_id: str, is_deposit: bool) -> str:
    """
    Clé d'idempotence Plaid (50 caractères max), stable pour une même commande, banque et mode:
    un retry après timeout renvoie la même autorisation, donc le même transfert.
    """
    digest = hashlib.sha256(f"{order.id}:{bank_account_id}".encode("utf-8")).hexdigest()[:32]
    return f"ach-{'deposit' if is_deposit else 'full'}-{digest}"


def initiate_ach_pull(
    customer_id: str,
    order: Order,
    amount,
    bank_account_id: str,
    *,
    is_deposit: bool = False,
    al_account_number: str = "",
) -> AchPull:
    """initiateAchPull(customerId, orderId, amount, bankAccountId) -> {transferId} ou AchError."""
    amount = round2(amount)
    creds = funding_repository.get_linked_bank_credentials(customer_id, bank_account_id)
    if not creds or not creds.get("plaid_access_token") or not creds.get("plaid_account_id"):
        raise AchError("Compte bancaire lié introuvable ou inactif")

    try:
        client = get_plaid_client()
        signal_score = _check_signal(client, creds, order, amount)
        authorization = client.authorize_transfer(
            access_token=creds["plaid_access_token"],
            account_id=creds["plaid_account_id"],
            amount=amount,
            legal_name=creds.get("owner_legal_name") or "",
            idempotency_key=authorization_key(order, bank_account_id, is_deposit),
        )
        if authorization.get("decision") != "approved":
            rationale = (authorization.get("decision_rationale") or {}).get("description")
            raise AchError(rationale or "Prélèvement refusé par la banque")
        transfer = client.create_transfer(
            access_token=creds["plaid_access_token"],
            account_id=creds["plaid_account_id"],
            authorization_id=authorization["id"],
            description=order.order_number,
            metadata={"order_id": order.id, "customer_id": customer_id, "is_deposit": str(is_deposit).lower()},
        )
    except PlaidClientError as e:
        logger.warning("ach.initiate_ach_pull plaid error order_id=%s code=%s", order.id, e.code)
        raise AchError(str(e)) from e

    transfer_id = transfer.get("id")
    if not transfer_id:
        raise AchError("Prélèvement non créé par la banque")

    bank = LinkedBank(**{k: creds.get(k) or "" for k in ("bank_account_id", "institution_name", "account_mask", "account_type")})
    breakdown = None
    wire = None
    if is_deposit:
        # Échéance calculée à l'acceptation du prélèvement d'acompte
        breakdown = deposit.compute(order.total, Tier.ACH, Decimal("0"), confirmed_at=datetime.now(timezone.utc))
        wire = deposit.build_wire_instructions(al_account_number)

    orders_service.settle(
        order.id,
        OrderStatus.DEPOSIT_PAID if is_deposit else OrderStatus.PAID,
        Tier.ACH,
        match={"ach_transfer_id": transfer_id},
        amount_paid=str(amount),
        ach_transfer_id=transfer_id,
        deposit_breakdown=breakdown.model_dump(mode="json") if breakdown else None,
    )
    logger.info(
        "ach.initiate_ach_pull accepted order_id=%s transfer_id=%s amount=%s deposit=%s signal=%s",
        order.id, transfer_id, amount, is_deposit, signal_score,
    )
    return AchPull(
        transfer_id=transfer_id,
        authorization_id=authorization.get("id"),
        amount=amount,
        is_deposit=is_deposit,
        linked_bank=bank,
        deposit_breakdown=breakdown,
        wire_instructions=wire,
    )
