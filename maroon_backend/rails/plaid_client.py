"""
Client Plaid minimal pour le rail ACH (Transfer + Signal), via httpx.
Endpoints utilisés:
- /signal/evaluate: score de risque de retour ACH
- /transfer/authorization/create: décision approved/declined
- /transfer/create: prélèvement effectif (règlement asynchrone, 2-3 jours ouvrés)
"""
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

import httpx

from maroon_backend import config

logger = logging.getLogger(__name__)

PLAID_ENV_MAP = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}


class PlaidClientError(Exception):
    """Erreur renvoyée par Plaid (ou transport); message affichable."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class PlaidClient:
    def __init__(self, client_id: str, secret: str, env: str = "sandbox", timeout: float = 15.0):
        if env not in PLAID_ENV_MAP:
            raise PlaidClientError(f"PLAID_ENV invalide: {env!r}")
        self._client_id = client_id
        self._secret = secret
        self._base_url = PLAID_ENV_MAP[env]
        self._timeout = timeout

    @classmethod
    def from_config(cls) -> "PlaidClient":
        if not config.PLAID_CLIENT_ID or not config.PLAID_SECRET:
            raise PlaidClientError("Plaid non configuré (PLAID_CLIENT_ID / PLAID_SECRET)")
        return cls(config.PLAID_CLIENT_ID, config.PLAID_SECRET, config.PLAID_ENV)

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {"client_id": self._client_id, "secret": self._secret, **payload}
        try:
            resp = httpx.post(f"{self._base_url}{path}", json=body, timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.exception("plaid %s transport error", path)
            raise PlaidClientError(f"Banque injoignable: {e}") from e
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code != 200:
            message = data.get("display_message") or data.get("error_message") or f"Plaid HTTP {resp.status_code}"
            raise PlaidClientError(message, code=data.get("error_code"))
        return data

    def evaluate_signal(self, *, access_token: str, account_id: str, client_transaction_id: str, amount: Decimal) -> Optional[int]:
        """Retourne le score de risque de retour initié par le client (1-99), None si absent."""
        data = self._post(
            "/signal/evaluate",
            {
                "access_token": access_token,
                "account_id": account_id,
                "client_transaction_id": client_transaction_id,
                "amount": float(amount),
            },
        )
        score = ((data.get("scores") or {}).get("customer_initiated_return_risk") or {}).get("score")
        return int(score) if score is not None else None

    def authorize_transfer(
        self, *, access_token: str, account_id: str, amount: Decimal, legal_name: str, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {
            "access_token": access_token,
            "account_id": account_id,
            "type": "debit",
            "network": "ach",
            "amount": f"{amount:.2f}",
            "ach_class": "web",
            "user": {"legal_name": legal_name or "Account Holder"},
        }
        if idempotency_key:
            # Plaid rejoue la même décision pour une même clé (50 caractères max)
            payload["idempotency_key"] = idempotency_key[:50]
        data = self._post("/transfer/authorization/create", payload)
        return data.get("authorization") or {}

    def create_transfer(self, *, access_token: str, account_id: str, authorization_id: str, description: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        data = self._post(
            "/transfer/create",
            {
                "access_token": access_token,
                "account_id": account_id,
                "authorization_id": authorization_id,
                # Plaid limite la description à 15 caractères
                "description": description[:15],
                "metadata": metadata,
            },
        )
        return data.get("transfer") or {}
