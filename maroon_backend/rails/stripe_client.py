"""
Adaptateur Stripe: centralise les appels et la configuration Stripe (PaymentIntents).
"""
from typing import Any, Dict, Optional
import stripe

from maroon_backend import config
from maroon_backend.checkout.errors import ConfigurationError

# module maroon_backend.rails.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l’emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY.
    - Sans clé secrète ou publique, le rail carte est inutilisable: ConfigurationError
      (les autres rails restent disponibles).
    """
    if not config.STRIPE_SECRET_KEY or not config.STRIPE_PUBLIC_KEY:
        raise ConfigurationError("Paiement par carte non configuré")
    stripe.api_key = config.STRIPE_SECRET_KEY
    return stripe


def field(obj: Any, name: str, default: Any = None) -> Any:
    """Lit un champ d'un objet Stripe (attribut) ou d'un dict (tests, webhooks)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def create_payment_intent(
    *,
    amount_cents: int,
    currency: str,
    metadata: Dict[str, str],
    description: str,
    idempotency_key: Optional[str] = None,
):
    """
    Crée un PaymentIntent confirmé côté client (Stripe.js) avec son client_secret.
    - amount_cents: montant total débité (frais inclus), en centimes
    - metadata: {"order_id", "customer_id", "is_deposit"} pour relier l'intent à la commande
    - idempotency_key: rejouer la même création renvoie le même intent
    """
    require_stripe()
    params: Dict[str, Any] = {
        "amount": amount_cents,
        "currency": currency,
        "metadata": metadata,
        "description": description,
        "payment_method_types": ["card"],
    }
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    return stripe.PaymentIntent.create(**params)


def retrieve_payment_intent(payment_intent_id: str):
    """Relit un PaymentIntent (statut, montant, metadata, dernière erreur de paiement)."""
    require_stripe()
    return stripe.PaymentIntent.retrieve(payment_intent_id)


def cancel_payment_intent(payment_intent_id: str):
    """Annule un PaymentIntent non capturé (retour arrière du client avant confirmation)."""
    require_stripe()
    return stripe.PaymentIntent.cancel(payment_intent_id)
