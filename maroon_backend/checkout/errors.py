"""
Taxonomie des erreurs du checkout.
- Chaque erreur porte un code stable, un message affichable et un statut HTTP.
- Les erreurs de rail sont rattrapées par l'orchestrateur (retour à un état actionnable);
  les autres remontent jusqu'aux vues qui les traduisent en HTTPException.
- La confirmation idempotente (already_processed) n'est pas une erreur: c'est une
  variante de succès de CardConfirmation.
"""


class CheckoutError(Exception):
    code = "checkout_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(CheckoutError):
    """Aucun moyen choisi, pas de banque pour l'ACH, panier vide..."""
    code = "validation_error"
    status_code = 400


class PolicyUnavailable(CheckoutError):
    code = "policy_unavailable"
    status_code = 503
    retryable = True


class InsufficientFunds(CheckoutError):
    code = "insufficient_funds"
    status_code = 402
    retryable = True


class AchError(CheckoutError):
    code = "ach_error"
    status_code = 402
    retryable = True


class CardDeclined(CheckoutError):
    code = "card_declined"
    status_code = 402
    retryable = True


class ConfigurationError(CheckoutError):
    """Processeur carte non configuré: fatal pour le rail carte uniquement."""
    code = "configuration_error"
    status_code = 503


class OrderCreationError(CheckoutError):
    """Seule erreur fatale de la session: l'utilisateur doit recommencer."""
    code = "order_creation_failed"
    status_code = 500


class InvalidTransition(CheckoutError):
    code = "invalid_transition"
    status_code = 409


class SessionNotFound(CheckoutError):
    code = "session_not_found"
    status_code = 404


class SettlementNotRecorded(CheckoutError):
    """Fonds prélevés mais statut de la commande non enregistré: à régulariser par le support."""
    code = "settlement_not_recorded"
    status_code = 500


RAIL_ERRORS = (InsufficientFunds, AchError, CardDeclined, ConfigurationError)
