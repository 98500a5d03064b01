# maroon_backend.config
from decimal import Decimal
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du backend checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, Plaid, desk de trading)
- Expose la politique de paiement (seuil gros ordre, acompte, frais carte, délai wire)
- Expose les coordonnées bancaires utilisées dans les instructions de virement
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _decimal_env(name: str, default: str) -> Decimal:
    """Lit un montant/taux décimal; retombe sur la valeur par défaut si absent ou invalide."""
    raw = _clean_env(os.getenv(name) or "")
    try:
        return Decimal(raw) if raw else Decimal(default)
    except ArithmeticError:
        return Decimal(default)

# Supabase: URL et clés (anon pour les lectures utilisateur, service pour les écritures serveur)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# CORS / hôtes
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Stripe (rail carte): clé publique côté client, clé secrète côté serveur
STRIPE_PUBLIC_KEY = _clean_env(os.getenv("STRIPE_PUBLIC_KEY") or os.getenv("STRIPE_PUBLISHABLE_KEY") or "")
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
CHECKOUT_CURRENCY = _clean_env(os.getenv("CHECKOUT_CURRENCY") or "usd").lower()

# Plaid (rail ACH): Transfer + Signal
PLAID_CLIENT_ID = _clean_env(os.getenv("PLAID_CLIENT_ID") or "")
PLAID_SECRET = _clean_env(os.getenv("PLAID_SECRET") or "")
PLAID_ENV = _clean_env(os.getenv("PLAID_ENV") or "sandbox").lower()
# Score de risque Signal (1-99) au-delà duquel le prélèvement est refusé; 0 désactive le contrôle
ACH_SIGNAL_MAX_RISK_SCORE = int(_clean_env(os.getenv("ACH_SIGNAL_MAX_RISK_SCORE") or "0") or 0)

# Politique de paiement
LARGE_ORDER_THRESHOLD = _decimal_env("LARGE_ORDER_THRESHOLD", "8000")
DEPOSIT_PERCENT = _decimal_env("DEPOSIT_PERCENT", "0.10")
CARD_FEE_PERCENT = _decimal_env("CARD_FEE_PERCENT", "0.035")
WIRE_DEADLINE_HOURS = int(_clean_env(os.getenv("WIRE_DEADLINE_HOURS") or "48") or 48)

# Instructions de virement (le memo est le numéro de compte AL du client)
WIRE_BANK_NAME = os.getenv("WIRE_BANK_NAME", "Bank of America, N.A.")
WIRE_BANK_ADDRESS = os.getenv("WIRE_BANK_ADDRESS", "222 Broadway, New York, NY 10038")
WIRE_ROUTING_NUMBER = _clean_env(os.getenv("WIRE_ROUTING_NUMBER") or "026009593")
WIRE_ACCOUNT_NUMBER = _clean_env(os.getenv("WIRE_ACCOUNT_NUMBER") or "")
WIRE_BENEFICIARY_NAME = os.getenv("WIRE_BENEFICIARY_NAME", "Alex Lexington Inc.")
WIRE_BENEFICIARY_ADDRESS = os.getenv("WIRE_BENEFICIARY_ADDRESS", "")

# Desk de trading (effet de bord de confirmation; vide = désactivé)
TRADE_API_URL = _clean_env(os.getenv("TRADE_API_URL") or "").rstrip("/")
TRADE_API_TOKEN = _clean_env(os.getenv("TRADE_API_TOKEN") or "")

# Sessions de checkout en mémoire: expirées après ce délai d'inactivité (secondes)
CHECKOUT_SESSION_TTL_SECONDS = int(_clean_env(os.getenv("CHECKOUT_SESSION_TTL_SECONDS") or "7200") or 7200)

# Rate limiting
RATE_LIMIT_REDIS_URL = _clean_env(os.getenv("RATE_LIMIT_REDIS_URL") or "redis://127.0.0.1:6379/0")

# Derrière un proxy TLS: HSTS + redirection HTTPS
HTTPS_ONLY = _clean_env(os.getenv("HTTPS_ONLY") or "").lower() in ("1", "true", "yes")
