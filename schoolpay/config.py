# schoolpay.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du service de paiement.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, Chapa, Redis)
- Expose les paramètres opérationnels du checkout (fenêtre anti-doublon, plafond, rate limit)
- Fournit les éléments de résolution de l'URL publique (retours passerelles)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

# Supabase: URL et clés (anon pour l'auth utilisateur, service pour le ledger)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / sécurité
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]

# Stripe (passerelle carte): clé secrète serveur + clé publique renvoyée au front
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_PUBLISHABLE_KEY = _clean_env(
    os.getenv("STRIPE_PUBLISHABLE_KEY") or os.getenv("NEXT_PUBLIC_STRIPE_PUBLISHABLE_KEY") or ""
)

# Chapa (passerelle mobile money): base API sans slash final + jeton Bearer
CHAPA_API = (_clean_env(os.getenv("CHAPA_API") or "") or "https://api.chapa.co/v1").rstrip("/")
CHAPA_TOKEN = _clean_env(os.getenv("CHAPA_TOKEN") or "")
CHAPA_TIMEOUT_SECONDS = _int_env("CHAPA_TIMEOUT_SECONDS", 30)

# Devises: Chapa n'accepte que la devise locale
MOBILE_MONEY_CURRENCY = (_clean_env(os.getenv("MOBILE_MONEY_CURRENCY") or "") or "ETB").upper()
DEFAULT_CURRENCY = (_clean_env(os.getenv("DEFAULT_CURRENCY") or "") or "ETB").upper()

# Garde-fous du checkout (valeurs opérationnelles, pas architecturales)
MAX_PAYMENT_AMOUNT = _int_env("MAX_PAYMENT_AMOUNT", 1_000_000)
DUPLICATE_WINDOW_SECONDS = _int_env("DUPLICATE_WINDOW_SECONDS", 5 * 60)
PAYMENT_RATE_LIMIT_MAX = _int_env("PAYMENT_RATE_LIMIT_MAX", 5)
PAYMENT_RATE_LIMIT_WINDOW_SECONDS = _int_env("PAYMENT_RATE_LIMIT_WINDOW_SECONDS", 15 * 60)
CHECKOUT_LOCK_TTL_SECONDS = _int_env("CHECKOUT_LOCK_TTL_SECONDS", 30)

# Redis pour le rate limit par élève et le verrou anti-doublon (vide => mémoire locale)
PAYMENT_REDIS_URL = _clean_env(os.getenv("PAYMENT_REDIS_URL") or "")

# Résolution de l'URL publique (retours Stripe/Chapa)
# - NGROK_URL prioritaire en dev (tunnel), puis PUBLIC_BASE_URL / BASE_URL
PUBLIC_BASE_URL = _clean_env(
    os.getenv("NGROK_URL") or os.getenv("PUBLIC_BASE_URL") or os.getenv("BASE_URL") or ""
)
PRODUCTION_DOMAIN = _clean_env(os.getenv("PRODUCTION_DOMAIN") or "") or "exam.darelkubra.com"
APP_ENV = (_clean_env(os.getenv("APP_ENV") or "") or "development").lower()
IS_PRODUCTION = APP_ENV == "production"

# Libellés envoyés aux passerelles
CHECKOUT_BRAND_NAME = _clean_env(os.getenv("CHECKOUT_BRAND_NAME") or "") or "Darul Kubra"

# Chemins applicatifs utilisés pour construire les URLs de retour/callback
CHECKOUT_RETURN_PATH = os.getenv("CHECKOUT_RETURN_PATH", "/student/payments/return")
CHECKOUT_CALLBACK_PATH = os.getenv("CHECKOUT_CALLBACK_PATH", "/api/payments/webhooks/stripe")
