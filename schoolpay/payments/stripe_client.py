"""
Adaptateur Stripe: centralise la configuration et les appels au SDK.
"""
import stripe
from typing import Any, Dict, List

from schoolpay import config
from .exceptions import GatewayConfigurationError

# module schoolpay.payments.stripe_client
def _as_dict(obj) -> Dict[str, Any]:
    # StripeObject: to_dict() sur les SDK récents, dict-compatible sur les anciens
    to_dict = getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else dict(obj)

def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY.
    - Lève GatewayConfigurationError si la clé secrète ou la clé publique manque
      (la clé publique est renvoyée au front avec la session).
    """
    if not config.STRIPE_SECRET_KEY or not config.STRIPE_PUBLISHABLE_KEY:
        raise GatewayConfigurationError("Stripe environment variables are not configured on the server.")
    stripe.api_key = config.STRIPE_SECRET_KEY
    return stripe

def create_session(
    *,
    line_items: List[Dict[str, Any]],
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, Any],
    idempotency_key: str,
) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout (mode paiement unique, carte).
    - idempotency_key: le tx_ref, clé de dédoublonnage côté Stripe en cas de renvoi.
    Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
    """
    require_stripe()
    session = stripe.checkout.Session.create(
        mode="payment",
        payment_method_types=["card"],
        line_items=line_items,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata,
        idempotency_key=idempotency_key,
    )
    return _as_dict(session)

def get_session(session_id: str) -> Dict[str, Any]:
    """
    Récupère une session Stripe Checkout par son identifiant.
    Retour: dict session incluant "id", "payment_status", "metadata", etc.
    """
    require_stripe()
    session = stripe.checkout.Session.retrieve(session_id)
    return _as_dict(session)
