"""
Module 'payments' (feature-first): point d'entrée public du checkout.
Réunit politique devise, normalisation téléphone, URL publique, garde-fous,
ledger, adaptateurs de passerelle et orchestrateur.
"""

from .phone import normalize_phone
from .currency import (
    to_minor_units,
    is_supported_by_card_gateway,
    ensure_provider_currency,
    normalize_currency,
)
from .base_url import (
    BaseUrlSettings,
    RequestHeaders,
    resolve_base_url,
    is_absolute_url,
    ensure_absolute_url,
)
from .models import (
    CheckoutAttempt,
    CheckoutRequest,
    CheckoutStatus,
    Intent,
    Provider,
    can_transition,
)
from .service import create_checkout, get_checkout_status

__all__ = [
    # phone / currency
    "normalize_phone",
    "to_minor_units",
    "is_supported_by_card_gateway",
    "ensure_provider_currency",
    "normalize_currency",
    # base url
    "BaseUrlSettings",
    "RequestHeaders",
    "resolve_base_url",
    "is_absolute_url",
    "ensure_absolute_url",
    # models
    "CheckoutAttempt",
    "CheckoutRequest",
    "CheckoutStatus",
    "Intent",
    "Provider",
    "can_transition",
    # services
    "create_checkout",
    "get_checkout_status",
]
