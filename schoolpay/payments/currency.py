"""
Politique de devises: conversion en unités mineures et compatibilité passerelle/devise.
"""
import logging
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from schoolpay import config
from .exceptions import UnsupportedCurrencyForProvider, ValidationError
from .models import Provider

logger = logging.getLogger(__name__)

# Devises sans sous-unité d'usage courant (montant transmis tel quel)
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})

# Liste indicative des devises courantes côté Stripe (avertissement seulement)
CARD_GATEWAY_CURRENCIES = frozenset({
    "usd", "eur", "gbp", "cad", "aud", "jpy", "chf", "sek", "nok", "dkk",
    "pln", "czk", "huf", "ron", "bgn", "hrk", "rub", "try", "brl", "mxn",
    "ars", "clp", "cop", "pen", "inr", "sgd", "hkd", "nzd", "zar", "aed",
    "sar", "qar", "kwd", "bhd", "omr", "jod", "egp", "ils", "thb", "myr",
    "php", "idr", "vnd", "krw", "cny", "twd", "ngn", "kes", "ugx", "tzs",
    "ghs", "xof", "xaf", "mad", "bdt", "pkr", "lkr", "mmk", "khr", "lak",
})

_CODE_RE = re.compile(r"^[A-Z]{3}$")

def normalize_currency(code: str) -> str:
    """Code ISO-4217 en majuscules; ValidationError si le format n'est pas AAA."""
    normalized = (code or "").strip().upper()
    if not _CODE_RE.match(normalized):
        raise ValidationError(
            f"Invalid currency code format: {code}. Currency codes must be 3 letters (e.g., USD, EUR, GBP).",
        )
    return normalized


def to_minor_units(amount: Union[Decimal, int, float, str], currency_code: str) -> int:
    """
    Montant en unités mineures (centimes) pour la devise donnée.
    - Devises zéro-décimale: arrondi du montant.
    - Autres: arrondi de montant x 100.
    """
    value = Decimal(str(amount))
    if (currency_code or "").upper() not in ZERO_DECIMAL_CURRENCIES:
        value = value * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_supported_by_card_gateway(currency_code: str) -> bool:
    return (currency_code or "").lower() in CARD_GATEWAY_CURRENCIES


def ensure_provider_currency(provider: Provider, currency: str) -> None:
    """
    Vérifie la compatibilité devise/passerelle avant tout effet de bord.
    - Chapa: devise locale uniquement.
    - Stripe: tout sauf la devise locale (avertissement si devise peu courante).
    """
    home = config.MOBILE_MONEY_CURRENCY
    if provider == Provider.MOBILE_MONEY and currency != home:
        raise UnsupportedCurrencyForProvider(
            f"Chapa currently supports {home} only. Switch provider or update currency.",
            details={"provider": provider.value, "currency": currency},
        )
    if provider == Provider.CARD:
        if currency == home:
            raise UnsupportedCurrencyForProvider(
                f"Stripe integration is intended for non-{home} currencies. Choose Chapa for {home} payments.",
                details={"provider": provider.value, "currency": currency},
            )
        if not is_supported_by_card_gateway(currency):
            logger.warning(
                "payments.currency uncommon card currency=%s, Stripe will validate it", currency.lower()
            )
