import logging
import pytest
from decimal import Decimal

from schoolpay.payments import (
    to_minor_units,
    is_supported_by_card_gateway,
    ensure_provider_currency,
    normalize_currency,
    Provider,
)
from schoolpay.payments.exceptions import UnsupportedCurrencyForProvider, ValidationError


@pytest.mark.parametrize("amount, currency, expected", [
    (Decimal("25.50"), "USD", 2550),
    (Decimal("12.345"), "usd", 1235),   # arrondi demi-supérieur
    (Decimal("0.005"), "EUR", 1),
    (100, "ETB", 10000),
    ("10.5", "GBP", 1050),
    (1000, "JPY", 1000),                # zéro-décimale
    (Decimal("999.5"), "JPY", 1000),
    (Decimal("1500.4"), "XOF", 1500),
])
def test_to_minor_units(amount, currency, expected):
    assert to_minor_units(amount, currency) == expected


def test_is_supported_by_card_gateway_case_insensitive():
    assert is_supported_by_card_gateway("USD")
    assert is_supported_by_card_gateway("eur")
    assert not is_supported_by_card_gateway("ETB")
    assert not is_supported_by_card_gateway("")


def test_normalize_currency_uppercases_and_rejects_bad_codes():
    assert normalize_currency(" usd ") == "USD"
    for bad in ("US", "U5D", "EURO", ""):
        with pytest.raises(ValidationError) as exc:
            normalize_currency(bad)
        assert exc.value.code == "VALIDATION_ERROR"
        assert exc.value.status_code == 400


def test_mobile_money_only_accepts_home_currency():
    ensure_provider_currency(Provider.MOBILE_MONEY, "ETB")
    with pytest.raises(UnsupportedCurrencyForProvider) as exc:
        ensure_provider_currency(Provider.MOBILE_MONEY, "USD")
    assert exc.value.code == "UNSUPPORTED_CURRENCY_FOR_PROVIDER"
    assert "ETB" in exc.value.message


def test_card_rejects_home_currency():
    with pytest.raises(UnsupportedCurrencyForProvider) as exc:
        ensure_provider_currency(Provider.CARD, "ETB")
    assert "Chapa" in exc.value.message


def test_card_accepts_uncommon_currency_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="schoolpay.payments.currency"):
        ensure_provider_currency(Provider.CARD, "USD")
        assert not caplog.records
        ensure_provider_currency(Provider.CARD, "XYZ")
    assert any("uncommon card currency=xyz" in r.getMessage() for r in caplog.records)


def test_home_currency_follows_configuration(payments_config, monkeypatch):
    monkeypatch.setattr(payments_config, "MOBILE_MONEY_CURRENCY", "KES")
    ensure_provider_currency(Provider.MOBILE_MONEY, "KES")
    ensure_provider_currency(Provider.CARD, "ETB")
    with pytest.raises(UnsupportedCurrencyForProvider):
        ensure_provider_currency(Provider.MOBILE_MONEY, "ETB")
