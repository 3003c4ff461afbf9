import pytest
from decimal import Decimal

import stripe

import schoolpay.payments.stripe_client as stripe_client
from schoolpay.payments.exceptions import (
    EmptyCheckoutUrl,
    GatewayConfigurationError,
    GatewayProtocolError,
    GatewayRejection,
)
from schoolpay.payments.gateways.card import (
    CardGatewayAdapter,
    SESSION_ID_PLACEHOLDER,
    build_line_items,
    build_redirect_urls,
)
from schoolpay.payments.models import CheckoutAttempt, CheckoutUrls, Intent, Provider, Subject

RETURN_URL = "https://exam.darelkubra.com/student/payments/return"


def _attempt(**overrides):
    fields = dict(
        tx_ref="9a1b-tx",
        subject_id=8,
        provider=Provider.CARD,
        amount=Decimal("25.50"),
        currency="USD",
        months=["2024-09"],
    )
    fields.update(overrides)
    return CheckoutAttempt(**fields)


def _subject():
    return Subject(id=8, name="Sara Tesfaye", phone="0911000111")


def _urls():
    return CheckoutUrls(
        base_url="https://exam.darelkubra.com",
        return_url=RETURN_URL,
        callback_url="https://exam.darelkubra.com/api/payments/webhooks/stripe",
    )


def test_build_redirect_urls_carries_session_placeholder():
    urls = build_redirect_urls(RETURN_URL, "9a1b-tx")
    assert urls["success_url"] == f"{RETURN_URL}?status=success&tx_ref=9a1b-tx&session_id={SESSION_ID_PLACEHOLDER}"
    assert urls["cancel_url"] == f"{RETURN_URL}?status=cancelled&tx_ref=9a1b-tx"
    # URL de retour de l'appelant avec query existante
    joined = build_redirect_urls("https://app.example.com/pay?lang=am", "t1")
    assert joined["cancel_url"] == "https://app.example.com/pay?lang=am&status=cancelled&tx_ref=t1"


def test_build_line_items_minor_units_and_title():
    items = build_line_items(_attempt(), _subject())
    assert len(items) == 1
    price = items[0]["price_data"]
    assert price["currency"] == "usd"
    assert price["unit_amount"] == 2550
    assert price["product_data"]["name"] == "Darul Kubra Class Fee (Sara Tesfaye)"
    assert price["product_data"]["metadata"]["txRef"] == "9a1b-tx"

    deposit = build_line_items(_attempt(intent=Intent.DEPOSIT, currency="JPY", amount=Decimal("3000")), _subject())
    assert deposit[0]["price_data"]["unit_amount"] == 3000
    assert deposit[0]["price_data"]["product_data"]["name"].startswith("Darul Kubra Deposit")


def test_initialize_creates_session_with_idempotency_key(stripe_sessions):
    result = CardGatewayAdapter().initialize(_attempt(), _subject(), _urls())

    assert result.checkout_url.startswith("https://checkout.stripe.com/")
    assert result.session_id == "cs_test_a1b2c3"
    assert result.metadata == {
        "stripeSessionId": "cs_test_a1b2c3",
        "originalCurrency": "USD",
        "normalizedCurrency": "usd",
    }
    call = stripe_sessions[0]
    assert call["idempotency_key"] == "9a1b-tx"
    assert call["metadata"]["txRef"] == "9a1b-tx"
    assert call["metadata"]["studentId"] == "8"
    assert SESSION_ID_PLACEHOLDER in call["success_url"]


@pytest.mark.parametrize("error, expected_type", [
    (stripe.AuthenticationError("Invalid API Key provided: sk_test_****"), GatewayConfigurationError),
    (stripe.APIConnectionError("Network is unreachable"), GatewayProtocolError),
])
def test_initialize_maps_sdk_errors(monkeypatch, error, expected_type):
    def _raise(**kwargs):
        raise error

    monkeypatch.setattr(stripe_client, "create_session", _raise)
    with pytest.raises(expected_type):
        CardGatewayAdapter().initialize(_attempt(), _subject(), _urls())


def test_initialize_forwards_invalid_request_message(monkeypatch):
    def _raise(**kwargs):
        raise stripe.InvalidRequestError("Invalid currency: xyz", "currency", code="parameter_invalid")

    monkeypatch.setattr(stripe_client, "create_session", _raise)
    with pytest.raises(GatewayRejection) as exc:
        CardGatewayAdapter().initialize(_attempt(currency="XYZ"), _subject(), _urls())
    assert exc.value.message == "Stripe error: Invalid currency: xyz"
    assert exc.value.gateway_code == "parameter_invalid"
    assert exc.value.status_code == 400


def test_initialize_sdk_error_keeps_kind(monkeypatch):
    monkeypatch.setattr(
        stripe_client, "create_session",
        lambda **kwargs: (_ for _ in ()).throw(stripe.APIConnectionError("Network is unreachable")),
    )
    with pytest.raises(GatewayProtocolError) as exc:
        CardGatewayAdapter().initialize(_attempt(), _subject(), _urls())
    assert exc.value.kind == "sdk_error"


def test_initialize_without_url_is_empty_checkout_url(monkeypatch):
    monkeypatch.setattr(stripe_client, "create_session", lambda **kwargs: {"id": "cs_test_x", "url": None})
    with pytest.raises(EmptyCheckoutUrl):
        CardGatewayAdapter().initialize(_attempt(), _subject(), _urls())


def test_ensure_configured_requires_both_keys(payments_config, monkeypatch):
    CardGatewayAdapter().ensure_configured()
    monkeypatch.setattr(payments_config, "STRIPE_PUBLISHABLE_KEY", "")
    with pytest.raises(GatewayConfigurationError) as exc:
        CardGatewayAdapter().ensure_configured()
    assert exc.value.code == "GATEWAY_NOT_CONFIGURED"


def test_verify_reads_payment_status(stripe_sessions):
    result = CardGatewayAdapter().verify("cs_test_a1b2c3")
    assert result == {
        "status": "paid",
        "reference": "cs_test_a1b2c3",
        "raw": {"id": "cs_test_a1b2c3", "payment_status": "paid"},
    }


def test_stripe_client_converts_session_objects(monkeypatch):
    class _Session:
        def to_dict(self):
            return {"id": "cs_test_obj", "url": "https://checkout.stripe.com/c/pay/cs_test_obj"}

    monkeypatch.setattr(stripe.checkout.Session, "create", lambda **kwargs: _Session())
    session = stripe_client.create_session(
        line_items=[], success_url=RETURN_URL, cancel_url=RETURN_URL, metadata={}, idempotency_key="k1",
    )
    assert session["id"] == "cs_test_obj"
    assert stripe.api_key == "sk_test_dummy"
