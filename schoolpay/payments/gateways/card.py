"""
Adaptateur passerelle carte (Stripe Checkout hébergé).
"""
import logging
from typing import Any, Dict, List

import stripe

from schoolpay import config
from .. import stripe_client
from ..currency import to_minor_units
from ..exceptions import (
    EmptyCheckoutUrl,
    GatewayConfigurationError,
    GatewayProtocolError,
    GatewayRejection,
)
from ..models import CheckoutAttempt, CheckoutUrls, GatewayCheckout, Subject
from .base import GatewayAdapter, display_title

logger = logging.getLogger(__name__)

# Placeholder substitué par Stripe au moment de la redirection
SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def _join_query(url: str, query: str) -> str:
    return f"{url}{'&' if '?' in url else '?'}{query}"


def build_redirect_urls(return_url: str, tx_ref: str) -> Dict[str, str]:
    return {
        "success_url": _join_query(return_url, f"status=success&tx_ref={tx_ref}&session_id={SESSION_ID_PLACEHOLDER}"),
        "cancel_url": _join_query(return_url, f"status=cancelled&tx_ref={tx_ref}"),
    }


def build_line_items(attempt: CheckoutAttempt, subject: Subject) -> List[Dict[str, Any]]:
    """
    Une ligne unique en price_data (montant en unités mineures, devise en minuscules).
    """
    currency = attempt.currency.lower()
    student_name = subject.name or "Student"
    return [
        {
            "quantity": 1,
            "price_data": {
                "currency": currency,
                "unit_amount": to_minor_units(attempt.amount, attempt.currency),
                "product_data": {
                    "name": f"{display_title(attempt.intent)} ({student_name})",
                    "description": f"Payment in {attempt.currency.upper()}",
                    "metadata": {
                        "studentId": str(attempt.subject_id),
                        "txRef": attempt.tx_ref,
                        "intent": attempt.intent.value,
                    },
                },
            },
        }
    ]


class CardGatewayAdapter(GatewayAdapter):
    name = "stripe"

    def ensure_configured(self) -> None:
        stripe_client.require_stripe()

    @property
    def publishable_key(self) -> str:
        return config.STRIPE_PUBLISHABLE_KEY

    def initialize(self, attempt: CheckoutAttempt, subject: Subject, urls: CheckoutUrls) -> GatewayCheckout:
        """
        Crée la session Stripe et retourne son URL hébergée + son id.
        - InvalidRequestError: message Stripe transmis (actionnable par l'utilisateur).
        - Session sans URL: EmptyCheckoutUrl.
        """
        normalized_currency = attempt.currency.lower()
        redirect = build_redirect_urls(urls.return_url, attempt.tx_ref)
        metadata = {
            "txRef": attempt.tx_ref,
            "studentId": str(attempt.subject_id),
            "months": ",".join(attempt.months),
            "intent": attempt.intent.value,
            "originalCurrency": attempt.currency,
        }
        logger.info(
            "payments.card.initialize tx_ref=%s amount=%s %s minor=%s",
            attempt.tx_ref, attempt.amount, attempt.currency,
            to_minor_units(attempt.amount, attempt.currency),
        )
        try:
            session = stripe_client.create_session(
                line_items=build_line_items(attempt, subject),
                success_url=redirect["success_url"],
                cancel_url=redirect["cancel_url"],
                metadata=metadata,
                idempotency_key=attempt.tx_ref,
            )
        except stripe.AuthenticationError as e:
            raise GatewayConfigurationError("Stripe rejected the server credentials.") from e
        except stripe.InvalidRequestError as e:
            raise GatewayRejection(
                f"Stripe error: {e.user_message or str(e)}",
                gateway_code=getattr(e, "code", None),
            ) from e
        except stripe.StripeError as e:
            raise GatewayProtocolError(
                "Failed to create Stripe checkout session.",
                kind="sdk_error",
                raw=str(e),
            ) from e

        url = session.get("url")
        if not url:
            raise EmptyCheckoutUrl("Failed to create Stripe checkout session.", raw=str(session.get("id") or ""))

        return GatewayCheckout(
            checkout_url=url,
            session_id=session.get("id"),
            metadata={
                "stripeSessionId": session.get("id"),
                "originalCurrency": attempt.currency,
                "normalizedCurrency": normalized_currency,
            },
        )

    def verify(self, session_id: str) -> Dict[str, Any]:
        """
        Lecture seule de la session Stripe (payment_status: paid, unpaid, no_payment_required).
        """
        try:
            session = stripe_client.get_session(session_id)
        except stripe.StripeError as e:
            raise GatewayProtocolError("Stripe verification failed.", kind="verify_failed", raw=str(e)) from e
        return {
            "status": str(session.get("payment_status") or "").lower(),
            "reference": session.get("id") or session_id,
            "raw": session,
        }
