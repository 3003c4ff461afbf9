"""
Exceptions métier du checkout.

Chaque erreur porte un code stable, un statut HTTP et un message lisible;
le handler FastAPI (schoolpay.app_setup.exceptions) les sérialise via to_payload().
Aucune trace ni message brut du SDK n'est renvoyé à l'appelant.
"""
from typing import Any, Dict, Optional

EXCERPT_MAX_CHARS = 200


def excerpt(text: Optional[str], limit: int = EXCERPT_MAX_CHARS) -> str:
    """Extrait tronqué d'une réponse brute (support uniquement)."""
    return (text or "")[:limit]


class CheckoutError(Exception):
    """Base de toutes les erreurs renvoyées à l'appelant du checkout."""

    code = "CHECKOUT_FAILED"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        tx_ref: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.tx_ref = tx_ref
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.tx_ref:
            payload["txRef"] = self.tx_ref
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CheckoutError):
    code = "VALIDATION_ERROR"
    status_code = 400


class AmbiguousSubject(ValidationError):
    """Plusieurs élèves partagent le même chatId: l'appelant doit préciser studentId."""

    code = "AMBIGUOUS_SUBJECT"


class SubjectNotFound(CheckoutError):
    code = "SUBJECT_NOT_FOUND"
    status_code = 404


class UnsupportedCurrencyForProvider(CheckoutError):
    code = "UNSUPPORTED_CURRENCY_FOR_PROVIDER"
    status_code = 400


class DuplicatePayment(CheckoutError):
    code = "DUPLICATE_PAYMENT"
    status_code = 409


class RateLimitExceeded(CheckoutError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, message: str, *, retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["retryAfter"] = self.retry_after
        return payload


class CheckoutNotFound(CheckoutError):
    code = "CHECKOUT_NOT_FOUND"
    status_code = 404


class LedgerStateError(CheckoutError):
    """Transition de statut interdite (le ledger n'avance que vers l'avant)."""

    code = "LEDGER_STATE_ERROR"
    status_code = 500


class GatewayError(CheckoutError):
    """Base des erreurs levées par un adaptateur de passerelle."""

    code = "GATEWAY_ERROR"
    status_code = 502


class GatewayConfigurationError(GatewayError):
    code = "GATEWAY_NOT_CONFIGURED"
    status_code = 500


class GatewayProtocolError(GatewayError):
    """
    Réponse inattendue de la passerelle.
    - kind: discriminant (html_error_page, non_json_success, unexpected_body,
      malformed_url, anomalous_url, transport, sdk_error, empty_checkout_url)
    - raw_excerpt: extrait tronqué du corps brut, conservé pour le support
    """

    code = "GATEWAY_PROTOCOL_ERROR"
    status_code = 502

    def __init__(self, message: str, *, kind: str, raw: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.kind = kind
        self.raw_excerpt = excerpt(raw)

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["kind"] = self.kind
        if self.raw_excerpt:
            payload["excerpt"] = self.raw_excerpt
        return payload


class EmptyCheckoutUrl(GatewayProtocolError):
    code = "EMPTY_CHECKOUT_URL"

    def __init__(self, message: str, *, raw: Optional[str] = None, **kwargs):
        super().__init__(message, kind="empty_checkout_url", raw=raw, **kwargs)


class GatewayRejection(GatewayError):
    """La passerelle signale explicitement un échec: son message est transmis tel quel."""

    code = "GATEWAY_REJECTED"
    status_code = 400

    def __init__(self, message: str, *, gateway_code: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.gateway_code = gateway_code

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.gateway_code:
            payload["gatewayCode"] = self.gateway_code
        return payload
