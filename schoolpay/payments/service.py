"""
Cas d'usage 'payments': orchestre garde-fous, ledger et adaptateurs de passerelle.

Séquence d'un checkout:
  1) provider + élève (studentId ou chatId non ambigu)
  2) montant (explicite ou frais par défaut) et devise (explicite, élève, défaut système)
  3) politique devise/passerelle et configuration de la passerelle
  4) anti-doublon + rate limit, sous verrou avec l'insertion
  5) URLs absolues de retour (et callback, Stripe uniquement)
  6) ligne 'initialized' dans le ledger (aucun paiement créé: c'est le rôle du finaliseur)
  7) appel passerelle -> 'pending' + URL, ou 'failed' + diagnostic, puis erreur avec txRef
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import uuid4

from schoolpay import config
from . import guards
from . import repository
from . import subjects
from . import gateways
from .base_url import (
    BaseUrlSettings,
    RequestHeaders,
    ensure_absolute_url,
    resolve_base_url,
    settings_from_config,
)
from .currency import ensure_provider_currency, normalize_currency
from .exceptions import (
    CheckoutError,
    CheckoutNotFound,
    GatewayError,
    GatewayProtocolError,
    ValidationError,
)
from .models import (
    CheckoutAttempt,
    CheckoutRequest,
    CheckoutStatus,
    CheckoutUrls,
    Intent,
    Provider,
    Subject,
)

logger = logging.getLogger(__name__)

def resolve_amount(payload: CheckoutRequest, subject: Subject) -> Decimal:
    """Montant explicite, sinon frais par défaut de l'élève; refuse <= 0 et > plafond."""
    amount = payload.amount if payload.amount is not None else subject.default_fee
    if amount is None or amount <= 0:
        raise ValidationError("Invalid payment amount", code="INVALID_AMOUNT")
    ceiling = Decimal(config.MAX_PAYMENT_AMOUNT)
    if amount > ceiling:
        raise ValidationError(
            f"Payment amount exceeds maximum limit of {config.MAX_PAYMENT_AMOUNT}",
            code="PAYMENT_LIMIT_EXCEEDED",
        )
    return amount


def resolve_currency(payload: CheckoutRequest, subject: Subject) -> str:
    return normalize_currency(payload.currency or subject.default_currency or config.DEFAULT_CURRENCY)


def resolve_urls(
    provider: Provider,
    tx_ref: str,
    payload: CheckoutRequest,
    settings: BaseUrlSettings,
    headers: RequestHeaders,
) -> CheckoutUrls:
    """
    - Chapa: URL de retour fixe portant le tx_ref (pas de placeholder, pas de callback).
    - Stripe: returnUrl de l'appelant si absolue, sinon page de retour; callback webhook.
    """
    base_url = resolve_base_url(settings, headers)
    origin = headers.request_origin.rstrip("/")
    return_path = config.CHECKOUT_RETURN_PATH

    if provider == Provider.MOBILE_MONEY:
        return CheckoutUrls(base_url=base_url, return_url=f"{base_url}{return_path}?tx_ref={tx_ref}")

    callback_path = config.CHECKOUT_CALLBACK_PATH
    return CheckoutUrls(
        base_url=base_url,
        return_url=ensure_absolute_url(payload.returnUrl, f"{base_url}{return_path}", f"{origin}{return_path}"),
        callback_url=ensure_absolute_url(payload.callbackUrl, f"{base_url}{callback_path}", f"{origin}{callback_path}"),
    )


def _record_failure(tx_ref: str, error: CheckoutError, extra: Optional[Dict[str, Any]] = None) -> None:
    diagnostics = dict(extra or {})
    if isinstance(error, GatewayProtocolError):
        diagnostics["errorKind"] = error.kind
        if error.raw_excerpt:
            diagnostics["rawExcerpt"] = error.raw_excerpt
    try:
        repository.mark_failed(tx_ref, error.message, error.code, diagnostics)
    except Exception:
        # L'erreur d'origine reste celle renvoyée à l'appelant
        logger.exception("payments.service could not mark checkout failed tx_ref=%s", tx_ref)


def _build_result(provider: Provider, attempt: CheckoutAttempt, session_id: Optional[str], adapter) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "success": True,
        "provider": provider.value,
        "txRef": attempt.tx_ref,
        "checkoutUrl": attempt.checkout_url,
    }
    if provider == Provider.CARD:
        result.update({
            "sessionId": session_id,
            "publishableKey": adapter.publishable_key,
            "currency": attempt.currency.lower(),
        })
    return result


def create_checkout(
    payload: CheckoutRequest,
    headers: RequestHeaders,
    settings: Optional[BaseUrlSettings] = None,
) -> Dict[str, Any]:
    """
    Transforme une demande de paiement en session de paiement hébergée.
    Retour: {"success": True, "provider", "txRef", "checkoutUrl", ...}
    Erreurs: CheckoutError (avec txRef dès qu'une ligne du ledger existe).
    """
    provider = Provider.parse(payload.provider)
    subject = subjects.resolve_subject(payload.studentId, payload.chatId)
    intent = Intent.from_mode(payload.mode)
    amount = resolve_amount(payload, subject)
    currency = resolve_currency(payload, subject)

    ensure_provider_currency(provider, currency)
    adapter = gateways.get_adapter(provider)
    adapter.ensure_configured()

    logger.info(
        "payments.service.create_checkout student_id=%s provider=%s intent=%s amount=%s %s",
        subject.id, provider.value, intent.value, amount, currency,
    )

    tx_ref = str(uuid4())
    urls = resolve_urls(provider, tx_ref, payload, settings or settings_from_config(), headers)

    with guards.checkout_lock(subject.id, amount, currency):
        guards.ensure_no_duplicate(subject.id, amount, currency)
        guards.ensure_rate_limit(subject.id)
        attempt = repository.create_attempt(
            CheckoutAttempt(
                tx_ref=tx_ref,
                subject_id=subject.id,
                provider=provider,
                intent=intent,
                amount=amount,
                currency=currency,
                months=list(payload.months),
                metadata={**payload.metadata, "studentName": subject.name or ""},
                return_url=urls.return_url,
                callback_url=urls.callback_url,
            )
        )
    logger.info("payments.service created checkout tx_ref=%s status=initialized", tx_ref)

    try:
        gateway_checkout = adapter.initialize(attempt, subject, urls)
    except GatewayError as e:
        logger.warning("payments.service %s init failed tx_ref=%s code=%s: %s", provider.value, tx_ref, e.code, e.message)
        _record_failure(tx_ref, e)
        e.tx_ref = tx_ref
        raise
    except Exception as e:
        logger.exception("payments.service %s init crashed tx_ref=%s", provider.value, tx_ref)
        error = CheckoutError(
            "Failed to initialize payment. Please try again or contact support.",
            code=f"{provider.value.upper()}_INIT_FAILED",
            tx_ref=tx_ref,
        )
        _record_failure(tx_ref, error, {"exception": type(e).__name__})
        raise error from e

    try:
        attempt = repository.mark_pending(tx_ref, gateway_checkout.checkout_url, gateway_checkout.metadata)
    except Exception as e:
        logger.exception("payments.service could not mark checkout pending tx_ref=%s", tx_ref)
        raise CheckoutError(
            "Payment session was created but could not be recorded. Please check your payment status.",
            code="LEDGER_UPDATE_FAILED",
            tx_ref=tx_ref,
        ) from e

    logger.info("payments.service checkout pending tx_ref=%s url=%s...", tx_ref, gateway_checkout.checkout_url[:50])
    return _build_result(provider, attempt, gateway_checkout.session_id, adapter)


def get_checkout_status(tx_ref: str, verify: bool = False) -> Dict[str, Any]:
    """
    État courant d'une tentative (lecture du ledger).
    - verify=True sur une tentative 'pending': interroge la passerelle (Chapa verify, session Stripe)
      et expose providerStatus,
      sans modifier le ledger (la finalisation appartient au finaliseur externe).
    """
    if not tx_ref:
        raise ValidationError("txRef query parameter is required")
    attempt = repository.get_attempt(tx_ref)
    if attempt is None:
        raise CheckoutNotFound("Checkout session not found", tx_ref=tx_ref)

    result: Dict[str, Any] = {
        "success": True,
        "txRef": attempt.tx_ref,
        "status": attempt.status.value,
        "provider": attempt.provider.value,
        "amount": float(attempt.amount),
        "currency": attempt.currency,
        "intent": attempt.intent.value,
        "checkoutUrl": attempt.checkout_url,
        "metadata": attempt.metadata,
        "updatedAt": attempt.updated_at.isoformat(),
    }

    if verify and attempt.status == CheckoutStatus.PENDING:
        try:
            if attempt.provider == Provider.MOBILE_MONEY:
                verification = gateways.MobileMoneyGatewayAdapter().verify(tx_ref)
            else:
                session_id = attempt.metadata.get("stripeSessionId")
                if not session_id:
                    return result
                verification = gateways.CardGatewayAdapter().verify(session_id)
            result["providerStatus"] = verification["status"]
        except GatewayError as e:
            # Statut courant renvoyé malgré l'échec de vérification
            logger.warning("payments.service.get_checkout_status verify failed tx_ref=%s: %s", tx_ref, e.message)
            result["providerStatus"] = None
    return result
