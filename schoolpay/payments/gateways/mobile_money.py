"""
Adaptateur passerelle mobile money (Chapa).

Particularités du protocole:
- Authentification Bearer construite à la main (jeton parfois stocké avec son préfixe).
- Corps form-encoded, montant en unités majeures, devise locale uniquement.
- Pas de webhook: la fin du paiement n'est signalée que par la redirection navigateur
  vers return_url (sans placeholder).
- En cas de mauvaise configuration, Chapa peut renvoyer une page HTML avec un statut 200:
  la forme du corps est donc discriminée explicitement (JSON / HTML / texte).
"""
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple

import httpx

from schoolpay import config
import schoolpay.infra.http_client as http_client
from ..exceptions import (
    EmptyCheckoutUrl,
    GatewayConfigurationError,
    GatewayProtocolError,
    GatewayRejection,
    excerpt,
)
from ..base_url import is_absolute_url
from ..models import CheckoutAttempt, CheckoutUrls, GatewayCheckout, Intent, Subject
from ..phone import normalize_phone
from .base import GatewayAdapter, display_title

logger = logging.getLogger(__name__)

KNOWN_TOKEN_PREFIXES = ("CHASECK", "CHAPUBK")
# Unique tentative de récupération d'une URL de checkout dans un corps non JSON
CHECKOUT_URL_SALVAGE_RE = re.compile(r"https?://[^\s\"'<>]*checkout\.chapa\.co[^\s\"'<>]*")
ANOMALOUS_URL_MARKERS = ("error", "failed")

BODY_JSON = "json"
BODY_HTML = "html"
BODY_TEXT = "text"

# module schoolpay.payments.gateways.mobile_money
def build_auth_header(token: str) -> str:
    """Retire un éventuel préfixe 'Bearer ' puis en ajoute exactement un."""
    clean = re.sub(r"^\s*bearer\s+", "", token or "", flags=re.IGNORECASE).strip()
    if not clean.startswith(KNOWN_TOKEN_PREFIXES):
        logger.warning(
            "payments.mobile_money token format unexpected prefix=%s... length=%s",
            clean[:7], len(clean),
        )
    return f"Bearer {clean}"


def sniff_body(content_type: str, text: str) -> Tuple[str, Optional[Any]]:
    """
    Discrimine la forme du corps de réponse.
    Retour: (BODY_JSON, données) | (BODY_HTML, None) | (BODY_TEXT, None)
    """
    ctype = (content_type or "").lower()
    stripped = (text or "").lstrip()
    if "json" in ctype or stripped.startswith("{"):
        try:
            return BODY_JSON, json.loads(text)
        except ValueError:
            pass
    head = stripped[:500].lower()
    if "html" in ctype or head.startswith("<!doctype") or "<html" in head:
        return BODY_HTML, None
    return BODY_TEXT, None


def _gateway_message(data: Any) -> str:
    """Message d'erreur Chapa: texte, ou dict champ -> erreurs aplati."""
    if not isinstance(data, dict):
        return "Chapa payment initialization failed"
    message = data.get("message")
    if isinstance(message, str) and message:
        return message
    if isinstance(message, dict) and message:
        parts = []
        for field, errors in message.items():
            errs = ", ".join(str(e) for e in errors) if isinstance(errors, list) else str(errors)
            parts.append(f"{field}: {errs}")
        return "; ".join(parts)
    inner = data.get("data")
    if isinstance(inner, dict) and isinstance(inner.get("message"), str):
        return inner["message"]
    return "Chapa payment initialization failed"


def validate_checkout_url(url: Any, raw: str) -> str:
    if not url or not isinstance(url, str):
        raise EmptyCheckoutUrl("Chapa API did not return a checkout URL.", raw=raw)
    if not is_absolute_url(url):
        raise GatewayProtocolError("Chapa returned malformed checkout URL", kind="malformed_url", raw=url)
    lowered = url.lower()
    if any(marker in lowered for marker in ANOMALOUS_URL_MARKERS):
        raise GatewayProtocolError(
            "Chapa returned an error page URL. Please check your payment details and Chapa account.",
            kind="anomalous_url",
            raw=url,
        )
    return url


def classify_response(status_code: int, content_type: str, text: str) -> str:
    """
    Traduit une réponse d'initialisation Chapa en URL de checkout ou en GatewayError.
    - non-2xx JSON: GatewayRejection (message Chapa transmis)
    - non-2xx non JSON: GatewayProtocolError (page HTML ou corps inattendu)
    - 2xx non JSON: une seule récupération par regex, sinon GatewayProtocolError
    - 2xx JSON: status == "success" et data.checkout_url requis
    """
    kind, data = sniff_body(content_type, text)
    ok = 200 <= status_code < 300

    if not ok:
        if kind == BODY_JSON:
            raise GatewayRejection(f"Chapa error: {_gateway_message(data)}", gateway_code=str(status_code))
        if kind == BODY_HTML:
            raise GatewayProtocolError(
                "Chapa returned an error page. Please verify your API token and account status.",
                kind="html_error_page",
                raw=text,
            )
        raise GatewayProtocolError(
            f"Chapa error ({status_code}): {excerpt(text)}",
            kind="unexpected_body",
            raw=text,
        )

    if kind != BODY_JSON:
        match = CHECKOUT_URL_SALVAGE_RE.search(text or "")
        if match:
            logger.warning("payments.mobile_money salvaged checkout url from %s body", kind)
            return validate_checkout_url(match.group(0), text)
        raise GatewayProtocolError(
            "Chapa returned non-JSON response. Please check your Chapa configuration.",
            kind="non_json_success",
            raw=text,
        )

    if not isinstance(data, dict) or data.get("status") != "success":
        raise GatewayRejection(f"Chapa error: {_gateway_message(data)}")

    inner = data.get("data") if isinstance(data.get("data"), dict) else {}
    return validate_checkout_url(inner.get("checkout_url"), text)


def build_form(attempt: CheckoutAttempt, subject: Subject, return_url: str) -> Dict[str, str]:
    months = ",".join(attempt.months)
    if attempt.intent == Intent.DEPOSIT:
        description = f"Top up your {config.CHECKOUT_BRAND_NAME} student balance"
    else:
        description = f"Payment for monthly tuition ({', '.join(attempt.months)})"
    return {
        "amount": format(attempt.amount, "f"),
        "currency": attempt.currency,
        "tx_ref": attempt.tx_ref,
        "phone_number": normalize_phone(subject.phone),
        "first_name": subject.name or "Student",
        "last_name": "",
        "return_url": return_url,
        "customization[title]": display_title(attempt.intent),
        "customization[description]": description,
        "meta[student_id]": str(attempt.subject_id),
        "meta[months]": months,
        "meta[intent]": attempt.intent.value,
    }


class MobileMoneyGatewayAdapter(GatewayAdapter):
    name = "chapa"

    def __init__(self, client: Optional[httpx.Client] = None):
        self._client = client

    def ensure_configured(self) -> None:
        if not config.CHAPA_TOKEN:
            raise GatewayConfigurationError("Chapa credentials are not configured")

    def _http(self) -> httpx.Client:
        if self._client is not None:
            return self._client
        return http_client.get_http_client()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": build_auth_header(config.CHAPA_TOKEN), "Accept": "application/json"}

    def initialize(self, attempt: CheckoutAttempt, subject: Subject, urls: CheckoutUrls) -> GatewayCheckout:
        """
        POST {CHAPA_API}/transaction/initialize (form-encoded) puis classification de la réponse.
        """
        self.ensure_configured()
        endpoint = f"{config.CHAPA_API}/transaction/initialize"
        form = build_form(attempt, subject, urls.return_url)
        logger.info(
            "payments.mobile_money.initialize tx_ref=%s amount=%s %s return_url=%s phone=%s",
            attempt.tx_ref, form["amount"], form["currency"], urls.return_url, form["phone_number"],
        )
        try:
            resp = self._http().post(
                endpoint, data=form, headers=self._headers(), timeout=config.CHAPA_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as e:
            raise GatewayProtocolError(
                "Could not reach Chapa. Please try again later.",
                kind="transport",
                raw=str(e),
            ) from e

        content_type = resp.headers.get("content-type", "")
        logger.info(
            "payments.mobile_money.initialize response status=%s content_type=%s length=%s",
            resp.status_code, content_type, len(resp.text),
        )
        checkout_url = classify_response(resp.status_code, content_type, resp.text)
        return GatewayCheckout(checkout_url=checkout_url, metadata={"phoneNumber": form["phone_number"]})

    def verify(self, tx_ref: str) -> Dict[str, Any]:
        """
        GET {CHAPA_API}/transaction/verify/{tx_ref}.
        Retour: {"status": "<statut chapa en minuscules>", "reference": ..., "raw": {...}}
        """
        self.ensure_configured()
        try:
            resp = self._http().get(
                f"{config.CHAPA_API}/transaction/verify/{tx_ref}",
                headers=self._headers(),
                timeout=config.CHAPA_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise GatewayProtocolError("Could not reach Chapa.", kind="transport", raw=str(e)) from e

        kind, data = sniff_body(resp.headers.get("content-type", ""), resp.text)
        if resp.status_code >= 400 or kind != BODY_JSON or not isinstance(data, dict):
            raise GatewayProtocolError(
                f"Chapa verification failed ({resp.status_code})",
                kind="unexpected_body" if kind != BODY_JSON else "verify_failed",
                raw=resp.text,
            )
        inner = data.get("data") if isinstance(data.get("data"), dict) else {}
        status = str(inner.get("status") or data.get("status") or "").lower()
        return {"status": status, "reference": inner.get("reference") or tx_ref, "raw": data}
