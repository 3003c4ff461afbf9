import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from schoolpay.utils.security import get_optional_user
from schoolpay.payments import service as payments_service
from schoolpay.payments.base_url import headers_from_request
from schoolpay.payments.exceptions import CheckoutError, ValidationError
from schoolpay.payments.models import CheckoutRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module schoolpay.payments.views
@router.post("/checkout")
async def create_checkout_session(request: Request, user: Optional[Dict[str, Any]] = Depends(get_optional_user)):
    """
    Crée une session de paiement hébergée (Stripe ou Chapa) pour un élève.
    - Entrée JSON: { "provider": "card"|"mobileMoney", "studentId"|"chatId", "amount", "currency",
      "months": [...], "returnUrl", "callbackUrl", "metadata", "mode": "tuition"|"deposit" }
    - Sécurité: utilisateur authentifié (Bearer/cookie) ou appel bot identifié par chatId
    - Réponse: {success, provider, txRef, checkoutUrl} (+ sessionId, publishableKey, currency pour Stripe)
    - Erreurs: JSON {error, code, txRef?} via le handler CheckoutError
    """
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")

    if user is None and not body.get("chatId"):
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = CheckoutRequest.model_validate(body)
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in e.errors()]
        raise ValidationError("Invalid checkout request", details={"fields": fields})

    try:
        result = await run_in_threadpool(
            payments_service.create_checkout, payload, headers_from_request(request)
        )
    except (CheckoutError, HTTPException):
        raise
    except Exception:
        logger.exception("Erreur create_checkout_session")
        raise CheckoutError("Failed to create checkout session. Please try again or contact support.")
    return JSONResponse(result)

@router.get("/checkout/status")
async def checkout_status(
    txRef: str = Query(..., min_length=1),
    verify: bool = Query(False),
):
    """
    État d'une tentative par txRef (polling depuis la page de retour).
    - verify=true: interroge la passerelle pour une tentative en attente (lecture seule).
    - Erreurs: 404 si txRef inconnu.
    """
    try:
        result = await run_in_threadpool(payments_service.get_checkout_status, txRef, verify)
    except CheckoutError:
        raise
    except Exception:
        logger.exception("Erreur checkout_status tx_ref=%s", txRef)
        raise CheckoutError("Failed to load checkout status")
    return JSONResponse(result)
