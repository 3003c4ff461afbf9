"""
Gestionnaires d'exceptions utilisés par la factory.
- CheckoutError: JSON structuré {error, code, txRef?, ...} (+ Retry-After sur 429).
- HTTPException: JSON {error, detail} (401 d'un appel sans utilisateur ni chatId, 404, ...).
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from schoolpay.payments.exceptions import CheckoutError, RateLimitExceeded

def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre les handlers CheckoutError et HTTPException.
    - Jamais de trace ni de message brut du SDK dans la réponse.
    """
    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        headers = {}
        if isinstance(exc, RateLimitExceeded) and exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers or None)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )
