from fastapi import APIRouter
from fastapi.responses import JSONResponse
from schoolpay.health.service import health_payments_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/payments")
def health_payments():
    return JSONResponse(health_payments_info())
