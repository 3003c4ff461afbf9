from fastapi import Request
from typing import Optional, Dict, Any
import logging

import schoolpay.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

COOKIE_NAME = "sb_access"

def extract_token(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME) or None

def get_user_from_token(access_token: str) -> Optional[Dict[str, Any]]:
    """Normalise l'utilisateur issu de supabase.auth.get_user(access_token): {id, email, token}."""
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None)
    if not user or not getattr(user, "id", None):
        return None
    return {"id": user.id, "email": getattr(user, "email", None), "token": access_token}

def get_optional_user(request: Request) -> Optional[Dict[str, Any]]:
    """
    Utilisateur authentifié ou None (jamais d'exception):
    le checkout accepte aussi les appels du bot identifiés par chatId.
    """
    token = extract_token(request)
    if not token:
        return None
    try:
        return get_user_from_token(token)
    except Exception:
        logger.warning("utils.security.get_optional_user token rejected", exc_info=True)
        return None
