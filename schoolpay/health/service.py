"""
Informations de santé du service de paiement (sans appel réseau aux passerelles).
"""
from typing import Any, Dict
import logging

from redis.exceptions import RedisError

from schoolpay import config
import schoolpay.infra.redis_client as redis_client

logger = logging.getLogger(__name__)

def health_payments_info() -> Dict[str, Any]:
    """
    État de configuration des passerelles et du backend des garde-fous.
    - Ne renvoie jamais de secret, uniquement des booléens.
    """
    backend = "memory"
    redis_ok = None
    client = redis_client.get_redis()
    if client is not None:
        backend = "redis"
        try:
            redis_ok = bool(client.ping())
        except RedisError as e:
            logger.warning("health.payments redis ping failed: %s", e)
            redis_ok = False
    return {
        "stripe_configured": bool(config.STRIPE_SECRET_KEY and config.STRIPE_PUBLISHABLE_KEY),
        "chapa_configured": bool(config.CHAPA_TOKEN),
        "ledger_configured": bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY),
        "guards_backend": backend,
        "redis_ok": redis_ok,
        "environment": config.APP_ENV,
    }
