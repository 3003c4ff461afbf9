"""
Client Redis partagé pour le rate limit par élève et le verrou anti-doublon.
- Initialisé par le lifespan (Redis réel ou fakeredis en tests), ou paresseusement via PAYMENT_REDIS_URL.
- None si aucun Redis n'est configuré: les appelants basculent alors en mémoire locale.
"""
from typing import Optional
import redis

from schoolpay import config

_redis: Optional[redis.Redis] = None

def get_redis() -> Optional[redis.Redis]:
    global _redis
    if _redis is None and config.PAYMENT_REDIS_URL:
        _redis = redis.from_url(config.PAYMENT_REDIS_URL, encoding="utf-8", decode_responses=True)
    return _redis

def set_redis(client: Optional[redis.Redis]) -> None:
    global _redis
    _redis = client

def close_redis() -> None:
    global _redis
    if _redis is not None:
        try:
            _redis.close()
        finally:
            _redis = None
