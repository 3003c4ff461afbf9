"""
Rate limit des tentatives de paiement, par élève (fenêtre glissante).

Redis (sorted set horodaté) si configuré, sinon un magasin mémoire local
(dev/tests, équivalent du LOCAL_RATE_LIMIT_FALLBACK du limiteur HTTP).
Si Redis échoue en cours de route, la vérification laisse passer (fail-open)
et le journalise: le garde-fou anti-doublon reste actif de son côté.
"""
import logging
import math
import threading
import time
import uuid
from typing import Dict, List, Optional

from redis.exceptions import RedisError

from schoolpay import config
import schoolpay.infra.redis_client as redis_client
from .models import RateLimitDecision

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate:payment"
LOCAL_PRUNE_INTERVAL_SECONDS = 60

_local_hits: Dict[str, List[float]] = {}
_local_lock = threading.Lock()
_last_prune = 0.0

# module schoolpay.payments.rate_limiter
def _key(subject_id) -> str:
    return f"{KEY_PREFIX}:{subject_id}"


def _retry_after(oldest: float, now: float, window: int) -> int:
    return max(1, int(math.ceil(oldest + window - now)))


def _prune_local(now: float, window: int) -> None:
    # Appelé sous _local_lock: retire les élèves sans tentative dans la fenêtre
    global _last_prune
    if now - _last_prune < LOCAL_PRUNE_INTERVAL_SECONDS:
        return
    _last_prune = now
    stale = [k for k, hits in _local_hits.items() if not hits or now - hits[-1] >= window]
    for k in stale:
        del _local_hits[k]


def _check_local(key: str, limit: int, window: int, now: float) -> RateLimitDecision:
    with _local_lock:
        _prune_local(now, window)
        hits = [t for t in _local_hits.get(key, []) if now - t < window]
        if len(hits) >= limit:
            _local_hits[key] = hits
            return RateLimitDecision(allowed=False, retry_after=_retry_after(hits[0], now, window))
        hits.append(now)
        _local_hits[key] = hits
        return RateLimitDecision(allowed=True)


def _check_redis(client, key: str, limit: int, window: int, now: float) -> RateLimitDecision:
    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, now - window)
    pipe.zcard(key)
    pipe.zrange(key, 0, 0, withscores=True)
    _, count, oldest = pipe.execute()
    if int(count) >= limit:
        oldest_ts = float(oldest[0][1]) if oldest else now
        return RateLimitDecision(allowed=False, retry_after=_retry_after(oldest_ts, now, window))
    pipe = client.pipeline()
    pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
    pipe.expire(key, window)
    pipe.execute()
    return RateLimitDecision(allowed=True)


def check_payment_rate_limit(
    subject_id,
    limit: Optional[int] = None,
    window_seconds: Optional[int] = None,
) -> RateLimitDecision:
    """
    Enregistre une tentative pour l'élève et indique si elle est autorisée.
    - retry_after: secondes avant que la plus ancienne tentative sorte de la fenêtre.
    """
    limit = limit or config.PAYMENT_RATE_LIMIT_MAX
    window = window_seconds or config.PAYMENT_RATE_LIMIT_WINDOW_SECONDS
    now = time.time()
    key = _key(subject_id)

    client = redis_client.get_redis()
    if client is None:
        return _check_local(key, limit, window, now)
    try:
        return _check_redis(client, key, limit, window, now)
    except RedisError as e:
        logger.warning("payments.rate_limiter redis unavailable, allowing subject=%s: %s", subject_id, e)
        return RateLimitDecision(allowed=True)


def reset_local_store() -> None:
    global _last_prune
    with _local_lock:
        _local_hits.clear()
        _last_prune = 0.0
