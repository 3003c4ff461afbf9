"""
Garde-fous exécutés avant toute création de ligne dans le ledger:
- anti-doublon (même élève, montant et devise, tentative en cours dans la fenêtre)
- rate limit par élève (collaborateur rate_limiter)
- verrou court rendant atomiques « vérification doublon + insertion »
"""
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Iterator, Optional

from redis.exceptions import RedisError, WatchError

from schoolpay import config
import schoolpay.infra.redis_client as redis_client
from . import rate_limiter
from . import repository
from .exceptions import DuplicatePayment, RateLimitExceeded
from .models import utcnow

logger = logging.getLogger(__name__)

LOCK_PREFIX = "checkout:lock"
LOCK_WAIT_SECONDS = 5.0
LOCK_POLL_SECONDS = 0.1

DUPLICATE_MESSAGE = (
    "A similar payment is already in progress. Please wait a few minutes and check your payment status."
)

_local_locks: Dict[str, "_LocalLock"] = {}
_local_locks_guard = threading.Lock()

def dedup_key(subject_id, amount: Decimal, currency: str) -> str:
    """Clé implicite d'unicité: élève + montant normalisé + devise."""
    normalized = format(Decimal(str(amount)).normalize(), "f")
    return f"{subject_id}:{normalized}:{currency.upper()}"


def ensure_no_duplicate(subject_id, amount: Decimal, currency: str, window_seconds: Optional[int] = None) -> None:
    window = window_seconds or config.DUPLICATE_WINDOW_SECONDS
    since = utcnow() - timedelta(seconds=window)
    existing = repository.find_in_flight_duplicate(subject_id, amount, currency, since)
    if existing:
        logger.info(
            "payments.guards duplicate in flight student_id=%s tx_ref=%s status=%s",
            subject_id, existing.tx_ref, existing.status.value,
        )
        raise DuplicatePayment(DUPLICATE_MESSAGE, details={"existingTxRef": existing.tx_ref})


def ensure_rate_limit(subject_id) -> None:
    decision = rate_limiter.check_payment_rate_limit(subject_id)
    if decision.allowed:
        return
    if decision.retry_after:
        minutes = max(1, -(-decision.retry_after // 60))
        message = f"Too many payment attempts. Please try again in {minutes} minutes."
    else:
        message = "Too many payment attempts. Please try again later."
    raise RateLimitExceeded(message, retry_after=decision.retry_after)


class _LocalLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


@contextmanager
def _local_lock(key: str, wait: float) -> Iterator[None]:
    # Entrée retirée de la table dès que plus personne ne la détient ni ne l'attend
    with _local_locks_guard:
        entry = _local_locks.get(key)
        if entry is None:
            entry = _local_locks[key] = _LocalLock()
        entry.users += 1
    acquired = entry.lock.acquire(timeout=wait)
    try:
        if not acquired:
            raise DuplicatePayment(DUPLICATE_MESSAGE)
        yield
    finally:
        if acquired:
            entry.lock.release()
        with _local_locks_guard:
            entry.users -= 1
            if entry.users == 0 and _local_locks.get(key) is entry:
                del _local_locks[key]


def _acquire_redis(client, key: str, ttl_ms: int, wait: float) -> str:
    token = uuid.uuid4().hex
    deadline = time.monotonic() + wait
    while not client.set(key, token, nx=True, px=ttl_ms):
        if time.monotonic() >= deadline:
            raise DuplicatePayment(DUPLICATE_MESSAGE)
        time.sleep(LOCK_POLL_SECONDS)
    return token


def _release_redis(client, key: str, token: str) -> None:
    """Supprime la clé seulement si elle porte encore notre jeton (WATCH/MULTI)."""
    try:
        with client.pipeline() as pipe:
            pipe.watch(key)
            if pipe.get(key) != token:
                pipe.unwatch()
                logger.warning("payments.guards lock expired before release key=%s", key)
                return
            pipe.multi()
            pipe.delete(key)
            pipe.execute()
    except WatchError:
        logger.warning("payments.guards lock taken over before release key=%s", key)
    except RedisError as e:
        logger.warning("payments.guards lock release failed key=%s (expires on its own): %s", key, e)


@contextmanager
def checkout_lock(subject_id, amount: Decimal, currency: str, wait: float = LOCK_WAIT_SECONDS) -> Iterator[None]:
    """
    Sérialise les requêtes concurrentes d'un même (élève, montant, devise).
    - Redis SET NX PX si disponible (multi-instances), sinon verrou du processus.
    - Redis en erreur à l'acquisition: repli sur le verrou du processus.
    - Délai d'attente dépassé: la requête concurrente est traitée comme doublon.
    """
    key = f"{LOCK_PREFIX}:{dedup_key(subject_id, amount, currency)}"
    client = redis_client.get_redis()
    if client is not None:
        try:
            token = _acquire_redis(client, key, config.CHECKOUT_LOCK_TTL_SECONDS * 1000, wait)
        except RedisError as e:
            logger.warning("payments.guards redis lock unavailable, using local lock key=%s: %s", key, e)
        else:
            try:
                yield
            finally:
                _release_redis(client, key, token)
            return

    with _local_lock(key, wait):
        yield
