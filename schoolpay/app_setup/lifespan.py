"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Connecte le Redis des paiements (rate limit par élève, verrou anti-doublon).
- Ferme à l'arrêt le pool HTTP partagé des passerelles.
- Variables d'environnement supportées:
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - PAYMENT_REDIS_URL: URL Redis; vide => magasins mémoire locaux (dev)
"""
import os
import logging
import redis
from contextlib import asynccontextmanager
from fastapi import FastAPI

from schoolpay import config
import schoolpay.infra.redis_client as redis_client
import schoolpay.infra.http_client as http_client

try:
    import fakeredis  # tests only
except ImportError:
    fakeredis = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Configure le backend des garde-fous et journalise le mode effectif.
    - Redis injoignable au démarrage: bascule en mémoire locale (un seul processus protégé).
    """
    logger = logging.getLogger("uvicorn.error")
    app.state.payments_guard_backend = "memory"
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            if not fakeredis:
                raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
            redis_client.set_redis(fakeredis.FakeRedis(decode_responses=True))
            app.state.payments_guard_backend = "fakeredis"
        elif config.PAYMENT_REDIS_URL:
            client = redis.from_url(config.PAYMENT_REDIS_URL, encoding="utf-8", decode_responses=True)
            client.ping()
            redis_client.set_redis(client)
            app.state.payments_guard_backend = "redis"
        logger.info("Payment guards backend: %s", app.state.payments_guard_backend)
    except Exception as e:
        redis_client.set_redis(None)
        app.state.payments_guard_backend = "memory"
        logger.warning(f"Payment guards falling back to local memory due to init error: {e}")

    yield

    redis_client.close_redis()
    http_client.close_http_client()
