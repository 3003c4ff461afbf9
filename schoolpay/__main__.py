"""
Lancement local du service de checkout SchoolPay (API paiements + santé).

    python -m schoolpay

Variables lues au démarrage:
- HOST / PORT: adresse d'écoute (0.0.0.0:8000 par défaut)
- UVICORN_RELOAD: reload auto en dev ("1"/"true"/"yes")
- LOG_LEVEL: niveau de logs uvicorn
Un résumé de configuration des passerelles est journalisé avant le démarrage
(jamais les clés elles-mêmes).
"""
import logging
import os

import uvicorn

from schoolpay import config

logger = logging.getLogger("schoolpay")


def _startup_summary() -> None:
    logger.info(
        "SchoolPay env=%s stripe=%s chapa=%s redis=%s public_base_url=%s",
        config.APP_ENV,
        "on" if config.STRIPE_SECRET_KEY else "off",
        "on" if config.CHAPA_TOKEN else "off",
        "on" if config.PAYMENT_REDIS_URL else "memory",
        config.PUBLIC_BASE_URL or "-",
    )


if __name__ == "__main__":
    log_level = os.environ.get("LOG_LEVEL", "info")
    logging.basicConfig(level=log_level.upper())
    _startup_summary()
    uvicorn.run(
        "schoolpay.asgi:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 8000)),
        reload=os.environ.get("UVICORN_RELOAD", "").lower() in ("1", "true", "yes"),
        log_level=log_level,
        proxy_headers=True,
    )
