"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `schoolpay.asgi:app`.
- Toute la configuration FastAPI est centralisée dans schoolpay.app_setup.factory.
"""

from schoolpay.app import app
