import pytest
from datetime import datetime
from decimal import Decimal
from typing import Generator, Dict, Any, List
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

import httpx

from schoolpay.app import app as fastapi_app
from schoolpay import config
from schoolpay.utils.security import get_optional_user
import schoolpay.infra.redis_client as redis_client
from schoolpay.payments import gateways, guards, rate_limiter, repository, subjects
import schoolpay.payments.stripe_client as stripe_client
from schoolpay.payments.exceptions import LedgerStateError
from schoolpay.payments.models import (
    CheckoutAttempt,
    CheckoutStatus,
    IN_FLIGHT_STATUSES,
    Subject,
    can_transition,
    utcnow,
)

CHAPA_CHECKOUT_URL = "https://checkout.chapa.co/checkout/payment/V38JyhpTygC9QimkJrdful9oEjih0heIv53eJ1MsJS6xG"
STRIPE_CHECKOUT_URL = "https://checkout.stripe.com/c/pay/cs_test_a1b2c3"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

# Simuler un utilisateur authentifié (les appels bot sont testés en surchargeant à None)
@pytest.fixture(autouse=True)
def _override_optional_user(app):
    fake_user: Dict[str, Any] = {
        "id": "test-user",
        "email": "parent@example.com",
        "token": "fake-token",
    }
    app.dependency_overrides[get_optional_user] = lambda: fake_user
    try:
        yield fake_user
    finally:
        app.dependency_overrides.pop(get_optional_user, None)

# Configuration de paiement déterministe (aucune valeur lue du .env local)
@pytest.fixture(autouse=True)
def payments_config(monkeypatch):
    values = {
        "STRIPE_SECRET_KEY": "sk_test_dummy",
        "STRIPE_PUBLISHABLE_KEY": "pk_test_dummy",
        "CHAPA_API": "https://api.chapa.test/v1",
        "CHAPA_TOKEN": "CHASECK_TEST-dummy",
        "CHAPA_TIMEOUT_SECONDS": 5,
        "MOBILE_MONEY_CURRENCY": "ETB",
        "DEFAULT_CURRENCY": "ETB",
        "MAX_PAYMENT_AMOUNT": 1_000_000,
        "DUPLICATE_WINDOW_SECONDS": 300,
        "PAYMENT_RATE_LIMIT_MAX": 5,
        "PAYMENT_RATE_LIMIT_WINDOW_SECONDS": 900,
        "CHECKOUT_LOCK_TTL_SECONDS": 30,
        "PAYMENT_REDIS_URL": "",
        "PUBLIC_BASE_URL": "",
        "PRODUCTION_DOMAIN": "exam.darelkubra.com",
        "APP_ENV": "development",
        "IS_PRODUCTION": False,
        "CHECKOUT_BRAND_NAME": "Darul Kubra",
        "CHECKOUT_RETURN_PATH": "/student/payments/return",
        "CHECKOUT_CALLBACK_PATH": "/api/payments/webhooks/stripe",
    }
    for name, value in values.items():
        monkeypatch.setattr(config, name, value, raising=True)
    monkeypatch.delenv("USE_FAKE_REDIS_FOR_TESTS", raising=False)
    return config

# Garde-fous isolés entre tests (mémoire locale, pas de Redis partagé)
@pytest.fixture(autouse=True)
def _isolate_guards():
    redis_client.set_redis(None)
    rate_limiter.reset_local_store()
    guards._local_locks.clear()
    yield
    redis_client.set_redis(None)
    rate_limiter.reset_local_store()
    guards._local_locks.clear()

# Mock database dependency for all tests
@pytest.fixture(scope="function", autouse=True)
def mock_db_dependency(monkeypatch):
    """
    Aucun test n'atteint Supabase: les clients anon/service sont des MagicMock.
    Les tests du repository installent leur propre chaîne de requêtes.
    """
    monkeypatch.setattr("schoolpay.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("schoolpay.infra.supabase_client.get_service_supabase", lambda: MagicMock())


class FakeLedger:
    """
    Ledger 'payment_checkout' en mémoire, mêmes règles que le repository:
    insertion en 'initialized' uniquement, transitions vers l'avant, metadata fusionnée.
    """

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}

    def create_attempt(self, attempt: CheckoutAttempt) -> CheckoutAttempt:
        if attempt.status != CheckoutStatus.INITIALIZED:
            raise LedgerStateError("New checkout must start as initialized")
        self.rows[attempt.tx_ref] = attempt.to_row()
        return CheckoutAttempt.from_row(self.rows[attempt.tx_ref])

    def get_attempt(self, tx_ref: str):
        row = self.rows.get(tx_ref)
        return CheckoutAttempt.from_row(row) if row else None

    def _advance(self, tx_ref, target, changes, patch=None):
        current = self.get_attempt(tx_ref)
        if current is None or not can_transition(current.status, target):
            raise LedgerStateError(f"Illegal transition for {tx_ref}", tx_ref=tx_ref)
        row = dict(self.rows[tx_ref])
        row.update(changes)
        row["status"] = target.value
        row["updated_at"] = utcnow().isoformat()
        if patch:
            row["metadata"] = {**row["metadata"], **patch}
        self.rows[tx_ref] = row
        return CheckoutAttempt.from_row(row)

    def mark_pending(self, tx_ref, checkout_url, extra_metadata=None):
        return self._advance(tx_ref, CheckoutStatus.PENDING, {"checkout_url": checkout_url}, extra_metadata)

    def mark_failed(self, tx_ref, error, error_code, extra_metadata=None):
        patch = dict(extra_metadata or {})
        patch.update({"error": error, "errorCode": error_code, "errorAt": utcnow().isoformat()})
        return self._advance(tx_ref, CheckoutStatus.FAILED, {}, patch)

    def find_in_flight_duplicate(self, subject_id, amount, currency, since: datetime):
        in_flight = {s.value for s in IN_FLIGHT_STATUSES}
        for row in sorted(self.rows.values(), key=lambda r: r["created_at"], reverse=True):
            if (
                row["student_id"] == subject_id
                and Decimal(row["amount"]) == Decimal(str(amount))
                and row["currency"] == currency
                and row["status"] in in_flight
                and datetime.fromisoformat(row["created_at"]) >= since
            ):
                return CheckoutAttempt.from_row(row)
        return None

    def by_status(self, status: str) -> List[Dict[str, Any]]:
        return [r for r in self.rows.values() if r["status"] == status]


@pytest.fixture
def ledger(monkeypatch) -> FakeLedger:
    fake = FakeLedger()
    for name in ("create_attempt", "get_attempt", "mark_pending", "mark_failed", "find_in_flight_duplicate"):
        monkeypatch.setattr(repository, name, getattr(fake, name))
    return fake


@pytest.fixture
def students(monkeypatch) -> Dict[int, Dict[str, Any]]:
    """Table 'students' en mémoire (colonnes réelles), modifiable par les tests."""
    rows: Dict[int, Dict[str, Any]] = {
        7: {"id": 7, "name": "Abebe Kebede", "phoneno": "+251 91 234 5678", "chat_id": "555001",
            "classfee": 1500, "classfee_currency": "ETB"},
        8: {"id": 8, "name": "Sara Tesfaye", "phoneno": "0911000111", "chat_id": "555002",
            "classfee": 40, "classfee_currency": "USD"},
        9: {"id": 9, "name": "Hana Girma", "phoneno": "0922000333", "chat_id": "555900",
            "classfee": 900, "classfee_currency": "ETB"},
        10: {"id": 10, "name": "Yonas Girma", "phoneno": "0922000333", "chat_id": "555900",
             "classfee": 900, "classfee_currency": "ETB"},
    }

    def _get_subject(subject_id):
        row = rows.get(int(subject_id))
        return Subject.from_row(row) if row else None

    def _find_by_chat(chat_id):
        return [Subject.from_row(r) for r in rows.values() if r.get("chat_id") == chat_id]

    monkeypatch.setattr(subjects, "get_subject", _get_subject)
    monkeypatch.setattr(subjects, "find_subjects_by_chat_id", _find_by_chat)
    return rows


class ChapaStub:
    """Faux serveur Chapa (httpx.MockTransport): réponses programmables, requêtes enregistrées."""

    def __init__(self):
        self.responses: List[httpx.Response] = []
        self.requests: List[httpx.Request] = []
        self.client = httpx.Client(transport=httpx.MockTransport(self._handle))

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={
            "message": "Hosted Link",
            "status": "success",
            "data": {"checkout_url": CHAPA_CHECKOUT_URL},
        })

    def respond(self, response: httpx.Response) -> None:
        self.responses.append(response)


@pytest.fixture
def chapa(monkeypatch) -> ChapaStub:
    stub = ChapaStub()
    original = gateways.MobileMoneyGatewayAdapter
    monkeypatch.setattr(gateways, "MobileMoneyGatewayAdapter", lambda client=None: original(client=client or stub.client))
    return stub


@pytest.fixture
def stripe_sessions(monkeypatch) -> List[Dict[str, Any]]:
    """Sessions Stripe créées (kwargs envoyés au SDK); aucune requête réseau."""
    calls: List[Dict[str, Any]] = []

    def _fake_create_session(**kwargs):
        calls.append(kwargs)
        return {"id": "cs_test_a1b2c3", "url": STRIPE_CHECKOUT_URL, "payment_status": "unpaid"}

    monkeypatch.setattr(stripe_client, "create_session", _fake_create_session)
    monkeypatch.setattr(stripe_client, "get_session", lambda session_id: {"id": session_id, "payment_status": "paid"})
    return calls
