import types
import pytest
from unittest.mock import MagicMock

import fakeredis
from redis.exceptions import RedisError

import schoolpay.infra.redis_client as redis_client
from schoolpay.payments import rate_limiter


@pytest.fixture
def fake_redis():
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    redis_client.set_redis(client)
    return client


def test_local_store_blocks_after_limit():
    for _ in range(3):
        assert rate_limiter.check_payment_rate_limit(7, limit=3, window_seconds=60).allowed
    decision = rate_limiter.check_payment_rate_limit(7, limit=3, window_seconds=60)
    assert not decision.allowed
    assert 1 <= decision.retry_after <= 60
    # compteur par élève
    assert rate_limiter.check_payment_rate_limit(8, limit=3, window_seconds=60).allowed


def test_local_store_window_slides(monkeypatch):
    clock = {"now": 1_000.0}
    monkeypatch.setattr(rate_limiter, "time", types.SimpleNamespace(time=lambda: clock["now"]))
    assert rate_limiter.check_payment_rate_limit(7, limit=2, window_seconds=900).allowed
    clock["now"] += 100
    assert rate_limiter.check_payment_rate_limit(7, limit=2, window_seconds=900).allowed
    clock["now"] += 100
    denied = rate_limiter.check_payment_rate_limit(7, limit=2, window_seconds=900)
    assert not denied.allowed
    assert denied.retry_after == 700
    clock["now"] += 701
    assert rate_limiter.check_payment_rate_limit(7, limit=2, window_seconds=900).allowed


def test_defaults_come_from_configuration(payments_config, monkeypatch):
    monkeypatch.setattr(payments_config, "PAYMENT_RATE_LIMIT_MAX", 1)
    assert rate_limiter.check_payment_rate_limit(7).allowed
    assert not rate_limiter.check_payment_rate_limit(7).allowed


def test_redis_sorted_set_limit(fake_redis):
    for _ in range(3):
        assert rate_limiter.check_payment_rate_limit(7, limit=3, window_seconds=60).allowed
    decision = rate_limiter.check_payment_rate_limit(7, limit=3, window_seconds=60)
    assert not decision.allowed
    assert 1 <= decision.retry_after <= 60
    assert fake_redis.zcard("rate:payment:7") == 3
    assert 0 < fake_redis.ttl("rate:payment:7") <= 60


def test_redis_failure_fails_open(caplog):
    client = MagicMock()
    client.pipeline.return_value.execute.side_effect = RedisError("connection reset")
    redis_client.set_redis(client)
    assert rate_limiter.check_payment_rate_limit(7, limit=1, window_seconds=60).allowed
    assert any("redis unavailable" in r.getMessage() for r in caplog.records)


def test_local_store_forgets_idle_students(monkeypatch):
    clock = {"now": 10_000.0}
    monkeypatch.setattr(rate_limiter, "time", types.SimpleNamespace(time=lambda: clock["now"]))
    for subject_id in range(1, 51):
        assert rate_limiter.check_payment_rate_limit(subject_id, limit=3, window_seconds=60).allowed
    assert len(rate_limiter._local_hits) == 50

    # fenêtre écoulée pour tous: seuls les élèves actifs restent en mémoire
    clock["now"] += 120
    assert rate_limiter.check_payment_rate_limit(99, limit=3, window_seconds=60).allowed
    assert list(rate_limiter._local_hits) == ["rate:payment:99"]
