from pathlib import Path
import json
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sri_minisender.idempotency import KEY_PREFIX, CachedOutcome, IdempotencyCache
from sri_minisender.models import (
    CanonicalResult,
    STATUS_AUTHORIZED,
    STATUS_ERROR,
    STATUS_NOT_AUTHORIZED,
    STATUS_PROCESSING,
)

from _sri_fakes import FakeRedis


class _Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _authorized():
    return CanonicalResult(
        status=STATUS_AUTHORIZED,
        access_key="1" * 49,
        authorization_number="1" * 49,
        authorization_date="2024-03-15T10:00:00-05:00",
        signed_document=b"<factura/>",
        authorized_document=b"<factura id=\"comprobante\"/>",
        environment="test",
        payload_hash="abc",
    )


def test_ttl_ordering_defaults():
    cache = IdempotencyCache(start_sweeper=False)

    assert cache.ttl_for(STATUS_PROCESSING) < cache.ttl_for(STATUS_ERROR)
    assert cache.ttl_for(STATUS_ERROR) <= cache.ttl_for(STATUS_NOT_AUTHORIZED)
    assert cache.ttl_for(STATUS_NOT_AUTHORIZED) == cache.ttl_for(STATUS_AUTHORIZED)


def test_memory_roundtrip_keeps_result_and_fingerprint():
    cache = IdempotencyCache(start_sweeper=False)
    cache.set("factura-001", _authorized(), "hash-1")

    hit = cache.get("factura-001")
    assert hit is not None
    assert hit.result == _authorized()
    assert hit.content_fingerprint == "hash-1"
    assert hit.ttl == 24 * 60 * 60
    assert cache.backend == "memory"


def test_memory_entry_expires_after_ttl():
    clock = _Clock()
    cache = IdempotencyCache(start_sweeper=False, clock=clock)
    cache.set("k-processing", CanonicalResult(status=STATUS_PROCESSING), "h")

    clock.now += 119
    assert cache.get("k-processing") is not None
    clock.now += 1
    assert cache.get("k-processing") is None


def test_sweep_removes_expired_entries_only():
    clock = _Clock()
    cache = IdempotencyCache(start_sweeper=False, clock=clock)
    cache.set("error", CanonicalResult.error("x"), "h")
    cache.set("final", _authorized(), "h")

    clock.now += 60 * 60
    assert cache.sweep() == 1
    assert cache.get("error") is None
    assert cache.get("final") is not None
    assert cache.health()["entries"] == 1


def test_redis_backend_uses_ex_ttl_and_prefix():
    fake = FakeRedis()
    cache = IdempotencyCache(redis_client=fake, start_sweeper=False)
    cache.set("factura-001", CanonicalResult.error("rechazado"), "hash-1")

    store_key = f"{KEY_PREFIX}factura-001"
    assert fake.expiry[store_key] == 60 * 60
    assert json.loads(fake.store[store_key])["content_fingerprint"] == "hash-1"
    assert cache.get("factura-001").result.messages == ("rechazado",)
    assert cache.health() == {"backend": "redis", "shared": True}


def test_unreachable_redis_falls_back_to_memory():
    cache = IdempotencyCache(redis_client=FakeRedis(fail_ping=True), start_sweeper=False)

    assert cache.backend == "memory"
    assert cache.healthy is False
    cache.set("k-000001", _authorized(), "h")
    assert cache.get("k-000001") is not None


def test_redis_read_failure_is_a_miss():
    fake = FakeRedis()
    cache = IdempotencyCache(redis_client=fake, start_sweeper=False)
    cache.set("k-000001", _authorized(), "h")
    fake.fail_ops = True

    assert cache.get("k-000001") is None


def test_cached_outcome_json_roundtrip_from_bytes():
    outcome = CachedOutcome(result=_authorized(), content_fingerprint="h", stored_at=1.0, ttl=10)
    assert CachedOutcome.from_json(outcome.to_json().encode("utf-8")) == outcome


def test_sweeper_thread_stops_on_close():
    cache = IdempotencyCache(sweep_interval=3600)
    assert cache._sweeper is not None and cache._sweeper.is_alive()
    cache.close()
    assert cache._sweeper is None
