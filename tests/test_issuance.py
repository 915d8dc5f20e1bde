import re
from datetime import timedelta

import pytest

from conftest import NOW, make_record
from issuance import TEST_KEYS, KeyIssuer, generate_key
from validation import Decision, RejectReason, ValidationEngine


@pytest.fixture
def issuer(registry):
    return KeyIssuer(registry, default_max_usage=3, default_valid_days=10, key_bytes=16)


def test_generate_key_is_hex_and_unpredictable():
    keys = {generate_key(16) for _ in range(50)}
    assert len(keys) == 50
    assert all(re.fullmatch(r"[0-9a-f]{32}", key) for key in keys)


def test_issue_inserts_fresh_record(registry, issuer):
    issued = issuer.issue(now=NOW)

    record = registry.get(issued.key)
    assert record.valid is True
    assert record.usage_count == 0
    assert record.max_usage == 3
    assert record.created_at == NOW
    assert record.expires_at == NOW + timedelta(days=10)
    assert issued.expires_at == record.expires_at


def test_issue_with_overrides(registry, issuer):
    issued = issuer.issue(max_usage=1, valid_days=2, now=NOW)
    record = registry.get(issued.key)
    assert record.max_usage == 1
    assert record.expires_at == NOW + timedelta(days=2)


@pytest.mark.parametrize("kwargs", [{"max_usage": 0}, {"valid_days": 0}, {"max_usage": -5}])
def test_issue_rejects_non_positive_values(registry, issuer, kwargs):
    with pytest.raises(ValueError):
        issuer.issue(**kwargs)
    assert len(registry) == 0


def test_issued_key_validates_max_usage_times(registry, issuer):
    issued = issuer.issue(max_usage=2, now=NOW)
    engine = ValidationEngine(registry, clock=lambda: NOW)
    assert [engine.validate(issued.key).decision for _ in range(3)] == [
        Decision.ACCEPT, Decision.ACCEPT, Decision.REJECT,
    ]


def test_stats_aggregation(registry, issuer):
    registry.insert("active-1", make_record(usage_count=2))
    registry.insert("active-2", make_record(usage_count=0))
    registry.insert("disabled", make_record(valid=False, usage_count=4))
    registry.insert("expired", make_record(expires_in=timedelta(days=-1), usage_count=1))
    registry.insert("exhausted", make_record(usage_count=5, max_usage=5))

    stats = issuer.stats(now=NOW)

    assert stats.total_keys == 5
    assert stats.valid_keys == 3  # quota exhaustion does not affect validity
    assert stats.total_usage == 12


def test_stats_empty_registry(issuer):
    stats = issuer.stats(now=NOW)
    assert (stats.total_keys, stats.valid_keys, stats.total_usage) == (0, 0, 0)


def test_seed_test_keys_cover_each_state(registry, issuer):
    seeded = issuer.seed_test_keys(now=NOW)
    assert seeded == TEST_KEYS
    assert len(registry) == 4

    engine = ValidationEngine(registry, clock=lambda: NOW)
    assert engine.validate(TEST_KEYS["active"]).accepted
    assert engine.validate(TEST_KEYS["disabled"]).reason is RejectReason.DISABLED
    assert engine.validate(TEST_KEYS["expired"]).reason is RejectReason.EXPIRED
    assert engine.validate(TEST_KEYS["exhausted"]).reason is RejectReason.USAGE_EXHAUSTED
