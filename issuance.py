"""
Key issuance and aggregate statistics.

Issued keys are random hex strings from the `secrets` module. Records start
enabled with zero usage; expiry is fixed at issuance and never renewed.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from registry import KeyRecord, KeyRegistry
from validation import key_prefix, utcnow

logger = logging.getLogger(__name__)

# Fixed demonstration keys for local testing, one per lifecycle state.
TEST_KEYS: Dict[str, str] = {
    "active": "a1b2c3d4e5f60718293a4b5c6d7e8f90",
    "disabled": "d15ab1edd15ab1edd15ab1edd15ab1ed",
    "expired": "e0e0e0e0e0e0e0e0e0e0e0e0e0e0e0e0",
    "exhausted": "0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f",
}


@dataclass(frozen=True)
class IssuedKey:
    key: str
    expires_at: datetime
    max_usage: int


@dataclass(frozen=True)
class KeyStats:
    total_keys: int
    valid_keys: int
    total_usage: int


def generate_key(num_bytes: int = 16) -> str:
    """Unpredictable hex key (two characters per byte)."""
    return secrets.token_hex(num_bytes)


class KeyIssuer:
    def __init__(
        self,
        registry: KeyRegistry,
        default_max_usage: int = 100,
        default_valid_days: int = 365,
        key_bytes: int = 16,
    ):
        self.registry = registry
        self.default_max_usage = default_max_usage
        self.default_valid_days = default_valid_days
        self.key_bytes = key_bytes

    def issue(
        self,
        max_usage: Optional[int] = None,
        valid_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> IssuedKey:
        """
        Create and register a fresh key.

        Raises ValueError for non-positive max_usage or valid_days.
        """
        max_usage = self.default_max_usage if max_usage is None else max_usage
        valid_days = self.default_valid_days if valid_days is None else valid_days
        if max_usage <= 0:
            raise ValueError("max_usage must be positive")
        if valid_days <= 0:
            raise ValueError("valid_days must be positive")

        now = now or utcnow()
        key = generate_key(self.key_bytes)
        record = KeyRecord(
            valid=True,
            created_at=now,
            expires_at=now + timedelta(days=valid_days),
            usage_count=0,
            max_usage=max_usage,
        )
        self.registry.insert(key, record)

        logger.info("Issued key %s (max_usage=%d, expires=%s)",
                    key_prefix(key), max_usage, record.expires_at.isoformat())
        return IssuedKey(key=key, expires_at=record.expires_at, max_usage=max_usage)

    def stats(self, now: Optional[datetime] = None) -> KeyStats:
        """Totals over one consistent snapshot of the registry."""
        now = now or utcnow()
        records = self.registry.snapshot()
        return KeyStats(
            total_keys=len(records),
            valid_keys=sum(1 for record in records if record.is_active(now)),
            total_usage=sum(record.usage_count for record in records),
        )

    def seed_test_keys(self, now: Optional[datetime] = None) -> Dict[str, str]:
        """Insert the TEST_KEYS set. Returns the mapping for display."""
        now = now or utcnow()
        year = timedelta(days=365)

        self.registry.insert(TEST_KEYS["active"], KeyRecord(
            valid=True, created_at=now, expires_at=now + year,
            usage_count=0, max_usage=self.default_max_usage,
        ))
        self.registry.insert(TEST_KEYS["disabled"], KeyRecord(
            valid=False, created_at=now, expires_at=now + year,
            usage_count=0, max_usage=self.default_max_usage,
        ))
        self.registry.insert(TEST_KEYS["expired"], KeyRecord(
            valid=True, created_at=now - 2 * year, expires_at=now - year,
            usage_count=0, max_usage=self.default_max_usage,
        ))
        self.registry.insert(TEST_KEYS["exhausted"], KeyRecord(
            valid=True, created_at=now, expires_at=now + year,
            usage_count=10, max_usage=10,
        ))

        logger.info("Seeded %d test keys", len(TEST_KEYS))
        return dict(TEST_KEYS)
