"""
License key validation.

Checks, in order, short-circuiting on the first failure:
  1. key exists
  2. key is enabled
  3. key has not expired (now >= expires_at is expired)
  4. usage_count < max_usage
On success usage_count is incremented by one.

The whole sequence runs under the registry's exclusive lock so two
concurrent requests can never both pass the quota check before either
increments.

Every rejection collapses to Decision.REJECT at the wire boundary. The
RejectReason is for logs only and must never be returned to callers.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from registry import KeyRegistry

logger = logging.getLogger(__name__)


class Decision(int, Enum):
    ACCEPT = 1
    REJECT = -1


class RejectReason(str, Enum):
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
    EXPIRED = "expired"
    USAGE_EXHAUSTED = "usage_exhausted"


@dataclass(frozen=True)
class ValidationResult:
    decision: Decision
    reason: Optional[RejectReason] = None
    usage_count: Optional[int] = None

    @property
    def accepted(self) -> bool:
        return self.decision is Decision.ACCEPT


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def key_prefix(key: str, length: int = 8) -> str:
    """Shortened key for log lines. Full keys are never logged."""
    return f"{key[:length]}…" if len(key) > length else key


class ValidationEngine:
    def __init__(self, registry: KeyRegistry, clock: Optional[Callable[[], datetime]] = None):
        self.registry = registry
        self.clock = clock or utcnow

    def validate(self, key: str, now: Optional[datetime] = None) -> ValidationResult:
        now = now or self.clock()

        with self.registry.exclusive() as records:
            reason, usage_count, max_usage = self._check_and_increment(records, key, now)

        if reason is not None:
            logger.info("Key %s rejected: %s", key_prefix(key or ""), reason.value)
            return ValidationResult(Decision.REJECT, reason=reason)

        logger.info("Key %s accepted (usage %d/%d)", key_prefix(key), usage_count, max_usage)
        return ValidationResult(Decision.ACCEPT, usage_count=usage_count)

    @staticmethod
    def _check_and_increment(records, key, now):
        """Must be called with the registry's exclusive lock held."""
        record = records.get(key) if key and key.strip() else None

        if record is None:
            return RejectReason.NOT_FOUND, None, None

        if not record.valid:
            return RejectReason.DISABLED, None, None

        if record.is_expired(now):
            return RejectReason.EXPIRED, None, None

        if record.is_exhausted():
            return RejectReason.USAGE_EXHAUSTED, None, None

        record.usage_count += 1
        return None, record.usage_count, record.max_usage
