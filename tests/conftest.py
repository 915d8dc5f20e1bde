from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from config import Settings
from registry import KeyRecord, KeyRegistry
from tls import generate_self_signed_cert

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_record(valid=True, expires_in=timedelta(days=30), usage_count=0, max_usage=5, now=NOW):
    return KeyRecord(
        valid=valid,
        created_at=now - timedelta(days=1),
        expires_at=now + expires_in,
        usage_count=usage_count,
        max_usage=max_usage,
    )


@pytest.fixture
def registry():
    return KeyRegistry()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        KEY_FILE=tmp_path / ".xzip" / "key",
        HISTORY_DATABASE_URL=f"sqlite:///{tmp_path / 'history.db'}",
        LICENSE_API_URL="https://xzip.com/authorize",
        LICENSE_SERVER_HOSTNAME="xzip.com",
        ADMIN_TOKEN="",
        SEED_TEST_KEYS=False,
        DEFAULT_MAX_USAGE=3,
        DEFAULT_VALID_DAYS=10,
    )


def _der(hostname):
    cert_pem, _ = generate_self_signed_cert(hostname)
    return x509.load_pem_x509_certificate(cert_pem).public_bytes(serialization.Encoding.DER)


@pytest.fixture(scope="session")
def xzip_cert_der():
    return _der("xzip.com")


@pytest.fixture(scope="session")
def other_cert_der():
    return _der("evil.example.com")
