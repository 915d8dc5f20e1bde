"""
TLS certificate helpers.

Server side: generate a self-signed certificate for the service hostname.
Client side: application-level identity check on the peer certificate.

The client deliberately connects with chain verification disabled and then
requires the certificate to name the expected host, either as a DNS
subjectAltName or as the subject common name. Both halves are needed.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from errors import AuthorizationError

logger = logging.getLogger(__name__)


def generate_self_signed_cert(hostname: str, days: int = 365) -> Tuple[bytes, bytes]:
    """Return (cert_pem, key_pem) for a self-signed certificate naming hostname."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
    now = datetime.now(timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(hostname)]), critical=False)
        .sign(private_key, hashes.SHA256())
    )

    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def ensure_certificate(cert_file: Path, key_file: Path, hostname: str) -> bool:
    """Write a self-signed pair when either file is missing. Returns True if generated."""
    cert_file, key_file = Path(cert_file), Path(key_file)
    if cert_file.exists() and key_file.exists():
        return False

    cert_pem, key_pem = generate_self_signed_cert(hostname)
    cert_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.parent.mkdir(parents=True, exist_ok=True)
    cert_file.write_bytes(cert_pem)
    key_file.write_bytes(key_pem)
    key_file.chmod(0o600)

    logger.info("Generated self-signed certificate for %s at %s", hostname, cert_file)
    return True


def certificate_names(der_bytes: bytes) -> Tuple[List[str], List[str]]:
    """(DNS subjectAltNames, subject common names) of a DER certificate."""
    cert = x509.load_der_x509_certificate(der_bytes)

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        dns_names = san.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        dns_names = []

    common_names = [
        attr.value for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    ]
    return list(dns_names), [str(name) for name in common_names]


def verify_certificate_identity(der_bytes: Optional[bytes], expected_hostname: str) -> None:
    """
    Raise AuthorizationError unless the certificate names expected_hostname.

    Exact string comparison; wildcards are not honoured.
    """
    if not der_bytes:
        raise AuthorizationError("Connection is not HTTPS")

    try:
        dns_names, common_names = certificate_names(der_bytes)
    except ValueError as e:
        raise AuthorizationError(f"Unreadable server certificate: {e}") from e

    if expected_hostname in dns_names or expected_hostname in common_names:
        return

    logger.warning("Certificate identity mismatch: expected %s, got SAN=%s CN=%s",
                   expected_hostname, dns_names, common_names)
    raise AuthorizationError(
        f"Server certificate identity check failed; make sure you are "
        f"connecting to the genuine {expected_hostname} server"
    )
