import json
import logging
from pathlib import Path
from typing import Optional

import httpx

from config import Settings
from database import HistoryStore
from errors import AuthorizationError, KeyFileError
from tls import verify_certificate_identity
from validation import key_prefix

logger = logging.getLogger(__name__)

STATUS_ACCEPTED = 1
STATUS_REJECTED = -1


def init_key_file(path: Path) -> None:
    """
    Make sure the key file exists.

    A missing file is created empty (directory mode 0700) and reported as a
    configuration error so the user knows where to put their key.
    """
    path = Path(path)
    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    except OSError as e:
        raise KeyFileError(f"Failed to create directory {path.parent}: {e}") from e

    if path.exists():
        return

    try:
        path.touch(mode=0o600)
    except OSError as e:
        raise KeyFileError(f"Failed to create key file {path}: {e}") from e

    raise KeyFileError(
        f"Created key file {path}. Write your license key into this file and run again."
    )


def read_license_key(path: Path) -> str:
    """Read the license key, ignoring surrounding whitespace."""
    path = Path(path)
    try:
        key = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise KeyFileError(f"Cannot read key file {path}: {e}") from e

    if not key:
        raise KeyFileError(f"Key file {path} is empty. Write your license key into it first.")
    return key


def _peer_certificate(response: httpx.Response) -> Optional[bytes]:
    """DER bytes of the server certificate behind a streaming response, if any."""
    stream = response.extensions.get("network_stream")
    if stream is None:
        return None
    ssl_object = stream.get_extra_info("ssl_object")
    if ssl_object is None:
        return None
    return ssl_object.getpeercert(binary_form=True)


class LicenseClient:
    """
    Gate in front of every archive operation.

    Sends the locally stored key to the authorization server and raises
    unless the server both proves its identity and accepts the key.
    Single attempt, no retries.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        history: Optional[HistoryStore] = None,
    ):
        self.settings = settings
        self.api_url = settings.LICENSE_API_URL
        self.expected_hostname = settings.LICENSE_SERVER_HOSTNAME
        self.transport = transport
        self.history = history

    async def authorize(self, license_key: str) -> None:
        """
        Authorize license_key with the server.

        The transport accepts any certificate; the identity check below is
        what binds the connection to the expected host.
        """
        try:
            async with httpx.AsyncClient(
                verify=False,
                timeout=self.settings.LICENSE_API_TIMEOUT,
                transport=self.transport,
            ) as client:
                async with client.stream(
                    "POST",
                    self.api_url,
                    json={"key": license_key},
                    headers={"Content-Type": "application/json"},
                ) as response:
                    # The key is already on the wire at this point; a failed identity
                    # check only stops us from trusting the answer.
                    verify_certificate_identity(_peer_certificate(response), self.expected_hostname)
                    body = await response.aread()

        except httpx.HTTPError as e:
            raise AuthorizationError(f"Network request failed: {e}") from e

        status = self._parse_status(body)

        if status == STATUS_REJECTED:
            raise AuthorizationError(
                f"Authorization failed: purchase a genuine key at https://{self.expected_hostname} "
                f"to use this software"
            )
        if status != STATUS_ACCEPTED:
            raise AuthorizationError(f"Unexpected authorization status: {status}")

    @staticmethod
    def _parse_status(body: bytes) -> int:
        try:
            data = json.loads(body)
        except ValueError as e:
            raise AuthorizationError(f"Failed to parse server response: {e}") from e

        status = data.get("status") if isinstance(data, dict) else None
        if not isinstance(status, int) or isinstance(status, bool):
            raise AuthorizationError("Failed to parse server response: missing status")
        return status

    async def check(self) -> None:
        """Read the local key and authorize it. Every attempt is logged locally."""
        license_key = read_license_key(self.settings.KEY_FILE)

        try:
            await self.authorize(license_key)
        except AuthorizationError as e:
            result = "offline" if isinstance(e.__cause__, httpx.HTTPError) else "failed"
            self._log_attempt(license_key, result, str(e))
            raise

        self._log_attempt(license_key, "success", None)
        logger.info("License key %s authorized", key_prefix(license_key))

    def _log_attempt(self, license_key: str, result: str, error_message: Optional[str]):
        if self.history is None:
            return
        self.history.record(key_prefix(license_key), result, error_message, self.api_url)
