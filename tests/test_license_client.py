import asyncio
import json

import httpx
import pytest

from database import HistoryStore
from errors import AuthorizationError, KeyFileError
from license_client import LicenseClient, init_key_file, read_license_key


class FakeSSLObject:
    def __init__(self, der):
        self.der = der

    def getpeercert(self, binary_form=False):
        return self.der


class FakeNetworkStream:
    def __init__(self, der):
        self.ssl_object = FakeSSLObject(der) if der is not None else None

    def get_extra_info(self, info):
        return self.ssl_object if info == "ssl_object" else None


def make_transport(body, der, requests=None, status_code=200):
    def handler(request):
        if requests is not None:
            requests.append(request)
        extensions = {"network_stream": FakeNetworkStream(der)} if der is not None else {}
        content = body if isinstance(body, bytes) else json.dumps(body).encode()
        return httpx.Response(status_code, content=content, extensions=extensions)

    return httpx.MockTransport(handler)


def authorize(settings, transport, key="a1b2c3"):
    client = LicenseClient(settings, transport=transport)
    asyncio.run(client.authorize(key))


def test_read_license_key_strips_whitespace(tmp_path):
    path = tmp_path / "key"
    path.write_text("  abc123\n\n")
    assert read_license_key(path) == "abc123"


def test_read_license_key_missing_file(tmp_path):
    with pytest.raises(KeyFileError, match="Cannot read key file"):
        read_license_key(tmp_path / "missing")


def test_read_license_key_empty_file(tmp_path):
    path = tmp_path / "key"
    path.write_text("  \n")
    with pytest.raises(KeyFileError, match="empty"):
        read_license_key(path)


def test_init_key_file_creates_empty_file(tmp_path):
    path = tmp_path / ".xzip" / "key"
    with pytest.raises(KeyFileError, match="Created key file"):
        init_key_file(path)
    assert path.exists()
    assert path.read_text() == ""


def test_init_key_file_leaves_existing_file(tmp_path):
    path = tmp_path / ".xzip" / "key"
    path.parent.mkdir()
    path.write_text("abc")
    init_key_file(path)
    assert path.read_text() == "abc"


def test_authorize_accepted(settings, xzip_cert_der):
    requests = []
    authorize(settings, make_transport({"status": 1}, xzip_cert_der, requests), key="deadbeef")

    assert len(requests) == 1
    assert str(requests[0].url) == "https://xzip.com/authorize"
    assert requests[0].method == "POST"
    assert json.loads(requests[0].content) == {"key": "deadbeef"}


def test_authorize_rejected(settings, xzip_cert_der):
    with pytest.raises(AuthorizationError, match="purchase a genuine key"):
        authorize(settings, make_transport({"status": -1}, xzip_cert_der))


def test_authorize_unexpected_status(settings, xzip_cert_der):
    with pytest.raises(AuthorizationError, match="Unexpected authorization status: 7"):
        authorize(settings, make_transport({"status": 7}, xzip_cert_der))


@pytest.mark.parametrize("body", [b"<html>oops</html>", b"{}", b'{"status": "1"}', b"[1]"])
def test_authorize_malformed_response(settings, xzip_cert_der, body):
    with pytest.raises(AuthorizationError, match="parse server response"):
        authorize(settings, make_transport(body, xzip_cert_der))


def test_authorize_wrong_certificate_identity(settings, other_cert_der):
    with pytest.raises(AuthorizationError, match="identity check failed"):
        authorize(settings, make_transport({"status": 1}, other_cert_der))


def test_authorize_without_tls(settings):
    with pytest.raises(AuthorizationError, match="not HTTPS"):
        authorize(settings, make_transport({"status": 1}, None))


def test_authorize_network_error(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AuthorizationError, match="Network request failed"):
        authorize(settings, httpx.MockTransport(handler))


def test_authorize_makes_single_attempt(settings):
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AuthorizationError):
        authorize(settings, httpx.MockTransport(handler))
    assert len(calls) == 1


def test_check_records_history(settings, xzip_cert_der):
    settings.KEY_FILE.parent.mkdir(parents=True)
    settings.KEY_FILE.write_text("0123456789abcdef\n")
    history = HistoryStore(settings.HISTORY_DATABASE_URL)

    ok = LicenseClient(settings, transport=make_transport({"status": 1}, xzip_cert_der), history=history)
    asyncio.run(ok.check())

    rejected = LicenseClient(settings, transport=make_transport({"status": -1}, xzip_cert_der), history=history)
    with pytest.raises(AuthorizationError):
        asyncio.run(rejected.check())

    def offline_handler(request):
        raise httpx.ConnectError("down", request=request)

    offline = LicenseClient(settings, transport=httpx.MockTransport(offline_handler), history=history)
    with pytest.raises(AuthorizationError):
        asyncio.run(offline.check())

    results = [attempt.result for attempt in history.recent(10)]
    assert sorted(results) == ["failed", "offline", "success"]
    assert all(attempt.key_prefix.startswith("01234567") for attempt in history.recent(10))
    assert all("0123456789abcdef" not in (attempt.key_prefix or "") for attempt in history.recent(10))


def test_check_without_key_file(settings):
    client = LicenseClient(settings, transport=make_transport({"status": 1}, None))
    with pytest.raises(KeyFileError):
        asyncio.run(client.check())
