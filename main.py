import html
import logging
import secrets
import time
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Depends, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, Response
from pydantic import ValidationError

from config import Settings, settings as default_settings
from issuance import KeyIssuer
from registry import KeyRegistry
from validation import Decision, ValidationEngine, utcnow
from models import (
    AuthorizeRequest,
    AuthorizeResponse,
    HealthResponse,
    AddKeyRequest,
    AddKeyResponse,
    StatsResponse,
)

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_ADMIN_DENIED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or missing admin token.",
)


# Dependencies
def get_engine(request: Request) -> ValidationEngine:
    return request.app.state.engine


def get_issuer(request: Request) -> KeyIssuer:
    return request.app.state.issuer


def require_admin(
    request: Request,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> None:
    """Same 401 for a missing and a wrong token. No-op when no token is configured."""
    expected = request.app.state.settings.ADMIN_TOKEN
    if not expected:
        return
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise _ADMIN_DENIED


def _format_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def create_app(registry: KeyRegistry, settings: Settings = default_settings) -> FastAPI:
    """
    Build the authorization service around an existing registry.

    The registry is the only shared mutable state; handlers reach it
    through app.state and take no locks of their own.
    """
    app = FastAPI(
        title="XZip License Server",
        description="License key authorization for the XZip archiver",
        version=settings.APP_VERSION,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.engine = ValidationEngine(registry)
    app.state.issuer = KeyIssuer(
        registry,
        default_max_usage=settings.DEFAULT_MAX_USAGE,
        default_valid_days=settings.DEFAULT_VALID_DAYS,
        key_bytes=settings.KEY_BYTES,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/authorize", response_model=AuthorizeResponse)
    async def authorize(request: Request, engine: ValidationEngine = Depends(get_engine)):
        """
        Validate a license key.

        Returns {"status": 1} on acceptance and {"status": -1} for every
        rejection, including an unparseable body. The reason never leaves
        the server.
        """
        body = await request.body()
        try:
            payload = AuthorizeRequest.model_validate_json(body)
        except ValidationError:
            logger.info("Malformed authorization request rejected")
            return AuthorizeResponse(status=Decision.REJECT.value)

        result = engine.validate(payload.key)
        return AuthorizeResponse(status=result.decision.value)

    @app.options("/authorize")
    async def authorize_preflight():
        return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Liveness probe."""
        return HealthResponse(status="ok", timestamp=int(time.time()), service=settings.SERVICE_NAME)

    @app.post("/admin/addkey", response_model=AddKeyResponse, dependencies=[Depends(require_admin)])
    async def add_key(
        payload: Optional[AddKeyRequest] = None,
        issuer: KeyIssuer = Depends(get_issuer),
    ):
        """
        Issue a new key.

        Body is optional; omitted fields fall back to the configured
        defaults.
        """
        payload = payload or AddKeyRequest()
        try:
            issued = issuer.issue(max_usage=payload.max_usage, valid_days=payload.valid_days)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

        return AddKeyResponse(
            key=issued.key,
            message=f"Key issued with {issued.max_usage} uses",
            expires=_format_time(issued.expires_at),
        )

    @app.get("/admin/stats", response_model=StatsResponse, dependencies=[Depends(require_admin)])
    async def get_stats(issuer: KeyIssuer = Depends(get_issuer)):
        now = utcnow()
        stats = issuer.stats(now)
        return StatsResponse(
            total_keys=stats.total_keys,
            valid_keys=stats.valid_keys,
            total_usage=stats.total_usage,
            server_time=_format_time(now),
        )

    @app.get("/", response_class=HTMLResponse, include_in_schema=False)
    async def index(issuer: KeyIssuer = Depends(get_issuer)):
        now = utcnow()
        stats = issuer.stats(now)
        name = html.escape(settings.SERVICE_NAME)
        return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{name}</title></head>
<body>
  <h1>{name}</h1>
  <p>Version {html.escape(settings.APP_VERSION)} &middot; server time {_format_time(now)} UTC</p>
  <table>
    <tr><th>Total keys</th><td>{stats.total_keys}</td></tr>
    <tr><th>Active keys</th><td>{stats.valid_keys}</td></tr>
    <tr><th>Total usage</th><td>{stats.total_usage}</td></tr>
  </table>
  <p>POST <code>/authorize</code> with <code>{{"key": "..."}}</code>.</p>
</body>
</html>"""

    return app


def run():
    """Entry point for the xzip-server command."""
    import uvicorn

    from tls import ensure_certificate

    logging.basicConfig(
        level=default_settings.LOG_LEVEL.upper(),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    registry = KeyRegistry()
    app = create_app(registry, default_settings)
    if default_settings.SEED_TEST_KEYS:
        for label, key in app.state.issuer.seed_test_keys().items():
            logger.info("Test key (%s): %s", label, key)

    ssl_options = {}
    if default_settings.TLS_ENABLED:
        if default_settings.TLS_AUTO_GENERATE:
            ensure_certificate(
                default_settings.TLS_CERT_FILE,
                default_settings.TLS_KEY_FILE,
                default_settings.SERVER_HOSTNAME,
            )
        ssl_options = {
            "ssl_certfile": default_settings.TLS_CERT_FILE,
            "ssl_keyfile": default_settings.TLS_KEY_FILE,
        }

    uvicorn.run(app, host=default_settings.SERVER_HOST, port=default_settings.SERVER_PORT, **ssl_options)


if __name__ == "__main__":
    run()
