"""Credential-gated reverse proxy.

The proxy holds the OAuth2 client credentials and token pair. Callers
authenticate with HTTP Basic Auth (RFC 7617) against a fixed username and
password; authorized requests are forwarded to the upstream API through the
shared ApiClient, whose transport attaches a fresh bearer token. Callers
never see the OAuth2 tokens.

Every path and method is forwarded 1:1. Only the Host header is rewritten;
the caller's Authorization header is replaced by the bearer token.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from loguru import logger

from bitfit.client import ApiClient
from bitfit.config import Settings
from bitfit.credentials import ProxyCredentials
from bitfit.errors import AuthError, BitfitError, ConfigError, NetworkError, ProviderError

# Connection-scoped headers that must not be forwarded (RFC 9110 section 7.6.1)
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Inbound headers replaced or recomputed on the way upstream
_DROPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "authorization", "content-length"}
_DROPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length"}

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def check_basic_auth(authorization: str | None, expected: ProxyCredentials) -> None:
    """Validate a Basic Auth header against the configured credentials.

    Checks run in order and the first failure wins: header present and
    well-formed, username non-empty, password non-empty, both matching.

    Raises:
        AuthError: With a plaintext reason for the first failed check.
    """
    username, password = _parse_basic_auth(authorization)
    if username is None or password is None:
        raise AuthError("basic HTTP authentication is required (RFC 7617)")
    if not username:
        raise AuthError("username in basic authentication is required (RFC 7617)")
    if not password:
        raise AuthError("password in basic authentication is required (RFC 7617)")

    username_ok = secrets.compare_digest(username.encode(), expected.username.encode())
    password_ok = secrets.compare_digest(password.encode(), expected.password.encode())
    if not (username_ok and password_ok):
        raise AuthError("incorrect username or password")


def _parse_basic_auth(authorization: str | None) -> tuple[str | None, str | None]:
    if not authorization:
        return None, None
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic":
        return None, None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None, None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None, None
    return username, password


async def require_basic_auth(request: Request) -> None:
    """FastAPI dependency enforcing the proxy's Basic Auth credentials."""
    check_basic_auth(request.headers.get("authorization"), request.app.state.proxy_credentials)


async def auth_error_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Reject the caller with 401 and a plaintext reason."""
    logger.warning(
        "Rejected proxy request",
        extra={"path": request.url.path, "reason": str(exc), "client": _client_host(request)},
    )
    return PlainTextResponse(
        str(exc),
        status_code=401,
        headers={"WWW-Authenticate": 'Basic realm="bitfit"'},
    )


async def upstream_error_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Report a failure to reach or authorize against the upstream API."""
    if isinstance(exc, ProviderError):
        logger.critical(
            "OAuth2 grant rejected by provider; re-authorization is required",
            extra={"path": request.url.path, "error": str(exc), "error_type": exc.error_type},
        )
        message = f"upstream authorization failed: {exc}"
    elif isinstance(exc, NetworkError):
        logger.error("Upstream unreachable", extra={"path": request.url.path, "error": str(exc)})
        message = f"upstream unreachable: {exc}"
    else:
        logger.error("Proxy request failed", extra={"path": request.url.path, "error": str(exc)})
        message = f"proxy error: {exc}"
    return PlainTextResponse(message, status_code=502)


async def unhandled_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Global handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "error": str(exc)},
    )
    return PlainTextResponse("Internal server error", status_code=500)


async def forward(request: Request) -> Response:
    """Forward an authorized request upstream and relay the response verbatim."""
    client: ApiClient = request.app.state.api_client

    headers = [
        (name, value)
        for name, value in request.headers.raw
        if name.decode("latin-1").lower() not in _DROPPED_REQUEST_HEADERS
    ]
    headers.append((b"host", client.base_url.netloc))

    raw_path = request.scope.get("raw_path") or request.url.path.encode()
    raw_path = raw_path.split(b"?", 1)[0]
    url = client.base_url.copy_with(
        raw_path=_join_path(client.base_url.raw_path, raw_path, request.scope["query_string"]),
    )
    upstream_request = client.build_request(
        request.method, url, headers=headers, content=await request.body()
    )

    upstream = await client.send(upstream_request, stream=True)
    dropped = _DROPPED_RESPONSE_HEADERS
    try:
        # Transports may hand back a response whose body was already read and decoded
        if upstream.is_stream_consumed:
            body = upstream.content
            dropped = dropped | {"content-encoding"}
        else:
            body = b"".join([chunk async for chunk in upstream.aiter_raw()])
    except httpx.RequestError as e:
        raise NetworkError(f"Network error reading upstream response: {e}") from e
    finally:
        await upstream.aclose()

    logger.debug(
        "Forwarded request",
        extra={"method": request.method, "path": request.url.path, "status": upstream.status_code},
    )
    response = Response(content=body, status_code=upstream.status_code)
    for name, value in upstream.headers.multi_items():
        if name.lower() not in dropped:
            response.headers.append(name, value)
    return response


def _join_path(base_path: bytes, path: bytes, query: bytes) -> bytes:
    joined = base_path.rstrip(b"/") + path
    if query:
        joined += b"?" + query
    return joined


def _client_host(request: Request) -> str | None:
    return request.client.host if request.client else None


def create_app(settings: Settings, api_client: ApiClient | None = None) -> FastAPI:
    """Create the proxy application.

    Args:
        settings: Proxy credentials and upstream configuration.
        api_client: Client used to reach the upstream API. Built from
            settings when omitted.

    Raises:
        ConfigError: If the proxy or OAuth2 credentials are missing.
    """
    proxy_credentials = settings.proxy_credentials()
    if api_client is None:
        api_client = ApiClient.direct(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        client: ApiClient = app.state.api_client
        logger.info("Starting proxy", extra={"upstream": str(client.base_url)})
        # Token load failures abort startup
        await client.initialize()
        yield
        await client.aclose()
        logger.info("Shutting down proxy")

    app = FastAPI(
        title="bitfit proxy",
        description="Credential-gated reverse proxy for the Fitbit Web API",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.api_client = api_client
    app.state.proxy_credentials = proxy_credentials

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(BitfitError, upstream_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_api_route(
        "/{path:path}",
        forward,
        methods=PROXY_METHODS,
        dependencies=[Depends(require_basic_auth)],
    )
    return app


def serve(settings: Settings) -> None:
    """Run the proxy under uvicorn, over TLS when a cert and key are configured.

    Raises:
        ConfigError: If TLS material is incomplete or missing.
    """
    ssl_options: dict[str, str] = {}
    if settings.uses_tls:
        ssl_options = _tls_options(settings.cert_file, settings.key_file)

    app = create_app(settings)
    logger.info(
        "Listening",
        extra={"host": settings.host, "port": settings.port, "tls": bool(ssl_options)},
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        lifespan="on",
        log_config=None,
        **ssl_options,
    )


def _tls_options(cert_file: Path | None, key_file: Path | None) -> dict[str, str]:
    problems = []
    if cert_file is None or key_file is None:
        problems.append("TLS requires both cert_file and key_file")
    for label, path in (("cert_file", cert_file), ("key_file", key_file)):
        if path is not None and not path.is_file():
            problems.append(f"{label} '{path}' does not exist")
    if problems:
        raise ConfigError(problems)
    return {"ssl_certfile": str(cert_file), "ssl_keyfile": str(key_file)}
