"""Fitbit Web API client.

The client owns an httpx.AsyncClient whose transport is an
AuthorizingTransport, so every request it sends carries fresh credentials
without the caller handling tokens. Build it with one of the factories:

    async with ApiClient.direct(settings) as client:
        print(await client.fetch_profile())

    async with ApiClient.via_proxy("https://proxy.example.com", "user", "pw") as client:
        print(await client.fetch_sleep_log(date(2024, 5, 1)))
"""

from __future__ import annotations

from datetime import date
from types import TracebackType
from typing import TYPE_CHECKING

import httpx

from bitfit.auth import Authorizer, DirectOAuth2Authorizer, ProxyBasicAuthAuthorizer
from bitfit.credentials import ProxyCredentials
from bitfit.errors import NetworkError
from bitfit.refresher import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, TokenRefresher
from bitfit.store import TokenStore
from bitfit.tokens import format_json
from bitfit.transport import AuthorizingTransport

if TYPE_CHECKING:
    from bitfit.config import Settings

PROFILE_PATH = "/1/user/-/profile.json"
SLEEP_LOG_PATH = "/1.2/user/-/sleep/date/{day}.json"


class ApiClient:
    """Fetches API resources through an authorizing transport.

    Args:
        authorizer: Attaches credentials to each request.
        base_url: API (or proxy) base URL that resource paths are joined to.
        timeout: Ceiling in seconds for each request.
        transport: Optional inner transport, mainly for tests.
    """

    def __init__(
        self,
        authorizer: Authorizer,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._authorizer = authorizer
        self._http = httpx.AsyncClient(
            base_url=base_url,
            transport=AuthorizingTransport(authorizer, transport),
            timeout=timeout,
        )

    @classmethod
    def direct(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        token_transport: httpx.AsyncBaseTransport | None = None,
    ) -> ApiClient:
        """Build a client that talks to the API with the OAuth2 token pair.

        Raises:
            ConfigError: If the client id or secret is missing.
        """
        authorizer = DirectOAuth2Authorizer(
            settings.client_credentials(),
            TokenStore(settings.tokens_file),
            TokenRefresher(settings.base_url, settings.timeout, token_transport),
            lookahead=settings.lookahead,
            seed_refresh_token=settings.refresh_token or None,
        )
        return cls(authorizer, settings.base_url, settings.timeout, transport)

    @classmethod
    def via_proxy(
        cls,
        proxy_url: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ApiClient:
        """Build a client that goes through a credential-gated proxy."""
        authorizer = ProxyBasicAuthAuthorizer(ProxyCredentials(username, password))
        return cls(authorizer, proxy_url, timeout, transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> ApiClient:
        """Use the proxy when proxy_url is configured, the API directly otherwise."""
        if settings.proxy_url:
            settings.require("username", "password")
            return cls.via_proxy(
                settings.proxy_url, settings.username, settings.password, settings.timeout
            )
        return cls.direct(settings)

    @property
    def authorizer(self) -> Authorizer:
        return self._authorizer

    @property
    def base_url(self) -> httpx.URL:
        return self._http.base_url

    async def initialize(self) -> None:
        """Prepare the authorizer; loads and, if needed, refreshes tokens."""
        await self._authorizer.initialize()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ApiClient:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def fetch_profile(self) -> str:
        """Fetch the user's profile as formatted JSON."""
        return await self.fetch(PROFILE_PATH)

    async def fetch_sleep_log(self, day: date) -> str:
        """Fetch the sleep log for one day as formatted JSON."""
        return await self.fetch(SLEEP_LOG_PATH.format(day=day.isoformat()))

    async def fetch(self, path: str) -> str:
        """GET a resource and return its body for display.

        Successful JSON bodies are re-indented. Bodies of non-success
        responses are returned unmodified so provider error text reaches
        the caller as sent.

        Raises:
            NetworkError: If the request cannot be sent.
            DecodeError: If a successful response body is not JSON.
        """
        try:
            response = await self._http.get(path)
        except httpx.RequestError as e:
            raise NetworkError(f"Network error fetching {path}: {e}") from e
        if not response.is_success:
            return response.text
        return format_json(response.content)

    def build_request(
        self,
        method: str,
        url: httpx.URL | str,
        *,
        headers: list[tuple[bytes, bytes]] | None = None,
        content: bytes | None = None,
    ) -> httpx.Request:
        return self._http.build_request(method, url, headers=headers, content=content)

    async def send(self, request: httpx.Request, *, stream: bool = False) -> httpx.Response:
        """Send a prepared request through the authorizing transport.

        Raises:
            NetworkError: If the request cannot be sent.
        """
        try:
            return await self._http.send(request, stream=stream)
        except httpx.RequestError as e:
            raise NetworkError(f"Network error sending {request.method} {request.url}: {e}") from e
