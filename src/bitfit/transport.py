"""HTTP transport that authorizes each request before delegating it."""

from __future__ import annotations

import ssl

import certifi
import httpx

from bitfit.auth import Authorizer


class AuthorizingTransport(httpx.AsyncBaseTransport):
    """Decorates requests via an Authorizer, then hands them to an inner transport.

    The response, or the inner transport's error, is returned unchanged.
    If authorization fails (e.g. a needed token refresh is rejected), the
    error is raised and the request is never sent.

    Args:
        authorizer: Attaches credentials to each outbound request.
        inner: Transport that performs the actual round trip. Defaults to
            an httpx.AsyncHTTPTransport verifying against certifi's bundle.
    """

    def __init__(
        self,
        authorizer: Authorizer,
        inner: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._authorizer = authorizer
        if inner is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            inner = httpx.AsyncHTTPTransport(verify=ssl_context)
        self._inner = inner

    @property
    def authorizer(self) -> Authorizer:
        return self._authorizer

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await self._authorizer.authorize(request)
        return await self._inner.handle_async_request(request)

    async def aclose(self) -> None:
        await self._inner.aclose()
