"""Refresh-token grant against the provider's token endpoint."""

from __future__ import annotations

import ssl

import certifi
import httpx
from loguru import logger

from bitfit.credentials import ClientCredentials
from bitfit.errors import DecodeError, NetworkError, ProviderError
from bitfit.tokens import TokenRecord, decode, format_json

DEFAULT_BASE_URL = "https://api.fitbit.com"
TOKEN_PATH = "/oauth2/token"
DEFAULT_TIMEOUT = 30.0


class TokenRefresher:
    """Exchanges a refresh token for a new token pair.

    Each call is a single POST; retry policy belongs to the caller. The
    refresher owns a plain HTTP client so refreshing never recurses into an
    authorizing transport.

    Args:
        base_url: Provider base URL; the token endpoint is base_url + /oauth2/token.
        timeout: Ceiling in seconds for the whole exchange.
        transport: Optional httpx transport, mainly for tests.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_url = base_url.rstrip("/") + TOKEN_PATH
        self._timeout = timeout
        self._transport = transport

    @property
    def token_url(self) -> str:
        return self._token_url

    async def refresh(self, credentials: ClientCredentials, refresh_token: str) -> TokenRecord:
        """Perform the grant and return the new record.

        Raises:
            NetworkError: If the token endpoint cannot be reached.
            ProviderError: If the provider rejects the grant.
            DecodeError: If the response is malformed or missing token fields.
        """
        record, _ = await self.refresh_with_payload(credentials, refresh_token)
        return record

    async def refresh_with_payload(
        self, credentials: ClientCredentials, refresh_token: str
    ) -> tuple[TokenRecord, str]:
        """Perform the grant and return the new record with the raw response.

        The payload is the endpoint's JSON re-indented for display. Raises
        the same errors as refresh().
        """
        response = await self._post(credentials, refresh_token)
        try:
            record = decode(response.content)
        except ProviderError as e:
            e.status_code = response.status_code
            raise
        except DecodeError:
            if response.is_success:
                raise
            raise ProviderError(
                f"Token endpoint returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            ) from None

        if not response.is_success:
            raise ProviderError(
                f"Token endpoint returned {response.status_code} without an error payload",
                status_code=response.status_code,
            )
        if not record.access or not record.refresh:
            raise DecodeError("Token endpoint response is missing access_token or refresh_token")

        logger.info(
            "Refreshed tokens",
            extra={"expires_in": record.expires_in_seconds()},
        )
        return record, format_json(response.content)

    async def _post(self, credentials: ClientCredentials, refresh_token: str) -> httpx.Response:
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        auth = httpx.BasicAuth(credentials.client_id, credentials.client_secret)
        try:
            async with self._client() as client:
                return await client.post(self._token_url, data=form, auth=auth)
        except httpx.RequestError as e:
            raise NetworkError(f"Network error reaching {self._token_url}: {e}") from e

    def _client(self) -> httpx.AsyncClient:
        if self._transport is not None:
            return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        return httpx.AsyncClient(verify=ssl_context, timeout=self._timeout)
