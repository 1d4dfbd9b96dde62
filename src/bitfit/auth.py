"""Request authorizers.

An Authorizer decorates outbound requests with credentials. Two variants
exist and one is chosen when the client is built:

- DirectOAuth2Authorizer holds the OAuth2 token pair, refreshes it ahead of
  expiry and attaches it as a bearer token.
- ProxyBasicAuthAuthorizer attaches fixed Basic Auth credentials for callers
  that go through a credential-gated proxy which owns the token pair.
"""

from __future__ import annotations

import asyncio
import base64
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Protocol

import httpx
from loguru import logger

from bitfit.credentials import ClientCredentials, ProxyCredentials
from bitfit.errors import NotInitializedError, TokenStoreError
from bitfit.tokens import TokenRecord

# Refresh this long before expiry so a token never lapses mid-request
DEFAULT_LOOKAHEAD = timedelta(minutes=10)


class StoreProtocol(Protocol):
    """Persistence operations needed by DirectOAuth2Authorizer."""

    def exists(self) -> bool: ...

    def load(self) -> TokenRecord: ...

    def save(self, record: TokenRecord) -> None: ...


class RefresherProtocol(Protocol):
    """Token grant operation needed by DirectOAuth2Authorizer."""

    async def refresh(self, credentials: ClientCredentials, refresh_token: str) -> TokenRecord: ...


class Authorizer(ABC):
    """Capability for attaching credentials to outbound requests."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the authorizer for use. Must be awaited before authorize()."""
        ...

    @abstractmethod
    async def authorize(self, request: httpx.Request) -> None:
        """Attach credentials to the request in place."""
        ...


class DirectOAuth2Authorizer(Authorizer):
    """Holds one token pair and keeps it fresh.

    Before each request the held record is checked against the lookahead
    window. A record that is near expiry is refreshed, replaced and persisted
    before the request proceeds. The refresh runs under a per-instance lock
    so concurrent requests trigger a single grant. A failed refresh leaves
    the held record untouched and the next request tries again.

    Args:
        credentials: OAuth2 client id and secret.
        store: Where the token pair is persisted.
        refresher: Performs the refresh-token grant.
        lookahead: How long before expiry a refresh is triggered.
        seed_refresh_token: Refresh token to bootstrap from when the store
            holds no record yet.
    """

    def __init__(
        self,
        credentials: ClientCredentials,
        store: StoreProtocol,
        refresher: RefresherProtocol,
        lookahead: timedelta = DEFAULT_LOOKAHEAD,
        seed_refresh_token: str | None = None,
    ) -> None:
        self._credentials = credentials
        self._store = store
        self._refresher = refresher
        self._lookahead = lookahead
        self._seed_refresh_token = seed_refresh_token
        self._record: TokenRecord | None = None
        self._lock = asyncio.Lock()
        self._pending: asyncio.Task[TokenRecord] | None = None

    @property
    def record(self) -> TokenRecord | None:
        """The currently held token pair, or None before initialize()."""
        return self._record

    @property
    def initialized(self) -> bool:
        return self._record is not None

    async def initialize(self) -> None:
        """Load the token pair, refreshing it once if it already expired.

        File access runs in a worker thread so the event loop keeps serving
        other requests.

        Raises:
            TokenStoreError: If the persisted record cannot be read, or the
                refreshed one cannot be written. In the latter case the new
                pair is still held in memory.
            DecodeError: If the persisted record is malformed.
            ProviderError, NetworkError: If the forced refresh fails.
        """
        if self._record is not None:
            return

        if self._seed_refresh_token and not await asyncio.to_thread(self._store.exists):
            logger.info("No persisted tokens, bootstrapping from refresh token")
            record = TokenRecord(access="", refresh=self._seed_refresh_token)
        else:
            record = await asyncio.to_thread(self._store.load)

        if record.is_expired() or not record.is_initialized:
            logger.info("Loaded tokens are expired, refreshing before first use")
            record = await self._refresh_and_replace(record)
        else:
            self._record = record

        logger.info(
            "Authorizer ready",
            extra={"expires_in": record.expires_in_seconds()},
        )

    async def authorize(self, request: httpx.Request) -> None:
        record = await self.ensure_fresh()
        request.headers["Authorization"] = f"Bearer {record.access}"

    async def ensure_fresh(self) -> TokenRecord:
        """Return a record that is valid beyond the lookahead window.

        Raises:
            NotInitializedError: If initialize() has not completed.
            ProviderError, NetworkError, DecodeError, TokenStoreError: If a
                needed refresh or its persistence fails.
        """
        record = self._require_record()
        if not record.expires_within(self._lookahead):
            return record

        async with self._lock:
            record = self._require_record()
            if not record.expires_within(self._lookahead):
                return record

            if self._pending is None or self._pending.done():
                self._pending = asyncio.create_task(self._refresh_and_replace(record))
                self._pending.add_done_callback(_retrieve_exception)
            # Shielded so a cancelled caller does not abort a half-done refresh
            return await asyncio.shield(self._pending)

    async def _refresh_and_replace(self, record: TokenRecord) -> TokenRecord:
        """Refresh, adopt the new pair, then persist it.

        The provider invalidates the old refresh token once it issues a new
        pair, so the new pair is adopted even when persisting it fails.
        """
        logger.info("Refreshing tokens", extra={"expires_in": record.expires_in_seconds()})
        try:
            refreshed = await self._refresher.refresh(self._credentials, record.refresh)
        except Exception as e:
            logger.error("Token refresh failed", extra={"error": str(e)})
            raise
        self._record = refreshed

        try:
            await asyncio.to_thread(self._store.save, refreshed)
        except TokenStoreError as e:
            logger.critical(
                "Refreshed tokens could not be saved and are held in memory only",
                extra={"path": str(e.path), "error": str(e)},
            )
            raise
        return refreshed

    def _require_record(self) -> TokenRecord:
        if self._record is None:
            raise NotInitializedError("Authorizer used before initialize() completed")
        return self._record


class ProxyBasicAuthAuthorizer(Authorizer):
    """Attaches Basic Auth credentials expected by a credential-gated proxy."""

    def __init__(self, credentials: ProxyCredentials) -> None:
        userpass = f"{credentials.username}:{credentials.password}".encode()
        self._header = "Basic " + base64.b64encode(userpass).decode("ascii")

    async def initialize(self) -> None:
        """Nothing to prepare; the proxy owns the token pair."""

    async def authorize(self, request: httpx.Request) -> None:
        request.headers["Authorization"] = self._header


def _retrieve_exception(task: asyncio.Task[TokenRecord]) -> None:
    # Retrieving the exception keeps asyncio from warning when every
    # awaiting caller was cancelled
    if not task.cancelled():
        task.exception()
