"""Credential value objects supplied at startup and never persisted."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth2 client id and secret registered with the provider."""

    client_id: str
    client_secret: str = field(repr=False)


@dataclass(frozen=True)
class ProxyCredentials:
    """Username and password proxy callers present via HTTP Basic Auth."""

    username: str
    password: str = field(repr=False)
