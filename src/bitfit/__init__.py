"""bitfit - Fitbit Web API access with transparent OAuth2 token refresh.

Holds an access/refresh token pair, refreshes it ahead of expiry, persists
each new pair, and injects the current access token into outbound requests.
A credential-gated reverse proxy lets several callers share one OAuth2
identity without seeing its tokens.

Example:
    from bitfit import ApiClient, load_settings

    settings = load_settings(client_id="...", client_secret="...")
    async with ApiClient.direct(settings) as client:
        print(await client.fetch_profile())
"""

from bitfit.auth import Authorizer, DirectOAuth2Authorizer, ProxyBasicAuthAuthorizer
from bitfit.client import ApiClient
from bitfit.config import Settings, load_settings
from bitfit.credentials import ClientCredentials, ProxyCredentials
from bitfit.errors import (
    AuthError,
    BitfitError,
    ConfigError,
    DecodeError,
    NetworkError,
    NotInitializedError,
    ProviderError,
    TokenStoreError,
)
from bitfit.refresher import TokenRefresher
from bitfit.store import TokenStore
from bitfit.tokens import TokenRecord, decode, encode
from bitfit.transport import AuthorizingTransport

__version__ = "0.1.0"

__all__ = [
    "ApiClient",
    "AuthError",
    "Authorizer",
    "AuthorizingTransport",
    "BitfitError",
    "ClientCredentials",
    "ConfigError",
    "DecodeError",
    "DirectOAuth2Authorizer",
    "NetworkError",
    "NotInitializedError",
    "ProviderError",
    "ProxyBasicAuthAuthorizer",
    "ProxyCredentials",
    "Settings",
    "TokenRecord",
    "TokenRefresher",
    "TokenStore",
    "TokenStoreError",
    "decode",
    "encode",
    "load_settings",
]
