"""Exception hierarchy for bitfit.

Every error raised by the library derives from BitfitError so callers can
catch the whole family at once. The classes map onto the failure domains of
the token lifecycle:

- TokenStoreError: the persisted token file could not be read or written
- DecodeError: a JSON payload was malformed or missing expected fields
- ProviderError: the OAuth2 provider explicitly rejected the grant
- NetworkError: the provider or upstream API could not be reached
- AuthError: a proxy caller presented missing or wrong Basic Auth credentials
- ConfigError: a required startup parameter is missing or invalid
"""

from __future__ import annotations

from pathlib import Path


class BitfitError(Exception):
    """Base exception for bitfit errors."""


class TokenStoreError(BitfitError):
    """Raised when the persisted token file cannot be read or written."""

    def __init__(self, message: str, path: str | Path) -> None:
        super().__init__(message)
        self.path = Path(path)


class DecodeError(BitfitError, ValueError):
    """Raised when a JSON payload is malformed or missing required fields."""


class ProviderError(BitfitError):
    """Raised when the OAuth2 provider rejects a token grant.

    A rejected refresh token cannot heal on its own, so long-running callers
    should treat this as terminal and ask a human to re-authorize.
    """

    def __init__(
        self,
        message: str,
        error_type: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code


class NetworkError(BitfitError):
    """Raised when the provider or upstream API cannot be reached."""


class AuthError(BitfitError):
    """Raised when a proxy caller fails Basic Auth validation."""


class ConfigError(BitfitError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = problems
        super().__init__("Configuration errors:\n  - " + "\n  - ".join(problems))


class NotInitializedError(BitfitError):
    """Raised when an authorizer is used before initialize() completed."""
