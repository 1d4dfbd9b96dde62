"""Token records and their JSON codec.

The codec understands two wire shapes and tells them apart by content:

1. The provider's token endpoint response:
   {"access_token": ..., "refresh_token": ..., "expires_in": 28800}
   or, on failure, {"errors": [{"errorType": ..., "message": ...}]}
2. The persisted record written by this package:
   {"Access": ..., "Refresh": ..., "Expiration": "2024-05-01T12:00:00+00:00"}

Keys are matched case-insensitively. Persisted values win over provider
values when both are present; encode() always writes the persisted shape.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from bitfit.errors import DecodeError, ProviderError

# Expiration used when a payload carries no usable expiry; such a record is
# always considered expired.
NEVER_VALID = datetime.min.replace(tzinfo=UTC)

JSON_INDENT = 4


@dataclass(frozen=True)
class TokenRecord:
    """An access/refresh token pair and the instant the access token expires.

    Attributes:
        access: Bearer credential presented to the upstream API. Empty until
            the record has been initialized by a refresh.
        refresh: Credential exchanged for a new access token.
        expiration: Timezone-aware instant after which access is unusable.
    """

    access: str
    refresh: str
    expiration: datetime = NEVER_VALID

    @property
    def is_initialized(self) -> bool:
        return bool(self.access)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the access token's expiration has already passed."""
        now = now or datetime.now(UTC)
        return self.expiration < now

    def expires_within(self, window: timedelta, now: datetime | None = None) -> bool:
        """Check if the access token expires before now + window."""
        now = now or datetime.now(UTC)
        return self.expiration < now + window

    def expires_in_seconds(self) -> int:
        """Return seconds until the access token expires."""
        if self.expiration == NEVER_VALID:
            return 0
        return max(0, int((self.expiration - datetime.now(UTC)).total_seconds()))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted dictionary shape."""
        return {
            "Access": self.access,
            "Refresh": self.refresh,
            "Expiration": _as_utc(self.expiration).isoformat(),
        }


def decode(data: bytes | str) -> TokenRecord:
    """Decode either a provider response or a persisted record.

    Raises:
        ProviderError: If the payload carries a non-empty errors array.
        DecodeError: If the payload is not a JSON object or has bad fields.
    """
    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Token payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise DecodeError(f"Token payload must be a JSON object, got {type(payload).__name__}")

    fields = {str(key).lower(): value for key, value in payload.items()}

    errors = fields.get("errors")
    if errors:
        if not isinstance(errors, list):
            raise DecodeError(f"Token payload 'errors' must be a list, got {errors!r}")
        raise _provider_error(errors[0])

    access = _first_string(fields, "access", "access_token")
    refresh = _first_string(fields, "refresh", "refresh_token")

    expiration = _parse_expiration(fields.get("expiration"))
    if expiration is None:
        expiration = _expiration_from_lifetime(fields.get("expires_in"))

    return TokenRecord(access=access, refresh=refresh, expiration=expiration)


def encode(record: TokenRecord) -> bytes:
    """Encode a record in the persisted shape, pretty-printed."""
    return json.dumps(record.to_dict(), indent=JSON_INDENT).encode("utf-8")


def format_json(payload: bytes | str) -> str:
    """Re-indent a JSON document for display.

    Raises:
        DecodeError: If the payload is not valid JSON.
    """
    try:
        return json.dumps(json.loads(payload), indent=JSON_INDENT)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        text = payload.decode("utf-8", "replace") if isinstance(payload, bytes) else payload
        raise DecodeError(f"Could not format {text!r} as JSON: {e}") from e


def _provider_error(error: Any) -> ProviderError:
    if isinstance(error, dict) and "message" in error:
        return ProviderError(str(error["message"]), error_type=error.get("errorType"))
    return ProviderError(str(error))


def _first_string(fields: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = fields.get(key)
        if value:
            if not isinstance(value, str):
                raise DecodeError(f"Token field '{key}' must be a string, got {value!r}")
            return value
    return ""


def _parse_expiration(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise DecodeError(f"Token expiration must be a timestamp string, got {value!r}")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise DecodeError(f"Could not parse token expiration {value!r}: {e}") from e
    parsed = _as_utc(parsed)
    # Go's zero time.Time marshals as year 1; it means "unset"
    if parsed.year == 1:
        return None
    return parsed


def _expiration_from_lifetime(value: Any) -> datetime:
    if value is None:
        return NEVER_VALID
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise DecodeError(f"Token expires_in must be a non-negative integer, got {value!r}")
    if value == 0:
        return NEVER_VALID
    return datetime.now(UTC) + timedelta(seconds=value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
