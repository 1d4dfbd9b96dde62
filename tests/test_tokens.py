"""Unit tests for TokenRecord and the token codec."""

import json
from datetime import UTC, datetime, timedelta

import pytest

from bitfit.errors import DecodeError, ProviderError
from bitfit.tokens import NEVER_VALID, TokenRecord, decode, encode, format_json


class TestTokenRecord:
    """Tests for TokenRecord dataclass."""

    def test_expires_within_window(self) -> None:
        """Record expiring inside the window is near expiry."""
        record = TokenRecord("a", "r", datetime.now(UTC) + timedelta(minutes=5))
        assert record.expires_within(timedelta(minutes=10)) is True
        assert record.expires_within(timedelta(minutes=1)) is False

    def test_is_expired(self) -> None:
        """Record with past expiration is expired."""
        record = TokenRecord("a", "r", datetime.now(UTC) - timedelta(seconds=1))
        assert record.is_expired() is True

    def test_default_expiration_is_never_valid(self) -> None:
        """Record without expiration counts as expired and uninitialized access is flagged."""
        record = TokenRecord(access="", refresh="r")
        assert record.is_expired() is True
        assert record.is_initialized is False
        assert record.expires_in_seconds() == 0

    def test_expires_in_seconds(self) -> None:
        """expires_in_seconds counts down from the expiration."""
        record = TokenRecord("a", "r", datetime.now(UTC) + timedelta(hours=1))
        assert 3598 <= record.expires_in_seconds() <= 3600

    def test_is_frozen(self) -> None:
        """Records are replaced wholesale, never mutated."""
        record = TokenRecord("a", "r")
        with pytest.raises(AttributeError):
            record.access = "b"  # type: ignore[misc]


class TestDecodeProviderShape:
    """Tests for decoding token endpoint responses."""

    def test_provider_response(self) -> None:
        """Provider fields populate the record and expires_in becomes absolute."""
        before = datetime.now(UTC)
        record = decode(
            json.dumps({"access_token": "at", "refresh_token": "rt", "expires_in": 28800})
        )
        assert record.access == "at"
        assert record.refresh == "rt"
        assert before + timedelta(seconds=28800) <= record.expiration
        assert record.expiration <= datetime.now(UTC) + timedelta(seconds=28800)

    def test_errors_array_fails_with_first_message(self) -> None:
        """A non-empty errors array fails regardless of token fields present."""
        payload = {
            "access_token": "at",
            "refresh_token": "rt",
            "expires_in": 3600,
            "Access": "foo",
            "errors": [
                {"errorType": "invalid_grant", "message": "Refresh token invalid: abc"},
                {"errorType": "other", "message": "second"},
            ],
        }
        with pytest.raises(ProviderError) as exc_info:
            decode(json.dumps(payload))

        assert str(exc_info.value) == "Refresh token invalid: abc"
        assert exc_info.value.error_type == "invalid_grant"

    def test_error_without_message_uses_raw_object(self) -> None:
        """An error object lacking 'message' is surfaced as-is."""
        with pytest.raises(ProviderError) as exc_info:
            decode(json.dumps({"errors": [{"errorType": "system"}]}))
        assert "system" in str(exc_info.value)

    def test_empty_errors_array_is_ignored(self) -> None:
        """An empty errors array does not fail decoding."""
        record = decode(json.dumps({"access_token": "at", "refresh_token": "rt", "errors": []}))
        assert record.access == "at"


class TestDecodePersistedShape:
    """Tests for decoding the persisted record."""

    def test_persisted_record(self) -> None:
        """Persisted keys are read with absolute expiration."""
        record = decode(
            b'{"Access": "foo", "Refresh": "bar", "Expiration": "2030-01-02T03:04:05Z"}'
        )
        assert record == TokenRecord("foo", "bar", datetime(2030, 1, 2, 3, 4, 5, tzinfo=UTC))

    def test_lowercase_keys(self) -> None:
        """Keys are matched case-insensitively."""
        record = decode('{"access": "foo", "refresh": "bar", "expiration": "2030-01-01T00:00:00+00:00"}')
        assert record.access == "foo"
        assert record.refresh == "bar"

    def test_persisted_values_win_over_provider_values(self) -> None:
        """When both shapes are present the persisted values are preferred."""
        record = decode(
            json.dumps(
                {
                    "Access": "persisted",
                    "access_token": "provider",
                    "Refresh": "",
                    "refresh_token": "provider-refresh",
                    "Expiration": "2030-01-01T00:00:00+00:00",
                    "expires_in": 60,
                }
            )
        )
        assert record.access == "persisted"
        assert record.refresh == "provider-refresh"
        assert record.expiration == datetime(2030, 1, 1, tzinfo=UTC)

    def test_offset_and_nanoseconds(self) -> None:
        """Timestamps with offsets and sub-microsecond digits are accepted."""
        record = decode(
            '{"Access": "a", "Refresh": "r", "Expiration": "2019-09-16T12:00:00.123456789-04:00"}'
        )
        assert record.expiration == datetime(2019, 9, 16, 16, 0, 0, 123456, tzinfo=UTC)

    def test_zero_expiration_falls_back_to_expires_in(self) -> None:
        """Go's zero time means unset, so expires_in is used instead."""
        record = decode(
            json.dumps(
                {"Access": "a", "Refresh": "r", "Expiration": "0001-01-01T00:00:00Z", "expires_in": 60}
            )
        )
        assert record.expiration > datetime.now(UTC)

    def test_no_expiration_known_is_never_valid(self) -> None:
        """Zero expiration and zero expires_in produce an already-expired record."""
        record = decode(
            json.dumps({"Access": "a", "Refresh": "r", "Expiration": "0001-01-01T00:00:00Z", "expires_in": 0})
        )
        assert record.expiration == NEVER_VALID
        assert record.is_expired() is True


class TestDecodeMalformed:
    """Tests for malformed payloads."""

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[1, 2]",
            b'{"Access": "a", "Expiration": "yesterday"}',
            b'{"access_token": "a", "expires_in": "soon"}',
            b'{"access_token": "a", "expires_in": false}',
            b'{"access_token": "a", "expires_in": 0.0}',
            b'{"access_token": 42}',
            b'{"errors": "boom"}',
        ],
    )
    def test_malformed_payload_raises_decode_error(self, payload: bytes) -> None:
        """Malformed JSON or bad field types raise DecodeError."""
        with pytest.raises(DecodeError):
            decode(payload)


class TestEncode:
    """Tests for encode."""

    def test_encode_persisted_shape(self) -> None:
        """encode writes Access/Refresh/Expiration with 4-space indentation."""
        record = TokenRecord("foo", "bar", datetime(2030, 1, 2, 3, 4, 5, tzinfo=UTC))
        text = encode(record).decode()

        assert text == (
            "{\n"
            '    "Access": "foo",\n'
            '    "Refresh": "bar",\n'
            '    "Expiration": "2030-01-02T03:04:05+00:00"\n'
            "}"
        )

    def test_roundtrip(self) -> None:
        """Record survives encode/decode roundtrip."""
        original = TokenRecord("foo", "bar", datetime.now(UTC) + timedelta(hours=1))
        assert decode(encode(original)) == original

    def test_roundtrip_never_valid(self) -> None:
        """The never-valid sentinel survives a roundtrip."""
        original = TokenRecord("foo", "bar")
        assert decode(encode(original)) == original


class TestFormatJson:
    """Tests for format_json."""

    def test_reindents(self) -> None:
        assert format_json(b'{"a":{"b":1}}') == '{\n    "a": {\n        "b": 1\n    }\n}'

    def test_invalid_json(self) -> None:
        with pytest.raises(DecodeError):
            format_json("<html>oops</html>")
