"""Command line interface for bitfit.

Usage:
    bitfit refresh-token  [--full-response]
    bitfit profile        [--proxy-url URL --username U --password P]
    bitfit sleep-log      --from YYYY-MM-DD [--to YYYY-MM-DD] [--as NAME] [--into DIR]
    bitfit serve-proxy    --username U --password P [--cert-file F --key-file F]

Every flag can also come from a BITFIT_* environment variable or a JSON file
given with --config; flags take precedence.

Exit codes: 0 on success, 1 on configuration, storage, decoding or network
errors, 2 when the provider rejected the grant and a human has to
re-authorize.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from loguru import logger

from bitfit.client import ApiClient
from bitfit.config import Settings, load_settings
from bitfit.errors import BitfitError, ConfigError, ProviderError
from bitfit.logging import configure_logging
from bitfit.refresher import TokenRefresher
from bitfit.store import TokenStore

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_REAUTHORIZE = 2


async def cmd_refresh_token(args: Any, settings: Settings) -> int:
    """Exchange the refresh token once and persist the new pair."""
    settings.require("refresh_token")
    refresher = TokenRefresher(settings.base_url, settings.timeout)
    record, payload = await refresher.refresh_with_payload(
        settings.client_credentials(), settings.refresh_token
    )
    store = TokenStore(settings.tokens_file)
    store.save(record)

    if args.full_response:
        print(payload)
    else:
        print(f"Tokens saved to {store.path} (expire in {record.expires_in_seconds()} seconds)")
    return EXIT_OK


async def cmd_profile(args: Any, settings: Settings) -> int:  # noqa: ARG001
    """Print the user's profile."""
    async with ApiClient.from_settings(settings) as client:
        print(await client.fetch_profile())
    return EXIT_OK


async def cmd_sleep_log(args: Any, settings: Settings) -> int:
    """Download one sleep log payload per day into a directory."""
    start: date = args.start
    end: date = args.end or start
    if end < start:
        raise ConfigError(f"--to {end} is before --from {start}")

    into = Path(args.into).resolve()
    into.mkdir(parents=True, exist_ok=True)

    async with ApiClient.from_settings(settings) as client:
        day = start
        while day <= end:
            body = await client.fetch_sleep_log(day)
            target = into / f"{args.name}_{day.isoformat()}.json"
            target.write_text(body, encoding="utf-8")
            logger.info("Saved sleep log", extra={"date": day.isoformat(), "path": str(target)})
            day += timedelta(days=1)
    return EXIT_OK


def cmd_serve_proxy(args: Any, settings: Settings) -> int:  # noqa: ARG001
    """Run the credential-gated reverse proxy until interrupted."""
    # Imported here so the client commands do not pull in the server stack
    from bitfit.proxy import serve

    serve(settings)
    return EXIT_OK


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bitfit",
        description="Fitbit Web API access with transparent OAuth2 token refresh.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command")

    # Flags shared by every command. Defaults are None so unset flags fall
    # through to the environment and config file.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="JSON config file (optional)")
    common.add_argument("--id", dest="client_id", help="OAuth2 API client ID")
    common.add_argument("--secret", dest="client_secret", help="OAuth2 API client secret")
    common.add_argument(
        "--refresh-token",
        help="Refresh token previously obtained from the API, used when no tokens file exists",
    )
    common.add_argument("--tokens-file", type=Path, help="JSON file of persisted tokens")
    common.add_argument("--base-url", help="API base URL")
    common.add_argument("--timeout", type=float, help="Request timeout in seconds")
    common.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL")

    via_proxy = argparse.ArgumentParser(add_help=False)
    via_proxy.add_argument("--proxy-url", help="Base URL of a bitfit proxy to go through")
    via_proxy.add_argument("--username", help="Basic Auth username for the proxy")
    via_proxy.add_argument("--password", help="Basic Auth password for the proxy")

    sp = subparsers.add_parser(
        "refresh-token",
        parents=[common],
        help="Exchange a refresh token and save the new tokens",
    )
    sp.add_argument(
        "--full-response", action="store_true", help="Print the token endpoint response"
    )
    sp.set_defaults(func=cmd_refresh_token)

    sp = subparsers.add_parser(
        "profile", parents=[common, via_proxy], help="Print the user's profile"
    )
    sp.set_defaults(func=cmd_profile)

    sp = subparsers.add_parser(
        "sleep-log", parents=[common, via_proxy], help="Download daily sleep logs"
    )
    sp.add_argument(
        "--from", dest="start", type=_parse_date, required=True, help="First date (YYYY-MM-DD)"
    )
    sp.add_argument(
        "--to", dest="end", type=_parse_date, help="Last date, inclusive (default: --from)"
    )
    sp.add_argument(
        "--as",
        dest="name",
        default="sleep_log_payload",
        help="File name prefix for saved payloads",
    )
    sp.add_argument("--into", default=".", help="Directory to write payloads into")
    sp.set_defaults(func=cmd_sleep_log)

    sp = subparsers.add_parser(
        "serve-proxy", parents=[common], help="Run the credential-gated reverse proxy"
    )
    sp.add_argument("--username", help="Basic Auth username required from callers")
    sp.add_argument("--password", help="Basic Auth password required from callers")
    sp.add_argument("--cert-file", type=Path, help="TLS certificate (serves plain HTTP if unset)")
    sp.add_argument("--key-file", type=Path, help="TLS private key")
    sp.add_argument("--host", help="Interface to listen on")
    sp.add_argument("--port", type=int, help="Port to listen on")
    sp.set_defaults(func=cmd_serve_proxy)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    overrides = {key: value for key, value in vars(args).items() if key in Settings.model_fields}
    try:
        settings = load_settings(args.config, **overrides)
    except ConfigError as e:
        print(e, file=sys.stderr)
        return EXIT_ERROR

    configure_logging(json_logs=settings.is_production, log_level=settings.log_level)

    try:
        result = args.func(args, settings)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
        return result
    except ProviderError as e:
        logger.critical(
            "Provider rejected the OAuth2 grant; re-authorize to obtain a new refresh token",
            extra={"error": str(e), "error_type": e.error_type},
        )
        return EXIT_REAUTHORIZE
    except BitfitError as e:
        logger.error("{}: {}", type(e).__name__, e)
        return EXIT_ERROR
    except OSError as e:
        logger.error("Could not write output: {}", e)
        return EXIT_ERROR
    except KeyboardInterrupt:
        return EXIT_ERROR
