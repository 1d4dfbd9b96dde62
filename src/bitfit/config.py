"""Application configuration using pydantic-settings.

Values are resolved in this order, first match wins:
1. Explicit keyword arguments (the CLI passes its flags this way)
2. Environment variables prefixed with BITFIT_ (e.g. BITFIT_CLIENT_ID)
3. A .env file in the working directory
4. An optional JSON config file passed to load_settings()

Secrets are never given defaults. Each command declares the fields it needs
with Settings.require(), which fails with a ConfigError naming every
missing one.
"""

from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from bitfit.credentials import ClientCredentials, ProxyCredentials
from bitfit.errors import ConfigError
from bitfit.refresher import DEFAULT_BASE_URL, DEFAULT_TIMEOUT

ENV_PREFIX = "BITFIT_"


class Settings(BaseSettings):
    """Settings for the API client, token lifecycle and proxy server."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OAuth2 client registered with the provider
    client_id: str = ""
    client_secret: str = ""

    # Either a persisted tokens file or a refresh token to bootstrap it
    refresh_token: str = ""
    tokens_file: Path = Path("tokens.json")

    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    refresh_lookahead: float = 600.0

    # Basic Auth pair checked by the proxy server, or presented to it by
    # clients configured with proxy_url
    username: str = ""
    password: str = ""
    proxy_url: str = ""

    # Proxy server
    host: str = "0.0.0.0"
    port: int = 9090
    cert_file: Path | None = None
    key_file: Path | None = None

    environment: str = "development"
    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def lookahead(self) -> timedelta:
        return timedelta(seconds=self.refresh_lookahead)

    @property
    def uses_tls(self) -> bool:
        return self.cert_file is not None or self.key_file is not None

    def require(self, *names: str) -> None:
        """Check that every named field is set.

        Raises:
            ConfigError: Listing each missing field and its environment variable.
        """
        missing = [
            f"{name} must be set (env {ENV_PREFIX}{name.upper()})"
            for name in names
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(missing)

    def client_credentials(self) -> ClientCredentials:
        self.require("client_id", "client_secret")
        return ClientCredentials(self.client_id, self.client_secret)

    def proxy_credentials(self) -> ProxyCredentials:
        self.require("username", "password")
        return ProxyCredentials(self.username, self.password)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of: {allowed}")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("timeout", "refresh_lookahead")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper


def load_settings(config_file: str | Path | None = None, **overrides: Any) -> Settings:
    """Build Settings from overrides, the environment and an optional JSON file.

    Overrides whose value is None are ignored so unset CLI flags fall through
    to the lower-precedence sources.

    Raises:
        ConfigError: If the config file is missing or a value fails validation.
    """
    values = {key: value for key, value in overrides.items() if value is not None}

    settings_cls: type[Settings] = Settings
    if config_file:
        json_path = Path(config_file)
        if not json_path.is_file():
            raise ConfigError(f"config file '{json_path}' does not exist")

        class FileSettings(Settings):
            model_config = SettingsConfigDict(json_file=json_path)

        settings_cls = FileSettings

    try:
        return settings_cls(**values)
    except ValidationError as e:
        raise ConfigError(
            [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()]
        ) from e
    except ValueError as e:
        # JSON syntax errors in the config file
        raise ConfigError(f"config file '{config_file}' is invalid: {e}") from e
