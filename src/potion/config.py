# potion/config.py
"""Application configuration.

Priority: environment variables > config file > token file.
"""

import os
from pathlib import Path
from typing import Any, Optional, Tuple, Type

from pydantic import ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from .errors import ConfigError
from .oauth_config import Backend, OAuthConfig

ENV_PREFIX = "POTION_"
CONFIG_DIR_ENV = "POTION_CONFIG_DIR"
CONFIG_FILE_NAME = "config.toml"


def get_config_dir() -> Path:
    """Return the configuration directory (``~/.config/potion`` by default)."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "potion"


def get_config_path() -> Path:
    return get_config_dir() / CONFIG_FILE_NAME


class Settings(BaseSettings):
    """Effective configuration."""

    token: str = ""
    client_id: str = ""
    client_secret: str = ""
    backend: Backend = "api"

    mcp_server_url: str = "https://mcp.notion.com"
    api_base_url: str = "https://api.notion.com/v1"

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    @field_validator("backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: Any) -> Any:
        if value is None or value == "":
            return "api"
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=get_config_path()),
        )

    @property
    def mcp_endpoint(self) -> str:
        return self.mcp_server_url.rstrip("/") + "/mcp"

    def validate_token(self) -> None:
        """Raise ConfigError when no access token is available."""
        if not self.token:
            raise ConfigError(
                "token is required. Run 'potion auth' or set "
                "POTION_TOKEN/NOTION_TOKEN environment variable"
            )

    def validate_oauth(self) -> None:
        """Raise ConfigError when conventional OAuth credentials are missing."""
        config_path = get_config_path()
        if not self.client_id:
            raise ConfigError(
                "client_id is required. Set POTION_CLIENT_ID environment "
                f"variable or configure in {config_path}"
            )
        if not self.client_secret:
            raise ConfigError(
                "client_secret is required. Set POTION_CLIENT_SECRET environment "
                f"variable or configure in {config_path}"
            )

    def oauth_config(self, redirect_uri: str) -> OAuthConfig:
        self.validate_oauth()
        return OAuthConfig(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=redirect_uri,
        )


def load_settings(token_manager: Optional[Any] = None, **overrides: Any) -> Settings:
    """
    Load settings and fill the token from fallbacks.

    When no token is configured, ``NOTION_TOKEN`` is used; failing that the
    persisted token record (which also supplies client_id and backend when
    they are not configured).

    Raises:
        ConfigError: If the config file or environment holds invalid values
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    except ValueError as e:
        # Malformed TOML
        raise ConfigError(f"Failed to read config file: {e}") from e

    if not settings.token:
        settings.token = os.environ.get("NOTION_TOKEN", "")

    if not settings.token:
        if token_manager is None:
            from .token_manager import TokenManager

            token_manager = TokenManager()
        record = token_manager.load_token()
        if record and record.access_token:
            settings.token = record.access_token
            if not settings.client_id and record.client_id:
                settings.client_id = record.client_id
            if "backend" not in settings.model_fields_set:
                settings.backend = record.backend

    return settings
