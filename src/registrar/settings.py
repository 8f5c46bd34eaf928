from __future__ import annotations

import tomllib
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_serializer,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .config import ConfigError, ensure_config_file, resolve_config_path
from .logging import get_logger

logger = get_logger(__name__)


def _snowflake(value: Any, *, label: str) -> str:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be a snowflake id")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError(f"{label} must be a positive snowflake id")
        return str(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned.isdigit():
            raise ValueError(f"{label} must be a snowflake id")
        return cleaned
    raise ValueError(f"{label} must be a snowflake id")


def _role_id(value: Any, *, label: str) -> str:
    if isinstance(value, bool):
        raise ValueError(f"{label} must contain role ids")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValueError(f"{label} must contain role ids")


class PluginsSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    commands_dir: Path | None = None
    enabled: list[str] = Field(default_factory=list)


class DispatchSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout_s: float | None = None

    @field_validator("timeout_s")
    @classmethod
    def _validate_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("timeout_s must be positive")
        return value


class RegistrarSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        env_prefix="REGISTRAR__",
        env_nested_delimiter="__",
    )

    token: SecretStr | None = None
    application_id: str | None = None
    guild_ids: list[str] = Field(default_factory=list)
    elevated_permissions: dict[str, list[str]] = Field(default_factory=dict)

    plugins: PluginsSettings = Field(default_factory=PluginsSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)

    @field_validator("token", mode="before")
    @classmethod
    def _validate_token(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("token must be a string")
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("token must be a non-empty string")
        return cleaned

    @field_validator("application_id", mode="before")
    @classmethod
    def _validate_application_id(cls, value: Any) -> Any:
        if value is None:
            return None
        return _snowflake(value, label="application_id")

    @field_validator("guild_ids", mode="before")
    @classmethod
    def _validate_guild_ids(cls, value: Any) -> Any:
        if not isinstance(value, list):
            raise ValueError("guild_ids must be a list")
        return [_snowflake(item, label="guild_ids") for item in value]

    @field_validator("elevated_permissions", mode="before")
    @classmethod
    def _validate_elevated_permissions(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            raise ValueError("elevated_permissions must be a table")
        resolved: dict[str, list[str]] = {}
        for tag, roles in value.items():
            if not isinstance(tag, str) or not tag.strip():
                raise ValueError("permission tags must be non-empty strings")
            if not isinstance(roles, list):
                roles = [roles]
            resolved[tag.strip()] = [
                _role_id(role, label=f"elevated_permissions.{tag}")
                for role in roles
            ]
        return resolved

    @field_serializer("token")
    def _dump_token(self, value: SecretStr | None) -> str | None:
        return value.get_secret_value() if value else None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def commands_dir(self, *, config_path: Path | None = None) -> Path | None:
        path = self.plugins.commands_dir
        if path is None:
            return None
        path = path.expanduser()
        if not path.is_absolute() and config_path is not None:
            path = config_path.parent / path
        return path

    def require_token(self, config_path: Path | None = None) -> str:
        where = f" in {config_path}" if config_path is not None else ""
        if self.token is None:
            raise ConfigError(f"Missing bot `token`{where}.")
        return self.token.get_secret_value()


def resolve_elevated_permission_roles(
    settings: RegistrarSettings, required: Iterable[str]
) -> list[str]:
    """Map permission tags to the role ids allowed to use them.

    Roles keep the order of the tags and of the configured lists, without
    duplicates. Tags missing from ``elevated_permissions`` grant nothing.
    """
    roles: list[str] = []
    seen: set[str] = set()
    for tag in required:
        configured = settings.elevated_permissions.get(tag)
        if configured is None:
            logger.warning("permissions.unknown_tag", tag=tag)
            continue
        for role_id in configured:
            if role_id in seen:
                continue
            seen.add(role_id)
            roles.append(role_id)
    return roles


def load_settings(path: str | Path | None = None) -> tuple[RegistrarSettings, Path]:
    cfg_path = resolve_config_path(path)
    ensure_config_file(cfg_path)
    return _load_settings_from_path(cfg_path), cfg_path


def _load_settings_from_path(cfg_path: Path) -> RegistrarSettings:
    cfg = dict(RegistrarSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "RegistrarSettingsBound",
        (RegistrarSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {cfg_path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {exc}") from None
    try:
        return Bound()
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc
