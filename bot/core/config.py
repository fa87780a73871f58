from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from database.models import FormField, GuildModmailConfig, ModmailCategory
from utils.constants import (
    DEFAULT_AUTO_CLOSE_HOURS,
    DEFAULT_AUTO_CLOSE_WARNING_HOURS,
    DEFAULT_MAX_ATTACHMENT_MB,
    DEFAULT_RESOLVE_AUTO_CLOSE_HOURS,
    DEFAULT_THREAD_NAME_PATTERN,
    DM_ATTACHMENT_LIMIT_MB,
    INTERACTION_TIMEOUT_SECONDS,
)


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class DiscordConfig:
    token: str
    prefix: str = "!"
    application_id: int | None = None
    sync_commands_on_start: bool = True
    status_text: str = "DM me for support"
    activity_type: str = "listening"


@dataclass(slots=True)
class DatabaseConfig:
    url: str = "sqlite:///./data/modmail.db"
    pool_min_size: int = 2
    pool_max_size: int = 10
    timeout_seconds: int = 30


@dataclass(slots=True)
class RedisConfig:
    enabled: bool = False
    url: str = "redis://localhost:6379/0"
    default_ttl: int = 120


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "modmail.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False


@dataclass(slots=True)
class ModmailSettings:
    staff_only_prefix: str = "."
    dm_attachment_limit_mb: int = DM_ATTACHMENT_LIMIT_MB
    interaction_timeout_seconds: int = INTERACTION_TIMEOUT_SECONDS
    rate_limit_messages: int = 5
    rate_limit_window_seconds: int = 60
    rate_limit_cooldown_seconds: int = 300
    config_cache_ttl: int = 60


@dataclass(slots=True)
class AIConfig:
    enabled: bool = False
    api_key: str = ""
    model: str = "gpt-4o-mini"
    max_tokens: int = 500
    temperature: float = 0.3
    documentation_cache_ttl: int = 3600


@dataclass(slots=True)
class FastApiConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str = ""


@dataclass(slots=True)
class AppConfig:
    discord: DiscordConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    modmail: ModmailSettings = field(default_factory=ModmailSettings)
    ai: AIConfig = field(default_factory=AIConfig)
    fastapi: FastApiConfig = field(default_factory=FastApiConfig)
    enabled_extensions: list[str] = field(
        default_factory=lambda: [
            "cogs.events",
            "cogs.modmail",
            "cogs.staff",
        ]
    )
    guilds: list[GuildModmailConfig] = field(default_factory=list)


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _opt_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def _load_category(guild_id: int, position: int, row: dict[str, Any]) -> ModmailCategory:
    category_id = row.get("id")
    if not category_id:
        raise ConfigError(f"Category #{position + 1} of guild {guild_id} needs an id")
    return ModmailCategory(
        id=str(category_id),
        guild_id=guild_id,
        name=str(row.get("name", category_id)),
        description=str(row.get("description", "")),
        emoji=row.get("emoji"),
        enabled=_as_bool(row.get("enabled"), True),
        staff_role_ids=[int(role_id) for role_id in list(row.get("staff_role_ids", []))],
        form_fields=[FormField.from_dict(dict(raw)) for raw in list(row.get("form_fields", []))],
        forum_channel_id=_opt_int(row.get("forum_channel_id")),
        open_tag_id=_opt_int(row.get("open_tag_id")),
        closed_tag_id=_opt_int(row.get("closed_tag_id")),
        resolve_auto_close_hours=_as_int(
            row.get("resolve_auto_close_hours"), DEFAULT_RESOLVE_AUTO_CLOSE_HOURS
        ),
        priority=_as_int(row.get("priority"), 2),
        position=position,
    )


def _load_guild_configs(raw_guilds: list[dict[str, Any]]) -> list[GuildModmailConfig]:
    guilds: list[GuildModmailConfig] = []
    for row in raw_guilds:
        if row.get("guild_id") is None:
            raise ConfigError("Every entry under 'guilds' needs a guild_id")
        guild_id = int(row["guild_id"])
        categories = [
            _load_category(guild_id, index, dict(cat))
            for index, cat in enumerate(list(row.get("categories", [])))
        ]
        guilds.append(
            GuildModmailConfig(
                guild_id=guild_id,
                enabled=_as_bool(row.get("enabled"), True),
                default_category_id=(
                    str(row["default_category_id"]) if row.get("default_category_id") else None
                ),
                global_staff_role_ids=[int(role_id) for role_id in list(row.get("staff_role_ids", []))],
                thread_naming_pattern=str(row.get("thread_naming_pattern", DEFAULT_THREAD_NAME_PATTERN)),
                allow_attachments=_as_bool(row.get("allow_attachments"), True),
                max_attachment_size_mb=_as_int(row.get("max_attachment_size_mb"), DEFAULT_MAX_ATTACHMENT_MB),
                ai_enabled=_as_bool(_deep_get(row, "ai", "enabled"), False),
                ai_prevent_creation=_as_bool(_deep_get(row, "ai", "prevent_creation"), False),
                ai_system_prompt=_deep_get(row, "ai", "system_prompt"),
                ai_documentation_url=_deep_get(row, "ai", "documentation_url"),
                auto_close_warning_hours=_as_int(
                    _deep_get(row, "auto_close", "warning_hours"), DEFAULT_AUTO_CLOSE_WARNING_HOURS
                ),
                auto_close_hours=_as_int(_deep_get(row, "auto_close", "hours"), DEFAULT_AUTO_CLOSE_HOURS),
                categories=categories,
            )
        )
    return guilds


def load_config(config_path: Path) -> AppConfig:
    env_path = config_path.parent.parent / ".env"
    load_dotenv(env_path)
    raw = _load_yaml(config_path)

    discord_token = _get_env_str("DISCORD_TOKEN", _deep_get(raw, "discord", "token"))
    if not discord_token or "${" in discord_token:
        raise ConfigError("DISCORD_TOKEN is required")

    discord_cfg = DiscordConfig(
        token=discord_token,
        prefix=str(_get_env_str("BOT_PREFIX", _deep_get(raw, "discord", "prefix", default="!"))),
        application_id=(
            int(_get_env_str("DISCORD_APPLICATION_ID"))
            if _get_env_str("DISCORD_APPLICATION_ID")
            else _deep_get(raw, "discord", "application_id")
        ),
        sync_commands_on_start=_as_bool(
            _get_env_str("SYNC_COMMANDS"),
            _as_bool(_deep_get(raw, "discord", "sync_commands_on_start"), True),
        ),
        status_text=str(_deep_get(raw, "discord", "status_text", default="DM me for support")),
        activity_type=str(_deep_get(raw, "discord", "activity_type", default="listening")),
    )

    database_cfg = DatabaseConfig(
        url=str(_get_env_str("DATABASE_URL", _deep_get(raw, "database", "url", default="sqlite:///./data/modmail.db"))),
        pool_min_size=_as_int(
            _get_env_str("DB_POOL_MIN", None),
            _as_int(_deep_get(raw, "database", "pool_min_size"), 2),
        ),
        pool_max_size=_as_int(
            _get_env_str("DB_POOL_MAX", None),
            _as_int(_deep_get(raw, "database", "pool_max_size"), 10),
        ),
        timeout_seconds=_as_int(
            _get_env_str("DB_TIMEOUT_SECONDS", None),
            _as_int(_deep_get(raw, "database", "timeout_seconds"), 30),
        ),
    )

    redis_cfg = RedisConfig(
        enabled=_as_bool(_get_env_str("REDIS_ENABLED"), _as_bool(_deep_get(raw, "redis", "enabled"), False)),
        url=str(_get_env_str("REDIS_URL", _deep_get(raw, "redis", "url", default="redis://localhost:6379/0"))),
        default_ttl=_as_int(
            _get_env_str("REDIS_DEFAULT_TTL", None),
            _as_int(_deep_get(raw, "redis", "default_ttl"), 120),
        ),
    )

    logging_cfg = LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="modmail.log")),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
    )

    modmail_cfg = ModmailSettings(
        staff_only_prefix=str(_deep_get(raw, "modmail", "staff_only_prefix", default=".")),
        dm_attachment_limit_mb=_as_int(
            _deep_get(raw, "modmail", "dm_attachment_limit_mb"), DM_ATTACHMENT_LIMIT_MB
        ),
        interaction_timeout_seconds=_as_int(
            _deep_get(raw, "modmail", "interaction_timeout_seconds"), INTERACTION_TIMEOUT_SECONDS
        ),
        rate_limit_messages=_as_int(_deep_get(raw, "modmail", "rate_limit_messages"), 5),
        rate_limit_window_seconds=_as_int(_deep_get(raw, "modmail", "rate_limit_window_seconds"), 60),
        rate_limit_cooldown_seconds=_as_int(
            _deep_get(raw, "modmail", "rate_limit_cooldown_seconds"), 300
        ),
        config_cache_ttl=_as_int(_deep_get(raw, "modmail", "config_cache_ttl"), 60),
    )
    if not modmail_cfg.staff_only_prefix:
        raise ConfigError("modmail.staff_only_prefix must not be empty")

    ai_cfg = AIConfig(
        enabled=_as_bool(_get_env_str("AI_ENABLED"), _as_bool(_deep_get(raw, "ai", "enabled"), False)),
        api_key=str(_get_env_str("OPENAI_API_KEY", _deep_get(raw, "ai", "api_key", default=""))),
        model=str(_deep_get(raw, "ai", "model", default="gpt-4o-mini")),
        max_tokens=_as_int(_deep_get(raw, "ai", "max_tokens"), 500),
        temperature=_as_float(_deep_get(raw, "ai", "temperature"), 0.3),
        documentation_cache_ttl=_as_int(_deep_get(raw, "ai", "documentation_cache_ttl"), 3600),
    )

    fastapi_cfg = FastApiConfig(
        enabled=_as_bool(_deep_get(raw, "fastapi", "enabled"), False),
        host=str(_deep_get(raw, "fastapi", "host", default="0.0.0.0")),
        port=_as_int(_deep_get(raw, "fastapi", "port"), 8000),
        api_key=str(_get_env_str("MODMAIL_API_KEY", _deep_get(raw, "fastapi", "api_key", default=""))),
    )

    enabled_extensions = [
        str(ext)
        for ext in list(
            _deep_get(
                raw,
                "enabled_extensions",
                default=["cogs.events", "cogs.modmail", "cogs.staff"],
            )
        )
    ]

    guild_cfgs = _load_guild_configs(list(_deep_get(raw, "guilds", default=[])))

    return AppConfig(
        discord=discord_cfg,
        database=database_cfg,
        redis=redis_cfg,
        logging=logging_cfg,
        modmail=modmail_cfg,
        ai=ai_cfg,
        fastapi=fastapi_cfg,
        enabled_extensions=enabled_extensions,
        guilds=guild_cfgs,
    )
