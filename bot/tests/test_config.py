from __future__ import annotations

from pathlib import Path

import pytest

from core.config import ConfigError, load_config


def _write(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"
    config_path.write_text(body.strip(), encoding="utf-8")
    return config_path


def test_load_config_reads_yaml(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: test-token
  prefix: "?"
database:
  url: "sqlite:///./data/test.db"
modmail:
  staff_only_prefix: "#"
""",
    )

    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    cfg = load_config(config_path)

    assert cfg.discord.token == "test-token"
    assert cfg.discord.prefix == "?"
    assert cfg.database.url.startswith("sqlite:///")
    assert cfg.modmail.staff_only_prefix == "#"
    assert cfg.modmail.rate_limit_messages == 5
    assert cfg.guilds == []


def test_env_overrides_token(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: yaml-token
""",
    )
    monkeypatch.setenv("DISCORD_TOKEN", "env-token")
    cfg = load_config(config_path)
    assert cfg.discord.token == "env-token"


def test_guild_categories_are_loaded_in_order(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(
        tmp_path,
        """
discord:
  token: t
guilds:
  - guild_id: 42
    default_category_id: general
    staff_role_ids: [7]
    ai:
      enabled: true
      prevent_creation: true
    auto_close:
      warning_hours: 12
      hours: 0
    categories:
      - id: general
        name: General
        forum_channel_id: 100
        form_fields:
          - id: topic
            label: Topic
      - id: appeals
        name: Appeals
        forum_channel_id: 200
        resolve_auto_close_hours: 48
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    cfg = load_config(config_path)

    guild = cfg.guilds[0]
    assert guild.guild_id == 42
    assert guild.global_staff_role_ids == [7]
    assert guild.ai_enabled is True
    assert guild.ai_prevent_creation is True
    assert guild.auto_close_warning_hours == 12
    assert guild.auto_close_hours == 0
    assert [category.id for category in guild.categories] == ["general", "appeals"]
    assert guild.categories[0].form_fields[0].label == "Topic"
    assert guild.categories[1].resolve_auto_close_hours == 48
    assert guild.categories[1].position == 1


def test_missing_token_is_rejected(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(tmp_path, "discord:\n  prefix: '!'")
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_inactivity_defaults_apply_without_auto_close_block(tmp_path: Path, monkeypatch) -> None:
    config_path = _write(tmp_path, "discord:\n  token: t\nguilds:\n  - guild_id: 42\n")
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)

    guild = load_config(config_path).guilds[0]

    assert guild.auto_close_warning_hours == 48
    assert guild.auto_close_hours == 72
