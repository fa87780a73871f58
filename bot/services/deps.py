from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from core.config import ModmailSettings
from database.repositories import GuildConfigRepository, ModmailRepository
from services.ban_service import BanService
from services.components import ComponentRegistry
from services.config_service import ConfigService
from services.hook_pipeline import HookPipeline
from services.webhooks import WebhookProvider


@dataclass(slots=True)
class ModmailServiceDeps:
    client: Any
    settings: ModmailSettings
    modmail_repo: ModmailRepository
    guild_repo: GuildConfigRepository
    config_service: ConfigService
    ban_service: BanService
    webhooks: WebhookProvider
    components: ComponentRegistry
    pipeline: HookPipeline
