from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from database.base import Database
from database.migrations.runner import run_migrations
from database.repositories import (
    BanRepository,
    CategoryRepository,
    ComponentRepository,
    GuildConfigRepository,
    ModmailRepository,
)
from services.ai_responder import AIResponder
from services.ban_service import BanService
from services.cache import CacheBackend, build_cache
from services.components import ComponentRegistry
from services.config_service import ConfigService
from services.creation_hooks import AIResponseHook, CategorySelectionHook, ServerSelectionHook
from services.creation_service import CreationService
from services.deps import ModmailServiceDeps
from services.hook_pipeline import HookPipeline
from services.lifecycle_service import LifecycleService
from services.relay_service import RelayService
from services.webhooks import WebhookProvider
from views.dm_prompts import DmPrompter
from views.staff_controls import StaffControlHandlers
from views.user_controls import UserControlHandlers

LOGGER = logging.getLogger(__name__)


class ModmailBot(commands.Bot):
    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.dm_messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=True, users=True, replied_user=False),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )
        self.cache: CacheBackend | None = None
        self.pipeline = HookPipeline()
        self.prompter = DmPrompter(config.modmail.interaction_timeout_seconds)

        # Repositories and services are initialized during setup_hook.
        self.guild_repo: GuildConfigRepository
        self.category_repo: CategoryRepository
        self.modmail_repo: ModmailRepository
        self.ban_repo: BanRepository
        self.component_repo: ComponentRepository

        self.config_service: ConfigService
        self.ban_service: BanService
        self.webhooks: WebhookProvider
        self.components: ComponentRegistry
        self.ai_responder: AIResponder | None = None
        self.relay_service: RelayService
        self.creation_service: CreationService
        self.lifecycle_service: LifecycleService

    async def setup_hook(self) -> None:
        await self.database.connect()
        await run_migrations(self.database)
        self.cache = await build_cache(self.config.redis)

        self.guild_repo = GuildConfigRepository(self.database)
        self.category_repo = CategoryRepository(self.database)
        self.modmail_repo = ModmailRepository(self.database)
        self.ban_repo = BanRepository(self.database)
        self.component_repo = ComponentRepository(self.database)

        self.config_service = ConfigService(
            self.guild_repo, self.category_repo, self.cache, ttl=self.config.modmail.config_cache_ttl
        )
        self.ban_service = BanService(self.ban_repo)
        self.webhooks = WebhookProvider(self, self.category_repo)
        self.components = ComponentRegistry(self.component_repo)
        self.ai_responder = AIResponder(self.config.ai, self.cache)
        self.register_default_hooks()

        deps = ModmailServiceDeps(
            client=self,
            settings=self.config.modmail,
            modmail_repo=self.modmail_repo,
            guild_repo=self.guild_repo,
            config_service=self.config_service,
            ban_service=self.ban_service,
            webhooks=self.webhooks,
            components=self.components,
            pipeline=self.pipeline,
        )
        self.relay_service = RelayService(deps)
        self.creation_service = CreationService(deps, self.relay_service)
        self.lifecycle_service = LifecycleService(deps)

        StaffControlHandlers(self).register(self.components)
        UserControlHandlers(self).register(self.components)

        await self.config_service.bootstrap_from_config(self.config.guilds)
        await self.load_extensions(self.config.enabled_extensions)

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

    def register_default_hooks(self) -> None:
        self.pipeline.register(ServerSelectionHook(self, self.prompter))
        self.pipeline.register(CategorySelectionHook(self.config_service, self.prompter))
        self.pipeline.register(AIResponseHook(self.config_service, self.ai_responder, self.components))
        LOGGER.info("Registered hooks: %s", self.pipeline.stats())

    async def load_extensions(self, extension_names: list[str]) -> None:
        for ext in extension_names:
            try:
                await self.load_extension(ext)
                LOGGER.info("Loaded extension: %s", ext)
            except commands.ExtensionAlreadyLoaded:
                LOGGER.warning("Extension already loaded: %s", ext)
            except commands.ExtensionError:
                LOGGER.exception("Failed to load extension: %s", ext)

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)

    async def close(self) -> None:
        await super().close()
        if self.ai_responder:
            await self.ai_responder.close()
        await self.database.close()
        if self.cache:
            await self.cache.close()
