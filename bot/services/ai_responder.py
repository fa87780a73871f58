from __future__ import annotations

import hashlib
import logging

import aiohttp
from openai import AsyncOpenAI, OpenAIError

from core.config import AIConfig
from database.models import GuildModmailConfig, ModmailCategory
from services.cache import CacheBackend
from utils.formatting import truncate

LOGGER = logging.getLogger(__name__)

DOCUMENTATION_CHAR_LIMIT = 8000
DOCUMENTATION_TIMEOUT_SECONDS = 10
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful support assistant for a Discord server. "
    "Answer the user's question briefly. If you are not sure, say that a staff member will follow up."
)
SUGGESTION_FOOTER = (
    "\n\n-# This answer was generated automatically. "
    "If it did not help, a staff member will take over once your ticket is open."
)


class AIResponder:
    """Suggests an answer to a new modmail request with an OpenAI chat model."""

    def __init__(self, config: AIConfig, cache: CacheBackend, client: AsyncOpenAI | None = None) -> None:
        self.config = config
        self.cache = cache
        self.client = client
        if self.client is None and config.enabled and config.api_key:
            self.client = AsyncOpenAI(api_key=config.api_key)

    @property
    def available(self) -> bool:
        return self.client is not None

    async def fetch_documentation(self, url: str) -> str | None:
        cache_key = f"modmail:ai:docs:{hashlib.sha256(url.encode('utf-8')).hexdigest()}"
        cached = await self.cache.get(cache_key)
        if cached:
            return str(cached)
        try:
            timeout = aiohttp.ClientTimeout(total=DOCUMENTATION_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    response.raise_for_status()
                    text = await response.text()
        except (aiohttp.ClientError, TimeoutError):
            LOGGER.warning("Could not fetch AI documentation from %s", url)
            return None
        text = text[:DOCUMENTATION_CHAR_LIMIT]
        await self.cache.set(cache_key, text, ttl=self.config.documentation_cache_ttl)
        return text

    async def suggest(
        self,
        guild_config: GuildModmailConfig,
        category: ModmailCategory | None,
        question: str,
    ) -> str | None:
        if self.client is None or not question.strip():
            return None

        system_prompt = guild_config.ai_system_prompt or DEFAULT_SYSTEM_PROMPT
        if category:
            system_prompt += f"\nThe user picked the support category '{category.name}'."
        if guild_config.ai_documentation_url:
            docs = await self.fetch_documentation(guild_config.ai_documentation_url)
            if docs:
                system_prompt += f"\n\nReference documentation:\n{docs}"

        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": question},
                ],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except OpenAIError:
            LOGGER.exception("AI completion failed. guild=%s", guild_config.guild_id)
            return None

        answer = (response.choices[0].message.content or "").strip()
        if not answer:
            return None
        return truncate(answer, 2000 - len(SUGGESTION_FOOTER)) + SUGGESTION_FOOTER

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
