from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, fields
from typing import Any

from core.errors import HookRegistrationError
from database.models import FormResponse, ModmailRecord

LOGGER = logging.getLogger(__name__)

HOOK_BEFORE_CREATION = "before_creation"
HOOK_AFTER_CREATION = "after_creation"
HOOK_BEFORE_CLOSING = "before_closing"
HOOK_AFTER_CLOSING = "after_closing"
HOOK_TYPES = (HOOK_BEFORE_CREATION, HOOK_AFTER_CREATION, HOOK_BEFORE_CLOSING, HOOK_AFTER_CLOSING)

PRIORITY_HIGH = 100
PRIORITY_NORMAL = 50
PRIORITY_LOW = 10

PROGRESS_MESSAGE = "Setting up your modmail request..."
HOOK_FAILURE_MESSAGE = "An unexpected error occurred while processing your request."
SHARED_MESSAGE_FAILURE = "Failed to create shared message"
SHARED_MESSAGE_USER_MESSAGE = "Unable to start modmail process. Please try again."


@dataclass(slots=True)
class HookResult:
    success: bool
    continue_chain: bool = True
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    user_message: str | None = None


@dataclass
class HookContext:
    hook_type: str = ""
    extras: dict[str, Any] = field(default_factory=dict)

    def apply(self, data: dict[str, Any]) -> None:
        """Merge hook output into the context; unknown keys land in ``extras``."""
        known = {item.name for item in fields(self)}
        for key, value in data.items():
            if key in known and key not in {"hook_type", "extras"}:
                setattr(self, key, value)
            else:
                self.extras[key] = value


@dataclass
class BeforeCreationContext(HookContext):
    user_id: int = 0
    user_display_name: str = ""
    message_content: str = ""
    source_message: Any = None
    dm_channel: Any = None
    available_guild_ids: list[int] = field(default_factory=list)
    selected_guild_id: int | None = None
    selected_category_id: str | None = None
    form_responses: list[FormResponse] = field(default_factory=list)
    shared_message: Any = None
    ai_response_sent: bool = False
    prevent_creation: bool = False


@dataclass
class AfterCreationContext(HookContext):
    modmail: ModmailRecord | None = None
    thread: Any = None


@dataclass
class CloseContext(HookContext):
    modmail: ModmailRecord | None = None
    closed_by: int = 0
    reason: str | None = None


HookCondition = Callable[[HookContext], Awaitable[bool] | bool]


class BaseHook(ABC):
    id: str = ""
    name: str = ""
    description: str = ""
    type: str = HOOK_BEFORE_CREATION
    priority: int = PRIORITY_NORMAL

    def __init__(self) -> None:
        self.enabled = True
        self.conditions: list[HookCondition] = []

    def add_condition(self, condition: HookCondition) -> BaseHook:
        self.conditions.append(condition)
        return self

    async def should_execute(self, context: HookContext) -> bool:
        for condition in self.conditions:
            try:
                outcome = condition(context)
                if not isinstance(outcome, bool):
                    outcome = await outcome
            except Exception:
                LOGGER.exception("Hook condition raised. hook=%s", self.id)
                return False
            if not outcome:
                return False
        return True

    @abstractmethod
    async def execute_hook(self, context: Any) -> HookResult:
        raise NotImplementedError

    def ok(self, data: dict[str, Any] | None = None) -> HookResult:
        return HookResult(success=True, data=data or {})

    def stop(self, data: dict[str, Any] | None = None, user_message: str | None = None) -> HookResult:
        """Successful result that ends the chain, e.g. when no ticket should be created."""
        return HookResult(success=True, continue_chain=False, data=data or {}, user_message=user_message)

    def fail(self, error: str, user_message: str | None = None) -> HookResult:
        return HookResult(success=False, continue_chain=False, error=error, user_message=user_message)


@dataclass(slots=True)
class PipelineResult:
    success: bool
    executed_count: int = 0
    results: list[tuple[str, HookResult]] = field(default_factory=list)
    aggregated_data: dict[str, Any] = field(default_factory=dict)
    stopped_at: str | None = None
    error: str | None = None
    user_message: str | None = None

    @property
    def stopped(self) -> bool:
        return self.stopped_at is not None


class HookPipeline:
    def __init__(self) -> None:
        self._hooks: dict[str, list[BaseHook]] = {hook_type: [] for hook_type in HOOK_TYPES}

    def register(self, hook: BaseHook) -> None:
        if hook.type not in self._hooks:
            raise HookRegistrationError(f"Unknown hook type: {hook.type}")
        bucket = self._hooks[hook.type]
        if any(existing.id == hook.id for existing in bucket):
            raise HookRegistrationError(f"Hook '{hook.id}' is already registered for {hook.type}")
        bucket.append(hook)
        # Stable sort keeps registration order among equal priorities.
        bucket.sort(key=lambda item: item.priority, reverse=True)
        LOGGER.debug("Registered hook %s (%s, priority %s)", hook.id, hook.type, hook.priority)

    def unregister(self, hook_id: str, hook_type: str | None = None) -> bool:
        removed = False
        for current_type, bucket in self._hooks.items():
            if hook_type and current_type != hook_type:
                continue
            before = len(bucket)
            bucket[:] = [hook for hook in bucket if hook.id != hook_id]
            removed = removed or len(bucket) != before
        return removed

    def set_enabled(self, hook_id: str, enabled: bool) -> bool:
        found = False
        for bucket in self._hooks.values():
            for hook in bucket:
                if hook.id == hook_id:
                    hook.enabled = enabled
                    found = True
        return found

    def hooks(self, hook_type: str) -> list[BaseHook]:
        return list(self._hooks.get(hook_type, []))

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            hook_type: {
                "total": len(bucket),
                "enabled": sum(1 for hook in bucket if hook.enabled),
            }
            for hook_type, bucket in self._hooks.items()
        }

    def clear(self) -> None:
        for bucket in self._hooks.values():
            bucket.clear()

    async def _send_progress_message(self, context: BeforeCreationContext) -> bool:
        if context.shared_message is not None:
            return True
        if context.dm_channel is None:
            return False
        try:
            context.shared_message = await context.dm_channel.send(PROGRESS_MESSAGE)
        except Exception:
            LOGGER.exception("Could not send progress message. user=%s", context.user_id)
            return False
        return True

    async def execute(self, hook_type: str, context: HookContext) -> PipelineResult:
        context.hook_type = hook_type
        bucket = self.hooks(hook_type)
        result = PipelineResult(success=True)

        if (
            hook_type == HOOK_BEFORE_CREATION
            and isinstance(context, BeforeCreationContext)
            and any(hook.enabled for hook in bucket)
        ):
            if not await self._send_progress_message(context):
                result.success = False
                result.error = SHARED_MESSAGE_FAILURE
                result.user_message = SHARED_MESSAGE_USER_MESSAGE
                return result

        for hook in bucket:
            if not hook.enabled:
                continue
            if not await hook.should_execute(context):
                continue

            try:
                hook_result = await hook.execute_hook(context)
            except Exception as exc:
                LOGGER.exception("Hook %s raised during %s", hook.id, hook_type)
                hook_result = HookResult(
                    success=False,
                    continue_chain=True,
                    error=str(exc),
                    user_message=HOOK_FAILURE_MESSAGE,
                )
                result.executed_count += 1
                result.results.append((hook.id, hook_result))
                continue

            result.executed_count += 1
            result.results.append((hook.id, hook_result))

            if hook_result.success and hook_result.data:
                result.aggregated_data.update(hook_result.data)
                context.apply(hook_result.data)

            if not hook_result.success or not hook_result.continue_chain:
                result.stopped_at = hook.id
                result.success = hook_result.success
                result.error = hook_result.error
                result.user_message = hook_result.user_message
                break

        return result
