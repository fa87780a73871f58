from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import HookRegistrationError
from services.hook_pipeline import (
    HOOK_AFTER_CREATION,
    HOOK_BEFORE_CLOSING,
    HOOK_BEFORE_CREATION,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_NORMAL,
    PROGRESS_MESSAGE,
    SHARED_MESSAGE_USER_MESSAGE,
    AfterCreationContext,
    BaseHook,
    BeforeCreationContext,
    CloseContext,
    HookPipeline,
    HookResult,
)


class RecordingHook(BaseHook):
    def __init__(
        self,
        hook_id: str,
        priority: int,
        calls: list[str],
        result: HookResult | None = None,
        hook_type: str = HOOK_AFTER_CREATION,
        raises: bool = False,
    ) -> None:
        super().__init__()
        self.id = hook_id
        self.name = hook_id
        self.priority = priority
        self.type = hook_type
        self._calls = calls
        self._result = result
        self._raises = raises

    async def execute_hook(self, context: Any) -> HookResult:
        self._calls.append(self.id)
        if self._raises:
            raise RuntimeError("boom")
        return self._result or self.ok()


@pytest.mark.asyncio
async def test_hooks_run_by_priority_then_registration_order() -> None:
    calls: list[str] = []
    pipeline = HookPipeline()
    pipeline.register(RecordingHook("low", PRIORITY_LOW, calls))
    pipeline.register(RecordingHook("normal-a", PRIORITY_NORMAL, calls))
    pipeline.register(RecordingHook("high", PRIORITY_HIGH, calls))
    pipeline.register(RecordingHook("normal-b", PRIORITY_NORMAL, calls))

    result = await pipeline.execute(HOOK_AFTER_CREATION, AfterCreationContext())

    assert calls == ["high", "normal-a", "normal-b", "low"]
    assert result.success is True
    assert result.executed_count == 4
    assert result.stopped is False


@pytest.mark.asyncio
async def test_disabled_and_unmet_hooks_are_skipped_without_counting() -> None:
    calls: list[str] = []
    pipeline = HookPipeline()
    disabled = RecordingHook("disabled", PRIORITY_HIGH, calls)
    conditional = RecordingHook("conditional", PRIORITY_NORMAL, calls).add_condition(lambda ctx: False)
    pipeline.register(disabled)
    pipeline.register(conditional)
    pipeline.register(RecordingHook("runs", PRIORITY_LOW, calls))
    assert pipeline.set_enabled("disabled", False) is True

    result = await pipeline.execute(HOOK_AFTER_CREATION, AfterCreationContext())

    assert calls == ["runs"]
    assert result.executed_count == 1
    assert pipeline.stats()[HOOK_AFTER_CREATION] == {"total": 3, "enabled": 2}


@pytest.mark.asyncio
async def test_raising_condition_counts_as_not_met() -> None:
    calls: list[str] = []
    pipeline = HookPipeline()

    def broken(_: Any) -> bool:
        raise ValueError("bad condition")

    pipeline.register(RecordingHook("guarded", PRIORITY_NORMAL, calls).add_condition(broken))

    result = await pipeline.execute(HOOK_AFTER_CREATION, AfterCreationContext())

    assert calls == []
    assert result.executed_count == 0


@pytest.mark.asyncio
async def test_stop_result_halts_chain_and_keeps_data() -> None:
    calls: list[str] = []
    pipeline = HookPipeline()
    stopper = RecordingHook("stopper", PRIORITY_HIGH, calls, hook_type=HOOK_BEFORE_CLOSING)
    stopper._result = stopper.stop({"reason": "vetoed"}, user_message="Not now")
    pipeline.register(stopper)
    pipeline.register(RecordingHook("after", PRIORITY_LOW, calls, hook_type=HOOK_BEFORE_CLOSING))
    context = CloseContext(closed_by=5, reason="original")

    result = await pipeline.execute(HOOK_BEFORE_CLOSING, context)

    assert calls == ["stopper"]
    assert result.stopped_at == "stopper"
    assert result.success is True
    assert result.user_message == "Not now"
    assert result.aggregated_data == {"reason": "vetoed"}
    assert context.reason == "vetoed"
    assert context.hook_type == HOOK_BEFORE_CLOSING


@pytest.mark.asyncio
async def test_failed_result_marks_pipeline_unsuccessful() -> None:
    calls: list[str] = []
    pipeline = HookPipeline()
    failing = RecordingHook("failing", PRIORITY_NORMAL, calls)
    failing._result = failing.fail("broken", user_message="Try later")
    pipeline.register(failing)
    pipeline.register(RecordingHook("never", PRIORITY_LOW, calls))

    result = await pipeline.execute(HOOK_AFTER_CREATION, AfterCreationContext())

    assert calls == ["failing"]
    assert result.success is False
    assert result.error == "broken"
    assert result.user_message == "Try later"


@pytest.mark.asyncio
async def test_hook_exception_is_isolated_and_chain_continues() -> None:
    calls: list[str] = []
    pipeline = HookPipeline()
    pipeline.register(RecordingHook("explodes", PRIORITY_HIGH, calls, raises=True))
    pipeline.register(RecordingHook("next", PRIORITY_LOW, calls))

    result = await pipeline.execute(HOOK_AFTER_CREATION, AfterCreationContext())

    assert calls == ["explodes", "next"]
    assert result.success is True
    assert result.executed_count == 2
    hook_id, failed = result.results[0]
    assert hook_id == "explodes"
    assert failed.success is False
    assert failed.error == "boom"


@pytest.mark.asyncio
async def test_unknown_context_keys_land_in_extras() -> None:
    calls: list[str] = []
    pipeline = HookPipeline()
    hook = RecordingHook("data", PRIORITY_NORMAL, calls, hook_type=HOOK_BEFORE_CREATION)
    hook._result = hook.ok({"selected_guild_id": 42, "custom_flag": True})
    pipeline.register(hook)
    channel = MagicMock()
    channel.send = AsyncMock(return_value=MagicMock())
    context = BeforeCreationContext(user_id=1, dm_channel=channel)

    await pipeline.execute(HOOK_BEFORE_CREATION, context)

    assert context.selected_guild_id == 42
    assert context.extras == {"custom_flag": True}
    channel.send.assert_awaited_once_with(PROGRESS_MESSAGE)
    assert context.shared_message is channel.send.return_value


@pytest.mark.asyncio
async def test_progress_message_failure_aborts_before_creation() -> None:
    calls: list[str] = []
    pipeline = HookPipeline()
    pipeline.register(RecordingHook("selector", PRIORITY_HIGH, calls, hook_type=HOOK_BEFORE_CREATION))
    channel = MagicMock()
    channel.send = AsyncMock(side_effect=RuntimeError("dm closed"))

    result = await pipeline.execute(HOOK_BEFORE_CREATION, BeforeCreationContext(user_id=1, dm_channel=channel))

    assert calls == []
    assert result.success is False
    assert result.user_message == SHARED_MESSAGE_USER_MESSAGE


@pytest.mark.asyncio
async def test_empty_before_creation_sends_no_progress_message() -> None:
    pipeline = HookPipeline()
    channel = MagicMock()
    channel.send = AsyncMock()

    result = await pipeline.execute(HOOK_BEFORE_CREATION, BeforeCreationContext(user_id=1, dm_channel=channel))

    assert result.success is True
    channel.send.assert_not_awaited()


def test_duplicate_and_unknown_registrations_are_rejected() -> None:
    pipeline = HookPipeline()
    pipeline.register(RecordingHook("same", PRIORITY_NORMAL, []))

    with pytest.raises(HookRegistrationError):
        pipeline.register(RecordingHook("same", PRIORITY_LOW, []))
    with pytest.raises(HookRegistrationError):
        pipeline.register(RecordingHook("odd", PRIORITY_LOW, [], hook_type="whenever"))

    assert pipeline.unregister("same") is True
    assert pipeline.unregister("same") is False
    assert pipeline.hooks(HOOK_AFTER_CREATION) == []
