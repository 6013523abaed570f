"""Tests for plan_manager.py -- background task lifecycle and state checks."""

import asyncio

import pytest

from events.bus import EventBus
from events.types import EventType
from llm.mock_provider import MockResponse
from models.credits import CreditLedger
from models.database import PlanStore
from models.schemas import ExecutingPlan, PlanStatus
from plan_manager import PlanBusyError, PlanManager, PlanNotFoundError, PlanStateError
from tests.conftest import (
    collect_events,
    events_of,
    make_healthy_checker,
    make_mock_router,
    make_step,
)

BRAND_PAGE = "<!DOCTYPE html><html><head></head><body><section>Brand</section></body></html>"


def _manager(
    store: PlanStore,
    ledger: CreditLedger,
    event_bus: EventBus,
    responses: list[MockResponse] | None = None,
    default_text: str | None = "done",
) -> PlanManager:
    router, _ = make_mock_router(responses, default_text)
    return PlanManager(store, ledger, event_bus, router=router, health=make_healthy_checker())


async def _wait_idle(manager: PlanManager, conversation_id: str) -> None:
    task = manager._tasks.get(conversation_id)
    if task is not None:
        await task


async def _save_plan(store: PlanStore, conversation_id: str, status: PlanStatus, **fields: object) -> ExecutingPlan:
    plan = ExecutingPlan(
        conversation_id=conversation_id,
        user_id="u",
        steps=[make_step("seo-1"), make_step("brand-1", "brand")],
        execution_groups=[["seo-1", "brand-1"]],
        status=status,
        **fields,  # type: ignore[arg-type]
    )
    await store.save_plan(plan)
    return plan


# =========================================================================
# approve / continue
# =========================================================================


class TestApproveAndContinue:
    async def test_approve_runs_in_background(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)

        await manager.approve_plan("conv_a", [make_step("seo-1")], user_id="u")
        assert manager.is_busy("conv_a")
        await _wait_idle(manager, "conv_a")

        events = await collect_events(event_bus, "conv_a")
        assert events_of(events, EventType.COORDINATION_END)[0].data["reason"] == "completed"
        assert not manager.is_busy("conv_a")
        assert manager.active_count == 0

    async def test_continue_resumes_paused_plan(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus, responses=[MockResponse(text=BRAND_PAGE)])
        steps = [make_step("brand-1", "brand"), make_step("seo-1", "seo", depends_on=["brand-1"])]

        await manager.approve_plan("conv_c", steps, user_id="u")
        await _wait_idle(manager, "conv_c")
        paused = await manager.get_plan("conv_c")
        assert paused is not None
        assert paused.status == PlanStatus.PAUSED

        await manager.continue_plan("conv_c")
        await _wait_idle(manager, "conv_c")

        assert await manager.get_plan("conv_c") is None
        events = await collect_events(event_bus, "conv_c")
        assert events_of(events, EventType.COORDINATION_END)

    async def test_continue_without_plan(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        with pytest.raises(PlanNotFoundError):
            await _manager(store, ledger, event_bus).continue_plan("missing")

    async def test_continue_running_plan_is_a_state_error(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        await _save_plan(store, "conv_r", PlanStatus.RUNNING)
        with pytest.raises(PlanStateError):
            await _manager(store, ledger, event_bus).continue_plan("conv_r")


# =========================================================================
# Busy conversations
# =========================================================================


class TestBusy:
    async def test_second_operation_is_rejected(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)
        await _save_plan(store, "conv_b", PlanStatus.PAUSED)
        release = asyncio.Event()

        await manager._schedule("conv_b", "hold", release.wait())
        assert manager.active_count == 1

        with pytest.raises(PlanBusyError):
            await manager.approve_plan("conv_b", [make_step("seo-1")], user_id="u")
        with pytest.raises(PlanBusyError):
            await manager.continue_plan("conv_b")
        with pytest.raises(PlanBusyError):
            await manager.refine("conv_b", "brand-1", "feedback")

        release.set()
        await _wait_idle(manager, "conv_b")
        assert not manager.is_busy("conv_b")

    async def test_other_conversations_are_independent(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)
        release = asyncio.Event()
        await manager._schedule("conv_x", "hold", release.wait())

        await manager.approve_plan("conv_y", [make_step("seo-1")], user_id="u")
        await _wait_idle(manager, "conv_y")

        assert manager.is_busy("conv_x")
        release.set()
        await _wait_idle(manager, "conv_x")

    async def test_unexpected_failure_becomes_error_event(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)

        async def explode() -> None:
            raise RuntimeError("kaboom")

        await manager._schedule("conv_e", "explode", explode())
        await _wait_idle(manager, "conv_e")

        error = events_of(await collect_events(event_bus, "conv_e"), EventType.ERROR)[0]
        assert error.data == {"message": "kaboom", "phase": "explode"}

    async def test_crashed_operation_can_be_continued(
        self,
        store: PlanStore,
        ledger: CreditLedger,
        event_bus: EventBus,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        manager = _manager(store, ledger, event_bus)

        async def crash(*args: object, **kwargs: object) -> None:
            raise RuntimeError("bad image payload")

        with monkeypatch.context() as patch:
            patch.setattr(manager.orchestrator.runner, "run", crash)
            await manager.approve_plan("conv_k", [make_step("seo-1")], user_id="u")
            await _wait_idle(manager, "conv_k")

        crashed = await manager.get_plan("conv_k")
        assert crashed is not None
        assert crashed.status == PlanStatus.FAILED
        error = events_of(await collect_events(event_bus, "conv_k"), EventType.ERROR)[0]
        assert error.data == {"message": "bad image payload", "phase": "approve"}

        await manager.continue_plan("conv_k")
        await _wait_idle(manager, "conv_k")

        assert await manager.get_plan("conv_k") is None
        end = events_of(await collect_events(event_bus, "conv_k"), EventType.COORDINATION_END)
        assert end[0].data["reason"] == "completed"


# =========================================================================
# refine
# =========================================================================


class TestRefine:
    async def test_validation(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)
        await _save_plan(store, "conv_v", PlanStatus.PAUSED, completed_instances=["seo-1"])

        with pytest.raises(PlanNotFoundError):
            await manager.refine("missing", "seo-1", "x")
        with pytest.raises(PlanNotFoundError):
            await manager.refine("conv_v", "nope-1", "x")
        with pytest.raises(PlanStateError, match="has not completed"):
            await manager.refine("conv_v", "brand-1", "x")
        with pytest.raises(PlanStateError, match="does not support refinement"):
            await manager.refine("conv_v", "seo-1", "x")

    async def test_refine_visual_step(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(
            store,
            ledger,
            event_bus,
            responses=[MockResponse(text=BRAND_PAGE), MockResponse(text=BRAND_PAGE.replace("Brand", "Darker"))],
        )
        await manager.approve_plan("conv_f", [make_step("brand-1", "brand")], user_id="owner")
        await _wait_idle(manager, "conv_f")

        await manager.refine("conv_f", "brand-1", "Make it darker", user_id="reviewer")
        await _wait_idle(manager, "conv_f")

        deliverables = await store.list_deliverables("conv_f", instance_id="brand-1")
        assert [d.refined for d in deliverables] == [False, True]
        assert "Darker" in deliverables[1].content
        assert await ledger.get_balance("reviewer") < 100.0


# =========================================================================
# abort / recovery / shutdown
# =========================================================================


class TestAbortAndRecovery:
    async def test_abort_without_plan(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        with pytest.raises(PlanNotFoundError):
            await _manager(store, ledger, event_bus).abort_plan("missing")

    async def test_abort_cancels_task_and_drops_plan(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)
        await _save_plan(store, "conv_ab", PlanStatus.RUNNING)
        never = asyncio.Event()
        await manager._schedule("conv_ab", "hold", never.wait())
        task = manager._tasks["conv_ab"]

        await manager.abort_plan("conv_ab")

        assert task.cancelled()
        assert not manager.is_busy("conv_ab")
        assert await store.get_plan("conv_ab") is None
        end = events_of(await collect_events(event_bus, "conv_ab"), EventType.COORDINATION_END)
        assert end[0].data == {"reason": "aborted"}

    async def test_abort_paused_plan(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)
        await _save_plan(store, "conv_p", PlanStatus.PAUSED)

        await manager.abort_plan("conv_p")

        assert await store.get_plan("conv_p") is None

    async def test_abort_closes_open_streams(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)
        await _save_plan(store, "conv_s", PlanStatus.PAUSED)
        queue = event_bus.subscribe("conv_s")

        await manager.abort_plan("conv_s")

        assert queue.get_nowait().type == EventType.COORDINATION_END
        assert queue.get_nowait().type == EventType.STREAM_CLOSED
        assert event_bus.get_subscriber_count("conv_s") == 0

    async def test_recover_interrupted_marks_running_as_failed(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        await _save_plan(store, "conv_1", PlanStatus.RUNNING)
        await _save_plan(store, "conv_2", PlanStatus.PAUSED)
        manager = _manager(store, ledger, event_bus)

        assert await manager.recover_interrupted() == 1

        recovered = await store.get_plan("conv_1")
        untouched = await store.get_plan("conv_2")
        assert recovered is not None and recovered.status == PlanStatus.FAILED
        assert untouched is not None and untouched.status == PlanStatus.PAUSED

    async def test_cleanup_all_cancels_everything(
        self, store: PlanStore, ledger: CreditLedger, event_bus: EventBus
    ) -> None:
        manager = _manager(store, ledger, event_bus)
        tasks = []
        for cid in ("c1", "c2"):
            await manager._schedule(cid, "hold", asyncio.Event().wait())
            tasks.append(manager._tasks[cid])

        await manager.cleanup_all()

        assert all(task.cancelled() for task in tasks)
        assert manager.active_count == 0
