"""Tests for models/database.py and models/credits.py -- SQLite persistence."""

from pathlib import Path

import aiosqlite

from artifacts.types import ArtifactFile, ProjectArtifact
from llm.types import LLMUsage
from models.credits import CreditLedger
from models.database import PlanStore
from models.schemas import Deliverable, DeliverableType, ExecutingPlan, PlanStatus
from tests.conftest import make_step


def _plan(conversation_id: str = "conv_db", **overrides: object) -> ExecutingPlan:
    fields: dict[str, object] = {
        "conversation_id": conversation_id,
        "user_id": "user_1",
        "steps": [make_step("seo-1"), make_step("dev-1", "dev", depends_on=["seo-1"])],
        "execution_groups": [["seo-1"], ["dev-1"]],
    }
    fields.update(overrides)
    return ExecutingPlan(**fields)  # type: ignore[arg-type]


def _deliverable(conversation_id: str, instance_id: str, created_at: float) -> Deliverable:
    return Deliverable(
        conversation_id=conversation_id,
        instance_id=instance_id,
        agent_id="seo",
        title=f"Report {instance_id}",
        type=DeliverableType.REPORT,
        content="<html></html>",
        created_at=created_at,
    )


# =========================================================================
# Plans
# =========================================================================


class TestPlanStore:
    async def test_init_creates_parent_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "plans.db"
        await PlanStore(str(path)).init()
        assert path.exists()

    async def test_round_trip_keeps_artifacts_and_progress(self, store: PlanStore) -> None:
        artifact = ProjectArtifact(
            id="p",
            title="Shop",
            files=[ArtifactFile(file_path="src/App.tsx", content="x", language="typescript")],
        )
        plan = _plan(
            current_group_index=1,
            completed_instances=["seo-1"],
            agent_outputs={"seo-1": "keywords"},
            artifacts={"dev-1": artifact},
            status=PlanStatus.PAUSED,
        )

        await store.save_plan(plan)
        loaded = await store.get_plan("conv_db")

        assert loaded is not None
        assert loaded.current_group_index == 1
        assert loaded.completed_instances == ["seo-1"]
        assert loaded.agent_outputs == {"seo-1": "keywords"}
        assert loaded.artifacts["dev-1"].files[0].file_path == "src/App.tsx"
        assert loaded.status == PlanStatus.PAUSED
        assert loaded.steps[1].depends_on == ["seo-1"]

    async def test_save_replaces_existing_row(self, store: PlanStore) -> None:
        plan = _plan()
        await store.save_plan(plan)
        plan.current_group_index = 2
        await store.save_plan(plan)

        loaded = await store.get_plan("conv_db")
        assert loaded is not None
        assert loaded.current_group_index == 2
        assert len(await store.list_plans()) == 1

    async def test_missing_plan_is_none(self, store: PlanStore) -> None:
        assert await store.get_plan("nope") is None

    async def test_delete(self, store: PlanStore) -> None:
        await store.save_plan(_plan())
        await store.delete_plan("conv_db")
        assert await store.get_plan("conv_db") is None
        await store.delete_plan("conv_db")

    async def test_list_plans_paginates(self, store: PlanStore) -> None:
        for index in range(3):
            await store.save_plan(_plan(f"conv_{index}"))

        assert len(await store.list_plans(limit=2)) == 2
        assert len(await store.list_plans(limit=2, offset=2)) == 1

    async def test_unreadable_row_is_skipped(self, store: PlanStore) -> None:
        await store.save_plan(_plan("conv_good"))
        async with aiosqlite.connect(store.db_path) as db:
            await db.execute(
                "INSERT INTO plans VALUES (?, ?, ?, ?, ?, ?)",
                ("conv_bad", "u", "running", "{not json", 0.0, 0.0),
            )
            await db.commit()

        plans = await store.list_plans()
        assert [p.conversation_id for p in plans] == ["conv_good"]
        assert await store.get_plan("conv_bad") is None

    async def test_failures_degrade_instead_of_raising(self, tmp_path: Path) -> None:
        # Tables never created
        store = PlanStore(str(tmp_path / "empty.db"))
        await store.save_plan(_plan())
        assert await store.get_plan("conv_db") is None
        assert await store.list_plans() == []
        assert await store.list_deliverables("conv_db") == []


# =========================================================================
# Deliverables
# =========================================================================


class TestDeliverables:
    async def test_listed_oldest_first(self, store: PlanStore) -> None:
        await store.save_deliverable(_deliverable("conv_d", "b", created_at=20.0))
        await store.save_deliverable(_deliverable("conv_d", "a", created_at=10.0))
        await store.save_deliverable(_deliverable("other", "c", created_at=5.0))

        listed = await store.list_deliverables("conv_d")
        assert [d.instance_id for d in listed] == ["a", "b"]

    async def test_filter_by_instance(self, store: PlanStore) -> None:
        await store.save_deliverable(_deliverable("conv_d", "a", created_at=1.0))
        refined = _deliverable("conv_d", "a", created_at=2.0)
        refined.refined = True
        await store.save_deliverable(refined)
        await store.save_deliverable(_deliverable("conv_d", "b", created_at=3.0))

        listed = await store.list_deliverables("conv_d", instance_id="a")
        assert [d.refined for d in listed] == [False, True]

    async def test_project_artifact_survives(self, store: PlanStore) -> None:
        deliverable = _deliverable("conv_d", "dev-1", created_at=1.0)
        deliverable.type = DeliverableType.PROJECT
        deliverable.artifact = ProjectArtifact(
            id="p", title="T", files=[ArtifactFile(file_path="a.ts", content="1", language="typescript")]
        )
        await store.save_deliverable(deliverable)

        (loaded,) = await store.list_deliverables("conv_d")
        assert loaded.artifact is not None
        assert loaded.artifact.files[0].content == "1"
        assert loaded.id == deliverable.id


# =========================================================================
# Credits
# =========================================================================


class TestCreditLedger:
    def test_credits_for_usage(self, ledger: CreditLedger) -> None:
        assert ledger.credits_for(LLMUsage(input_tokens=1500, output_tokens=500)) == 2.0
        assert ledger.credits_for(LLMUsage()) == 0.0

    async def test_new_user_starts_with_initial_balance(self, ledger: CreditLedger) -> None:
        assert await ledger.get_balance("fresh") == 100.0

    async def test_consume_debits_balance(self, ledger: CreditLedger) -> None:
        first = await ledger.consume_credits("user_1", LLMUsage(input_tokens=2000, output_tokens=1000))
        second = await ledger.consume_credits("user_1", LLMUsage(input_tokens=500, output_tokens=500))

        assert (first.credits_used, first.balance) == (3.0, 97.0)
        assert (second.credits_used, second.balance) == (1.0, 96.0)
        assert await ledger.get_balance("user_1") == 96.0
        assert await ledger.get_balance("user_2") == 100.0

    async def test_balance_may_go_negative(self, tmp_path: Path) -> None:
        ledger = CreditLedger(str(tmp_path / "c.db"), initial_balance=1, credits_per_1k_tokens=1.0)
        await ledger.init()

        result = await ledger.consume_credits("u", LLMUsage(input_tokens=3000))
        assert result.balance == -2.0

    async def test_track_usage_records_row(self, ledger: CreditLedger) -> None:
        usage = LLMUsage(input_tokens=10, output_tokens=5, cache_read_input_tokens=3)
        await ledger.track_usage("user_1", "conv_1", "seo", "anthropic", "claude", usage)

        async with aiosqlite.connect(ledger.db_path) as db:
            cursor = await db.execute(
                "SELECT agent_id, provider, input_tokens, output_tokens, cache_read_input_tokens "
                "FROM usage_records"
            )
            rows = await cursor.fetchall()
        assert rows == [("seo", "anthropic", 10, 5, 3)]
