"""SQLite-based plan and deliverable persistence using aiosqlite.

This module provides the PlanStore class for persisting executing plans
between groups and the deliverables each step produces. All operations are
async. Reads and writes log and degrade on failure so a database error
never crashes a running plan; only ``init`` propagates.

Tables:
    plans: One row per in-flight plan, the ExecutingPlan stored as JSON.
    deliverables: Every deliverable produced, including refinements.

Usage:
    >>> from models.database import PlanStore
    >>> store = PlanStore("./data/pluribots.db")
    >>> await store.init()
    >>> await store.save_plan(plan)
    >>> plan = await store.get_plan("conv_abc123")
"""

import json
import time
from pathlib import Path

import aiosqlite
import structlog

from models.schemas import Deliverable, ExecutingPlan

logger = structlog.get_logger(__name__)


class PlanStore:
    """Async SQLite store for executing plans and deliverables.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the plan store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    async def init(self) -> None:
        """Create database tables if they do not exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS plans (
                        conversation_id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        plan_json TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS deliverables (
                        id TEXT PRIMARY KEY,
                        conversation_id TEXT NOT NULL,
                        instance_id TEXT NOT NULL,
                        agent_id TEXT NOT NULL,
                        deliverable_json TEXT NOT NULL,
                        created_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_deliverables_conversation
                    ON deliverables(conversation_id, created_at)
                """)
                await db.commit()
            logger.info("plan_store_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error("plan_store_init_failed", db_path=self.db_path, error=str(e))
            raise

    # -----------------------------------------------------------------
    # Plans
    # -----------------------------------------------------------------

    async def save_plan(self, plan: ExecutingPlan) -> None:
        """Insert or replace the stored state of a plan."""
        now = time.time()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO plans
                        (conversation_id, user_id, status, plan_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        plan.conversation_id,
                        plan.user_id,
                        plan.status.value,
                        plan.model_dump_json(),
                        plan.created_at,
                        now,
                    ),
                )
                await db.commit()
            logger.debug(
                "plan_saved",
                conversation_id=plan.conversation_id,
                status=plan.status.value,
                current_group_index=plan.current_group_index,
            )
        except Exception as e:
            logger.error("plan_save_failed", conversation_id=plan.conversation_id, error=str(e))

    async def get_plan(self, conversation_id: str) -> ExecutingPlan | None:
        """Load a plan, or None when absent or unreadable."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT plan_json FROM plans WHERE conversation_id = ?",
                    (conversation_id,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                return ExecutingPlan.model_validate_json(row["plan_json"])
        except Exception as e:
            logger.error("plan_get_failed", conversation_id=conversation_id, error=str(e))
            return None

    async def delete_plan(self, conversation_id: str) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM plans WHERE conversation_id = ?", (conversation_id,))
                await db.commit()
            logger.debug("plan_deleted", conversation_id=conversation_id)
        except Exception as e:
            logger.error("plan_delete_failed", conversation_id=conversation_id, error=str(e))

    async def list_plans(self, limit: int = 50, offset: int = 0) -> list[ExecutingPlan]:
        """List stored plans, most recently updated first.

        Args:
            limit: Maximum number of plans to return.
            offset: Number of plans to skip.

        Returns:
            Plans that parse cleanly; unreadable rows are skipped.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    """
                    SELECT conversation_id, plan_json FROM plans
                    ORDER BY updated_at DESC
                    LIMIT ? OFFSET ?
                    """,
                    (limit, offset),
                )
                rows = await cursor.fetchall()
        except Exception as e:
            logger.error("plan_list_failed", error=str(e))
            return []

        plans: list[ExecutingPlan] = []
        for row in rows:
            try:
                plans.append(ExecutingPlan.model_validate_json(row["plan_json"]))
            except ValueError as e:
                logger.warning(
                    "plan_row_unreadable",
                    conversation_id=row["conversation_id"],
                    error=str(e),
                )
        return plans

    # -----------------------------------------------------------------
    # Deliverables
    # -----------------------------------------------------------------

    async def save_deliverable(self, deliverable: Deliverable) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO deliverables
                        (id, conversation_id, instance_id, agent_id, deliverable_json, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        deliverable.id,
                        deliverable.conversation_id,
                        deliverable.instance_id,
                        deliverable.agent_id,
                        deliverable.model_dump_json(),
                        deliverable.created_at,
                    ),
                )
                await db.commit()
            logger.debug(
                "deliverable_saved",
                deliverable_id=deliverable.id,
                conversation_id=deliverable.conversation_id,
                instance_id=deliverable.instance_id,
                refined=deliverable.refined,
            )
        except Exception as e:
            logger.error(
                "deliverable_save_failed",
                deliverable_id=deliverable.id,
                conversation_id=deliverable.conversation_id,
                error=str(e),
            )

    async def list_deliverables(
        self,
        conversation_id: str,
        instance_id: str | None = None,
    ) -> list[Deliverable]:
        """List deliverables of a conversation, oldest first.

        Args:
            conversation_id: The conversation to look up.
            instance_id: Restrict to one step when given.

        Returns:
            List of deliverables.
        """
        query = "SELECT deliverable_json FROM deliverables WHERE conversation_id = ?"
        params: tuple[str, ...] = (conversation_id,)
        if instance_id is not None:
            query += " AND instance_id = ?"
            params = (conversation_id, instance_id)
        query += " ORDER BY created_at ASC"

        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
                return [Deliverable.model_validate(json.loads(row["deliverable_json"])) for row in rows]
        except Exception as e:
            logger.error("deliverable_list_failed", conversation_id=conversation_id, error=str(e))
            return []
