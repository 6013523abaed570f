"""Usage tracking and credit balances.

The ledger records token usage per LLM call and debits a per-user credit
balance. Credit arithmetic is intentionally flat: a fixed number of credits
per thousand tokens, configured in settings.
"""

import time
from dataclasses import dataclass
from pathlib import Path

import aiosqlite
import structlog

from config import settings
from llm.types import LLMUsage

logger = structlog.get_logger(__name__)


@dataclass
class CreditUsage:
    """Result of a credit debit."""

    credits_used: float
    balance: float


class CreditLedger:
    """Async SQLite ledger of token usage and per-user credit balances.

    Accounts are created lazily with ``initial_balance`` credits the first
    time a user is charged. Write failures are logged; the step that
    triggered them still completes.

    Attributes:
        db_path: Path to the SQLite database file.
        initial_balance: Starting balance for new accounts.
        credits_per_1k_tokens: Price of one thousand tokens.
    """

    def __init__(
        self,
        db_path: str,
        initial_balance: float | None = None,
        credits_per_1k_tokens: float | None = None,
    ) -> None:
        self.db_path = db_path
        self.initial_balance = (
            initial_balance if initial_balance is not None else settings.initial_credit_balance
        )
        self.credits_per_1k_tokens = (
            credits_per_1k_tokens
            if credits_per_1k_tokens is not None
            else settings.credits_per_1k_tokens
        )

    async def init(self) -> None:
        """Create the usage and credit tables if they do not exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS usage_records (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        conversation_id TEXT NOT NULL,
                        agent_id TEXT NOT NULL,
                        provider TEXT NOT NULL,
                        model TEXT NOT NULL,
                        input_tokens INTEGER NOT NULL DEFAULT 0,
                        output_tokens INTEGER NOT NULL DEFAULT 0,
                        cache_creation_input_tokens INTEGER,
                        cache_read_input_tokens INTEGER,
                        created_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS credit_accounts (
                        user_id TEXT PRIMARY KEY,
                        balance REAL NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.commit()
            logger.info("credit_ledger_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error("credit_ledger_init_failed", db_path=self.db_path, error=str(e))
            raise

    def credits_for(self, usage: LLMUsage) -> float:
        """Credits charged for ``usage``."""
        return round(usage.total_tokens / 1000 * self.credits_per_1k_tokens, 4)

    async def track_usage(
        self,
        user_id: str,
        conversation_id: str,
        agent_id: str,
        provider: str,
        model: str,
        usage: LLMUsage,
    ) -> None:
        """Append one usage record."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO usage_records
                        (user_id, conversation_id, agent_id, provider, model,
                         input_tokens, output_tokens, cache_creation_input_tokens,
                         cache_read_input_tokens, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        conversation_id,
                        agent_id,
                        provider,
                        model,
                        usage.input_tokens,
                        usage.output_tokens,
                        usage.cache_creation_input_tokens,
                        usage.cache_read_input_tokens,
                        time.time(),
                    ),
                )
                await db.commit()
            logger.debug(
                "usage_tracked",
                user_id=user_id,
                agent_id=agent_id,
                model=model,
                total_tokens=usage.total_tokens,
            )
        except Exception as e:
            logger.error("usage_track_failed", user_id=user_id, agent_id=agent_id, error=str(e))

    async def get_balance(self, user_id: str) -> float:
        """Current balance; users without an account get the initial balance."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT balance FROM credit_accounts WHERE user_id = ?",
                    (user_id,),
                )
                row = await cursor.fetchone()
                return float(row["balance"]) if row else float(self.initial_balance)
        except Exception as e:
            logger.error("credit_balance_get_failed", user_id=user_id, error=str(e))
            return float(self.initial_balance)

    async def consume_credits(self, user_id: str, usage: LLMUsage) -> CreditUsage:
        """Debit the credits for ``usage`` and return the new balance.

        The balance may go negative; enforcing limits happens upstream.
        """
        credits_used = self.credits_for(usage)
        now = time.time()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                await db.execute(
                    """
                    INSERT OR IGNORE INTO credit_accounts (user_id, balance, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (user_id, float(self.initial_balance), now),
                )
                await db.execute(
                    """
                    UPDATE credit_accounts
                    SET balance = balance - ?, updated_at = ?
                    WHERE user_id = ?
                    """,
                    (credits_used, now, user_id),
                )
                cursor = await db.execute(
                    "SELECT balance FROM credit_accounts WHERE user_id = ?",
                    (user_id,),
                )
                row = await cursor.fetchone()
                await db.commit()
            balance = float(row["balance"]) if row else float(self.initial_balance)
            logger.debug(
                "credits_consumed",
                user_id=user_id,
                credits_used=credits_used,
                balance=balance,
            )
            return CreditUsage(credits_used=credits_used, balance=balance)
        except Exception as e:
            logger.error("credits_consume_failed", user_id=user_id, error=str(e))
            return CreditUsage(credits_used=0.0, balance=float(self.initial_balance))
