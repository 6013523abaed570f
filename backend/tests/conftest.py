"""Shared test fixtures for backend tests.

Provides a fresh EventBus, temporary SQLite persistence, and an engine
wired to the scripted MockProvider so tests never call a real LLM API.
"""

import sys
from pathlib import Path

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from artifacts.streamer import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(Path(__file__).resolve().parent.parent)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from engine.orchestrator import Orchestrator  # noqa: E402
from engine.refinement import RefinementController  # noqa: E402
from engine.runner import StepRunner  # noqa: E402
from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import EngineEvent, EventType  # noqa: E402
from llm.health import ProviderHealthChecker  # noqa: E402
from llm.mock_provider import MockProvider, MockResponse  # noqa: E402
from llm.router import ProviderRouter  # noqa: E402
from models.credits import CreditLedger  # noqa: E402
from models.database import PlanStore  # noqa: E402
from models.schemas import Step  # noqa: E402

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    return EventBus()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "data" / "pluribots-test.db")


@pytest.fixture()
async def store(db_path: str) -> PlanStore:
    plan_store = PlanStore(db_path)
    await plan_store.init()
    return plan_store


@pytest.fixture()
async def ledger(db_path: str) -> CreditLedger:
    credit_ledger = CreditLedger(db_path, initial_balance=100.0, credits_per_1k_tokens=1.0)
    await credit_ledger.init()
    return credit_ledger


# ---------------------------------------------------------------------------
# Mock LLM helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set USE_MOCK_LLM=true in the environment."""
    monkeypatch.setenv("USE_MOCK_LLM", "true")


def make_mock_router(
    responses: list[MockResponse] | None = None,
    default_text: str | None = None,
) -> tuple[ProviderRouter, MockProvider]:
    """Router that serves one scripted MockProvider for every config."""
    provider = MockProvider(responses=responses, default_text=default_text)
    return ProviderRouter(use_mock=True, mock_provider=provider), provider


def make_healthy_checker() -> ProviderHealthChecker:
    return ProviderHealthChecker(assume_healthy=True)


def make_runner(
    store: PlanStore,
    ledger: CreditLedger,
    event_bus: EventBus,
    router: ProviderRouter,
    health: ProviderHealthChecker | None = None,
) -> StepRunner:
    return StepRunner(
        store=store,
        ledger=ledger,
        event_bus=event_bus,
        router=router,
        health=health or make_healthy_checker(),
    )


def make_engine(
    store: PlanStore,
    ledger: CreditLedger,
    event_bus: EventBus,
    responses: list[MockResponse] | None = None,
    default_text: str | None = None,
) -> tuple[Orchestrator, RefinementController, MockProvider]:
    """Orchestrator and refinement controller sharing one scripted provider."""
    router, provider = make_mock_router(responses, default_text)
    runner = make_runner(store, ledger, event_bus, router)
    return Orchestrator(runner), RefinementController(runner), provider


def make_step(
    instance_id: str,
    agent_id: str = "seo",
    depends_on: list[str] | None = None,
    task: str | None = None,
) -> Step:
    return Step(
        agent_id=agent_id,
        instance_id=instance_id,
        task=task or f"Task for {instance_id}",
        depends_on=depends_on or [],
    )


# ---------------------------------------------------------------------------
# Event Collection Helper
# ---------------------------------------------------------------------------


async def collect_events(event_bus: EventBus, conversation_id: str) -> list[EngineEvent]:
    """Subscribe to a conversation and drain all buffered engine events.

    The STREAM_CLOSED sentinel of a closed conversation is left out.
    """
    queue = event_bus.subscribe(conversation_id)
    events: list[EngineEvent] = []
    while not queue.empty():
        event = queue.get_nowait()
        if event.type != EventType.STREAM_CLOSED:
            events.append(event)
    event_bus.unsubscribe(conversation_id, queue)
    return events


def events_of(events: list[EngineEvent], event_type: EventType) -> list[EngineEvent]:
    return [e for e in events if e.type == event_type]
