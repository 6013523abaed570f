"""Execution of a single plan step against an LLM provider.

The runner resolves the model for a step, streams the response (routing
project-agent tokens through the artifact parser), charges credits, builds
and persists the deliverable, and broadcasts every stage as an event. It is
shared by group execution and refinement.
"""

import time
from dataclasses import dataclass, field

import structlog

from agents.registry import AgentConfig, get_agent, is_project_agent, is_visual_agent
from agents.tools import ToolContext, ToolExecutor
from artifacts.bundler import bundle_to_html
from artifacts.html import extract_html_block, rewrite_upload_urls, wrap_text_as_html
from artifacts.merger import merge_artifacts
from artifacts.parser import parse_artifact
from artifacts.streamer import ArtifactStreamer
from artifacts.types import ProjectArtifact, StreamEvent, StreamEventType
from config import settings
from events.bus import EventBus
from events.types import EngineEvent, EventType
from llm.base import LLMProvider
from llm.errors import LLMProviderError
from llm.health import ProviderHealthChecker
from llm.resolver import resolve_available_config, resolve_model_config
from llm.router import ProviderRouter
from llm.types import LLMConfig, LLMUsage, Message, StreamCallbacks, ToolCall
from models.credits import CreditLedger
from models.database import PlanStore
from models.schemas import Deliverable, DeliverableType, ExecutingPlan, Step

logger = structlog.get_logger()


@dataclass
class StepOutcome:
    """Result of running one step.

    Attributes:
        instance_id: The step that ran
        success: Whether a deliverable was produced
        output: Full LLM text (empty on failure)
        artifact: Project artifact for project agents, merged when refining
        deliverable: The persisted deliverable
        error: Failure message
    """

    instance_id: str
    success: bool
    output: str = ""
    artifact: ProjectArtifact | None = None
    deliverable: Deliverable | None = None
    error: str | None = None


@dataclass
class _StreamResult:
    text: str = ""
    usage: LLMUsage = field(default_factory=LLMUsage)
    error: Exception | None = None


class StepRunner:
    """Runs plan steps and reports them on the event bus.

    Attributes:
        store: Deliverable persistence
        ledger: Usage and credit accounting
        event_bus: Where events are broadcast
        router: Provider instance cache
        health: Provider health checker used for fallbacks
        tool_executor: Executes agent tool calls
    """

    def __init__(
        self,
        store: PlanStore,
        ledger: CreditLedger,
        event_bus: EventBus,
        router: ProviderRouter,
        health: ProviderHealthChecker,
        tool_executor: ToolExecutor | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.event_bus = event_bus
        self.router = router
        self.health = health
        self.tool_executor = tool_executor or ToolExecutor()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def _emit(
        self,
        event_type: EventType,
        plan: ExecutingPlan,
        step: Step | None = None,
        **data: object,
    ) -> None:
        await self.event_bus.publish(
            EngineEvent(
                type=event_type,
                conversation_id=plan.conversation_id,
                agent_id=step.agent_id if step else None,
                instance_id=step.instance_id if step else None,
                data=data,
            )
        )

    async def _fail(self, plan: ExecutingPlan, step: Step, message: str) -> StepOutcome:
        logger.warning(
            "step_failed",
            conversation_id=plan.conversation_id,
            instance_id=step.instance_id,
            agent_id=step.agent_id,
            error=message,
        )
        await self._emit(EventType.ERROR, plan, step, message=message)
        await self._emit(EventType.AGENT_END, plan, step, success=False)
        return StepOutcome(instance_id=step.instance_id, success=False, error=message)

    # -------------------------------------------------------------------------
    # Model resolution
    # -------------------------------------------------------------------------

    async def resolve_config(self, plan: ExecutingPlan, agent: AgentConfig) -> LLMConfig | None:
        """Pick the model for a step: plan override, else agent default, then health fallback."""
        config = agent.model_config
        if plan.model_override:
            override = resolve_model_config(plan.model_override, agent.model_config)
            if override is None:
                logger.warning(
                    "model_override_unknown",
                    conversation_id=plan.conversation_id,
                    model_override=plan.model_override,
                )
            else:
                config = override
        return await resolve_available_config(config, self.health)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def run(
        self,
        plan: ExecutingPlan,
        step: Step,
        messages: list[Message],
        *,
        user_id: str | None = None,
        base_artifact: ProjectArtifact | None = None,
        refined: bool = False,
    ) -> StepOutcome:
        """Execute ``step`` with ``messages`` and persist its deliverable.

        Args:
            plan: The plan the step belongs to. Not mutated.
            step: The step to run.
            messages: Conversation sent to the provider.
            user_id: User billed; defaults to the plan owner.
            base_artifact: Previous project artifact; a parsed update is merged into it.
            refined: Marks the deliverable as a refinement.

        Returns:
            The outcome. Failures are reported as events, never raised.
        """
        agent = get_agent(step.agent_id)
        billed_user = user_id or plan.user_id

        if agent is None:
            return await self._fail(plan, step, f"Unknown agent: {step.agent_id}")

        await self._emit(EventType.AGENT_THINKING, plan, step, agent_name=agent.name, task=step.task)
        await self._emit(
            EventType.AGENT_START,
            plan,
            step,
            agent_name=agent.name,
            role=agent.role,
            bot_type=agent.bot_type,
            task=step.task,
            refined=refined,
        )

        config = await self.resolve_config(plan, agent)
        if config is None:
            return await self._fail(plan, step, "No LLM provider is available")

        try:
            provider = self.router.get_provider(config)
        except LLMProviderError as e:
            return await self._fail(plan, step, str(e))

        start_time = time.time()
        result = await self._stream(plan, step, agent, provider, messages, billed_user)
        if result.error is not None:
            return await self._fail(plan, step, str(result.error))

        logger.info(
            "step_streamed",
            conversation_id=plan.conversation_id,
            instance_id=step.instance_id,
            provider=config.provider,
            model=config.model,
            output_chars=len(result.text),
            total_tokens=result.usage.total_tokens,
            duration_ms=int((time.time() - start_time) * 1000),
        )

        await self.ledger.track_usage(
            user_id=billed_user,
            conversation_id=plan.conversation_id,
            agent_id=agent.id,
            provider=config.provider,
            model=config.model,
            usage=result.usage,
        )
        credit = await self.ledger.consume_credits(billed_user, result.usage)
        await self._emit(
            EventType.CREDIT_UPDATE,
            plan,
            step,
            credits_used=credit.credits_used,
            balance=credit.balance,
        )

        deliverable, artifact = self.build_deliverable(
            plan, step, agent, result.text, base_artifact=base_artifact, refined=refined
        )
        await self.store.save_deliverable(deliverable)
        await self._emit(
            EventType.DELIVERABLE, plan, step, deliverable=deliverable.model_dump(mode="json")
        )
        await self._emit(EventType.AGENT_END, plan, step, success=True)

        return StepOutcome(
            instance_id=step.instance_id,
            success=True,
            output=result.text,
            artifact=artifact,
            deliverable=deliverable,
        )

    async def _stream(
        self,
        plan: ExecutingPlan,
        step: Step,
        agent: AgentConfig,
        provider: LLMProvider,
        messages: list[Message],
        user_id: str,
    ) -> _StreamResult:
        result = _StreamResult()
        visual = is_visual_agent(agent.id)
        streamer = ArtifactStreamer() if is_project_agent(agent.id) else None
        tool_context = ToolContext(
            conversation_id=plan.conversation_id,
            agent_id=agent.id,
            agent_name=agent.name,
            user_id=user_id,
        )

        async def on_token(token: str) -> None:
            if streamer is not None:
                for stream_event in streamer.on_token(token):
                    await self._emit_stream_event(plan, step, stream_event)
                if streamer.is_streaming():
                    return
            if not visual:
                await self._emit(EventType.TOKEN, plan, step, content=token)

        async def on_thinking(content: str) -> None:
            await self._emit(EventType.THINKING_UPDATE, plan, step, content=content)

        async def on_complete(text: str, usage: LLMUsage) -> None:
            result.text = text
            result.usage = usage

        async def on_error(error: Exception) -> None:
            result.error = error

        async def on_tool_call(call: ToolCall) -> str:
            return await self.tool_executor.execute(call, tool_context)

        callbacks = StreamCallbacks(
            on_token=on_token,
            on_complete=on_complete,
            on_error=on_error,
            on_thinking=on_thinking,
            on_tool_call=on_tool_call,
        )

        # Visual agents never get external tools.
        tools = [] if visual else self.tool_executor.get_tool_definitions(agent.tools)
        if tools:
            await provider.stream_with_tools(agent.system_prompt, messages, tools, callbacks)
        else:
            await provider.stream(agent.system_prompt, messages, callbacks)
        return result

    async def _emit_stream_event(
        self, plan: ExecutingPlan, step: Step, stream_event: StreamEvent
    ) -> None:
        if stream_event.type == StreamEventType.ARTIFACT_START:
            await self._emit(EventType.ARTIFACT_START, plan, step)
            return
        await self._emit(
            EventType.FILE_UPDATE,
            plan,
            step,
            file_path=stream_event.file_path,
            content=stream_event.content,
            language=stream_event.language,
            partial=stream_event.partial,
        )

    # -------------------------------------------------------------------------
    # Deliverables
    # -------------------------------------------------------------------------

    def build_deliverable(
        self,
        plan: ExecutingPlan,
        step: Step,
        agent: AgentConfig,
        text: str,
        *,
        base_artifact: ProjectArtifact | None = None,
        refined: bool = False,
    ) -> tuple[Deliverable, ProjectArtifact | None]:
        """Render the step's output into a deliverable.

        Project agents are bundled from their parsed artifact; other agents
        use the HTML document in their answer, or their text wrapped in a
        styled page.
        """
        artifact: ProjectArtifact | None = None
        deliverable_type = agent.deliverable_type

        if is_project_agent(agent.id):
            update = parse_artifact(text)
            if update is not None and base_artifact is not None:
                artifact = merge_artifacts(base_artifact, update)
            else:
                artifact = update or base_artifact

        if artifact is not None:
            content = bundle_to_html(artifact)
            deliverable_type = DeliverableType.PROJECT
        else:
            content = extract_html_block(text) or wrap_text_as_html(text, agent.name, agent.role)

        deliverable = Deliverable(
            conversation_id=plan.conversation_id,
            instance_id=step.instance_id,
            agent_id=agent.id,
            title=step.user_description or (artifact.title if artifact else "") or agent.name,
            type=deliverable_type,
            content=rewrite_upload_urls(content, settings.cdn_base_url),
            artifact=artifact,
            refined=refined,
        )
        return deliverable, artifact
