"""Event type definitions for the Pluribots engine event system.

This module defines all event types that flow from plan execution to the
frontend chat view. Every meaningful state change of a plan produces an event.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types produced by the plan execution engine.

    Events are categorized by:
    - Coordination lifecycle: A plan starting and ending
    - Agent lifecycle: Thinking, start and end of each step
    - Streaming: Tokens, reasoning and parsed artifact files
    - Results: Deliverables, step completion and credit usage
    """

    # Coordination lifecycle
    COORDINATION_START = "coordination_start"
    COORDINATION_END = "coordination_end"
    STREAM_CLOSED = "stream_closed"

    # Agent lifecycle
    AGENT_THINKING = "agent_thinking"
    AGENT_START = "agent_start"
    AGENT_END = "agent_end"

    # Streaming
    TOKEN = "token"
    THINKING_UPDATE = "thinking_update"
    ARTIFACT_START = "artifact_start"
    FILE_UPDATE = "file_update"

    # Results
    DELIVERABLE = "deliverable"
    STEP_COMPLETE = "step_complete"
    CREDIT_UPDATE = "credit_update"
    ERROR = "error"


class EngineEvent(BaseModel):
    """An event emitted during plan execution.

    This is the primary data structure that flows from the engine to the
    frontend over Server-Sent Events. Each event includes:
    - type: The category of event (from EventType enum)
    - timestamp: Unix timestamp when the event occurred
    - conversation_id: Which conversation this event belongs to
    - agent_id: Which agent produced this event (if applicable)
    - instance_id: Which plan step produced this event (if applicable)
    - data: Event-specific payload

    Payload schemas by event type:

    COORDINATION_START:
        - total_steps: int - Number of steps in the plan
        - groups: list[list[str]] - Execution groups of instance ids

    COORDINATION_END:
        - reason: str - "completed" or "aborted"

    AGENT_START / AGENT_THINKING:
        - agent_name: str - Display name of the agent
        - task: str - The step's task text

    TOKEN:
        - content: str - Streamed text chunk

    THINKING_UPDATE:
        - content: str - Streamed reasoning chunk

    FILE_UPDATE:
        - file_path: str - Path inside the artifact
        - content: str - File content so far (partial) or final
        - language: str - Detected language
        - partial: bool - Whether more content will follow

    DELIVERABLE:
        - deliverable: dict - The persisted deliverable

    STEP_COMPLETE:
        - summary: str - Short human-readable summary
        - next_agent_id / next_instance_id / next_task: str | None
        - step_index: int - Completed step count
        - total_steps: int - Steps in the plan

    CREDIT_UPDATE:
        - credits_used: float
        - balance: float

    ERROR:
        - message: str - What went wrong
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    conversation_id: str
    agent_id: str | None = None
    instance_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "file_update",
                    "timestamp": 1699876543.123,
                    "conversation_id": "conv_abc123",
                    "agent_id": "dev",
                    "instance_id": "dev-1",
                    "data": {
                        "file_path": "src/App.tsx",
                        "content": "export default function App() {}",
                        "language": "typescript",
                        "partial": False,
                    },
                }
            ]
        }
    }

    def to_sse(self) -> str:
        """Render the event as a Server-Sent Events frame."""
        return f"event: {self.type.value}\ndata: {self.model_dump_json()}\n\n"
