"""
Run events - what ``FlowExecutor.stream()`` yields while a run progresses.

Events are plain in-process records. Nothing here knows about a transport;
callers that want SSE or websockets serialize ``to_dict()`` themselves.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class RunEventType(StrEnum):
    """Types of events emitted during a run."""

    RUN_STARTED = "run_started"
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    HYBRID_DECISION = "hybrid_decision"
    RUN_COMPLETED = "run_completed"


@dataclass
class RunEvent:
    """An event in a flow run."""

    type: RunEventType
    run_id: str
    node_id: str | None = None  # Which node the event is about
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    result: Any = None  # RunResult, on run_completed only

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }
