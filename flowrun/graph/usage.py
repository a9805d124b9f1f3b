"""Flow-level usage heuristics: tokens, latency and cost.

Pure functions over a whole FlowGraph. They never fail; degenerate input
degrades to the floors (1 token, 600 ms).
"""

import json
import math

from pydantic import BaseModel, ConfigDict, computed_field
from pydantic.alias_generators import to_camel

from flowrun.graph.edge import EdgeKind, FlowGraph

CHARS_PER_TOKEN = 4
COMPLETION_CHARS_PER_NODE = 480
COMPLETION_CHARS_PER_BRANCH = 120
MIN_LATENCY_MS = 600
USD_PER_TOKEN = 0.000002


class TokenUsage(BaseModel):
    """Estimated prompt and completion token counts."""

    prompt_tokens: int
    completion_tokens: int

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    @computed_field
    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


def _serialize(items: list) -> str:
    payload = [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in items]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def estimate_token_usage(graph: FlowGraph) -> TokenUsage:
    """Estimate tokens for the whole flow from its serialized size."""
    prompt_chars = len(_serialize(graph.nodes)) + len(_serialize(graph.edges))
    branch_edges = sum(1 for edge in graph.edges if edge.effective_kind == EdgeKind.BRANCH)
    completion_chars = (
        len(graph.nodes) * COMPLETION_CHARS_PER_NODE + branch_edges * COMPLETION_CHARS_PER_BRANCH
    )
    return TokenUsage(
        prompt_tokens=max(1, math.ceil(prompt_chars / CHARS_PER_TOKEN)),
        completion_tokens=max(1, math.ceil(completion_chars / CHARS_PER_TOKEN)),
    )


def estimate_latency_ms(usage: TokenUsage) -> int:
    latency = round(usage.total_tokens * 12 + usage.prompt_tokens * 4)
    return max(MIN_LATENCY_MS, latency)


def estimate_cost_usd(usage: TokenUsage) -> float:
    return round(usage.total_tokens * USD_PER_TOKEN, 6)
