"""
Hybrid routing - choose a fast or deliberate continuation for a hybrid node.

The router scores the whole flow (node-type weights plus an edge term),
sizes it with the usage heuristics, and compares those metrics against the
fast branch's gate thresholds. Any metric over budget escalates to the
deliberate branch, then to the configured fallback strategy, then to any
other branch. An explicit ``complexityGate`` param overrides the
heuristics entirely.

The decision is recorded, not enforced: every declared node still runs.
``inactive_branch_nodes`` derives which nodes sit only behind branches that
were not selected so the manifest can annotate them.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flowrun.graph.edge import EdgeSpec, FlowGraph
from flowrun.graph.node import NodeSpec, complexity_weight
from flowrun.graph.usage import estimate_cost_usd, estimate_latency_ms, estimate_token_usage

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_BUDGET = 2000
DEFAULT_LATENCY_BUDGET_MS = 3000
DEFAULT_FALLBACK_STRATEGY = "cot"
EDGE_COMPLEXITY_WEIGHT = 0.35

_MODEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BranchThresholds(BaseModel):
    max_complexity: float | None = None
    max_tokens: int | None = None
    max_latency_ms: int | None = None

    model_config = _MODEL_CONFIG


class BranchSummary(BaseModel):
    """One routable branch of a hybrid node, with its name already resolved."""

    branch: str
    target: str
    thresholds: BranchThresholds = Field(default_factory=BranchThresholds)

    model_config = _MODEL_CONFIG


class HybridMetrics(BaseModel):
    complexity_score: float
    token_estimate: int
    latency_estimate: int
    estimated_cost_usd: float

    model_config = _MODEL_CONFIG


class HybridThresholds(BaseModel):
    token_budget: int
    latency_budget_ms: int
    fast_complexity: float | None = None

    model_config = _MODEL_CONFIG


class HybridDecision(BaseModel):
    """The routing decision for one hybrid node in one run."""

    node_id: str
    node_label: str = ""
    selected_branch: str
    fallback: str
    rationale: str
    forced: bool = False
    metrics: HybridMetrics
    thresholds: HybridThresholds
    branches: list[BranchSummary] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = _MODEL_CONFIG

    @property
    def selected_targets(self) -> list[str]:
        return [b.target for b in self.branches if b.branch == self.selected_branch]

    @property
    def rejected_targets(self) -> list[str]:
        return [b.target for b in self.branches if b.branch != self.selected_branch]


def compute_flow_complexity(graph: FlowGraph) -> float:
    """Sum of per-node type weights plus 0.35 per edge, rounded to 2 places."""
    node_score = sum(complexity_weight(node) for node in graph.nodes)
    edge_score = len(graph.edges) * EDGE_COMPLEXITY_WEIGHT
    return round(node_score + edge_score, 2)


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return value


def _nested_number(params: dict[str, Any], key: str, inner: str) -> float | None:
    container = params.get(key)
    if isinstance(container, dict):
        return _number(container.get(inner))
    return None


def _branch_summaries(graph: FlowGraph, node: NodeSpec) -> list[BranchSummary]:
    summaries = []
    for edge in graph.get_outgoing_edges(node.id):
        if not edge.is_branch_edge:
            continue
        gate_thresholds = edge.gate.thresholds if edge.gate else None
        summaries.append(
            BranchSummary(
                branch=edge.branch_name(),
                target=edge.target,
                thresholds=BranchThresholds(
                    max_complexity=gate_thresholds.max_complexity if gate_thresholds else None,
                    max_tokens=gate_thresholds.max_tokens if gate_thresholds else None,
                    max_latency_ms=gate_thresholds.max_latency_ms if gate_thresholds else None,
                ),
            )
        )
    return summaries


def _find_branch(branches: list[BranchSummary], needle: str) -> BranchSummary | None:
    for summary in branches:
        if needle in summary.branch.lower():
            return summary
    return None


def _escalation_branch(
    deliberate: BranchSummary | None,
    fallback: BranchSummary | None,
    branches: list[BranchSummary],
    current: str,
) -> str:
    if deliberate:
        return deliberate.branch
    if fallback:
        return fallback.branch
    for summary in branches:
        if summary.branch != current:
            return summary.branch
    return current


def _fmt(value: float) -> str:
    return f"{value:g}"


def evaluate_hybrid_decision(
    graph: FlowGraph,
    node: NodeSpec,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    latency_budget_ms: int = DEFAULT_LATENCY_BUDGET_MS,
) -> HybridDecision:
    """
    Decide which downstream branch of ``node`` is active.

    Args:
        graph: The flow being run
        node: The hybrid node
        token_budget: Token budget when the node declares no ``budget.tokens``
        latency_budget_ms: Latency budget when the node declares no ``latency.ms``

    Returns:
        HybridDecision with the selected branch, metrics and rationale
    """
    params = node.params
    usage = estimate_token_usage(graph)
    token_estimate = usage.total_tokens
    latency_estimate = estimate_latency_ms(usage)
    complexity_score = compute_flow_complexity(graph)
    estimated_cost = estimate_cost_usd(usage)

    complexity_gate = str(params.get("complexityGate") or "auto").lower()
    fallback_strategy = params.get("fallback")
    if not isinstance(fallback_strategy, str):
        fallback_strategy = DEFAULT_FALLBACK_STRATEGY
    node_tokens = _nested_number(params, "budget", "tokens")
    node_latency = _nested_number(params, "latency", "ms")
    token_budget = int(node_tokens) if node_tokens is not None else token_budget
    latency_budget = int(node_latency) if node_latency is not None else latency_budget_ms

    branches = _branch_summaries(graph, node)
    fast = _find_branch(branches, "fast")
    deliberate = _find_branch(branches, "deliberate")
    fallback = next((b for b in branches if b.branch.lower() == fallback_strategy.lower()), None)

    if fast:
        selected = fast.branch
    elif branches:
        selected = branches[0].branch
    else:
        selected = "fast"

    fast_complexity = (
        fast.thresholds.max_complexity
        if fast and fast.thresholds.max_complexity is not None
        else max(6.0, len(graph.nodes) * 1.2 + len(graph.edges) * 0.5)
    )
    fast_tokens = fast.thresholds.max_tokens if fast else None
    fast_latency = fast.thresholds.max_latency_ms if fast else None
    token_limit = min(token_budget, fast_tokens) if fast_tokens is not None else token_budget
    latency_limit = (
        min(latency_budget, fast_latency) if fast_latency is not None else latency_budget
    )

    rationale: list[str] = []
    forced = False
    if complexity_gate == "fast":
        forced = True
        if fast:
            selected = fast.branch
        rationale.append("Complexity gate forced the fast branch.")
    elif complexity_gate == "deliberate":
        forced = True
        selected = _escalation_branch(deliberate, fallback, branches, selected)
        rationale.append("Complexity gate forced the deliberate branch.")
    else:
        triggers = []
        if complexity_score > fast_complexity:
            triggers.append(
                f"complexity {complexity_score:.2f} > fast threshold {_fmt(fast_complexity)}"
            )
        if token_estimate > token_limit:
            triggers.append(f"tokens {token_estimate} > budget {token_limit}")
        if latency_estimate > latency_limit:
            triggers.append(f"latency {latency_estimate}ms > budget {latency_limit}ms")

        if triggers:
            selected = _escalation_branch(deliberate, fallback, branches, selected)
            rationale.append(f"Escalated to deliberate branch because {', '.join(triggers)}.")
        else:
            rationale.append("All heuristics within fast thresholds; staying on fast branch.")

    if not branches:
        rationale.append("No hybrid branches defined; defaulting to fast execution path.")

    logger.info(f"   🔀 Hybrid '{node.id}' → {selected} ({' '.join(rationale)})")

    return HybridDecision(
        node_id=node.id,
        node_label=node.block,
        selected_branch=selected,
        fallback=fallback_strategy,
        rationale=" ".join(rationale),
        forced=forced,
        metrics=HybridMetrics(
            complexity_score=complexity_score,
            token_estimate=token_estimate,
            latency_estimate=latency_estimate,
            estimated_cost_usd=estimated_cost,
        ),
        thresholds=HybridThresholds(
            token_budget=token_budget,
            latency_budget_ms=latency_budget,
            fast_complexity=fast_complexity,
        ),
        branches=branches,
    )


def _rejected_branch_filter(decision: HybridDecision) -> Callable[[EdgeSpec], bool]:
    def is_rejected(edge: EdgeSpec) -> bool:
        return (
            edge.source == decision.node_id
            and edge.is_branch_edge
            and edge.branch_name() != decision.selected_branch
        )

    return is_rejected


def inactive_branch_nodes(graph: FlowGraph, decisions: list[HybridDecision]) -> dict[str, str]:
    """
    Nodes reachable only through branches that were not selected.

    Returns:
        Dict mapping node_id -> reason string
    """
    inactive: dict[str, str] = {}
    for decision in decisions:
        rejected = decision.rejected_targets
        if not rejected:
            continue
        # Anything reachable from a root without taking a rejected branch stays active
        still_active = graph.reachable_from(
            [*graph.root_nodes(), decision.node_id], skip=_rejected_branch_filter(decision)
        )
        for node_id in graph.reachable_from(rejected) - still_active:
            inactive.setdefault(
                node_id,
                f"Behind a branch of '{decision.node_id}' that was not selected "
                f"(selected '{decision.selected_branch}').",
            )
    return inactive
