"""Tests for hybrid routing: complexity, fast/escalate/override paths and inactive branches."""

from datetime import timedelta

import pytest
from conftest import make_graph

from flowrun.graph.edge import EdgeSpec
from flowrun.graph.hybrid import (
    compute_flow_complexity,
    evaluate_hybrid_decision,
    inactive_branch_nodes,
)

# Budgets large enough that only complexity can trigger escalation
ROOMY = {"budget": {"tokens": 1_000_000}, "latency": {"ms": 1_000_000}}


# ---- Complexity score ----
def test_complexity_uses_type_weights_and_edge_term():
    graph = make_graph(
        [
            {"id": "verify.spoc"},
            {"id": "rag-lookup"},
            {"id": "reason.hybrid"},
            {"id": "control.router"},
            {"id": "refine.rsip"},
            {"id": "prompt.system"},
            {"id": "other"},
        ],
        [{"from": "verify.spoc", "to": "rag-lookup"}],
    )
    expected = 3.2 + 2.4 + 2.1 + 1.8 + 2.2 + 1.5 + 1.1 + 0.35
    assert compute_flow_complexity(graph) == pytest.approx(round(expected, 2))


def test_complexity_prefers_type_over_id():
    graph = make_graph([{"id": "step#1", "type": "verify.spoc"}])
    assert compute_flow_complexity(graph) == pytest.approx(3.2)


def test_complexity_is_pure():
    graph = make_graph([{"id": "a"}, {"id": "b"}], [{"from": "a", "to": "b"}])
    assert compute_flow_complexity(graph) == compute_flow_complexity(graph)


def test_each_edge_adds_035():
    nodes = [{"id": "a"}, {"id": "b"}, {"id": "c"}]
    before = make_graph(nodes, [{"from": "a", "to": "b"}])
    after = make_graph(nodes, [{"from": "a", "to": "b"}, {"from": "b", "to": "c"}])

    diff = compute_flow_complexity(after) - compute_flow_complexity(before)
    assert diff == pytest.approx(0.35)


# ---- Decision paths ----
def test_all_metrics_within_thresholds_stays_fast(hybrid_graph_factory):
    graph = hybrid_graph_factory(params=ROOMY, fast_gate={"maxComplexity": 50})
    node = graph.get_node("reason.hybrid")

    decision = evaluate_hybrid_decision(graph, node)

    assert decision.selected_branch == "fast"
    assert decision.forced is False
    assert "within fast thresholds" in decision.rationale
    assert decision.thresholds.fast_complexity == 50
    assert [b.branch for b in decision.branches] == ["fast", "deliberate"]


def test_complexity_over_threshold_escalates(hybrid_graph_factory):
    graph = hybrid_graph_factory(params=ROOMY, fast_gate={"maxComplexity": 1})
    node = graph.get_node("reason.hybrid")

    decision = evaluate_hybrid_decision(graph, node)

    assert decision.selected_branch == "deliberate"
    assert "complexity" in decision.rationale
    assert "fast threshold 1" in decision.rationale
    assert "tokens" not in decision.rationale


def test_token_budget_from_node_params(hybrid_graph_factory):
    params = {"budget": {"tokens": 10}, "latency": {"ms": 1_000_000}}
    graph = hybrid_graph_factory(params=params, fast_gate={"maxComplexity": 50})
    node = graph.get_node("reason.hybrid")

    decision = evaluate_hybrid_decision(graph, node)

    assert decision.selected_branch == "deliberate"
    assert decision.thresholds.token_budget == 10
    assert f"tokens {decision.metrics.token_estimate} > budget 10" in decision.rationale


def test_every_trigger_is_listed(hybrid_graph_factory):
    params = {"budget": {"tokens": 1}, "latency": {"ms": 1}}
    graph = hybrid_graph_factory(params=params, fast_gate={"maxComplexity": 1})
    node = graph.get_node("reason.hybrid")

    rationale = evaluate_hybrid_decision(graph, node).rationale

    assert "complexity" in rationale
    assert "tokens" in rationale
    assert "latency" in rationale


def test_fast_gate_tokens_tighten_budget(hybrid_graph_factory):
    graph = hybrid_graph_factory(params=ROOMY, fast_gate={"maxComplexity": 50, "maxTokens": 1})
    node = graph.get_node("reason.hybrid")

    decision = evaluate_hybrid_decision(graph, node)

    assert decision.selected_branch == "deliberate"
    assert "budget 1" in decision.rationale


def test_default_budgets_come_from_arguments(hybrid_graph_factory):
    graph = hybrid_graph_factory(fast_gate={"maxComplexity": 50})
    node = graph.get_node("reason.hybrid")

    decision = evaluate_hybrid_decision(
        graph, node, token_budget=1_000_000, latency_budget_ms=1_000_000
    )

    assert decision.selected_branch == "fast"
    assert decision.thresholds.token_budget == 1_000_000


def test_escalation_falls_back_to_fallback_strategy(hybrid_graph_factory):
    graph = hybrid_graph_factory(
        params=ROOMY, fast_gate={"maxComplexity": 1}, branches=("fast", "cot")
    )
    node = graph.get_node("reason.hybrid")

    decision = evaluate_hybrid_decision(graph, node)

    assert decision.selected_branch == "cot"
    assert decision.fallback == "cot"


def test_escalation_uses_any_other_branch(hybrid_graph_factory):
    graph = hybrid_graph_factory(
        params=ROOMY, fast_gate={"maxComplexity": 1}, branches=("fast", "careful")
    )
    node = graph.get_node("reason.hybrid")

    assert evaluate_hybrid_decision(graph, node).selected_branch == "careful"


def test_escalation_without_alternative_stays_put():
    graph = make_graph(
        [{"id": "reason.hybrid", "params": ROOMY}, {"id": "x"}],
        [
            {
                "from": "reason.hybrid",
                "to": "x",
                "branch": "fast",
                "gate": {"branch": "fast", "thresholds": {"maxComplexity": 1}},
            }
        ],
    )
    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    assert decision.selected_branch == "fast"
    assert "Escalated" in decision.rationale


# ---- Overrides ----
def test_forced_deliberate_override():
    """Explicit override wins and the rationale says it was forced."""
    graph = make_graph(
        [
            {"id": "system"},
            {"id": "hybrid", "params": {"complexityGate": "deliberate"}},
            {"id": "x"},
        ],
        [
            {"from": "system", "to": "hybrid"},
            {
                "from": "hybrid",
                "to": "x",
                "branch": "fast",
                "gate": {"thresholds": {"maxComplexity": 1}},
            },
            {
                "from": "hybrid",
                "to": "x",
                "branch": "deliberate",
                "gate": {"thresholds": {"maxComplexity": 1}},
            },
        ],
    )

    decision = evaluate_hybrid_decision(graph, graph.get_node("hybrid"))

    assert decision.selected_branch == "deliberate"
    assert decision.forced is True
    assert "forced" in decision.rationale


def test_forced_fast_beats_heuristics(hybrid_graph_factory):
    params = {"complexityGate": "fast", "budget": {"tokens": 1}, "latency": {"ms": 1}}
    graph = hybrid_graph_factory(params=params, fast_gate={"maxComplexity": 1})

    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    assert decision.selected_branch == "fast"
    assert decision.forced is True
    assert decision.rationale.startswith("Complexity gate forced the fast branch.")


def test_no_branch_edges_defaults_to_fast():
    graph = make_graph(
        [{"id": "reason.hybrid"}, {"id": "next"}], [{"from": "reason.hybrid", "to": "next"}]
    )

    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    assert decision.selected_branch == "fast"
    assert decision.branches == []
    assert "No hybrid branches defined" in decision.rationale


# ---- Branch names ----
@pytest.mark.parametrize(
    "edge, expected",
    [
        ({"from": "h", "to": "t", "label": "L", "branch": "B", "gate": {"branch": "G"}}, "G"),
        ({"from": "h", "to": "t", "label": "L", "branch": "B", "gate": {}}, "B"),
        ({"from": "h", "to": "t", "label": "L", "kind": "branch"}, "L"),
        ({"from": "h", "to": "t", "kind": "branch"}, "t"),
    ],
)
def test_branch_name_precedence(edge, expected):
    assert EdgeSpec.model_validate(edge).branch_name() == expected


def test_decision_serializes_camel_case(hybrid_graph_factory):
    graph = hybrid_graph_factory(params=ROOMY, fast_gate={"maxComplexity": 50})
    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    data = decision.model_dump(mode="json", by_alias=True)

    assert data["nodeId"] == "reason.hybrid"
    assert data["selectedBranch"] == "fast"
    assert set(data["metrics"]) == {
        "complexityScore",
        "tokenEstimate",
        "latencyEstimate",
        "estimatedCostUsd",
    }
    assert data["thresholds"]["latencyBudgetMs"] == 1_000_000


# ---- Inactive branches ----
def test_inactive_nodes_behind_rejected_branch(hybrid_graph_factory):
    graph = hybrid_graph_factory(params=ROOMY, fast_gate={"maxComplexity": 50})
    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    inactive = inactive_branch_nodes(graph, [decision])

    assert set(inactive) == {"slow-path"}
    assert "reason.hybrid" in inactive["slow-path"]


def test_shared_downstream_node_stays_active():
    graph = make_graph(
        [
            {"id": "reason.hybrid", "params": ROOMY},
            {"id": "fast-path"},
            {"id": "slow-path"},
            {"id": "merge"},
        ],
        [
            {
                "from": "reason.hybrid",
                "to": "fast-path",
                "branch": "fast",
                "gate": {"thresholds": {"maxComplexity": 50}},
            },
            {"from": "reason.hybrid", "to": "slow-path", "branch": "deliberate"},
            {"from": "fast-path", "to": "merge"},
            {"from": "slow-path", "to": "merge"},
        ],
    )
    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))
    assert decision.selected_branch == "fast"

    inactive = inactive_branch_nodes(graph, [decision])

    assert set(inactive) == {"slow-path"}


def test_node_fed_outside_the_hybrid_stays_active():
    graph = make_graph(
        [
            {"id": "system"},
            {"id": "reason.hybrid", "params": ROOMY},
            {"id": "fast-node"},
            {"id": "shared"},
        ],
        [
            {"from": "system", "to": "reason.hybrid"},
            {"from": "system", "to": "shared"},
            {
                "from": "reason.hybrid",
                "to": "fast-node",
                "branch": "fast",
                "gate": {"thresholds": {"maxComplexity": 50}},
            },
            {"from": "reason.hybrid", "to": "shared", "branch": "deliberate"},
        ],
    )
    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))
    assert decision.selected_branch == "fast"

    inactive = inactive_branch_nodes(graph, [decision])

    assert "shared" not in inactive
    assert inactive == {}


def test_rejected_subtree_below_independent_path_is_active():
    graph = make_graph(
        [
            {"id": "system"},
            {"id": "reason.hybrid", "params": ROOMY},
            {"id": "fast-node"},
            {"id": "slow-node"},
            {"id": "shared"},
            {"id": "after-shared"},
        ],
        [
            {"from": "system", "to": "reason.hybrid"},
            {"from": "system", "to": "shared"},
            {
                "from": "reason.hybrid",
                "to": "fast-node",
                "branch": "fast",
                "gate": {"thresholds": {"maxComplexity": 50}},
            },
            {"from": "reason.hybrid", "to": "slow-node", "branch": "deliberate"},
            {"from": "slow-node", "to": "shared"},
            {"from": "shared", "to": "after-shared"},
        ],
    )
    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    inactive = inactive_branch_nodes(graph, [decision])

    assert set(inactive) == {"slow-node"}


# ---- Default fast complexity threshold ----
def test_default_fast_complexity_floor_is_six():
    graph = make_graph(
        [{"id": "reason.hybrid", "params": ROOMY}, {"id": "quick"}, {"id": "slow"}],
        [
            {"from": "reason.hybrid", "to": "quick", "branch": "fast"},
            {"from": "reason.hybrid", "to": "slow", "branch": "deliberate"},
        ],
    )

    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    # 1.2 * 3 + 0.5 * 2 = 4.6, below the floor
    assert decision.thresholds.fast_complexity == 6
    assert decision.metrics.complexity_score == pytest.approx(5.0)
    assert decision.selected_branch == "fast"


def test_default_fast_complexity_scales_with_graph_and_escalates():
    checks = [f"verify.check-{i}" for i in range(1, 6)]
    chain = ["slow", *checks]
    graph = make_graph(
        [{"id": "reason.hybrid", "params": ROOMY}, {"id": "quick"}, {"id": "slow"}]
        + [{"id": check} for check in checks],
        [
            {"from": "reason.hybrid", "to": "quick", "branch": "fast"},
            {"from": "reason.hybrid", "to": "slow", "branch": "deliberate"},
        ]
        + [{"from": a, "to": b} for a, b in zip(chain, chain[1:], strict=False)],
    )
    assert len(graph.nodes) == 8
    assert len(graph.edges) == 7

    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    # 1.2 * 8 + 0.5 * 7
    assert decision.thresholds.fast_complexity == pytest.approx(13.1)
    # 2.1 + 1.1 + 1.1 + 5 * 3.2 + 7 * 0.35
    assert decision.metrics.complexity_score == pytest.approx(22.75)
    assert decision.selected_branch == "deliberate"
    assert "fast threshold 13.1" in decision.rationale


def test_decision_timestamp_is_timezone_aware(hybrid_graph_factory):
    graph = hybrid_graph_factory(params=ROOMY)

    decision = evaluate_hybrid_decision(graph, graph.get_node("reason.hybrid"))

    assert decision.timestamp.tzinfo is not None
    assert decision.timestamp.utcoffset() == timedelta(0)
