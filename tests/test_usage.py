"""Tests for flow-level token, latency and cost estimates."""

from conftest import make_graph

from flowrun.graph.edge import FlowGraph
from flowrun.graph.usage import (
    TokenUsage,
    estimate_cost_usd,
    estimate_latency_ms,
    estimate_token_usage,
)


# ---- Floors ----
def test_empty_flow_hits_floors():
    graph = FlowGraph(id="empty", name="Empty")

    usage = estimate_token_usage(graph)

    # "[]" + "[]" is 4 characters -> 1 prompt token; no nodes -> completion floor of 1
    assert usage.prompt_tokens == 1
    assert usage.completion_tokens == 1
    assert usage.total_tokens == 2
    assert estimate_latency_ms(usage) == 600
    assert estimate_cost_usd(usage) == 0.000004


def test_latency_formula_above_floor():
    usage = TokenUsage(prompt_tokens=100, completion_tokens=200)
    assert estimate_latency_ms(usage) == 300 * 12 + 100 * 4


def test_cost_rounds_to_six_places():
    usage = TokenUsage(prompt_tokens=1, completion_tokens=0)
    assert estimate_cost_usd(usage) == 0.000002


# ---- Shape sensitivity ----
def test_completion_tokens_scale_with_nodes():
    graph = make_graph([{"id": "a"}, {"id": "b"}])
    # 2 * 480 characters / 4
    assert estimate_token_usage(graph).completion_tokens == 240


def test_branch_edges_add_completion_tokens():
    plain = make_graph([{"id": "a"}, {"id": "b"}], [{"from": "a", "to": "b"}])
    branched = make_graph([{"id": "a"}, {"id": "b"}], [{"from": "a", "to": "b", "branch": "fast"}])

    diff = (
        estimate_token_usage(branched).completion_tokens
        - estimate_token_usage(plain).completion_tokens
    )
    assert diff == 30


def test_usage_is_monotonic_in_graph_size():
    small = make_graph([{"id": "a"}])
    larger = make_graph([{"id": "a"}, {"id": "b"}], [{"from": "a", "to": "b"}])

    small_usage = estimate_token_usage(small)
    larger_usage = estimate_token_usage(larger)

    assert larger_usage.prompt_tokens >= small_usage.prompt_tokens
    assert larger_usage.completion_tokens >= small_usage.completion_tokens
    assert estimate_latency_ms(larger_usage) >= estimate_latency_ms(small_usage)
    assert estimate_cost_usd(larger_usage) >= estimate_cost_usd(small_usage)


def test_estimates_are_deterministic():
    graph = make_graph(
        [{"id": "system"}, {"id": "rsip", "params": {"max_passes": 2}}],
        [{"from": "system", "to": "rsip"}],
    )
    assert estimate_token_usage(graph) == estimate_token_usage(graph)


def test_usage_serializes_total_tokens():
    usage = TokenUsage(prompt_tokens=3, completion_tokens=4)
    assert usage.model_dump(by_alias=True) == {
        "promptTokens": 3,
        "completionTokens": 4,
        "totalTokens": 7,
    }
