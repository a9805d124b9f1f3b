"""Shared fixtures for flowrun tests."""

import pytest

from flowrun.graph.edge import EdgeSpec, FlowGraph
from flowrun.graph.node import NodeSpec
from flowrun.observability import clear_trace_context


@pytest.fixture(autouse=True)
def _reset_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()


def make_graph(nodes, edges=(), graph_id="flow-1", name="Test Flow") -> FlowGraph:
    """Build a FlowGraph from NodeSpec/dict nodes and EdgeSpec/dict edges."""
    return FlowGraph(
        id=graph_id,
        name=name,
        nodes=[n if isinstance(n, NodeSpec) else NodeSpec.model_validate(n) for n in nodes],
        edges=[e if isinstance(e, EdgeSpec) else EdgeSpec.model_validate(e) for e in edges],
    )


@pytest.fixture
def hybrid_graph_factory():
    """
    system -> reason.hybrid -> {fast-path, slow-path}.

    ``fast_gate`` / ``deliberate_gate`` are gate threshold dicts for the two
    branch edges; ``params`` go on the hybrid node.
    """

    def _factory(
        params=None, fast_gate=None, deliberate_gate=None, branches=("fast", "deliberate")
    ):
        fast_branch, other_branch = branches
        return make_graph(
            nodes=[
                {"id": "system"},
                {"id": "reason.hybrid", "params": params or {}},
                {"id": "fast-path"},
                {"id": "slow-path"},
            ],
            edges=[
                {"from": "system", "to": "reason.hybrid"},
                {
                    "from": "reason.hybrid",
                    "to": "fast-path",
                    "branch": fast_branch,
                    "gate": {"branch": fast_branch, "thresholds": fast_gate or {}},
                },
                {
                    "from": "reason.hybrid",
                    "to": "slow-path",
                    "branch": other_branch,
                    "gate": {"branch": other_branch, "thresholds": deliberate_gate or {}},
                },
            ],
        )

    return _factory
