"""
flowrun - Execute declarative reasoning flows.

A flow is a small DAG of typed reasoning nodes. flowrun runs each node
through a propose/verify loop (single-pass self-check, recursive
self-improvement or plain sequential), routes hybrid nodes to a fast or
deliberate branch, and returns a manifest with a verification summary.

Example:
    from flowrun import FlowExecutor, FlowGraph

    graph = FlowGraph.model_validate(json.loads(Path("flow.json").read_text()))
    result = await FlowExecutor().execute(graph)
"""

from flowrun.graph import (
    FlowExecutor,
    FlowGraph,
    HybridDecision,
    NodeSpec,
    StructuralError,
    build_flow_graph,
)
from flowrun.metadata import MetadataLibrary, PromptMetadata, load_prompt_library
from flowrun.schemas import RunManifest, RunResult

__all__ = [
    "FlowExecutor",
    "FlowGraph",
    "HybridDecision",
    "NodeSpec",
    "StructuralError",
    "build_flow_graph",
    "MetadataLibrary",
    "PromptMetadata",
    "load_prompt_library",
    "RunManifest",
    "RunResult",
]
