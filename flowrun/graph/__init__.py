"""Flow graphs: nodes, edges, hybrid routing and the propose/verify loop."""

from flowrun.graph.artefacts import merge_artefacts
from flowrun.graph.builder import FlowPreset, build_flow_graph
from flowrun.graph.edge import (
    BranchGate,
    EdgeKind,
    EdgeSpec,
    FlowGraph,
    FlowInfo,
    GateThresholds,
    StructuralError,
)
from flowrun.graph.executor import FlowExecutor
from flowrun.graph.hybrid import (
    BranchSummary,
    HybridDecision,
    compute_flow_complexity,
    evaluate_hybrid_decision,
    inactive_branch_nodes,
)
from flowrun.graph.loop import LoopPhase, NodeExecutionState, NodeExecutor, next_phase
from flowrun.graph.modality import (
    ModalityPayloadRequirement,
    ModalityRequirement,
    PayloadType,
    validate_audio_timeline,
    validate_modalities,
    validate_scene_graph,
    validate_video_event_graph,
)
from flowrun.graph.node import (
    ExecutionMode,
    NodeKind,
    NodeSpec,
    classify_node,
    complexity_weight,
    resolve_execution_mode,
)
from flowrun.graph.usage import (
    TokenUsage,
    estimate_cost_usd,
    estimate_latency_ms,
    estimate_token_usage,
)
from flowrun.graph.verifier import (
    HeuristicProposer,
    HeuristicVerifier,
    ProposerProtocol,
    Verdict,
    VerifierProtocol,
    VerifierVerdict,
    derive_acceptance_criteria,
)

__all__ = [
    # Graph
    "FlowGraph",
    "FlowInfo",
    "NodeSpec",
    "EdgeSpec",
    "EdgeKind",
    "BranchGate",
    "GateThresholds",
    "StructuralError",
    "FlowPreset",
    "build_flow_graph",
    # Classification
    "NodeKind",
    "ExecutionMode",
    "classify_node",
    "complexity_weight",
    "resolve_execution_mode",
    # Usage
    "TokenUsage",
    "estimate_token_usage",
    "estimate_latency_ms",
    "estimate_cost_usd",
    # Hybrid routing
    "HybridDecision",
    "BranchSummary",
    "compute_flow_complexity",
    "evaluate_hybrid_decision",
    "inactive_branch_nodes",
    # Modalities
    "PayloadType",
    "ModalityPayloadRequirement",
    "ModalityRequirement",
    "validate_modalities",
    "validate_audio_timeline",
    "validate_video_event_graph",
    "validate_scene_graph",
    # Loop
    "LoopPhase",
    "NodeExecutionState",
    "NodeExecutor",
    "next_phase",
    "merge_artefacts",
    "Verdict",
    "VerifierVerdict",
    "ProposerProtocol",
    "VerifierProtocol",
    "HeuristicProposer",
    "HeuristicVerifier",
    "derive_acceptance_criteria",
    # Execution
    "FlowExecutor",
]
