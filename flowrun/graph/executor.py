"""
Flow Executor - Runs a whole flow.

The executor:
1. Validates the FlowGraph and rejects it before any node runs
2. Walks nodes strictly in declaration order
3. Runs each node through the propose/verify loop
4. Routes every hybrid node and records the decision
5. Annotates blocks behind non-selected branches as inactive
6. Assembles the manifest, verification summary and run record

Every declared node executes regardless of routing. Hybrid decisions are
recorded for downstream consumers (approval gating, dashboards), not
enforced.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Mapping
from datetime import UTC, datetime

from flowrun.graph.edge import FlowGraph, StructuralError
from flowrun.graph.hybrid import (
    DEFAULT_LATENCY_BUDGET_MS,
    DEFAULT_TOKEN_BUDGET,
    HybridDecision,
    evaluate_hybrid_decision,
    inactive_branch_nodes,
)
from flowrun.graph.loop import NodeExecutor
from flowrun.graph.node import is_hybrid_node
from flowrun.graph.usage import estimate_cost_usd, estimate_latency_ms, estimate_token_usage
from flowrun.graph.verifier import ProposerProtocol, VerifierProtocol
from flowrun.metadata.library import MetadataLibrary, PromptMetadata
from flowrun.observability import set_trace_context
from flowrun.runtime.events import RunEvent, RunEventType
from flowrun.schemas.run import (
    BlockOutput,
    BranchStatus,
    ManifestBlock,
    RunManifest,
    RunResult,
    VerificationSummary,
)


class FlowExecutor:
    """
    Executes flow graphs.

    Example:
        executor = FlowExecutor(library=load_prompt_library("prompts", "compositions"))
        result = await executor.execute(graph)
        result.manifest.blocks[0].output.verifier.verdict  # "accepted"

        async for event in executor.stream(graph):
            print(event.type, event.data)
    """

    def __init__(
        self,
        library: Mapping[str, PromptMetadata] | None = None,
        proposer: ProposerProtocol | None = None,
        verifier: VerifierProtocol | None = None,
        token_budget: int = DEFAULT_TOKEN_BUDGET,
        latency_budget_ms: int = DEFAULT_LATENCY_BUDGET_MS,
    ):
        """
        Initialize the executor.

        Args:
            library: Read-only metadata lookup keyed by metadata id
            proposer: Drafting collaborator (heuristic stand-in by default)
            verifier: Judging collaborator (heuristic stand-in by default)
            token_budget: Router token budget for hybrid nodes that declare none
            latency_budget_ms: Router latency budget for hybrid nodes that declare none
        """
        self.library: Mapping[str, PromptMetadata] = (
            library if library is not None else MetadataLibrary()
        )
        self.node_executor = NodeExecutor(proposer=proposer, verifier=verifier)
        self.token_budget = token_budget
        self.latency_budget_ms = latency_budget_ms
        self.logger = logging.getLogger(__name__)

    async def execute(self, graph: FlowGraph, run_id: str | None = None) -> RunResult:
        """
        Run every node of ``graph`` and return the run record.

        Raises:
            StructuralError: if the graph fails validation; no node has run
        """
        result: RunResult | None = None
        async for event in self.stream(graph, run_id=run_id):
            if event.type == RunEventType.RUN_COMPLETED:
                result = event.result
        if result is None:
            raise RuntimeError("Run ended without a run_completed event")
        return result

    async def stream(self, graph: FlowGraph, run_id: str | None = None) -> AsyncIterator[RunEvent]:
        """
        Run ``graph``, yielding lifecycle events as they happen.

        The last event is ``run_completed`` carrying the RunResult.
        """
        run_id = run_id or uuid.uuid4().hex
        received_at = datetime.now(UTC)
        set_trace_context(run_id=run_id, flow_id=graph.id)
        logs: list[str] = []

        self._validate(graph, logs)

        self.logger.info(f"🚀 Starting run: {graph.name}")
        self.logger.info(f"   Nodes: {len(graph.nodes)}, edges: {len(graph.edges)}")
        logs.append(
            f"Validated {graph.name}: {len(graph.nodes)} node(s), {len(graph.edges)} edge(s)"
        )
        yield RunEvent(
            type=RunEventType.RUN_STARTED,
            run_id=run_id,
            data={"nodeCount": len(graph.nodes), "edgeCount": len(graph.edges)},
        )

        flow_summary = f"{graph.name} ({len(graph.nodes)} nodes)"
        outputs: list[BlockOutput] = []
        decisions: list[HybridDecision] = []

        for index, node in enumerate(graph.nodes):
            set_trace_context(node_id=node.id)
            self.logger.info(f"▶ Step {index + 1}: {node.block} ({node.id})")
            yield RunEvent(
                type=RunEventType.NODE_STARTED,
                run_id=run_id,
                node_id=node.id,
                data={"id": node.id, "label": node.block, "index": index},
            )

            metadata = self.library.get(node.metadata_id) if node.metadata_id else None
            if node.metadata_id and metadata is None:
                self.logger.debug(f"   No metadata for '{node.metadata_id}'")
            output = await self.node_executor.execute(node, metadata, flow_summary)
            outputs.append(output)
            logs.append(
                f"{node.id}: {output.mode} {output.verifier.verdict} "
                f"after {output.iterations}/{output.max_iterations} pass(es)"
            )
            for warning in output.warnings:
                logs.append(f"{node.id}: {warning}")
            yield RunEvent(
                type=RunEventType.NODE_COMPLETED,
                run_id=run_id,
                node_id=node.id,
                data={
                    "id": node.id,
                    "verdict": output.verifier.verdict.value,
                    "iterations": output.iterations,
                },
            )

            if is_hybrid_node(node):
                decision = evaluate_hybrid_decision(
                    graph,
                    node,
                    token_budget=self.token_budget,
                    latency_budget_ms=self.latency_budget_ms,
                )
                decisions.append(decision)
                logs.append(
                    f"{node.id}: selected '{decision.selected_branch}'. {decision.rationale}"
                )
                yield RunEvent(
                    type=RunEventType.HYBRID_DECISION,
                    run_id=run_id,
                    node_id=node.id,
                    data={"nodeId": node.id, "selectedBranch": decision.selected_branch},
                )

        set_trace_context(node_id=None)

        manifest = self.build_manifest(graph, outputs, decisions)
        verification = VerificationSummary.from_blocks(manifest.blocks)
        usage = estimate_token_usage(graph)
        inactive = sum(
            1 for block in manifest.blocks if block.output.branch_status == BranchStatus.INACTIVE
        )

        result = RunResult(
            run_id=run_id,
            received_at=received_at,
            completed_at=datetime.now(UTC),
            usage=usage,
            latency_ms=estimate_latency_ms(usage),
            cost_usd=estimate_cost_usd(usage),
            manifest=manifest,
            verification=verification,
            gating_decisions=decisions,
            logs=logs,
            message=(
                f"Executed {len(outputs)} node(s) with {len(decisions)} hybrid decision(s); "
                f"{inactive} block(s) behind non-selected branches."
            ),
        )

        self.logger.info(
            f"✓ Run complete: {len(outputs)} block(s), "
            f"{verification.total_interventions} intervention(s), "
            f"average confidence {verification.average_confidence:.2f}"
        )
        yield RunEvent(
            type=RunEventType.RUN_COMPLETED,
            run_id=run_id,
            data=result.to_wire(),
            result=result,
        )

    def _validate(self, graph: FlowGraph, logs: list[str]) -> None:
        errors = graph.validate()
        if errors:
            self.logger.error("❌ Flow graph validation failed:")
            for err in errors:
                self.logger.error(f"   • {err}")
            raise StructuralError(errors)

        for edge in graph.order_violations():
            message = (
                f"Edge '{edge.describe()}' points backwards in declaration order; "
                f"'{edge.target}' runs before '{edge.source}'"
            )
            self.logger.warning(f"⚠ {message}")
            logs.append(message)

    @staticmethod
    def build_manifest(
        graph: FlowGraph,
        outputs: list[BlockOutput],
        decisions: list[HybridDecision] | None = None,
    ) -> RunManifest:
        """
        Pair each declared node with its output, in declaration order.

        Blocks reachable only through non-selected hybrid branches are
        marked inactive.
        """
        inactive = inactive_branch_nodes(graph, decisions or [])
        blocks = []
        for node, output in zip(graph.nodes, outputs, strict=True):
            reason = inactive.get(node.id)
            if reason is not None:
                output = output.model_copy(
                    update={"branch_status": BranchStatus.INACTIVE, "inactive_reason": reason}
                )
            blocks.append(
                ManifestBlock(id=node.id, block=node.block, params=dict(node.params), output=output)
            )
        return RunManifest(flow=graph.flow, blocks=blocks, edge_count=len(graph.edges))
