"""
Run Schema - What a flow run produces.

A run yields one block per declared node (in declaration order), a
verification summary across all blocks, and the hybrid routing decisions
taken along the way. All records serialize with camelCase keys
(``model_dump(by_alias=True)``) so the manifest can be handed straight to
the authoring tool.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from flowrun.graph.edge import FlowInfo
from flowrun.graph.hybrid import HybridDecision
from flowrun.graph.node import ExecutionMode
from flowrun.graph.usage import TokenUsage
from flowrun.graph.verifier import SelfCheckEntry, TranscriptEntry, Verdict, VerifierVerdict

_MODEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BranchStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class BlockOutput(BaseModel):
    """Output of one node's propose/verify loop."""

    mode: ExecutionMode
    iterations: int
    max_iterations: int
    proposal: str = Field(description="First draft")
    final: str = Field(description="Last draft")
    history: list[TranscriptEntry] = Field(default_factory=list)
    self_check: list[SelfCheckEntry] | None = None
    verifier: VerifierVerdict
    artefacts: dict[str, Any] = Field(default_factory=dict)

    # Metadata guidance, when the node resolved to a library entry
    guidance: str | None = None
    failure_modes: str | None = None
    acceptance_criteria: str | None = None
    combines_with: list[str] | None = None
    composition_steps: list[str] | None = None

    criteria: list[str] = Field(default_factory=list)
    flow_summary: str = ""
    params_used: dict[str, Any] = Field(default_factory=dict)
    note: str = ""
    warnings: list[str] = Field(default_factory=list)

    branch_status: BranchStatus = BranchStatus.ACTIVE
    inactive_reason: str | None = None

    model_config = _MODEL_CONFIG


class ManifestBlock(BaseModel):
    id: str
    block: str
    params: dict[str, Any] = Field(default_factory=dict)
    output: BlockOutput

    model_config = _MODEL_CONFIG


class RunManifest(BaseModel):
    """Per-node outputs for a whole run."""

    flow: FlowInfo
    blocks: list[ManifestBlock] = Field(default_factory=list)
    edge_count: int = 0

    model_config = _MODEL_CONFIG

    @computed_field
    @property
    def node_count(self) -> int:
        return len(self.blocks)


class VerificationBlock(BaseModel):
    id: str
    label: str
    verdict: Verdict
    confidence: float
    interventions: int = 0

    model_config = _MODEL_CONFIG


class VerificationSummary(BaseModel):
    """Verifier outcomes rolled up across every block."""

    total_interventions: int = 0
    average_confidence: float = 0.0
    blocks: list[VerificationBlock] = Field(default_factory=list)

    model_config = _MODEL_CONFIG

    @classmethod
    def from_blocks(cls, blocks: list[ManifestBlock]) -> "VerificationSummary":
        entries = [
            VerificationBlock(
                id=block.id,
                label=block.block,
                verdict=block.output.verifier.verdict,
                confidence=block.output.verifier.confidence,
                interventions=block.output.verifier.interventions,
            )
            for block in blocks
        ]
        if not entries:
            return cls()
        average = sum(e.confidence for e in entries) / len(entries)
        return cls(
            total_interventions=sum(e.interventions for e in entries),
            average_confidence=round(average, 4),
            blocks=entries,
        )


class RunResult(BaseModel):
    """
    Complete record of one flow run.

    Usage, latency and cost are flow-level estimates, not measurements.
    """

    run_id: str
    received_at: datetime
    completed_at: datetime
    usage: TokenUsage
    latency_ms: int
    cost_usd: float
    manifest: RunManifest
    verification: VerificationSummary
    gating_decisions: list[HybridDecision] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)
    message: str = ""

    model_config = _MODEL_CONFIG

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
