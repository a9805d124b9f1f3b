"""
Node Protocol - What a step in a flow is, and how it is classified.

A node carries a block label, an optional type, an optional metadata id
and a free-form parameter bag. Nodes do not declare their own execution
mode: the mode is resolved from the node's identity, so the same flow can
be authored by a canvas that knows nothing about the runtime.

Identity candidates, in order:
1. metadata_id  (e.g. "recursive-self-improvement")
2. type         (e.g. "refine.rsip")
3. base id      (the part of the id before '#', e.g. "rsip#2" -> "rsip")
"""

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DEFAULT_MAX_PASSES = 3
MAX_PASSES_LIMIT = 6

SINGLE_PASS_IDS = frozenset({"spoc", "spoc-cue", "verify.spoc"})
RECURSIVE_IDS = frozenset({"rsip", "recursive-self-improvement", "refine.rsip"})
HYBRID_IDS = frozenset({"reason.hybrid", "hybrid", "hybrid-router"})


class NodeKind(StrEnum):
    """How the runtime treats a node."""

    SINGLE_PASS = "single_pass"  # Self-check in one pass (SPOC)
    RECURSIVE = "recursive"  # Iterative self-improvement (RSIP)
    HYBRID = "hybrid"  # Routes to a fast or deliberate branch
    STANDARD = "standard"  # Everything else


class ExecutionMode(StrEnum):
    """Propose/verify loop mode."""

    SINGLE_PASS = "single-pass"
    RECURSIVE = "recursive"
    SEQUENTIAL = "sequential"


class NodeSpec(BaseModel):
    """
    Declaration of one node in a flow.

    Example:
        NodeSpec(
            id="rsip#node",
            block="RSIP Loop",
            metadata_id="recursive-self-improvement",
            params={"max_passes": 3},
        )
    """

    id: str
    block: str = Field(default="", description="Human-readable label shown on the canvas")
    type: str | None = None
    metadata_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("metadataId", "metadata_id", "metadataType"),
    )
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        extra="allow",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _default_block(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("block"):
            data = {**data, "block": data.get("id", "")}
        return data

    @property
    def base_id(self) -> str:
        """Node id without the '#instance' suffix."""
        return self.id.split("#", 1)[0]

    @property
    def primary_identity(self) -> str:
        """Type if declared, else the base id."""
        return self.type or self.base_id

    def identity_candidates(self) -> list[str]:
        """All identifiers the node can be recognised by, lowercased."""
        candidates = [self.metadata_id, self.type, self.base_id]
        return [c.lower() for c in candidates if c]


def classify_node(node: NodeSpec) -> NodeKind:
    """Classify a node by its identity candidates."""
    candidates = node.identity_candidates()
    if any(c in SINGLE_PASS_IDS for c in candidates):
        return NodeKind.SINGLE_PASS
    if any(c in RECURSIVE_IDS for c in candidates):
        return NodeKind.RECURSIVE
    if any(c in HYBRID_IDS for c in candidates):
        return NodeKind.HYBRID
    return NodeKind.STANDARD


def is_hybrid_node(node: NodeSpec) -> bool:
    return classify_node(node) == NodeKind.HYBRID


@dataclass(frozen=True)
class LoopSettings:
    """Resolved loop mode and iteration bound for one node."""

    mode: ExecutionMode
    max_iterations: int


def parse_max_passes(value: Any) -> int:
    """
    Parse ``params.max_passes``.

    Unparseable values fall back to the default; out-of-range values are
    clamped to [1, MAX_PASSES_LIMIT].
    """
    if value is None or isinstance(value, bool):
        return DEFAULT_MAX_PASSES
    try:
        passes = int(float(value))
    except (TypeError, ValueError, OverflowError):
        logger.debug(f"Unparseable max_passes {value!r}, using {DEFAULT_MAX_PASSES}")
        return DEFAULT_MAX_PASSES

    clamped = min(MAX_PASSES_LIMIT, max(1, passes))
    if clamped != passes:
        logger.debug(f"Clamped max_passes {passes} -> {clamped}")
    return clamped


def resolve_execution_mode(node: NodeSpec) -> LoopSettings:
    """Resolve mode and max iterations from node identity and params."""
    kind = classify_node(node)
    if kind == NodeKind.SINGLE_PASS:
        return LoopSettings(mode=ExecutionMode.SINGLE_PASS, max_iterations=1)
    if kind == NodeKind.RECURSIVE:
        return LoopSettings(
            mode=ExecutionMode.RECURSIVE,
            max_iterations=parse_max_passes(node.params.get("max_passes")),
        )
    return LoopSettings(mode=ExecutionMode.SEQUENTIAL, max_iterations=1)


def complexity_weight(node: NodeSpec) -> float:
    """Per-node contribution to the flow complexity score."""
    base = node.primary_identity
    if base.startswith("verify"):
        return 3.2
    if "rag" in base:
        return 2.4
    if base.startswith("reason"):
        return 2.1
    if base.startswith("control"):
        return 1.8
    if base.startswith("refine"):
        return 2.2
    if base.startswith("prompt"):
        return 1.5
    return 1.1
