"""
Edge Protocol - How nodes connect in a flow.

Edges define:
1. Source and target nodes
2. The edge kind (default, branch, router, fallback)
3. An optional branch gate with thresholds for hybrid routing

Edge Kinds:
- default: Plain sequencing, no routing semantics
- branch: One of several alternative continuations of a hybrid node
- router: Continuation chosen by a control router
- fallback: Continuation used when the preferred branch is unavailable

A branch gate tags an edge as a hybrid branch and declares the budgets
under which the branch is eligible. The branch name an edge represents is
resolved once, with the precedence gate.branch > branch > label > target.
"""

from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from flowrun.graph.node import NodeSpec, is_hybrid_node

HYBRID_GATE_TYPES = frozenset({"hybrid", "reason.hybrid"})

_MODEL_CONFIG = ConfigDict(
    extra="allow",
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


class StructuralError(ValueError):
    """Raised when a flow graph is structurally invalid and cannot run."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid flow graph: " + "; ".join(self.errors))


class EdgeKind(StrEnum):
    """What an edge means to the runtime."""

    DEFAULT = "default"
    BRANCH = "branch"
    ROUTER = "router"
    FALLBACK = "fallback"


class GateThresholds(BaseModel):
    """Budgets under which a hybrid branch is eligible."""

    max_complexity: float | None = None
    max_tokens: int | None = None
    max_latency_ms: int | None = None

    model_config = _MODEL_CONFIG


class BranchGate(BaseModel):
    """Edge-level hybrid routing metadata."""

    type: str = "hybrid"
    branch: str | None = None
    thresholds: GateThresholds = Field(default_factory=GateThresholds)

    model_config = _MODEL_CONFIG

    @property
    def is_hybrid(self) -> bool:
        return self.type in HYBRID_GATE_TYPES


class EdgeSpec(BaseModel):
    """
    Declaration of an edge between nodes.

    Examples:
        # Plain sequencing
        EdgeSpec(source="system", target="reason.hybrid")

        # Gated hybrid branch
        EdgeSpec(
            source="reason.hybrid",
            target="analysis",
            kind=EdgeKind.BRANCH,
            branch="fast",
            gate=BranchGate(branch="fast", thresholds=GateThresholds(max_complexity=10)),
        )
    """

    id: str | None = None
    source: str = Field(alias="from", description="Source node ID")
    target: str = Field(alias="to", description="Target node ID")
    kind: EdgeKind | None = None
    label: str | None = None
    branch: str | None = None
    condition: str | None = None
    gate: BranchGate | None = None

    model_config = _MODEL_CONFIG

    @property
    def effective_kind(self) -> EdgeKind:
        """Declared kind, or BRANCH when a branch name is set, else DEFAULT."""
        if self.kind is not None:
            return self.kind
        return EdgeKind.BRANCH if self.branch else EdgeKind.DEFAULT

    @property
    def is_branch_edge(self) -> bool:
        """True for edges a hybrid node can route along."""
        if self.gate is not None and self.gate.is_hybrid:
            return True
        return self.effective_kind != EdgeKind.DEFAULT

    def branch_name(self) -> str:
        """Resolve the branch this edge represents."""
        if self.gate is not None and self.gate.branch:
            return self.gate.branch
        return self.branch or self.label or self.target

    def describe(self) -> str:
        return self.id or f"{self.source}→{self.target}"


class FlowInfo(BaseModel):
    """Identity of a flow as it appears in the manifest."""

    id: str
    name: str
    description: str = ""

    model_config = _MODEL_CONFIG


class FlowGraph(BaseModel):
    """
    Complete declarative description of a flow.

    Constructed once per run and immutable for its duration. Accepts both
    the flat shape ``{id, name, description, nodes, edges}`` and the
    authoring tool's nested shape ``{version, flow: {...}, nodes, edges}``.

    Example:
        FlowGraph(
            id="research",
            name="Research Flow",
            nodes=[NodeSpec(id="system"), NodeSpec(id="reason.hybrid")],
            edges=[EdgeSpec(source="system", target="reason.hybrid")],
        )
    """

    id: str
    name: str
    description: str = ""
    version: str = "promptspec/v1"

    nodes: list[NodeSpec] = Field(default_factory=list, description="Nodes in declaration order")
    edges: list[EdgeSpec] = Field(default_factory=list)

    model_config = _MODEL_CONFIG

    @model_validator(mode="before")
    @classmethod
    def _lift_flow(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("flow"), dict):
            flow = data["flow"]
            data = {k: v for k, v in data.items() if k != "flow"}
            for key in ("id", "name", "description"):
                if key in flow and key not in data:
                    data[key] = flow[key]
        return data

    @property
    def flow(self) -> FlowInfo:
        return FlowInfo(id=self.id, name=self.name, description=self.description)

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges leaving a node, in declaration order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges entering a node."""
        return [e for e in self.edges if e.target == node_id]

    def root_nodes(self) -> list[str]:
        """Nodes with no incoming edges, in declaration order."""
        targets = {e.target for e in self.edges}
        return [node.id for node in self.nodes if node.id not in targets]

    def reachable_from(
        self,
        start: list[str],
        skip: Callable[[EdgeSpec], bool] | None = None,
    ) -> set[str]:
        """
        All node ids reachable from ``start`` (inclusive) along edges.

        Edges for which ``skip`` returns True are not followed.
        """
        reachable: set[str] = set()
        to_visit = list(start)
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            for edge in self.get_outgoing_edges(current):
                if skip is not None and skip(edge):
                    continue
                to_visit.append(edge.target)
        return reachable

    def order_violations(self) -> list[EdgeSpec]:
        """Edges whose target is declared before their source."""
        positions = {node.id: index for index, node in enumerate(self.nodes)}
        violations = []
        for edge in self.edges:
            source_pos = positions.get(edge.source)
            target_pos = positions.get(edge.target)
            if source_pos is None or target_pos is None:
                continue
            if target_pos < source_pos:
                violations.append(edge)
        return violations

    def validate(self) -> list[str]:
        """Validate the graph structure. Returns a list of error strings."""
        errors = []

        # Check node ids are unique
        seen_ids: set[str] = set()
        for node in self.nodes:
            if node.id in seen_ids:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_ids.add(node.id)

        # Check edge references
        for edge in self.edges:
            if edge.source not in seen_ids:
                errors.append(f"Edge '{edge.describe()}' references missing source '{edge.source}'")
            if edge.target not in seen_ids:
                errors.append(f"Edge '{edge.describe()}' references missing target '{edge.target}'")

        # Hybrid nodes: at most one outgoing edge per branch name
        for node in self.nodes:
            if not is_hybrid_node(node):
                continue
            branches: dict[str, str] = {}
            for edge in self.get_outgoing_edges(node.id):
                if not edge.is_branch_edge:
                    continue
                name = edge.branch_name()
                if name in branches:
                    errors.append(
                        f"Hybrid node '{node.id}' has multiple outgoing edges for branch "
                        f"'{name}': '{branches[name]}' and '{edge.describe()}'"
                    )
                else:
                    branches[name] = edge.describe()

        return errors

    def ensure_valid(self) -> None:
        """Raise StructuralError if the graph fails validation."""
        errors = self.validate()
        if errors:
            raise StructuralError(errors)
