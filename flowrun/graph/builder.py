"""Build a FlowGraph from an authoring preset.

A preset is what the canvas saves: an ordered list of node ids plus the
edges the author drew (``source``/``target`` in canvas terms). Edges that
point at unknown nodes are dropped. When no usable edge is left, the nodes
are chained in list order.
"""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flowrun.graph.edge import EdgeKind, FlowGraph
from flowrun.metadata.library import PromptMetadata

logger = logging.getLogger(__name__)


class FlowPreset(BaseModel):
    """A flow as saved by the authoring tool."""

    id: str
    name: str
    description: str = ""
    node_ids: list[str] = Field(default_factory=list)
    edges: list[Any] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _is_valid_edge(edge: Any, node_ids: set[str]) -> bool:
    if not isinstance(edge, dict):
        return False
    source, target = edge.get("source"), edge.get("target")
    if not isinstance(source, str) or not isinstance(target, str):
        return False
    return source in node_ids and target in node_ids


def _map_edge(edge: dict[str, Any], index: int) -> dict[str, Any]:
    source, target = edge["source"], edge["target"]
    label = edge.get("label")
    gate = edge.get("gate") if isinstance(edge.get("gate"), dict) else None
    branch = edge.get("branch") or (gate or {}).get("branch")
    mapped: dict[str, Any] = {
        "id": f"{source}→{target}:{label}" if label else f"{source}→{target}#{index + 1}",
        "from": source,
        "to": target,
        "label": label,
        "kind": edge.get("kind") or (EdgeKind.BRANCH if branch else EdgeKind.DEFAULT),
        "condition": edge.get("condition"),
        "branch": branch,
    }
    if gate is not None:
        mapped["gate"] = {
            "type": "reason.hybrid",
            "branch": gate.get("branch"),
            "thresholds": gate.get("thresholds") or {},
        }
    return mapped


def _node_entry(
    node_id: str,
    params: dict[str, Any],
    library: Mapping[str, PromptMetadata],
) -> dict[str, Any]:
    base_id = node_id.split("#", 1)[0]
    metadata = library.get(base_id)
    entry: dict[str, Any] = {
        "id": node_id,
        "type": base_id,
        "block": metadata.title if metadata else base_id,
        "params": dict(params),
    }
    if metadata is not None:
        entry["metadataId"] = metadata.id
        entry["title"] = metadata.title
        if metadata.category:
            entry["category"] = metadata.category
        entry["sourcePath"] = metadata.relative_path
    return entry


def build_flow_graph(
    preset: FlowPreset | dict[str, Any],
    params_by_node: dict[str, dict[str, Any]] | None = None,
    library: Mapping[str, PromptMetadata] | None = None,
) -> FlowGraph:
    """
    Turn a preset into a runnable FlowGraph.

    Args:
        preset: FlowPreset or its wire dict (``nodeIds``, ``edges``)
        params_by_node: Parameters keyed by node id
        library: Metadata used to label nodes and attach metadata ids

    Returns:
        FlowGraph in the nested ``promptspec/v1`` shape
    """
    if not isinstance(preset, FlowPreset):
        preset = FlowPreset.model_validate(preset)
    params_by_node = params_by_node or {}
    library = library or {}
    node_ids = set(preset.node_ids)

    nodes = [_node_entry(nid, params_by_node.get(nid, {}), library) for nid in preset.node_ids]

    edges = []
    for edge in preset.edges:
        if not _is_valid_edge(edge, node_ids):
            logger.debug(f"Skipping preset edge {edge!r}: unknown endpoint")
            continue
        edges.append(_map_edge(edge, len(edges)))

    if not edges:
        for source, target in zip(preset.node_ids, preset.node_ids[1:], strict=False):
            edges.append(
                {
                    "id": f"{source}→{target}",
                    "from": source,
                    "to": target,
                    "kind": EdgeKind.DEFAULT,
                }
            )

    return FlowGraph.model_validate(
        {
            "version": "promptspec/v1",
            "flow": {"id": preset.id, "name": preset.name, "description": preset.description},
            "nodes": nodes,
            "edges": edges,
        }
    )
