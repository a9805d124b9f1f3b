"""Modality payload validation for node parameters.

Nodes that ingest non-text input carry structured payloads under
``params["modalities"]`` as ``{modality: {payload_type: payload}}``. The
payloads come straight from an editor and are untrusted: this module
salvages every well-formed item, drops the rest, and reports each drop or
default as a warning string. Nothing here raises.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

VIDEO_TIMECODE_STEP = 5


class PayloadType(StrEnum):
    AUDIO_TIMELINE = "audio_timeline"
    VIDEO_EVENT_GRAPH = "video_event_graph"
    SCENE_GRAPH = "scene_graph"


class ModalityPayloadRequirement(BaseModel):
    """One payload a node expects for a modality."""

    type: PayloadType
    label: str
    description: str | None = None
    schema_ref: str | None = Field(default=None, alias="schema")
    required: bool = True

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ModalityRequirement(BaseModel):
    """Payloads a node expects for one modality (audio, video, three_d)."""

    modality: str
    label: str | None = None
    description: str | None = None
    payloads: list[ModalityPayloadRequirement] = Field(min_length=1)

    model_config = ConfigDict(frozen=True)

    @property
    def display_name(self) -> str:
        return self.label or self.modality


# Ingest blocks declare their payloads even when no prompt metadata is loaded.
BUILTIN_MODALITY_REQUIREMENTS: dict[str, list[ModalityRequirement]] = {
    "audio-timeline-ingest": [
        ModalityRequirement(
            modality="audio",
            label="Audio capture",
            payloads=[
                ModalityPayloadRequirement(
                    type=PayloadType.AUDIO_TIMELINE, label="Timeline annotations"
                )
            ],
        )
    ],
    "video-event-graph": [
        ModalityRequirement(
            modality="video",
            label="Video semantics",
            payloads=[
                ModalityPayloadRequirement(type=PayloadType.VIDEO_EVENT_GRAPH, label="Event graph")
            ],
        )
    ],
    "scene-graph-builder": [
        ModalityRequirement(
            modality="three_d",
            label="3D layout",
            payloads=[
                ModalityPayloadRequirement(type=PayloadType.SCENE_GRAPH, label="Scene graph")
            ],
        )
    ],
}


@dataclass
class PayloadValidation:
    """Result of validating one payload."""

    value: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class ModalityValidationResult:
    """Normalized payload state for a node plus every warning raised."""

    state: dict[str, dict[str, Any]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def has_payloads(self) -> bool:
        return any(self.state.values())


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _list_field(raw: dict[str, Any], key: str, label: str, warnings: list[str]) -> list[Any]:
    items = raw.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        warnings.append(f"{label} '{key}' is not a list; ignoring it")
        return []
    return items


def validate_audio_timeline(raw: Any) -> PayloadValidation:
    """
    Normalize an audio timeline.

    Each annotation needs a numeric ``start``. ``end`` falls back to
    ``start`` when missing or earlier than ``start``. Missing ids and labels
    are synthesized as ``marker-N`` / ``Marker N``. Absent fields default
    silently; malformed ones warn. Annotations come back sorted by start time.
    """
    result = PayloadValidation()
    if not isinstance(raw, dict):
        result.warnings.append("Audio timeline payload is not an object")
        return result

    annotations = []
    items = _list_field(raw, "annotations", "Audio timeline", result.warnings)
    for index, item in enumerate(items):
        position = index + 1
        if not isinstance(item, dict):
            result.warnings.append(f"Dropped audio annotation #{position}: not an object")
            continue
        start = item.get("start")
        if not _is_number(start):
            result.warnings.append(f"Dropped audio annotation #{position}: missing numeric start")
            continue

        annotation = dict(item)
        annotation["id"] = item["id"] if _non_empty_str(item.get("id")) else f"marker-{position}"
        annotation["label"] = (
            item["label"] if _non_empty_str(item.get("label")) else f"Marker {position}"
        )
        end = item.get("end")
        if end is None:
            annotation["end"] = start
        elif not _is_number(end):
            result.warnings.append(
                f"Audio annotation '{annotation['id']}' has non-numeric end; using start"
            )
            annotation["end"] = start
        elif end < start:
            result.warnings.append(
                f"Audio annotation '{annotation['id']}' ends before it starts; using start"
            )
            annotation["end"] = start
        annotations.append(annotation)

    annotations.sort(key=lambda a: a["start"])
    if not annotations:
        result.warnings.append("Audio timeline has no annotations")

    value: dict[str, Any] = {"annotations": annotations}
    if isinstance(raw.get("source"), dict):
        value["source"] = dict(raw["source"])
    result.value = value
    return result


def validate_video_event_graph(raw: Any) -> PayloadValidation:
    """
    Normalize a video event graph.

    Events need ``id`` and ``label``; a missing ``timecode`` silently defaults
    to ``index * 5`` seconds, a non-numeric one does too but warns. Edges
    need distinct, non-empty ``from``/``to`` that both name a surviving event.
    """
    result = PayloadValidation()
    if not isinstance(raw, dict):
        result.warnings.append("Video event graph payload is not an object")
        return result

    events = []
    for index, item in enumerate(_list_field(raw, "events", "Video event graph", result.warnings)):
        if not isinstance(item, dict):
            result.warnings.append(f"Dropped video event #{index + 1}: not an object")
            continue
        if not _non_empty_str(item.get("id")) or not _non_empty_str(item.get("label")):
            result.warnings.append(f"Dropped video event #{index + 1}: missing id or label")
            continue
        event = dict(item)
        timecode = item.get("timecode")
        if not _is_number(timecode):
            if timecode is not None:
                result.warnings.append(
                    f"Video event '{item['id']}' has non-numeric timecode; "
                    f"defaulting to {index * VIDEO_TIMECODE_STEP}s"
                )
            event["timecode"] = index * VIDEO_TIMECODE_STEP
        events.append(event)

    known_events = {event["id"] for event in events}
    edges = []
    for index, item in enumerate(_list_field(raw, "edges", "Video event graph", result.warnings)):
        position = index + 1
        if not isinstance(item, dict):
            result.warnings.append(f"Dropped video edge #{position}: not an object")
            continue
        source, target = item.get("from"), item.get("to")
        if not _non_empty_str(source) or not _non_empty_str(target):
            result.warnings.append(f"Dropped video edge #{position}: missing from/to")
            continue
        if source == target:
            result.warnings.append(f"Dropped video edge #{position}: self-loop on '{source}'")
            continue
        missing = [ref for ref in (source, target) if ref not in known_events]
        if missing:
            result.warnings.append(
                f"Dropped video edge #{position}: unknown event(s) {', '.join(missing)}"
            )
            continue
        edge = dict(item)
        if not _non_empty_str(edge.get("id")):
            edge["id"] = f"edge-{position}"
        edges.append(edge)

    result.value = {"events": events, "edges": edges}
    return result


def validate_scene_graph(raw: Any) -> PayloadValidation:
    """
    Normalize a scene graph.

    Nodes need ``id`` and ``label``. Relationships need non-empty ``from``,
    ``to`` and ``relation``.
    """
    result = PayloadValidation()
    if not isinstance(raw, dict):
        result.warnings.append("Scene graph payload is not an object")
        return result

    nodes = []
    for index, item in enumerate(_list_field(raw, "nodes", "Scene graph", result.warnings)):
        if not isinstance(item, dict):
            result.warnings.append(f"Dropped scene node #{index + 1}: not an object")
            continue
        if not _non_empty_str(item.get("id")) or not _non_empty_str(item.get("label")):
            result.warnings.append(f"Dropped scene node #{index + 1}: missing id or label")
            continue
        nodes.append(dict(item))

    relationships = []
    for index, item in enumerate(
        _list_field(raw, "relationships", "Scene graph", result.warnings)
    ):
        position = index + 1
        if not isinstance(item, dict):
            result.warnings.append(f"Dropped scene relationship #{position}: not an object")
            continue
        if not all(_non_empty_str(item.get(key)) for key in ("from", "to", "relation")):
            result.warnings.append(
                f"Dropped scene relationship #{position}: missing from, to or relation"
            )
            continue
        relationships.append(dict(item))

    result.value = {"nodes": nodes, "relationships": relationships}
    return result


PAYLOAD_VALIDATORS = {
    PayloadType.AUDIO_TIMELINE: validate_audio_timeline,
    PayloadType.VIDEO_EVENT_GRAPH: validate_video_event_graph,
    PayloadType.SCENE_GRAPH: validate_scene_graph,
}


def validate_modalities(
    requirements: list[ModalityRequirement] | None,
    payloads: Any,
) -> ModalityValidationResult:
    """
    Validate a node's payload bag against its modality requirements.

    Required payloads that are absent produce ``"Missing {label} for {modality}"``.
    Optional payloads that are absent are silently skipped. Payloads present
    in the bag but not declared are still validated if their type is known.

    Args:
        requirements: Declared modality requirements (may be empty)
        payloads: Untrusted ``{modality: {payload_type: payload}}`` mapping

    Returns:
        ModalityValidationResult with normalized state and warnings
    """
    result = ModalityValidationResult()
    requirements = requirements or []

    if payloads is None:
        bag: dict[str, Any] = {}
    elif isinstance(payloads, dict):
        bag = payloads
    else:
        result.warnings.append("Modality payloads are not an object; ignoring them")
        bag = {}

    handled: set[tuple[str, str]] = set()

    for requirement in requirements:
        modality_bag = bag.get(requirement.modality)
        if modality_bag is not None and not isinstance(modality_bag, dict):
            result.warnings.append(
                f"Payloads for {requirement.display_name} are not an object; ignoring them"
            )
            modality_bag = None
        modality_bag = modality_bag or {}

        for payload in requirement.payloads:
            handled.add((requirement.modality, payload.type.value))
            raw = modality_bag.get(payload.type.value)
            if raw is None:
                if payload.required:
                    result.warnings.append(
                        f"Missing {payload.label} for {requirement.display_name}"
                    )
                continue
            _apply(result, requirement.modality, payload.type, raw)

    for modality, modality_bag in bag.items():
        if not isinstance(modality_bag, dict):
            if not any(r.modality == modality for r in requirements):
                result.warnings.append(f"Payloads for {modality} are not an object; ignoring them")
            continue
        for payload_type, raw in modality_bag.items():
            if (modality, payload_type) in handled:
                continue
            try:
                known = PayloadType(payload_type)
            except ValueError:
                result.warnings.append(
                    f"Unsupported payload type '{payload_type}' for {modality}; ignoring it"
                )
                continue
            _apply(result, modality, known, raw)

    if result.warnings:
        logger.debug(f"Modality validation produced {len(result.warnings)} warning(s)")
    return result


def _apply(
    result: ModalityValidationResult,
    modality: str,
    payload_type: PayloadType,
    raw: Any,
) -> None:
    validation = PAYLOAD_VALIDATORS[payload_type](raw)
    result.warnings.extend(validation.warnings)
    if validation.value is not None:
        result.state.setdefault(modality, {})[payload_type.value] = validation.value
