"""Proposer and verifier collaborators for the propose/verify loop.

The loop itself never generates text. It asks a proposer for a draft and a
verifier for a verdict on that draft. Real deployments plug in a model-backed
pair; the heuristic pair below is deterministic and is what runs by default.

Verdicts:
- accepted: the draft meets the acceptance criteria, stop
- revise: try again with the attached feedback (recursive mode only)
- escalate: stop and hand the node to a human
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flowrun.graph.node import ExecutionMode, NodeSpec

REVISE_CONFIDENCE = 0.45
SINGLE_PASS_CONFIDENCE = 0.84
SEQUENTIAL_CONFIDENCE = 0.82
SEQUENTIAL_BASELINE_CONFIDENCE = 0.75
RECURSIVE_BASE_CONFIDENCE = 0.82
RECURSIVE_STEP_BONUS = 0.05
RECURSIVE_MAX_BONUS = 0.1

_BULLET_PATTERN = re.compile(r"^\s*(?:[-*•+]|\d+[.)])\s*")

_MODEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Verdict(StrEnum):
    ACCEPTED = "accepted"
    REVISE = "revise"
    ESCALATE = "escalate"


class VerifierVerdict(BaseModel):
    """Verifier output for one pass."""

    verdict: Verdict
    confidence: float = Field(ge=0.0, le=1.0)
    notes: list[str] = Field(default_factory=list)
    interventions: int = 0

    model_config = _MODEL_CONFIG


class TranscriptEntry(BaseModel):
    iteration: int
    role: Literal["proposer", "verifier"]
    content: str

    model_config = _MODEL_CONFIG


class SelfCheckEntry(BaseModel):
    criterion: str
    status: Literal["pass", "fail"] = "pass"
    note: str = ""

    model_config = _MODEL_CONFIG


@dataclass
class StepContext:
    """Everything a proposer or verifier may look at for one pass."""

    node: NodeSpec
    mode: ExecutionMode
    iteration: int
    max_iterations: int
    guidance: str | None = None
    acceptance_criteria: list[str] = field(default_factory=list)
    feedback: list[str] = field(default_factory=list)
    proposal: str | None = None
    interventions: int = 0


@dataclass
class Proposal:
    content: str
    artefacts: dict[str, Any] = field(default_factory=dict)


@dataclass
class Verification:
    verdict: VerifierVerdict
    feedback: list[str] = field(default_factory=list)
    self_check: list[SelfCheckEntry] | None = None
    artefacts: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ProposerProtocol(Protocol):
    """Produces a draft for the current pass."""

    async def propose(self, ctx: StepContext) -> Proposal: ...


@runtime_checkable
class VerifierProtocol(Protocol):
    """Judges the current draft: accept it, ask for a revision, or escalate."""

    async def verify(self, ctx: StepContext) -> Verification: ...


def split_criteria(text: str) -> list[str]:
    """Split newline-separated criteria and strip bullet markers."""
    criteria = []
    for line in text.splitlines():
        cleaned = _BULLET_PATTERN.sub("", line).strip()
        if cleaned:
            criteria.append(cleaned)
    return criteria


def derive_acceptance_criteria(params: dict[str, Any], fallback: str | None = None) -> list[str]:
    """
    Acceptance criteria for a node.

    Uses ``params["success_criteria"]`` (a newline-separated string or a list
    of strings) when present, otherwise the fallback guidance text.
    """
    explicit = params.get("success_criteria")
    if isinstance(explicit, str) and explicit.strip():
        return split_criteria(explicit)
    if isinstance(explicit, list):
        criteria = [str(item).strip() for item in explicit if str(item).strip()]
        if criteria:
            return criteria
    if fallback:
        return split_criteria(fallback)
    return []


def accepted_confidence(iteration: int) -> float:
    """Confidence of an accepted recursive pass; grows with each pass."""
    bonus = min(RECURSIVE_MAX_BONUS, (iteration - 1) * RECURSIVE_STEP_BONUS)
    return round(RECURSIVE_BASE_CONFIDENCE + bonus, 2)


def _target_confidence(params: dict[str, Any]) -> float | None:
    value = params.get("target_confidence")
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not 0.0 <= value <= 1.0:
        return None
    return float(value)


def _format_params(params: dict[str, Any]) -> str:
    parts = []
    for key in sorted(params):
        if key == "modalities":
            continue
        value = json.dumps(params[key], default=str, sort_keys=True)
        if len(value) > 80:
            value = value[:77] + "..."
        parts.append(f"{key}={value}")
    return ", ".join(parts)


class HeuristicProposer:
    """Deterministic stand-in for a drafting model."""

    async def propose(self, ctx: StepContext) -> Proposal:
        lines = [f"[{ctx.node.block}] Pass {ctx.iteration}/{ctx.max_iterations}"]
        if ctx.guidance:
            lines.append(f"Guidance: {ctx.guidance.strip()}")
        params = _format_params(ctx.node.params)
        if params:
            lines.append(f"Parameters: {params}")
        if ctx.feedback:
            lines.append("Addressing: " + "; ".join(ctx.feedback))
        content = "\n".join(lines)
        return Proposal(
            content=content,
            artefacts={"drafts": [{"iteration": ctx.iteration, "content": content}]},
        )


class HeuristicVerifier:
    """
    Deterministic stand-in for a verifying model.

    - single-pass: accept on the only pass, one self-check entry per criterion
    - recursive: revise until the last pass (or until ``target_confidence``
      is reached), then accept with a confidence that grows per pass
    - sequential: accept once at a fixed baseline confidence
    """

    async def verify(self, ctx: StepContext) -> Verification:
        if ctx.mode == ExecutionMode.SINGLE_PASS:
            return self._single_pass(ctx)
        if ctx.mode == ExecutionMode.RECURSIVE:
            return self._recursive(ctx)
        return self._sequential(ctx)

    def _single_pass(self, ctx: StepContext) -> Verification:
        criteria = ctx.acceptance_criteria or ["General self-check"]
        self_check = [
            SelfCheckEntry(criterion=c, status="pass", note=f"Confirmed in pass {ctx.iteration}")
            for c in criteria
        ]
        return Verification(
            verdict=VerifierVerdict(
                verdict=Verdict.ACCEPTED,
                confidence=SINGLE_PASS_CONFIDENCE,
                notes=[f"Single-pass self-check covered {len(self_check)} criterion(s)."],
            ),
            self_check=self_check,
            artefacts=_verdict_artefact(ctx.iteration, Verdict.ACCEPTED),
        )

    def _recursive(self, ctx: StepContext) -> Verification:
        confidence = accepted_confidence(ctx.iteration)
        target = _target_confidence(ctx.node.params)
        satisfied = target is not None and confidence >= target

        if ctx.iteration >= ctx.max_iterations or satisfied:
            if satisfied and ctx.iteration < ctx.max_iterations:
                note = f"Reached target confidence {target:g} on pass {ctx.iteration}."
            else:
                note = f"Accepted after {ctx.iteration} pass(es)."
            return Verification(
                verdict=VerifierVerdict(
                    verdict=Verdict.ACCEPTED, confidence=confidence, notes=[note]
                ),
                artefacts=_verdict_artefact(ctx.iteration, Verdict.ACCEPTED),
            )

        if ctx.acceptance_criteria:
            focus = ctx.acceptance_criteria[(ctx.iteration - 1) % len(ctx.acceptance_criteria)]
            feedback = [f"Pass {ctx.iteration}: strengthen '{focus}'"]
        else:
            feedback = [f"Pass {ctx.iteration}: tighten reasoning and resolve open issues"]
        return Verification(
            verdict=VerifierVerdict(
                verdict=Verdict.REVISE,
                confidence=REVISE_CONFIDENCE,
                notes=feedback,
                interventions=1,
            ),
            feedback=feedback,
            artefacts=_verdict_artefact(ctx.iteration, Verdict.REVISE),
        )

    def _sequential(self, ctx: StepContext) -> Verification:
        confidence = (
            SEQUENTIAL_CONFIDENCE if ctx.acceptance_criteria else SEQUENTIAL_BASELINE_CONFIDENCE
        )
        return Verification(
            verdict=VerifierVerdict(
                verdict=Verdict.ACCEPTED,
                confidence=confidence,
                notes=[f"Checked against {len(ctx.acceptance_criteria)} criterion(s)."],
            ),
            artefacts=_verdict_artefact(ctx.iteration, Verdict.ACCEPTED),
        )


def _verdict_artefact(iteration: int, verdict: Verdict) -> dict[str, Any]:
    return {"verdicts": [{"iteration": iteration, "verdict": verdict.value}]}
