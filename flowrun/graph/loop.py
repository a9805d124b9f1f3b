"""NodeExecutor: the propose/verify loop for a single node.

The loop is a small state machine:

    START -> PROPOSE -> VERIFY -> (PROPOSE | DONE)

``next_phase`` is the whole transition function. VERIFY goes back to
PROPOSE only when the verdict is ``revise``, the node is not single-pass
and the iteration bound has not been reached. Every other path ends in
DONE, so the loop always terminates within ``max_iterations`` passes.

Drafting and judging are delegated to a proposer and a verifier (see
``flowrun.graph.verifier``); the executor owns only the bookkeeping:
transcript, artefacts, interventions and the assembled BlockOutput.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flowrun.graph.artefacts import merge_artefacts
from flowrun.graph.modality import (
    BUILTIN_MODALITY_REQUIREMENTS,
    ModalityRequirement,
    validate_modalities,
)
from flowrun.graph.node import ExecutionMode, LoopSettings, NodeSpec, resolve_execution_mode
from flowrun.graph.verifier import (
    HeuristicProposer,
    HeuristicVerifier,
    ProposerProtocol,
    SelfCheckEntry,
    StepContext,
    TranscriptEntry,
    Verdict,
    VerifierProtocol,
    VerifierVerdict,
    derive_acceptance_criteria,
)
from flowrun.metadata.library import PromptMetadata
from flowrun.schemas.run import BlockOutput

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class LoopPhase(StrEnum):
    START = "start"
    PROPOSE = "propose"
    VERIFY = "verify"
    DONE = "done"


_PHASE_TRANSITIONS: dict[LoopPhase, LoopPhase] = {
    LoopPhase.START: LoopPhase.PROPOSE,
    LoopPhase.PROPOSE: LoopPhase.VERIFY,
    LoopPhase.DONE: LoopPhase.DONE,
}

_VERDICT_TRANSITIONS: dict[Verdict, LoopPhase] = {
    Verdict.ACCEPTED: LoopPhase.DONE,
    Verdict.ESCALATE: LoopPhase.DONE,
    Verdict.REVISE: LoopPhase.PROPOSE,
}


def next_phase(
    phase: LoopPhase,
    verdict: Verdict | None,
    mode: ExecutionMode,
    iteration: int,
    max_iterations: int,
) -> LoopPhase:
    """Transition function of the propose/verify loop."""
    if phase != LoopPhase.VERIFY:
        return _PHASE_TRANSITIONS[phase]
    target = _VERDICT_TRANSITIONS.get(verdict, LoopPhase.DONE)
    if target == LoopPhase.PROPOSE:
        if mode == ExecutionMode.SINGLE_PASS or iteration >= max_iterations:
            return LoopPhase.DONE
    return target


@dataclass
class NodeExecutionState:
    """Ephemeral per-node state, folded into a BlockOutput when the loop ends."""

    iteration: int = 0
    proposal: str | None = None
    feedback: list[str] = field(default_factory=list)
    history: list[TranscriptEntry] = field(default_factory=list)
    drafts: list[str] = field(default_factory=list)
    verdict: VerifierVerdict | None = None
    interventions: int = 0
    self_check: list[SelfCheckEntry] | None = None
    artefacts: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


def modality_requirements_for(
    node: NodeSpec, metadata: PromptMetadata | None
) -> list[ModalityRequirement]:
    """Metadata requirements win; otherwise fall back to the built-in ingest blocks."""
    if metadata is not None and metadata.modalities:
        return list(metadata.modalities)
    for candidate in (node.base_id, node.type, node.metadata_id):
        if candidate and candidate in BUILTIN_MODALITY_REQUIREMENTS:
            return BUILTIN_MODALITY_REQUIREMENTS[candidate]
    return []


def _mode_summary(node: NodeSpec, settings: LoopSettings, state: NodeExecutionState) -> str:
    verdict = state.verdict.verdict.value if state.verdict else "none"
    if settings.mode == ExecutionMode.SINGLE_PASS:
        checks = len(state.self_check or [])
        return f"Single-pass self-check for {node.block}: {checks} check(s), verdict {verdict}."
    if settings.mode == ExecutionMode.RECURSIVE:
        return (
            f"Recursive self-improvement for {node.block}: "
            f"{state.iteration}/{settings.max_iterations} pass(es), final verdict {verdict}."
        )
    return f"Sequential execution of {node.block}: verdict {verdict}."


class NodeExecutor:
    """
    Runs one node through the propose/verify loop.

    Example:
        executor = NodeExecutor()
        output = await executor.execute(node, metadata=library.resolve(node.metadata_id))
        output.iterations  # 3 for an RSIP node with max_passes=3
    """

    def __init__(
        self,
        proposer: ProposerProtocol | None = None,
        verifier: VerifierProtocol | None = None,
    ):
        self.proposer = proposer or HeuristicProposer()
        self.verifier = verifier or HeuristicVerifier()

    async def execute(
        self,
        node: NodeSpec,
        metadata: PromptMetadata | None = None,
        flow_summary: str = "",
    ) -> BlockOutput:
        settings = resolve_execution_mode(node)
        guidance = metadata.when_to_use if metadata else None
        fallback_text = (metadata.acceptance_criteria or metadata.when_to_use) if metadata else None
        criteria = derive_acceptance_criteria(node.params, fallback_text)
        modality = validate_modalities(
            modality_requirements_for(node, metadata), node.params.get("modalities")
        )

        state = NodeExecutionState()
        phase = LoopPhase.START
        while phase != LoopPhase.DONE:
            if phase == LoopPhase.PROPOSE:
                await self._propose(node, settings, guidance, criteria, state)
            elif phase == LoopPhase.VERIFY:
                await self._verify(node, settings, guidance, criteria, state)
            phase = next_phase(
                phase,
                state.verdict.verdict if state.verdict else None,
                settings.mode,
                state.iteration,
                settings.max_iterations,
            )

        verdict = state.verdict or VerifierVerdict(verdict=Verdict.ACCEPTED, confidence=0.0)
        verdict = verdict.model_copy(update={"interventions": state.interventions})
        if verdict.verdict == Verdict.ESCALATE:
            logger.warning(f"   ⚠ {node.id} escalated after {state.iteration} pass(es)")

        params_used = dict(node.params)
        if "modalities" in node.params or modality.state:
            params_used["modalities"] = modality.state

        note = _mode_summary(node, settings, state)
        if modality.warnings:
            note = f"{note} Validation warnings: {'; '.join(modality.warnings)}"

        logger.info(
            f"   ✓ {node.id}: {verdict.verdict} after {state.iteration} pass(es) "
            f"(confidence {verdict.confidence:.2f})"
        )

        return BlockOutput(
            mode=settings.mode,
            iterations=state.iteration,
            max_iterations=settings.max_iterations,
            proposal=state.drafts[0] if state.drafts else "",
            final=state.drafts[-1] if state.drafts else "",
            history=state.history,
            self_check=state.self_check,
            verifier=verdict,
            artefacts=state.artefacts,
            guidance=guidance,
            failure_modes=metadata.failure_modes if metadata else None,
            acceptance_criteria=metadata.acceptance_criteria if metadata else None,
            combines_with=metadata.combines_with if metadata else None,
            composition_steps=metadata.composition_steps if metadata else None,
            criteria=criteria,
            flow_summary=flow_summary,
            params_used=params_used,
            note=note,
            warnings=modality.warnings,
        )

    def _context(
        self,
        node: NodeSpec,
        settings: LoopSettings,
        guidance: str | None,
        criteria: list[str],
        state: NodeExecutionState,
    ) -> StepContext:
        return StepContext(
            node=node,
            mode=settings.mode,
            iteration=state.iteration,
            max_iterations=settings.max_iterations,
            guidance=guidance,
            acceptance_criteria=list(criteria),
            feedback=list(state.feedback),
            proposal=state.proposal,
            interventions=state.interventions,
        )

    async def _propose(
        self,
        node: NodeSpec,
        settings: LoopSettings,
        guidance: str | None,
        criteria: list[str],
        state: NodeExecutionState,
    ) -> None:
        state.iteration += 1
        logger.debug(f"   → {node.id} propose pass {state.iteration}/{settings.max_iterations}")
        proposal = await self.proposer.propose(
            self._context(node, settings, guidance, criteria, state)
        )
        state.proposal = proposal.content
        state.drafts.append(proposal.content)
        state.history.append(
            TranscriptEntry(iteration=state.iteration, role="proposer", content=proposal.content)
        )
        state.artefacts = merge_artefacts(state.artefacts, proposal.artefacts)

    async def _verify(
        self,
        node: NodeSpec,
        settings: LoopSettings,
        guidance: str | None,
        criteria: list[str],
        state: NodeExecutionState,
    ) -> None:
        verification = await self.verifier.verify(
            self._context(node, settings, guidance, criteria, state)
        )
        verdict = verification.verdict
        state.verdict = verdict
        state.interventions += verdict.interventions
        state.feedback = list(verification.feedback)
        if verification.self_check is not None:
            state.self_check = verification.self_check

        content = f"{verdict.verdict} ({verdict.confidence:.2f})"
        if verdict.notes:
            content = f"{content}: {' '.join(verdict.notes)}"
        state.history.append(
            TranscriptEntry(iteration=state.iteration, role="verifier", content=content)
        )
        state.artefacts = merge_artefacts(
            state.artefacts,
            {
                **verification.artefacts,
                "last_verification": {
                    "iteration": state.iteration,
                    "verdict": verdict.verdict.value,
                    "confidence": verdict.confidence,
                },
            },
        )
        logger.debug(f"   ← {node.id} verify pass {state.iteration}: {verdict.verdict}")
