"""Schema definitions for flow runs."""

from flowrun.schemas.run import (
    BlockOutput,
    BranchStatus,
    ManifestBlock,
    RunManifest,
    RunResult,
    VerificationBlock,
    VerificationSummary,
)

__all__ = [
    "BlockOutput",
    "BranchStatus",
    "ManifestBlock",
    "RunManifest",
    "RunResult",
    "VerificationBlock",
    "VerificationSummary",
]
