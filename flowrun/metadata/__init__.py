"""Prompt metadata: guidance, failure modes and acceptance criteria per block."""

from flowrun.metadata.library import (
    MetadataKind,
    MetadataLibrary,
    PromptMetadata,
    load_prompt_library,
)

__all__ = ["MetadataKind", "MetadataLibrary", "PromptMetadata", "load_prompt_library"]
