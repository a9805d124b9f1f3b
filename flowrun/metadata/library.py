"""Prompt metadata library loaded from YAML.

Two directories feed the library: prompt templates and compositions. Each
``.yaml`` file becomes one PromptMetadata entry keyed by its ``id`` (or the
file stem). Prompt files are validated; a file that fails validation is
skipped with a warning so one broken template never hides the rest.

The library is an immutable mapping. Build it once and pass it to the
executor explicitly.
"""

import logging
from collections.abc import Iterator, Mapping
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from flowrun.graph.modality import ModalityRequirement

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


class MetadataKind(StrEnum):
    PROMPT = "prompt"
    COMPOSITION = "composition"


class SlotDefinition(BaseModel):
    name: str = Field(min_length=1)
    label: str | None = None
    type: str | None = None
    help: str | None = None
    default: Any = None
    options: list[str | dict[str, str]] | None = None


class PromptMetadata(BaseModel):
    """Guidance attached to a block through its metadata id."""

    id: str
    title: str
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    when_to_use: str | None = None
    failure_modes: str | None = None
    acceptance_criteria: str | None = None
    combines_with: list[str] | None = None
    slots: list[SlotDefinition] | None = None
    prompt: str | None = None
    composition_steps: list[str] | None = None
    modalities: list[ModalityRequirement] | None = None
    relative_path: str = ""
    kind: MetadataKind = MetadataKind.PROMPT

    model_config = ConfigDict(frozen=True)

    @field_validator("combines_with", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, str)]
        return None


class MetadataLibrary(Mapping[str, PromptMetadata]):
    """Read-only id -> PromptMetadata mapping."""

    def __init__(self, entries: list[PromptMetadata] | None = None):
        items: dict[str, PromptMetadata] = {}
        for entry in entries or []:
            if entry.id in items:
                logger.warning(
                    f"Duplicate metadata id '{entry.id}' in {entry.relative_path}; "
                    f"keeping {items[entry.id].relative_path}"
                )
                continue
            items[entry.id] = entry
        self._entries = MappingProxyType(items)

    def __getitem__(self, key: str) -> PromptMetadata:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"MetadataLibrary({len(self)} entries)"

    def resolve(self, metadata_id: str | None) -> PromptMetadata | None:
        if not metadata_id:
            return None
        return self._entries.get(metadata_id)


def _composition_steps(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    steps = []
    for step in raw:
        if isinstance(step, dict) and isinstance(step.get("use"), str) and step["use"]:
            steps.append(step["use"])
    return steps


def _parse_file(path: Path, kind: MetadataKind, root: Path) -> PromptMetadata | None:
    try:
        with open(path, encoding="utf-8") as f:
            parsed = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"⚠ Skipping {path.name}: {e}")
        return None
    if not isinstance(parsed, dict):
        logger.warning(f"⚠ Skipping {path.name}: top level is not a mapping")
        return None

    data: dict[str, Any] = {
        "id": parsed.get("id") or path.stem,
        "title": parsed.get("title") or parsed.get("name") or path.stem,
        "category": parsed.get("category"),
        "tags": parsed.get("tags") or [],
        "when_to_use": parsed.get("when_to_use"),
        "failure_modes": parsed.get("failure_modes"),
        "acceptance_criteria": parsed.get("acceptance_criteria"),
        "combines_with": parsed.get("combines_with"),
        "slots": parsed.get("slots"),
        "prompt": parsed.get("prompt"),
        "modalities": parsed.get("modalities") or None,
        "relative_path": path.relative_to(root.parent).as_posix(),
        "kind": kind,
    }
    if kind == MetadataKind.COMPOSITION:
        data["composition_steps"] = _composition_steps(parsed.get("steps"))

    try:
        return PromptMetadata.model_validate(data)
    except ValidationError as e:
        logger.warning(f"⚠ Validation failed for {path.name}: {e.error_count()} error(s)")
        logger.debug(str(e))
        return None


def read_yaml_directory(directory: Path, kind: MetadataKind) -> list[PromptMetadata]:
    """Parse every YAML file in ``directory``. A missing directory yields nothing."""
    if not directory.is_dir():
        logger.debug(f"Metadata directory {directory} does not exist")
        return []
    entries = []
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix not in YAML_SUFFIXES:
            continue
        entry = _parse_file(path, kind, directory)
        if entry is not None:
            entries.append(entry)
    return entries


def load_prompt_library(
    prompts_dir: str | Path | None = None,
    compositions_dir: str | Path | None = None,
) -> MetadataLibrary:
    """
    Load prompt templates and compositions into one library.

    Args:
        prompts_dir: Directory of prompt template YAML files
        compositions_dir: Directory of composition YAML files

    Returns:
        MetadataLibrary keyed by metadata id; prompts win over compositions
        on id collisions
    """
    entries: list[PromptMetadata] = []
    if prompts_dir:
        entries.extend(read_yaml_directory(Path(prompts_dir), MetadataKind.PROMPT))
    if compositions_dir:
        entries.extend(read_yaml_directory(Path(compositions_dir), MetadataKind.COMPOSITION))
    library = MetadataLibrary(entries)
    logger.info(f"📚 Loaded {len(library)} metadata entries")
    return library
