"""Tests for the YAML prompt metadata library."""

import logging
from textwrap import dedent

import pytest

from flowrun.metadata.library import (
    MetadataKind,
    MetadataLibrary,
    PromptMetadata,
    load_prompt_library,
)


@pytest.fixture
def library_dirs(tmp_path):
    prompts = tmp_path / "prompts"
    compositions = tmp_path / "compositions"
    prompts.mkdir()
    compositions.mkdir()

    (prompts / "rsip.yaml").write_text(
        dedent(
            """
            id: recursive-self-improvement
            title: RSIP
            category: refine
            tags: [quality, iteration]
            when_to_use: Use when a draft needs several critique passes.
            failure_modes: Polishing style while the argument stays weak.
            acceptance_criteria: |
              - Clear thesis
              - Evidence cited
            combines_with: [spoc, 7, null]
            slots:
              - name: draft
                label: Draft
            prompt: Improve the draft.
            """
        ),
        encoding="utf-8",
    )
    (prompts / "spoc.yml").write_text("name: SPOC Cue\ncategory: verify\n", encoding="utf-8")
    (prompts / "notes.txt").write_text("not yaml", encoding="utf-8")
    (compositions / "review.yaml").write_text(
        dedent(
            """
            id: review-pipeline
            title: Review Pipeline
            steps:
              - use: recursive-self-improvement
              - use: spoc
              - note: no use key
            """
        ),
        encoding="utf-8",
    )
    return prompts, compositions


def test_loads_prompts_and_compositions(library_dirs):
    prompts, compositions = library_dirs

    library = load_prompt_library(prompts, compositions)

    assert len(library) == 3
    assert set(library) == {"recursive-self-improvement", "spoc", "review-pipeline"}


def test_prompt_fields(library_dirs):
    library = load_prompt_library(*library_dirs)
    rsip = library["recursive-self-improvement"]

    assert rsip.title == "RSIP"
    assert rsip.category == "refine"
    assert rsip.tags == ["quality", "iteration"]
    assert rsip.combines_with == ["spoc"]
    assert rsip.slots[0].name == "draft"
    assert rsip.relative_path == "prompts/rsip.yaml"
    assert rsip.kind == MetadataKind.PROMPT
    assert "Evidence cited" in rsip.acceptance_criteria


def test_id_and_title_fall_back(library_dirs):
    library = load_prompt_library(*library_dirs)
    spoc = library["spoc"]

    assert spoc.title == "SPOC Cue"
    assert spoc.relative_path == "prompts/spoc.yml"


def test_composition_steps(library_dirs):
    library = load_prompt_library(*library_dirs)
    review = library["review-pipeline"]

    assert review.kind == MetadataKind.COMPOSITION
    assert review.composition_steps == ["recursive-self-improvement", "spoc"]


def test_missing_directories_give_empty_library(tmp_path):
    library = load_prompt_library(tmp_path / "nope", tmp_path / "also-nope")

    assert len(library) == 0
    assert load_prompt_library().resolve("anything") is None


def test_broken_files_are_skipped_with_warning(tmp_path, caplog):
    prompts = tmp_path / "prompts"
    prompts.mkdir()
    (prompts / "good.yaml").write_text("title: Good\n", encoding="utf-8")
    (prompts / "bad-yaml.yaml").write_text("title: [unclosed\n", encoding="utf-8")
    (prompts / "list.yaml").write_text("- just\n- a list\n", encoding="utf-8")
    (prompts / "bad-slots.yaml").write_text(
        "title: X\nslots:\n  - label: no name\n", encoding="utf-8"
    )

    with caplog.at_level(logging.WARNING, logger="flowrun.metadata.library"):
        library = load_prompt_library(prompts)

    assert list(library) == ["good"]
    messages = [r.getMessage() for r in caplog.records]
    assert any("bad-yaml.yaml" in m for m in messages)
    assert any("list.yaml" in m for m in messages)
    assert any("Validation failed for bad-slots.yaml" in m for m in messages)


def test_modalities_are_parsed(tmp_path):
    prompts = tmp_path / "prompts"
    prompts.mkdir()
    (prompts / "audio.yaml").write_text(
        dedent(
            """
            id: audio-timeline-ingest
            title: Audio Timeline
            modalities:
              - modality: audio
                label: Audio capture
                payloads:
                  - type: audio_timeline
                    label: Timeline annotations
            """
        ),
        encoding="utf-8",
    )

    entry = load_prompt_library(prompts)["audio-timeline-ingest"]

    assert entry.modalities[0].modality == "audio"
    assert entry.modalities[0].payloads[0].type == "audio_timeline"


# ---- Library mapping ----
def test_duplicate_ids_keep_first():
    first = PromptMetadata(id="x", title="First", relative_path="prompts/a.yaml")
    second = PromptMetadata(id="x", title="Second", relative_path="compositions/b.yaml")

    library = MetadataLibrary([first, second])

    assert len(library) == 1
    assert library["x"].title == "First"


def test_library_is_read_only():
    library = MetadataLibrary([PromptMetadata(id="x", title="X")])

    with pytest.raises(TypeError):
        library["y"] = PromptMetadata(id="y", title="Y")
    assert library.resolve("x").title == "X"
    assert library.resolve(None) is None
    assert library.get("missing") is None
