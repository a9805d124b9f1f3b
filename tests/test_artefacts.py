"""Tests for the artefact reducer."""

from flowrun.graph.artefacts import merge_artefacts


def test_lists_are_concatenated():
    assert merge_artefacts({"drafts": ["a"]}, {"drafts": ["b", "c"]}) == {
        "drafts": ["a", "b", "c"]
    }


def test_dicts_are_shallow_merged():
    current = {"last": {"iteration": 1, "verdict": "revise", "nested": {"x": 1}}}
    update = {"last": {"iteration": 2, "nested": {"y": 2}}}

    merged = merge_artefacts(current, update)

    assert merged == {"last": {"iteration": 2, "verdict": "revise", "nested": {"y": 2}}}


def test_scalars_and_mismatched_types_are_overwritten():
    merged = merge_artefacts({"score": 1, "notes": ["a"]}, {"score": 2, "notes": "replaced"})
    assert merged == {"score": 2, "notes": "replaced"}


def test_new_keys_are_added():
    assert merge_artefacts({"a": 1}, {"b": [1]}) == {"a": 1, "b": [1]}


def test_inputs_are_not_mutated():
    current = {"drafts": ["a"], "meta": {"k": 1}}
    update = {"drafts": ["b"], "meta": {"j": 2}}

    merge_artefacts(current, update)

    assert current == {"drafts": ["a"], "meta": {"k": 1}}
    assert update == {"drafts": ["b"], "meta": {"j": 2}}
