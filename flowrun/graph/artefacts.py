"""Artefact reducer for node iterations."""

from typing import Any


def merge_artefacts(current: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """
    Fold one step's artefacts into the accumulated map.

    Per key: dicts are shallow-merged, lists are concatenated, anything else
    is overwritten. Neither input is mutated.

    Example:
        merge_artefacts({"drafts": ["a"]}, {"drafts": ["b"]})
        # {"drafts": ["a", "b"]}
    """
    merged = dict(current)
    for key, value in update.items():
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            merged[key] = {**existing, **value}
        elif isinstance(existing, list) and isinstance(value, list):
            merged[key] = [*existing, *value]
        else:
            merged[key] = value
    return merged
