"""Canonical hashing and set-difference of model lists."""

from __future__ import annotations

import hashlib
import json

from ..storage.models import ModelDiff, ModelInfo

# Stored on snapshots that carry no model observation.
EMPTY_HASH = ""


def canonicalize(models: list[ModelInfo]) -> list[ModelInfo]:
    return sorted(models, key=lambda m: m.id)


def compute_hash(models: list[ModelInfo]) -> str:
    """sha256 of the canonical JSON of the id-sorted list."""
    payload = json.dumps(
        [m.to_dict() for m in canonicalize(models)],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_diff(prev: list[ModelInfo], next_: list[ModelInfo]) -> ModelDiff:
    """Ids present in only one of the two lists. Attribute changes are not tracked."""
    prev_by_id = {m.id: m for m in prev}
    next_by_id = {m.id: m for m in next_}
    added = [m for model_id, m in next_by_id.items() if model_id not in prev_by_id]
    removed = [m for model_id, m in prev_by_id.items() if model_id not in next_by_id]
    return ModelDiff(added=canonicalize(added), removed=canonicalize(removed), changed=[])
