from __future__ import annotations

import random

import pytest

from relay_monitor.checker import compute_diff, compute_hash
from relay_monitor.errors import MalformedResponseError
from relay_monitor.providers import normalize_models
from relay_monitor.storage import ModelInfo


def _models(*ids: str) -> list[ModelInfo]:
    return [ModelInfo(id=i, owned_by="openai") for i in ids]


def test_hash_is_order_independent() -> None:
    models = _models(*(f"model-{i:02d}" for i in range(30)))
    rng = random.Random(7)
    for _ in range(5):
        shuffled = list(models)
        rng.shuffle(shuffled)
        assert compute_hash(shuffled) == compute_hash(models)


def test_hash_changes_with_membership() -> None:
    assert compute_hash(_models("a", "b")) != compute_hash(_models("a"))


def test_diff_added_and_removed() -> None:
    diff = compute_diff(_models("gpt-3.5", "claude-2"), _models("gpt-3.5", "gpt-4"))
    assert [m.id for m in diff.added] == ["gpt-4"]
    assert [m.id for m in diff.removed] == ["claude-2"]
    assert diff.changed == []
    assert diff.has_changes


def test_diff_of_identical_lists_is_empty() -> None:
    models = _models("a", "b", "c")
    diff = compute_diff(models, list(reversed(models)))
    assert diff.added == [] and diff.removed == []
    assert not diff.has_changes


def test_attribute_changes_are_not_reported() -> None:
    prev = [ModelInfo(id="gpt-4", owned_by="openai")]
    nxt = [ModelInfo(id="gpt-4", owned_by="azure")]
    assert not compute_diff(prev, nxt).has_changes


def test_normalize_models_mixed_entries_sorted() -> None:
    payload = {
        "data": [
            "zeta",
            {"id": "alpha", "owned_by": "acme", "created": 1700000000},
            {"model": "mid"},
            {"object": "model"},
        ]
    }
    models = normalize_models(payload, "new-api")
    assert [m.id for m in models] == ["alpha", "mid", "zeta"]
    assert models[0].owned_by == "acme"
    assert models[0].created == 1700000000
    assert models[1].owned_by == "new-api"
    assert models[2].created == 0


def test_normalize_models_accepts_bare_list() -> None:
    assert [m.id for m in normalize_models(["b", "a"])] == ["a", "b"]


def test_normalize_models_rejects_other_shapes() -> None:
    with pytest.raises(MalformedResponseError):
        normalize_models({"error": "nope"})
