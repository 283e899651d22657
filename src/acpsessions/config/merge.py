"""Layered merging of configuration dicts.

Later layers win. Nested mappings merge key by key, lists are replaced
whole, and a ``None`` in a later layer leaves the earlier value alone.
"""

from __future__ import annotations

import copy
from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` laid over it.

    Neither argument is modified.
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_configs(*layers: dict[str, Any]) -> dict[str, Any]:
    """Merge config layers in order, skipping empty ones."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if layer:
            merged = deep_merge(merged, layer)
    return merged
