"""Structural diff between a stored target and a newly declared one.

A change set maps each changed field to ``True`` (a leaf or a sequence
changed) or to a nested change set (a mapping changed). Unchanged fields
have no entry.
"""

from collections.abc import Mapping
from typing import Any, Dict, Tuple

ChangeSet = Dict[str, Any]

_MISSING = object()


def diff_targets(prior: Mapping, current: Mapping) -> Tuple[ChangeSet, bool]:
    """Compare a previously applied target with its new declaration.

    Args:
        prior: Target fields from the target store
        current: Target fields as declared (after pull)

    Returns:
        (changes, changed) where changed is False only when every field
        matches recursively
    """
    changes = _diff_mappings(prior, current)
    return changes, bool(changes)


def _diff_mappings(prior: Mapping, current: Mapping) -> ChangeSet:
    changes: ChangeSet = {}
    keys = list(current)
    keys.extend(key for key in prior if key not in current)

    for key in keys:
        old = prior.get(key, _MISSING)
        new = current.get(key, _MISSING)
        if _is_mapping(old) and _is_mapping(new):
            nested = _diff_mappings(old, new)
            if nested:
                changes[key] = nested
        elif _is_sequence(old) and _is_sequence(new):
            if not _equal_sequences(old, new):
                changes[key] = True
        elif not _equal_scalars(old, new):
            changes[key] = True

    return changes


def _equal_sequences(prior, current) -> bool:
    if len(prior) != len(current):
        return False

    for old, new in zip(prior, current):
        if _is_mapping(old) and _is_mapping(new):
            if _diff_mappings(old, new):
                return False
        elif _is_sequence(old) and _is_sequence(new):
            if not _equal_sequences(old, new):
                return False
        elif not _equal_scalars(old, new):
            return False

    return True


def _equal_scalars(old, new) -> bool:
    # No coercion: 1 != 1.0 and True != 1
    if old is new:
        return True
    return type(old) is type(new) and old == new


def _is_mapping(value) -> bool:
    return isinstance(value, Mapping)


def _is_sequence(value) -> bool:
    return isinstance(value, (list, tuple))
