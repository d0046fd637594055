"""
Field reconciliation: is it safe to overwrite this field with an automated value?

An incoming value is applied only when the field is empty, still holds its
default placeholder, or still holds the value the last automated fill wrote
(the api snapshot). Anything else is treated as a manual edit and kept.
Comparisons ignore case, whitespace and hyphens.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

import structlog

from ..utils.values import is_empty_value

logger = structlog.get_logger(__name__)

COMPARABLE_NOISE = re.compile(r'[\s-]+')


class KeyValueStore(Protocol):
    """Named-range store the reconciled fields are written to."""

    def get(self, keys: Iterable[str]) -> Dict[str, Any]: ...

    def set(self, key: str, value: Any) -> None: ...


def normalize_comparable(value: Any) -> str:
    return COMPARABLE_NOISE.sub('', str('' if value is None else value).lower()).strip()


def is_default_value(field_key: str, current_value: Any, defaults: Mapping[str, Any]) -> bool:
    default = defaults.get(field_key)
    if is_empty_value(default):
        return False
    return normalize_comparable(current_value) == normalize_comparable(default)


def should_apply(
    field_key: str,
    incoming_value: Any,
    current_value: Any,
    defaults: Optional[Mapping[str, Any]] = None,
    api_snapshot: Optional[Mapping[str, Any]] = None,
) -> bool:
    if is_empty_value(incoming_value):
        return False
    if is_empty_value(current_value):
        return True
    if is_default_value(field_key, current_value, defaults or {}):
        return True

    previous = (api_snapshot or {}).get(field_key)
    return not is_empty_value(previous) and normalize_comparable(current_value) == normalize_comparable(previous)


def sanitize_api_snapshot(snapshot: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy of ``snapshot`` without empty values"""
    return {key: value for key, value in (snapshot or {}).items() if not is_empty_value(value)}


def reconcile_field(
    field_key: str,
    incoming_value: Any,
    current_value: Any,
    defaults: Optional[Mapping[str, Any]] = None,
    api_snapshot: Optional[Mapping[str, Any]] = None,
) -> Tuple[bool, Dict[str, Any]]:
    """
    Decide one field.

    Returns:
        (apply, next_snapshot); the snapshot records ``incoming_value`` only
        when it was applied. The caller's snapshot is never mutated.
    """
    next_snapshot = sanitize_api_snapshot(api_snapshot)
    apply = should_apply(field_key, incoming_value, current_value, defaults, api_snapshot)
    if apply:
        next_snapshot[field_key] = incoming_value
    return apply, next_snapshot


@dataclass
class ReconciliationResult:
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)
    api_snapshot: Dict[str, Any] = field(default_factory=dict)


def reconcile_fields(
    incoming: Mapping[str, Any],
    current: Mapping[str, Any],
    defaults: Optional[Mapping[str, Any]] = None,
    api_snapshot: Optional[Mapping[str, Any]] = None,
    store: Optional[KeyValueStore] = None,
) -> ReconciliationResult:
    """
    Apply the policy to a whole map of incoming values in one pass.

    Args:
        incoming: Proposed automated values keyed by form field
        current: The caller's current values; read from ``store`` when a store is given
        store: Optional key-value store that receives each applied value

    Returns:
        ReconciliationResult with the applied keys and the next snapshot
    """
    if store is not None:
        current = {**current, **store.get(list(incoming))}

    result = ReconciliationResult(api_snapshot=sanitize_api_snapshot(api_snapshot))
    for key, value in incoming.items():
        apply, result.api_snapshot = reconcile_field(key, value, current.get(key), defaults, result.api_snapshot)
        if not apply:
            if not is_empty_value(value):
                result.skipped.append(key)
            continue

        result.applied.append(key)
        result.values[key] = value
        if store is not None:
            store.set(key, value)

    if result.skipped:
        logger.info("reconcile_kept_manual_edits", fields=result.skipped)
    return result
