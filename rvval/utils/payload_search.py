"""
Field lookup in semi-structured provider payloads.

Providers declare explicit dotted paths for the fields they expose; the
bounded breadth-first search here is only a last resort when none of the
declared paths is populated.
"""

from collections import deque
from typing import Any, Callable, Iterator, Optional, Sequence, Tuple

MAX_SEARCH_DEPTH = 4


def get_path(payload: Any, path: str) -> Any:
    """
    Resolve a dotted path such as "area.county.fips" or "results.0.parcel_id".

    Returns None when any segment is missing.
    """
    current = payload
    for segment in path.split('.'):
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list)):
        return bool(value)
    return True


def first_path_value(payload: Any, paths: Sequence[str]) -> Any:
    """First populated value among the declared paths, in order."""
    for path in paths:
        value = get_path(payload, path)
        if _present(value):
            return value
    return None


def iter_fields(payload: Any, max_depth: int = MAX_SEARCH_DEPTH) -> Iterator[Tuple[Tuple[str, ...], str, Any]]:
    """
    Breadth-first walk yielding (parent_path, key, value) for every mapping entry.

    List items are transparent (they do not count towards depth). Each
    container is visited once, so self-referencing structures terminate.
    """
    visited = set()
    queue = deque([(payload, 0, ())])

    while queue:
        node, depth, path = queue.popleft()
        if not isinstance(node, (dict, list)) or id(node) in visited:
            continue
        visited.add(id(node))

        if isinstance(node, list):
            for index, item in enumerate(node):
                queue.append((item, depth, path + (str(index),)))
            continue

        for key, value in node.items():
            yield path, str(key), value
            if depth < max_depth and isinstance(value, (dict, list)):
                queue.append((value, depth + 1, path + (str(key).lower(),)))


def find_first(
    payload: Any,
    key_matches: Callable[[str, Tuple[str, ...]], bool],
    convert: Callable[[Any], Any],
    max_depth: int = MAX_SEARCH_DEPTH,
) -> Any:
    """Return the first converted, non-None value whose key satisfies ``key_matches``."""
    for path, key, value in iter_fields(payload, max_depth=max_depth):
        if key_matches(key.lower(), path):
            converted = convert(value)
            if converted is not None:
                return converted
    return None


def find_geo_id_v4(payload: Any, max_depth: int = MAX_SEARCH_DEPTH) -> Optional[str]:
    """Locate a community geoIdV4 anywhere within ``max_depth`` levels."""
    def as_geo_id(value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    return find_first(payload, lambda key, _path: key == 'geoidv4', as_geo_id, max_depth=max_depth)
