"""
Value and path helpers shared by the extraction and verification code.

Paths use dots for nesting and [i] for list positions, e.g.
"scheduleC[0].grossReceipts_line1".
"""
import copy
import math
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

_INDEX_RE = re.compile(r"^(?P<name>[^\[\]]*)\[(?P<index>\d+)\]$")
_MONEY_STRIP_RE = re.compile(r"[$,\s]")


def parse_dollar_amount(value: Any) -> Optional[float]:
    """
    Parse a dollar/numeric string into a float.

    Handles "$1,234.50", "(5,000)" and "-5,000". Returns None for
    non-numeric input.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    cleaned = value.strip()
    if not cleaned or cleaned == "-":
        return None

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    if cleaned.startswith("-"):
        negative = True
        cleaned = cleaned[1:]

    percent = cleaned.endswith("%")
    if percent:
        cleaned = cleaned[:-1]

    cleaned = _MONEY_STRIP_RE.sub("", cleaned)
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    if percent:
        number = number / 100
    return -number if negative else number


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def split_path(path: str) -> List[Tuple[str, Optional[int]]]:
    """Split "a.b[2].c" into [("a", None), ("b", 2), ("c", None)]."""
    parts = []
    for segment in path.split("."):
        match = _INDEX_RE.match(segment)
        if match:
            parts.append((match.group("name"), int(match.group("index"))))
        else:
            parts.append((segment, None))
    return parts


def get_path(obj: Any, path: str) -> Any:
    """Resolve a dotted path, returning None when any hop is missing."""
    current = obj
    for name, index in split_path(path):
        if name:
            if not isinstance(current, dict) or name not in current:
                return None
            current = current[name]
        if index is not None:
            if not isinstance(current, list) or index >= len(current):
                return None
            current = current[index]
    return current


def set_path(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path, creating intermediate dicts and lists."""
    parts = split_path(path)
    current: Any = obj
    for position, (name, index) in enumerate(parts):
        last = position == len(parts) - 1
        if name:
            if index is None:
                if last:
                    current[name] = value
                    return
                if not isinstance(current.get(name), dict):
                    current[name] = {}
                current = current[name]
                continue
            if not isinstance(current.get(name), list):
                current[name] = []
            current = current[name]
        while len(current) <= index:
            current.append(None)
        if last:
            current[index] = value
            return
        if not isinstance(current[index], dict):
            current[index] = {}
        current = current[index]


def iter_leaves(obj: Any, prefix: str = "") -> Iterator[Tuple[str, Any]]:
    """Yield (path, value) for every non-container, non-null leaf."""
    if isinstance(obj, dict):
        for key, value in obj.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            yield from iter_leaves(value, path)
    elif isinstance(obj, list):
        for i, item in enumerate(obj):
            yield from iter_leaves(item, f"{prefix}[{i}]")
    elif obj is not None:
        yield prefix, obj


def flatten_numeric(obj: Any) -> List[Tuple[str, float]]:
    """Finite numeric leaves only."""
    return [(path, float(value)) for path, value in iter_leaves(obj) if is_number(value)]


def build_nested_object(flat: Dict[str, Any]) -> Dict[str, Any]:
    """Turn {"income.wages_line1": "85,000"} into {"income": {"wages_line1": 85000.0}}."""
    result: Dict[str, Any] = {}
    for path, raw in flat.items():
        parsed = parse_dollar_amount(raw) if isinstance(raw, str) else None
        set_path(result, path, parsed if parsed is not None else raw)
    return result


def deep_copy(obj: Any) -> Any:
    return copy.deepcopy(obj)


def normalize_text(value: Any) -> str:
    """Case- and whitespace-insensitive form of a string leaf."""
    return " ".join(str(value).split()).lower()
