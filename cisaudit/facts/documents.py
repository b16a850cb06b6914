"""
Structured document and text helpers used to derive facts
"""

import json
from typing import Any, List, Optional, Sequence, Union

from ..errors import FactError
from .models import ABSENT

KeyPath = Sequence[Union[str, int]]


def parse_json(text: str, source: str = "<text>") -> Any:
    """Parse a JSON document, raising FactError on invalid input"""
    if not text.strip():
        raise FactError(f"Empty JSON document: {source}")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise FactError(f"Invalid JSON in {source}: {e.msg} (line {e.lineno}, column {e.colno})") from e


def lookup(document: Any, key_path: KeyPath) -> Any:
    """Walk a key path through nested mappings and sequences

    Missing keys, out-of-range indices and walking into a scalar all resolve
    to ABSENT instead of raising.
    """
    current = document
    for key in key_path:
        if isinstance(current, dict):
            if key not in current:
                # YAML may hand us integer keys for digit-only names
                if not isinstance(key, str) and str(key) in current:
                    key = str(key)
                else:
                    return ABSENT
            current = current[key]
        elif isinstance(current, list):
            index = _as_index(key)
            if index is None or not -len(current) <= index < len(current):
                return ABSENT
            current = current[index]
        else:
            return ABSENT
    return current


def tokenize(text: str, separator: Optional[str] = None, lines: bool = False) -> List[str]:
    """Split command output into stripped tokens

    lines=True splits on line breaks, otherwise on ``separator`` (whitespace
    when None). Empty tokens are dropped when splitting on whitespace or lines.
    """
    if lines:
        return [line.strip() for line in text.splitlines() if line.strip()]
    if separator is None:
        return text.split()
    return [token.strip() for token in text.split(separator)]


def _as_index(key: Union[str, int]) -> Optional[int]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    try:
        return int(key)
    except (TypeError, ValueError):
        return None
