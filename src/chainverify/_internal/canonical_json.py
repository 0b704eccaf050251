"""Centralized canonical JSON serialization.

Every hash in the audit chain is computed over the output of
``canonical_dumps``. Exporters in other languages hash the same bytes, so the
rules here are deliberately minimal:

- Object keys sorted by code point, recursively
- Array order preserved
- Primitive values passed through untouched (no NFC, no float rewriting)
- Compact separators, UTF-8 text (no ASCII escaping)
- Lone UTF-16 surrogates written as lowercase ``\\uXXXX`` escapes, since
  they have no UTF-8 encoding
"""

import json
import math
import re
from typing import Any

_LONE_SURROGATE = re.compile("[\ud800-\udfff]")


def _escape_surrogate(match: "re.Match[str]") -> str:
    return f"\\u{ord(match.group()):04x}"


class CanonicalizationError(ValueError):
    """Raised when an object cannot be canonicalized."""
    pass


def canonicalize(obj: Any, path: str = "") -> Any:
    """Return a structurally identical value with every dict's keys sorted.

    Args:
        obj: Parsed JSON value (None, bool, int, float, str, list, tuple, dict)
        path: Location of ``obj`` inside the enclosing value, for error messages

    Raises:
        CanonicalizationError: On non-JSON types, non-string keys, NaN or Infinity
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise CanonicalizationError(
                f"Invalid number at {path or '<root>'}: NaN or Infinity not allowed"
            )
        return obj
    if isinstance(obj, (list, tuple)):
        return [
            canonicalize(item, f"{path}[{i}]")
            for i, item in enumerate(obj)
        ]
    if isinstance(obj, dict):
        for key in obj:
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Dictionary keys must be strings at {path or '<root>'}, got {type(key).__name__}"
                )
        return {
            key: canonicalize(obj[key], f"{path}.{key}" if path else key)
            for key in sorted(obj)
        }
    raise CanonicalizationError(
        f"Non-JSON type at {path or '<root>'}: {type(obj).__name__}"
    )


def canonical_dumps(obj: Any) -> str:
    """
    Canonical JSON serialization for byte-stable hashing.

    Args:
        obj: Python object to serialize

    Returns:
        Canonical JSON string
    """
    text = json.dumps(
        canonicalize(obj),
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    # Surrogates only survive inside string literals, so escaping them here
    # cannot touch the JSON structure.
    return _LONE_SURROGATE.sub(_escape_surrogate, text)
