"""
afriflow/core/canonical.py

RFC 8785 (JCS) canonical bytes for everything AfriFlow hashes or signs:
payment ids, fallback settlement references, journal signatures and the
journal hash chain.

Floats are refused. Amounts, fees and timestamps are ints, and a float
anywhere in a hashed structure is a bug upstream, not a value to encode.
"""

import hashlib
from typing import Any

import jcs


def _require_no_floats(value: Any, path: str = "$") -> None:
    if isinstance(value, float):
        raise TypeError(f"float at {path} cannot be canonicalized; use int atomic units")
    if isinstance(value, dict):
        for key, item in value.items():
            _require_no_floats(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _require_no_floats(item, f"{path}[{i}]")


def canonicalize(obj: Any) -> bytes:
    """JCS bytes of `obj`. Raises TypeError if it contains a float."""
    _require_no_floats(obj)
    return jcs.canonicalize(obj)


def canonical_hash(obj: Any) -> str:
    """SHA-256 of the canonical bytes, 64 lowercase hex chars."""
    return hashlib.sha256(canonicalize(obj)).hexdigest()


def canonical_id(obj: Any) -> str:
    """canonical_hash with a 0x prefix, the form used for payment ids."""
    return "0x" + canonical_hash(obj)
