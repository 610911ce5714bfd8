"""
Canonical bytes for registry records and ledger transaction ids.

A record must hash the same on every node and every run, so values are
restricted to JSON types without floats (amounts are integers) and strings
must be valid Unicode scalar sequences.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def _check_value(value: Any, path: str = "$") -> None:
    if isinstance(value, float):
        raise TypeError(f"{path}: float in canonical value")
    if isinstance(value, str):
        if any(0xD800 <= ord(ch) <= 0xDFFF for ch in value):
            raise TypeError(f"{path}: surrogate code point in canonical value")
    elif isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{path}: non-string key {key!r}")
            _check_value(key, path)
            _check_value(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_value(item, f"{path}[{i}]")


def canonical_json_bytes(value: Any) -> bytes:
    """UTF-8 JSON with sorted keys and no whitespace."""
    _check_value(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode(
        "utf-8"
    )


def domain_sep_bytes(label: str, version: int = 1) -> bytes:
    """`silverback:<label>:v<version>` + NUL, so a digest of one kind can never equal another's."""
    if not isinstance(label, str) or not label:
        raise TypeError("label must be a non-empty str")
    if "\x00" in label or not label.isascii():
        raise ValueError(f"label must be ASCII without NUL: {label!r}")
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    return f"silverback:{label}:v{version}".encode("ascii") + b"\x00"


def digest_hex(label: str, value: Any, *, version: int = 1) -> str:
    """0x-prefixed sha256 of the domain prefix followed by the canonical encoding of `value`."""
    data = domain_sep_bytes(label, version=version) + canonical_json_bytes(value)
    return "0x" + hashlib.sha256(data).hexdigest()
