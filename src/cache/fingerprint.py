# src/cache/fingerprint.py — v3
"""Cache keys for step invocations.

A key is the step name plus a SHA-256 over the canonical JSON form of the
step input: keys sorted, strings whitespace-normalized. Inputs that differ
only in key order or spacing share a key.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

_WS_RE = re.compile(r"\s+")


def canonicalize(value: Any) -> Any:
    """Recursively normalize a JSON-like value for hashing."""
    if isinstance(value, str):
        return _WS_RE.sub(" ", value).strip()
    if isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    return value


def canonical_json(payload: Any) -> str:
    return json.dumps(
        canonicalize(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def compute_cache_key(step: str, payload: Any) -> str:
    """Cache key for one invocation of step with payload as input."""
    digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    return f"{step}:{digest}"
