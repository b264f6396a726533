"""Baseline snapshot codec for kit reconstruction.

A kit's original creation values are stored once, as zlib-compressed JSON,
in kit_baselines. Reconstruction decompresses the snapshot and folds the
kit's change history forward from it.
"""

from __future__ import annotations

import json
import zlib
from collections.abc import Mapping
from typing import Any

from kit_tracker.core.errors import PersistenceError, ValidationError
from kit_tracker.core.fields import KIT_FIELDS, KitFields, apply_field, fields_to_plain


def compress_snapshot(fields: KitFields | Mapping[str, Any]) -> bytes:
    """Serialize and zlib-compress a kit's field values.

    Args:
        fields: The kit fields to capture.

    Returns:
        zlib-compressed UTF-8 encoded JSON bytes.
    """
    raw = json.dumps(fields_to_plain(fields), sort_keys=True, separators=(",", ":")).encode("utf-8")
    return zlib.compress(raw, level=6)


def decompress_snapshot(snapshot: bytes) -> dict[str, Any]:
    """Decompress a baseline snapshot into a typed field mapping.

    Every stored key is routed through the field registry, so a snapshot
    with unknown fields or ill-typed values is rejected.

    Args:
        snapshot: zlib-compressed UTF-8 encoded JSON bytes.

    Returns:
        Field values keyed by python field name, in canonical types.

    Raises:
        PersistenceError: If decompression, JSON parsing or field validation fails.
    """
    try:
        raw = json.loads(zlib.decompress(snapshot).decode("utf-8"))
    except (zlib.error, json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise PersistenceError(f"Failed to decompress baseline snapshot: {exc}") from exc
    if not isinstance(raw, dict):
        raise PersistenceError("Baseline snapshot is not a JSON object")

    state: dict[str, Any] = {}
    try:
        for name, value in raw.items():
            apply_field(state, name, value)
    except ValidationError as exc:
        raise PersistenceError(f"Baseline snapshot is invalid: {exc.message}") from exc

    missing = [name for name in KIT_FIELDS if name not in state]
    if missing:
        raise PersistenceError(f"Baseline snapshot is missing fields: {', '.join(missing)}")
    return state
