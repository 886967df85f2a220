"""Identifier normalization — free-text labels to stable storage keys.

Entity ids are a pure function of the label, so changing these rules
re-keys every stored entity. Bump NORMALIZER_VERSION when they change.
"""

from __future__ import annotations

import re

NORMALIZER_VERSION = 1

UNKNOWN_KEY = "unknown"

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_]")


def normalize_label(label: str | None) -> str:
    """Map an entity label to its storage key.

    Characters outside [A-Za-z0-9_] are dropped and the result is lowercased,
    so "Customer C001", "customer-c001" and " CUSTOMER c001 " share one key.
    Empty, None, or all-punctuation labels map to "unknown".
    """
    if not label:
        return UNKNOWN_KEY
    key = _INVALID_CHARS.sub("", str(label)).lower()
    return key or UNKNOWN_KEY


def normalize_relationship_type(rel_type: str | None) -> str:
    """Map a relationship type to its edge table name.

    Invalid characters become underscores and the name is uppercased:
    "works at" -> "WORKS_AT", "has-account" -> "HAS_ACCOUNT".
    """
    if not rel_type or not str(rel_type).strip():
        return UNKNOWN_KEY.upper()
    return _INVALID_CHARS.sub("_", str(rel_type).strip()).upper()
