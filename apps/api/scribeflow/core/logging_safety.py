"""Utilities for safe structured logging fields."""

from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Any

# Prefixes keep hashed identifiers distinguishable in log searches.
ACCOUNT_PREFIX = "aid"
JOB_PREFIX = "jid"
ENTRY_PREFIX = "lid"
WORKER_PREFIX = "wid"
ASSIGNMENT_PREFIX = "asg"
CORRELATION_PREFIX = "cid"


def safe_log_identifier(value: Any, *, prefix: str) -> str:
    """Return a deterministic non-reversible token for log correlation fields."""
    text = str(value or "").strip()
    if not text:
        return f"{prefix}-missing"

    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}-{digest}"


def format_amount(value: Decimal | None) -> str:
    """Render money/units for logs without scientific notation."""
    if value is None:
        return "none"
    return format(value, "f")
