"""
Deterministic hashing utilities for occurrence deduplication.

Provides stable, reproducible hash functions used to derive the recurrence
key, the idempotency key that keeps repeated and concurrent runs from
creating the same occurrence twice.

Manifesto:
    Generation must be re-runnable without locks:
    - **Deterministic:** Same (schedule, asset, template, bucket) -> same key
    - **Order-dependent:** (a, b) != (b, a)
    - **Opaque:** Keys carry no parseable meaning; only equality matters

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │ key = compute_recurrence_key(schedule_id, asset_id,        │
        │                              template_id, bucket_start)    │
        │                                                            │
        │ Same bucket  → Same key  → UNIQUE index rejects 2nd insert │
        │ Next bucket  → New key   → New occurrence allowed          │
        └────────────────────────────────────────────────────────────┘

Examples:
    >>> compute_hash("a", "b") != compute_hash("b", "a")
    True
    >>> len(compute_hash("test", length=16))
    16

Tags:
    hashing, deduplication, idempotency, inspection-spine

Doc-Types:
    - API Reference
"""

import hashlib
from datetime import datetime
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Joins string representations of all values with '|' and hashes the
    result with SHA-256.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def compute_recurrence_key(
    schedule_id: str,
    asset_id: str,
    template_id: str,
    bucket_start: datetime,
) -> str:
    """
    Derive the recurrence key for one candidate occurrence.

    ``bucket_start`` must already be floored to the dedup window and
    normalized to UTC; callers use ``ConstraintGuard.recurrence_key``.

    Examples:
        >>> from datetime import UTC, datetime
        >>> t = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)
        >>> compute_recurrence_key("s", "a", "t", t) == compute_recurrence_key("s", "a", "t", t)
        True
    """
    return compute_hash(schedule_id, asset_id, template_id, bucket_start.isoformat(), length=40)
