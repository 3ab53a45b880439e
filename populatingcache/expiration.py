"""Expiration policy.

Each tree node may carry an absolute expiry stamp (``node.ttl``, seconds
since the epoch). Freshness is decided top-down: once an ancestor is stale
nothing below it is consulted, while a stale descendant says nothing about
its ancestors.
"""

import time
from enum import Enum
from typing import Any, Optional


class Freshness(Enum):
    """
    Tri-state answer of the expiration policy.

    ABSENT and EXPIRED are kept apart because they drive different fetch
    decisions: absent values are fetched unconditionally, expired ones only
    when the backend may be called.
    """
    ABSENT = 0    # Never cached (or deleted)
    EXPIRED = 1   # Cached, but the stamp is in the past
    FRESH = 2     # Cached and usable


def now() -> float:
    """Current time in the units used for ``ttl`` stamps."""
    return time.time()


def expires_at(ttl: float, at: Optional[float] = None) -> float:
    """Absolute expiry for a relative ``ttl`` in seconds."""
    return (now() if at is None else at) + ttl


def freshness(node: Any, at: Optional[float] = None) -> Freshness:
    """Classify a tree node.

    Args:
        node: Tree node, or None when nothing is stored
        at: Point in time to check against (default: now)

    Returns:
        Freshness of the node itself; nodes without their own stamp (values
        nested inside a cached object) are fresh as far as they are concerned
    """
    if node is None:
        return Freshness.ABSENT
    stamp = getattr(node, 'ttl', None)
    if stamp is None:
        return Freshness.FRESH
    if stamp < (now() if at is None else at):
        return Freshness.EXPIRED
    return Freshness.FRESH


def is_expired(node: Any, at: Optional[float] = None) -> bool:
    """True only for a stored node whose stamp has passed."""
    return freshness(node, at) is Freshness.EXPIRED
