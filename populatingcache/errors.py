"""Exception hierarchy for PopulatingCache.

Structural problems (bad paths, conflicting writes) are raised synchronously
from the call that caused them. Backend-related outcomes surface when the
awaitable returned by ``get()`` is awaited.
"""

from dataclasses import dataclass
from typing import Any


class CacheError(Exception):
    """Base class for every error raised by populatingcache."""
    pass


@dataclass
class PathSyntaxError(CacheError, ValueError):
    """
    Raised when a path or one of its elements cannot be parsed.

    Attributes:
        path: The offending path (or path element)
        reason: Why it was rejected
    """
    path: Any
    reason: str

    def __str__(self) -> str:
        return f"Invalid path {self.path!r}: {self.reason}"


class StructuralConflictError(CacheError):
    """The requested write does not fit the shape of the cached tree."""
    pass


@dataclass
class IdentityMismatchError(CacheError):
    """
    Raised when a value PUT under ``key/id`` carries a different identity.

    Attributes:
        path: Path the value was PUT under
        expected: Identity taken from the path
        received: Identity found in the value
    """
    path: Any
    expected: Any
    received: Any

    def __str__(self) -> str:
        return (f"ID mismatch at {self.path!r}: path has {self.expected!r}, "
                f"value has {self.received!r}")


class CacheMissError(CacheError, LookupError):
    """The value is not in the cache and the backend may not be asked."""
    pass


class ExpiredValueError(CacheMissError):
    """The value is in the cache but its TTL has passed."""
    pass


class BackendError(CacheError):
    """
    Convenience base class for fetch functions.

    The cache never wraps backend failures: whatever the fetch function
    raises is re-raised to the caller of ``get()`` unchanged.
    """
    pass
