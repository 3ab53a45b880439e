"""Configuration for PopulatingCache.

A cache instance holds one immutable CacheConfig. Per-call keyword options
produce a derived copy, so defaults shared by all calls never change.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, List


class CallBackend(Enum):
    """When ``get()`` is allowed to ask the backend.

    Used to choose between read-through caching, bypassing the
    cache, and cheap cache-only lookups.
    """
    DEFAULT = "default"          # Only for absent or expired values
    FORCE = "force"              # Always, ignoring freshness
    NO_BACKEND = "no_backend"    # Never; absent/expired values raise


class ScalarIdPolicy(Enum):
    """What to do with a non-dict value PUT under an ``key/id`` leaf."""
    REJECT = "reject"   # Raise StructuralConflictError
    WRAP = "wrap"       # Store {id_attr: id, "value": value}


@dataclass(frozen=True)
class CacheConfig:
    """Complete configuration of a cache instance.

    Times are in seconds, like ``time.time()``.
    """

    # Freshness
    ttl: float = 60.0

    # Read behavior
    populate: bool = True
    call_backend: CallBackend = CallBackend.DEFAULT
    return_clones: bool = False

    # Write behavior
    merge: bool = False
    scalar_id_values: ScalarIdPolicy = ScalarIdPolicy.REJECT
    warn_on_id_key: bool = True

    # Attribute names
    id_attr: str = "_id"
    referenced_path_attr: str = "$refPath"

    # Identity comparison: "42" == 42 when True
    coerce_ids: bool = True

    def __post_init__(self):
        # Accept the plain string spelling of the enums
        if not isinstance(self.call_backend, CallBackend):
            object.__setattr__(self, 'call_backend', CallBackend(self.call_backend))
        if not isinstance(self.scalar_id_values, ScalarIdPolicy):
            object.__setattr__(self, 'scalar_id_values', ScalarIdPolicy(self.scalar_id_values))

    def derive(self, **overrides: Any) -> 'CacheConfig':
        """Return a copy with some options replaced.

        Args:
            **overrides: Field names and their new values. ``None`` values
                are ignored so callers can pass optional arguments through.

        Returns:
            A new CacheConfig; ``self`` is left untouched

        Raises:
            TypeError: If an override does not name a config field
        """
        names = {f.name for f in dataclasses.fields(self)}
        unknown = set(overrides) - names
        if unknown:
            raise TypeError(f"Unknown cache option(s): {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    def validate(self) -> List[str]:
        """Validate configuration for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not isinstance(self.ttl, (int, float)) or isinstance(self.ttl, bool):
            errors.append("ttl must be a number of seconds")

        if not self.id_attr or not isinstance(self.id_attr, str):
            errors.append("id_attr must be a non-empty string")

        if not self.referenced_path_attr or not isinstance(self.referenced_path_attr, str):
            errors.append("referenced_path_attr must be a non-empty string")

        if self.id_attr == self.referenced_path_attr:
            errors.append("id_attr and referenced_path_attr must differ")

        return errors
