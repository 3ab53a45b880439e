"""Test fixtures for PopulatingCache consumers.

These fixtures stand in for a real backend and give tests control over
expiry without waiting for wall-clock time to pass.
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional

from ..errors import BackendError
from ..expiration import now
from ..path import PathType, parse_path, path_to_str


class RecordingBackend:
    """Fake fetch function answering from canned responses.

    Every call is recorded, so tests can assert exactly which paths the
    cache asked for. Responses are keyed by the dotted form of a path and
    deep-copied on every call, like a backend returning fresh JSON.

    Example:
        backend = RecordingBackend({"users/abc67": {"_id": "abc67", "name": "Ann"}})
        cache = PopulatingCache(backend)

        await cache.get("users/abc67")
        assert backend.call_count == 1
        assert backend.calls == [["users/abc67"]]
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None, delay: float = 0):
        """Initialize with canned responses.

        Args:
            responses: Maps paths (any accepted form) to the value returned
            delay: Seconds to sleep before answering, to exercise suspension
        """
        self.responses: Dict[str, Any] = {}
        self.calls: List[Any] = []
        self.delay = delay
        for path, value in (responses or {}).items():
            self.set_response(path, value)

    @staticmethod
    def key_for(path: PathType) -> str:
        return path_to_str(parse_path(path))

    def set_response(self, path: PathType, value: Any):
        """Answer ``value`` for ``path`` from now on."""
        self.responses[self.key_for(path)] = value

    async def __call__(self, path: Any) -> Any:
        self.calls.append(path)
        if self.delay:
            await asyncio.sleep(self.delay)
        key = self.key_for(path)
        if key not in self.responses:
            raise BackendError(f"Backend has no data for {key}")
        return copy.deepcopy(self.responses[key])

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def calls_for(self, path: PathType) -> int:
        """Number of calls that asked for ``path``."""
        key = self.key_for(path)
        return sum(1 for call in self.calls if self.key_for(call) == key)

    def reset(self):
        """Forget recorded calls; responses are kept."""
        self.calls.clear()


def expire(cache, path: Optional[PathType] = None, seconds_ago: float = 1.0):
    """Make the value at ``path`` stale by moving its stamp into the past.

    Args:
        cache: The PopulatingCache
        path: Path of a stored value (default: the root)
        seconds_ago: How long ago the value expired

    Returns:
        The metadata node that was changed

    Raises:
        KeyError: If nothing is stored under ``path``
    """
    node = cache.get_metadata(path)
    if node is None:
        raise KeyError(f"Nothing cached at {path!r}")
    node.ttl = now() - seconds_ago
    return node
