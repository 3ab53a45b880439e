"""Change notification for PopulatingCache.

Listeners are registered for a path prefix and called synchronously, in
registration order, once per successful ``put()``.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .error_policies import ErrorPolicy, FailFastPolicy
from .path import PathSegment, PathType, ids_equal, parse_path


ListenerCallback = Callable[[Any, Any], None]


def segments_equal(a: PathSegment, b: PathSegment, coerce_ids: bool = True) -> bool:
    """Segment-wise equality on key, index and id.

    The append marker is ignored: a PUT to ``items[]`` counts as a PUT to
    ``items``.
    """
    if a.key != b.key or a.index != b.index:
        return False
    if a.id is None or b.id is None:
        return a.id is None and b.id is None
    return ids_equal(a.id, b.id, coerce_ids)


@dataclass(eq=False)
class Listener:
    """
    A registered callback.

    Attributes:
        path_prefix: Parsed prefix; empty for a global listener
        callback: Called as ``callback(path, value)``
        exact: Only fire for PUTs to exactly ``path_prefix``
    """
    path_prefix: Tuple[PathSegment, ...]
    callback: ListenerCallback
    exact: bool = False

    def matches(self, segments: Sequence[PathSegment], coerce_ids: bool = True) -> bool:
        """Check whether a PUT to ``segments`` concerns this listener."""
        prefix = self.path_prefix
        if self.exact and len(segments) != len(prefix):
            return False
        if len(segments) < len(prefix):
            return False
        return all(segments_equal(mine, theirs, coerce_ids) for mine, theirs in zip(prefix, segments))


class ListenerRegistry:
    """Ordered collection of listeners."""

    def __init__(self, policy: Optional[ErrorPolicy] = None):
        """
        Args:
            policy: What to do when a callback raises (default: FailFastPolicy)
        """
        self._listeners: List[Listener] = []
        self.policy = policy or FailFastPolicy()

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, path_prefix: Optional[PathType], callback: ListenerCallback,
                  exact: bool = False) -> Listener:
        """Register ``callback`` for PUTs at or below ``path_prefix``.

        Raises:
            TypeError: If callback is not callable
            PathSyntaxError: If path_prefix is malformed
        """
        if not callable(callback):
            raise TypeError("Listener callback must be callable")
        prefix = tuple(parse_path(path_prefix)) if path_prefix else ()
        listener = Listener(prefix, callback, exact)
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener) -> bool:
        """Remove a listener; returns False if it was not registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def notify(self, segments: Sequence[PathSegment], path: Any, value: Any, coerce_ids: bool = True):
        """Call every matching listener with the caller's path and value."""
        # Callbacks may unsubscribe while we iterate
        for listener in list(self._listeners):
            if not listener.matches(segments, coerce_ids):
                continue
            try:
                listener.callback(path, value)
            except Exception as e:
                self.policy.handle(e, listener, path, value)

    def clear(self):
        self._listeners.clear()
