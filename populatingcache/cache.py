"""
PopulatingCache: a path-addressed tree cache in front of a slow backend.

Values are PUT under structured paths and read back with ``get()``. A
value that is absent or whose TTL has passed is fetched from the backend
through the caller-supplied ``fetch_func`` and stored again with a fresh
TTL. Values may point to other paths of the same cache with reference
markers, which ``get()`` and ``populate()`` resolve on the fly.

Example:
    async def fetch(path):
        return await http.get_json(path2rest(path))

    cache = PopulatingCache(fetch, ttl=300)
    cache.put(["posts/11", "comments[0]"], {"_id": 4711, "createdBy": {"$refPath": "users/abc67"}})
    email = await cache.get(["posts/11", "comments[0]", "createdBy", "email"])
"""

import copy
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple

from .config import CacheConfig, CallBackend
from .error_policies import ErrorPolicy
from .errors import CacheMissError, ExpiredValueError, StructuralConflictError
from .expiration import Freshness, freshness
from .listeners import Listener, ListenerCallback, ListenerRegistry
from .path import PathSegment, PathType, parse_path, path2rest, path_to_str, to_external
from .populate import is_reference, populate as populate_references
from .tree import CacheNode, CacheTree, LeafNode, materialize, prepare_identity_value, reference_of


logger = logging.getLogger(__name__)

FetchFunc = Callable[[list], Any]


class PopulatingCache:
    """
    In-process cache of a tree of values with per-node TTLs.

    All public operations run on the caller's event loop. ``get()`` and
    ``populate()`` suspend only while the backend is being asked; everything
    else is synchronous. Values are handed out by reference unless
    ``return_clones`` is configured, so callers must not rely on isolation.
    """

    def __init__(self, fetch_func: FetchFunc, config: Optional[CacheConfig] = None,
                 error_policy: Optional[ErrorPolicy] = None, **options):
        """
        Create a new cache.

        Args:
            fetch_func: Called with the list form of a path whenever the
                backend must be asked. May be a coroutine function or return
                a plain value.
            config: Base configuration (default: CacheConfig())
            error_policy: How listener callback failures are handled
                (default: FailFastPolicy)
            **options: CacheConfig fields overriding ``config``

        Raises:
            TypeError: If fetch_func is not callable or an option is unknown
            ValueError: If the resulting configuration is invalid
        """
        if not callable(fetch_func):
            raise TypeError("PopulatingCache needs a callable fetch_func")
        self.fetch_func = fetch_func
        self.config = (config or CacheConfig()).derive(**options)

        errors = self.config.validate()
        if errors:
            raise ValueError(f"Invalid cache configuration: {'; '.join(errors)}")

        self._tree = CacheTree()
        self._listeners = ListenerRegistry(error_policy)

        # Statistics
        self.cache_hits = 0
        self.cache_misses = 0
        self.backend_calls = 0

    # Writing

    def put(self, path: PathType, value: Any, ttl: Optional[float] = None,
            merge: Optional[bool] = None) -> 'PopulatingCache':
        """
        Store ``value`` under ``path``.

        Intermediate dicts and lists are created as needed. The value gets a
        fresh expiry of ``now + ttl`` that replaces any earlier one.

        Args:
            path: Where to store the value
            value: The value; dicts and lists are stored by reference
            ttl: Freshness window in seconds (default: config.ttl)
            merge: Shallow-merge into a stored dict instead of replacing it

        Returns:
            The cache itself, so calls can be chained

        Raises:
            PathSyntaxError: Malformed path
            StructuralConflictError: Path does not fit the cached tree
            IdentityMismatchError: Value's identity differs from the path's
        """
        segments = parse_path(path)
        self._put(segments, path, value, self.config.derive(ttl=ttl, merge=merge))
        return self

    def _put(self, segments: Sequence[PathSegment], path: Any, value: Any, config: CacheConfig) -> Any:
        leaf = segments[-1]
        stored = value
        if leaf.is_identity:
            stored = prepare_identity_value(leaf, value, config, segments)
        elif leaf.is_plain and config.warn_on_id_key and leaf.key == config.id_attr:
            logger.warning("Storing a plain %s at %s, did you mean to address an element by id?",
                           config.id_attr, path_to_str(segments))

        node = self._tree.write(segments, stored, config, config.merge, config.ttl)
        self._listeners.notify(segments, path, value, config.coerce_ids)
        return materialize(node)

    def delete(self, path: PathType) -> bool:
        """
        Remove the value at ``path``.

        Array elements leave an empty slot behind so that indexes of their
        siblings do not change. Listeners are notified with value None.

        Returns:
            True if a value was removed
        """
        segments = parse_path(path)
        removed = self._tree.delete(segments, self.config)
        if removed:
            self._listeners.notify(segments, path, None, self.config.coerce_ids)
        return removed

    def empty_cache(self):
        """Completely empty the cache, including all metadata."""
        self._tree.clear()

    def delete_expired_elems(self) -> int:
        """
        Remove every value whose TTL has passed.

        Never calls the backend. May be called from time to time to keep
        memory usage down.

        Returns:
            Number of removed values
        """
        removed = self._tree.prune_expired()
        logger.debug("Pruned %d expired element(s)", removed)
        return removed

    # Reading

    def get(self, path: PathType, call_backend: Optional[CallBackend] = None,
            populate: Optional[bool] = None, ttl: Optional[float] = None) -> Awaitable[Any]:
        """
        Fetch a value, from the cache when possible and from the backend otherwise.

        The path is parsed right away, so malformed paths raise here rather
        than when the result is awaited.

        Args:
            path: Path of the value
            call_backend: DEFAULT asks the backend for absent or expired
                values, FORCE always asks, NO_BACKEND never does
            populate: Follow reference markers met on the way
            ttl: TTL for values fetched by this call

        Returns:
            Awaitable resolving to the value

        Raises:
            PathSyntaxError: Malformed path
            StructuralConflictError: Path contains an append marker

        The awaitable raises CacheMissError / ExpiredValueError in
        NO_BACKEND mode, and StructuralConflictError, without calling the
        backend, when an answer could not be stored under the path. Backend
        failures are never wrapped: the exception raised by the fetch function
        (a BackendError subclass, by convention) reaches the caller as-is and
        nothing is written.
        """
        segments = parse_path(path)
        if any(segment.append for segment in segments):
            raise StructuralConflictError(f"Cannot GET {path_to_str(segments)}: append marker in path")
        config = self.config.derive(call_backend=call_backend, populate=populate, ttl=ttl)
        return self._get(segments, config)

    async def _get(self, segments: Sequence[PathSegment], config: CacheConfig) -> Any:
        if config.call_backend is CallBackend.FORCE:
            path = self._resolved_path(segments, config)
            return self._deliver(await self._fetch(path, config), config)

        # Markers met on the way rewrite the path onto their target, so that
        # anything fetched below a marker is stored under the target
        path = list(segments)
        node: Optional[CacheNode] = self._tree.root
        i = 0
        while i < len(path):
            child = self._tree.step(node, path[i], config)
            if child is not None and i < len(path) - 1:
                if freshness(child) is Freshness.EXPIRED:
                    child = await self._refresh(path[:i + 1], config)
                while config.populate and self._reference(child, config) is not None:
                    target = parse_path(self._reference(child, config))
                    logger.debug("Following reference to %s", path_to_str(target))
                    await self._get(target, config)
                    path = target + path[i + 1:]
                    i = len(target) - 1
                    child = self._tree.lookup(target, config)
            if child is None:
                # Ask for the full path, not for the part we walked
                node = None
                break
            node = child
            i += 1

        return await self._finish(path, node, config)

    async def _refresh(self, segments: Sequence[PathSegment], config: CacheConfig) -> Optional[CacheNode]:
        """Refetch an expired ancestor and return its new node."""
        if config.call_backend is CallBackend.NO_BACKEND:
            raise ExpiredValueError(f"{path_to_str(segments)} is expired")
        logger.debug("Ancestor %s is expired, refreshing it", path_to_str(segments))
        await self._fetch(segments, config)
        return self._tree.lookup(segments, config)

    @staticmethod
    def _reference(node: Optional[CacheNode], config: CacheConfig) -> Any:
        return reference_of(node, config.referenced_path_attr)

    def _resolved_path(self, segments: Sequence[PathSegment], config: CacheConfig) -> list:
        """``segments`` with every cached marker on the way replaced by its target."""
        path = list(segments)
        if not config.populate:
            return path
        node: Optional[CacheNode] = self._tree.root
        i = 0
        while node is not None and i < len(path) - 1:
            node = self._tree.step(node, path[i], config)
            while self._reference(node, config) is not None:
                target = parse_path(self._reference(node, config))
                path = target + path[i + 1:]
                i = len(target) - 1
                node = self._tree.lookup(target, config)
            i += 1
        return path

    async def _resolve(self, marker: dict, config: CacheConfig) -> Any:
        target = parse_path(marker[config.referenced_path_attr])
        logger.debug("Following reference to %s", path_to_str(target))
        return await self._get(target, config)

    async def _finish(self, segments: Sequence[PathSegment], node: Optional[CacheNode],
                      config: CacheConfig) -> Any:
        """Decide between the cached value and a backend call for the full path."""
        state = freshness(node)
        if state is Freshness.FRESH:
            logger.debug("Cache hit for %s", path_to_str(segments))
            self.cache_hits += 1
            value = materialize(node)
            if config.populate and is_reference(value, config.referenced_path_attr):
                value = await self._resolve(value, config)
            return self._deliver(value, config)

        logger.debug("Cache miss for %s (%s)", path_to_str(segments), state.name.lower())
        self.cache_misses += 1
        if config.call_backend is CallBackend.NO_BACKEND:
            if state is Freshness.EXPIRED:
                raise ExpiredValueError(f"{path_to_str(segments)} is expired")
            raise CacheMissError(f"{path_to_str(segments)} is not in the cache")
        return self._deliver(await self._fetch(segments, config), config)

    async def _fetch(self, segments: Sequence[PathSegment], config: CacheConfig) -> Any:
        """Ask the backend for ``segments`` and store the answer."""
        # Fail before calling the backend if the answer could not be stored
        self._tree.check_write(segments, None, config, merge=False)
        external = to_external(segments)
        logger.debug("Calling backend for %s", path_to_str(segments))
        self.backend_calls += 1
        try:
            result = self.fetch_func(external)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.debug("Backend call for %s failed: %s", path_to_str(segments), e)
            raise
        return self._put(segments, external, result, config.derive(merge=False))

    @staticmethod
    def _deliver(value: Any, config: CacheConfig) -> Any:
        return copy.deepcopy(value) if config.return_clones else value

    def get_sync(self, path: PathType, populate: Optional[bool] = None,
                 throw_on_expired: bool = False) -> Any:
        """
        Read a value without ever calling the backend.

        Reference markers are followed as long as their targets are cached.

        Args:
            path: Path of the value
            populate: Follow reference markers met on the way
            throw_on_expired: Raise instead of returning None for stale values

        Returns:
            The cached value, or None if it is absent (or expired)

        Raises:
            ExpiredValueError: Stale value and ``throw_on_expired``
        """
        segments = parse_path(path)
        config = self.config.derive(populate=populate)
        state, value = self._lookup_sync(segments, config)
        if state is Freshness.EXPIRED and throw_on_expired:
            raise ExpiredValueError(f"{path_to_str(segments)} is expired")
        if state is not Freshness.FRESH:
            return None
        return self._deliver(value, config)

    def is_in_cache(self, path: PathType) -> bool:
        """True if ``get_sync(path)`` would return a fresh, non-None value."""
        state, value = self._lookup_sync(parse_path(path), self.config)
        return state is Freshness.FRESH and value is not None

    def _lookup_sync(self, segments: Sequence[PathSegment], config: CacheConfig) -> Tuple[Freshness, Any]:
        node: Optional[CacheNode] = self._tree.root
        for segment in segments:
            node = self._tree.step(node, segment, config)
            state = freshness(node)
            if state is not Freshness.FRESH:
                return state, None
            state, node = self._follow_reference_sync(node, config)
            if state is not Freshness.FRESH:
                return state, None
        return Freshness.FRESH, materialize(node)

    def _follow_reference_sync(self, node: CacheNode, config: CacheConfig) -> Tuple[Freshness, CacheNode]:
        if not config.populate or self._reference(node, config) is None:
            return Freshness.FRESH, node
        target = parse_path(self._reference(node, config))
        state, value = self._lookup_sync(target, config)
        return state, LeafNode(value)

    async def populate(self, value: Any, ref_field: Optional[str] = None, **options) -> Any:
        """
        Resolve reference markers inside ``value``.

        Every marker (or only those stored under ``ref_field``) is replaced by
        the value at its target path, fetched with ``get()`` semantics. The
        result is a new structure; ``value`` and the cache are left untouched,
        apart from what ``get()`` itself stores when it asks the backend.

        Args:
            value: Any value, usually one returned by ``get()``
            ref_field: Only resolve markers under this field name
            **options: Same per-call options as ``get()``

        Returns:
            The populated copy
        """
        config = self.config.derive(**options)

        async def resolve(marker):
            return await self._resolve(marker, config)

        return await populate_references(value, resolve, config.referenced_path_attr, ref_field)

    # Change notification

    def subscribe(self, path_prefix: Optional[PathType], callback: ListenerCallback,
                  exact: bool = False) -> Listener:
        """
        Call ``callback(path, value)`` after every PUT at or below ``path_prefix``.

        Args:
            path_prefix: Prefix to watch; None or empty watches every PUT
            callback: Receives the path and value exactly as given to ``put()``
            exact: Only fire for PUTs to exactly ``path_prefix``

        Returns:
            Handle for ``unsubscribe()``
        """
        return self._listeners.subscribe(path_prefix, callback, exact)

    def unsubscribe(self, handle: Listener) -> bool:
        """Remove a listener; returns False if it was not registered."""
        return self._listeners.unsubscribe(handle)

    # Introspection

    def get_cache_data(self) -> dict:
        """
        All cached data as plain dicts and lists.

        Containers are rebuilt on every call; leaf values are the stored
        objects themselves.
        """
        return materialize(self._tree.root)

    def get_metadata(self, path: Optional[PathType] = None) -> Optional[CacheNode]:
        """
        The tree node for ``path`` (or the root), carrying the metadata.

        Its ``ttl`` (absolute expiry), ``value_type`` and ``id`` may be
        modified in place, e.g. to force a value to expire.

        Returns:
            The node, or None if nothing is stored under ``path``
        """
        if not path:
            return self._tree.root
        return self._tree.lookup(parse_path(path), self.config)

    @staticmethod
    def parse_path(path: PathType):
        """Parse ``path`` into a list of PathSegment."""
        return parse_path(path)

    @staticmethod
    def path2rest(path: PathType) -> str:
        """Convert ``path`` into a REST style URL fragment."""
        return path2rest(path)

    def get_stats(self) -> dict:
        """
        Get cache statistics.

        Returns:
            Dictionary with hit/miss counters and backend calls
        """
        lookups = self.cache_hits + self.cache_misses
        return {
            'cache_hits': self.cache_hits,
            'cache_misses': self.cache_misses,
            'backend_calls': self.backend_calls,
            'hit_rate': self.cache_hits / lookups if lookups else 0,
            'listeners': len(self._listeners),
        }
