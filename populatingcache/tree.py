"""Tree store for PopulatingCache.

Cached data lives in a single tree of nodes. Each node carries its own
metadata (expiry stamp, type tag, identity) next to its content, so data and
metadata cannot drift apart:

- ObjectNode: named children (a cached dict that has been written into)
- ArrayNode: positional children, ``None`` marks an empty slot
- LeafNode: an opaque value exactly as the caller stored it

A dict or list stored as a leaf stays a LeafNode until a write reaches
inside it. The write then promotes it, one level, into an ObjectNode or
ArrayNode whose children are unstamped leaves. Reads reach inside leaves
through the same promotion without attaching the result.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from .config import CacheConfig, ScalarIdPolicy
from .errors import IdentityMismatchError, StructuralConflictError
from .expiration import expires_at, now
from .path import PathSegment, ids_equal, path_to_str


logger = logging.getLogger(__name__)


class CacheNode:
    """Base class of all tree nodes.

    Attributes:
        ttl: Absolute expiry (seconds since epoch), None when the node was
            never stamped itself (auto-created or nested inside a value)
        value_type: Type name of the value last written here
        id: Identity of an element addressed with ``key/id``
    """

    __slots__ = ('ttl', 'value_type', 'id')

    def __init__(self, ttl: Optional[float] = None, value_type: Optional[str] = None, id: Any = None):
        self.ttl = ttl
        self.value_type = value_type
        self.id = id

    def stamp(self, ttl: float, value: Any, at: Optional[float] = None) -> 'CacheNode':
        """Replace the expiry stamp; never extends or averages the old one."""
        self.ttl = expires_at(ttl, at)
        self.value_type = type(value).__name__
        return self

    def copy_metadata(self, other: 'CacheNode') -> 'CacheNode':
        self.ttl = other.ttl
        self.value_type = other.value_type
        self.id = other.id
        return self

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(ttl={self.ttl!r}, value_type={self.value_type!r})"


class LeafNode(CacheNode):
    """An opaque stored value."""

    __slots__ = ('value',)

    def __init__(self, value: Any = None, **metadata):
        super().__init__(**metadata)
        self.value = value


class ObjectNode(CacheNode):
    """Named children."""

    __slots__ = ('children',)

    def __init__(self, children: Optional[Dict[str, CacheNode]] = None, **metadata):
        super().__init__(**metadata)
        self.children: Dict[str, CacheNode] = children if children is not None else {}


class ArrayNode(CacheNode):
    """Positional children; empty slots hold None so indexes never shift."""

    __slots__ = ('children',)

    def __init__(self, children: Optional[List[Optional[CacheNode]]] = None, **metadata):
        super().__init__(**metadata)
        self.children: List[Optional[CacheNode]] = children if children is not None else []

    def get(self, index: int) -> Optional[CacheNode]:
        if 0 <= index < len(self.children):
            return self.children[index]
        return None

    def set(self, index: int, node: Optional[CacheNode]) -> Optional[CacheNode]:
        while len(self.children) <= index:
            self.children.append(None)
        self.children[index] = node
        return node


Container = Union[ObjectNode, ArrayNode]


# Conversions between nodes and plain values

def promote(node: CacheNode) -> Optional[CacheNode]:
    """Turn a leaf holding a dict or list into a container node.

    Containers are returned as-is. Returns None for leaves holding anything
    else, which cannot be walked into.
    """
    if isinstance(node, (ObjectNode, ArrayNode)):
        return node
    if isinstance(node, LeafNode):
        if isinstance(node.value, dict):
            children = {key: LeafNode(value) for key, value in node.value.items()}
            return ObjectNode(children).copy_metadata(node)
        if isinstance(node.value, list):
            return ArrayNode([LeafNode(value) for value in node.value]).copy_metadata(node)
    return None


def materialize(node: Optional[CacheNode]) -> Any:
    """Build the plain value a node stands for.

    Leaf values are returned by reference; containers are rebuilt.
    """
    if node is None:
        return None
    if isinstance(node, LeafNode):
        return node.value
    if isinstance(node, ObjectNode):
        return {key: materialize(child) for key, child in node.children.items()}
    return [materialize(child) for child in node.children]


def identity_of(node: Optional[CacheNode], id_attr: str) -> Any:
    """Identity of an array element, or None when it has none."""
    if node is None:
        return None
    if node.id is not None:
        return node.id
    if isinstance(node, ObjectNode):
        child = node.children.get(id_attr)
        return child.value if isinstance(child, LeafNode) else None
    if isinstance(node, LeafNode) and isinstance(node.value, dict):
        return node.value.get(id_attr)
    return None


def find_by_id(array: ArrayNode, ident: Any, config: CacheConfig) -> int:
    """Index of the element whose identity equals ``ident``, or -1."""
    for index, child in enumerate(array.children):
        if ids_equal(identity_of(child, config.id_attr), ident, config.coerce_ids):
            return index
    return -1


def is_object_typed(node: Optional[CacheNode]) -> bool:
    return isinstance(node, ObjectNode) or (isinstance(node, LeafNode) and isinstance(node.value, dict))


def is_vacant(node: Optional[CacheNode]) -> bool:
    """True for a missing node or a leaf holding None."""
    return node is None or (isinstance(node, LeafNode) and node.value is None)


def reference_of(node: Optional[CacheNode], ref_attr: str) -> Any:
    """Target path of a node holding a reference marker, or None.

    A marker may still be a leaf or may have been promoted into an
    ObjectNode by an earlier write.
    """
    if isinstance(node, LeafNode):
        return node.value.get(ref_attr) if isinstance(node.value, dict) else None
    if isinstance(node, ObjectNode):
        child = node.children.get(ref_attr)
        return child.value if isinstance(child, LeafNode) else None
    return None


def prepare_identity_value(segment: PathSegment, value: Any, config: CacheConfig,
                           segments: Sequence[PathSegment]) -> Any:
    """Check (and if needed complete) a value PUT under ``key/id``.

    Args:
        segment: The identity segment the value is PUT under
        value: The value as given by the caller
        config: Effective configuration of the PUT
        segments: Full path, for messages

    Returns:
        The value to store. A dict without an identity field is copied and
        completed with the id from the path; everything else is returned as-is
        or wrapped according to ``config.scalar_id_values``.

    Raises:
        StructuralConflictError: Non-dict value and the REJECT policy
        IdentityMismatchError: Value carries a different identity
    """
    id_attr = config.id_attr
    if not isinstance(value, dict):
        if config.scalar_id_values is ScalarIdPolicy.WRAP:
            return {id_attr: segment.id, "value": value}
        raise StructuralConflictError(
            f"Cannot PUT a {type(value).__name__} under {path_to_str(segments)}: "
            f"elements addressed by id must be dicts"
        )

    if value.get(id_attr) is None:
        logger.warning("Value PUT at %s has no %s, added %s=%r from the path",
                       path_to_str(segments), id_attr, id_attr, segment.id)
        healed = dict(value)
        healed[id_attr] = segment.id
        return healed

    if not ids_equal(value[id_attr], segment.id, config.coerce_ids):
        raise IdentityMismatchError(path_to_str(segments), segment.id, value[id_attr])
    return value


class CacheTree:
    """The root of the node tree plus every walk over it.

    Writes are validated by a dry run before anything is changed, so a
    write that fails leaves the tree untouched.
    """

    def __init__(self):
        self.root = ObjectNode()

    def clear(self):
        """Drop every node."""
        self.root = ObjectNode()

    # Reading

    def step(self, node: Optional[CacheNode], segment: PathSegment, config: CacheConfig) -> Optional[CacheNode]:
        """Follow one segment from ``node`` without changing anything.

        Returns:
            The addressed child, or None when it does not exist
        """
        if segment.append:
            raise StructuralConflictError(f"Cannot read {segment}: append marker does not address a value")
        container = promote(node) if node is not None else None
        if not isinstance(container, ObjectNode):
            return None
        child = container.children.get(segment.key)
        if segment.is_plain:
            return child
        array = promote(child) if child is not None else None
        if not isinstance(array, ArrayNode):
            return None
        if segment.is_index:
            return array.get(segment.index)
        index = find_by_id(array, segment.id, config)
        return array.children[index] if index >= 0 else None

    def lookup(self, segments: Sequence[PathSegment], config: CacheConfig) -> Optional[CacheNode]:
        """Node at the end of ``segments`` or None."""
        node = self.root
        for segment in segments:
            node = self.step(node, segment, config)
            if node is None:
                return None
        return node

    # Writing

    def check_write(self, segments: Sequence[PathSegment], value: Any, config: CacheConfig, merge: bool):
        """Raise the error a write would raise, without writing."""
        for segment in segments[:-1]:
            if segment.append:
                raise StructuralConflictError(
                    f"Append marker {segment} is only allowed as the last element of {path_to_str(segments)}"
                )
        parent = self._walk_to_parent(segments, config, create=False)
        if parent is None:
            # Everything below here would be created from scratch
            return
        self._write_leaf(parent, segments[-1], value, config, merge, segments, dry_run=True)

    def write(self, segments: Sequence[PathSegment], value: Any, config: CacheConfig,
              merge: bool, ttl: float) -> CacheNode:
        """Store ``value`` at the end of ``segments``, creating containers on the way.

        Returns:
            The stamped node now holding the value
        """
        self.check_write(segments, value, config, merge)
        parent = self._walk_to_parent(segments, config, create=True)
        node = self._write_leaf(parent, segments[-1], value, config, merge, segments)
        return node.stamp(ttl, value)

    def delete(self, segments: Sequence[PathSegment], config: CacheConfig) -> bool:
        """Remove the value at ``segments``; array slots stay in place.

        Returns:
            True if something was removed
        """
        if self.lookup(segments, config) is None:
            return False
        parent = self._walk_to_parent(segments, config, create=True)
        leaf = segments[-1]
        if leaf.is_plain:
            del parent.children[leaf.key]
            return True
        array = self._array_in(parent, leaf, config, create=True, segments=segments)
        index = leaf.index if leaf.is_index else find_by_id(array, leaf.id, config)
        array.set(index, None)
        return True

    def prune_expired(self, at: Optional[float] = None) -> int:
        """Remove every node whose stamp lies before ``at``.

        Returns:
            Number of nodes removed
        """
        at = now() if at is None else at
        return self._prune(self.root, at)

    def _prune(self, container: Container, at: float) -> int:
        removed = 0
        if isinstance(container, ObjectNode):
            slots = list(container.children.items())
        else:
            slots = list(enumerate(container.children))
        for slot, child in slots:
            if child is None:
                continue
            if child.ttl is not None and child.ttl < at:
                if isinstance(container, ObjectNode):
                    del container.children[slot]
                else:
                    container.children[slot] = None
                removed += 1
            elif isinstance(child, (ObjectNode, ArrayNode)):
                removed += self._prune(child, at)
        return removed

    # Walk helpers

    def _walk_to_parent(self, segments: Sequence[PathSegment], config: CacheConfig,
                        create: bool) -> Optional[ObjectNode]:
        """Walk every segment but the last.

        With ``create`` missing containers are created and promoted leaves are
        attached; without it the walk stops at the first missing container and
        returns None.
        """
        container = self.root
        for segment in segments[:-1]:
            container = self._descend(container, segment, config, create, segments)
            if container is None:
                return None
        return container

    def _descend(self, container: ObjectNode, segment: PathSegment, config: CacheConfig,
                 create: bool, segments: Sequence[PathSegment]) -> Optional[ObjectNode]:
        if segment.append:
            raise StructuralConflictError(
                f"Append marker {segment} is only allowed as the last element of {path_to_str(segments)}"
            )

        if segment.is_plain:
            slots, slot = container.children, segment.key
            if is_vacant(slots.get(slot)):
                if not create:
                    return None
                slots[slot] = ObjectNode()
            return self._object_in(slots, slot, config, create, segments)

        array = self._array_in(container, segment, config, create, segments)
        if array is None:
            return None

        if segment.is_index:
            slot = segment.index
            if is_vacant(array.get(slot)):
                if not create:
                    return None
                array.set(slot, ObjectNode())
            return self._object_in(array.children, slot, config, create, segments)

        slot = find_by_id(array, segment.id, config)
        if slot < 0:
            if not create:
                return None
            element = ObjectNode({config.id_attr: LeafNode(segment.id)}, id=segment.id)
            array.children.append(element)
            return element
        return self._object_in(array.children, slot, config, create, segments)

    def _object_in(self, slots, slot, config: CacheConfig, create: bool, segments) -> ObjectNode:
        """The ObjectNode in ``slots[slot]``, promoting a dict leaf if needed."""
        node = promote(slots[slot])
        if not isinstance(node, ObjectNode):
            raise StructuralConflictError(
                f"Cannot walk into {path_to_str(segments)}: a {slots[slot].value_type or 'value'} "
                f"is stored where an object is needed"
            )
        target = reference_of(node, config.referenced_path_attr)
        if target is not None:
            raise StructuralConflictError(
                f"Cannot write into {path_to_str(segments)}: it passes through a reference to {target}"
            )
        if create:
            slots[slot] = node
        return node

    def _array_in(self, container: ObjectNode, segment: PathSegment, config: CacheConfig,
                  create: bool, segments) -> Optional[ArrayNode]:
        """The ArrayNode under ``segment.key``, created or promoted if needed."""
        child = container.children.get(segment.key)
        if is_vacant(child):
            if not create:
                return None
            child = container.children[segment.key] = ArrayNode()
        array = promote(child)
        if not isinstance(array, ArrayNode):
            raise StructuralConflictError(
                f"Cannot address {segment} in {path_to_str(segments)}: {segment.key!r} is not an array"
            )
        if create:
            container.children[segment.key] = array
        return array

    def _write_leaf(self, parent: ObjectNode, segment: PathSegment, value: Any, config: CacheConfig,
                    merge: bool, segments: Sequence[PathSegment], dry_run: bool = False) -> Optional[CacheNode]:
        if segment.is_plain:
            slots, slot = parent.children, segment.key
        else:
            array = self._array_in(parent, segment, config, create=not dry_run, segments=segments)
            if array is None:
                # Dry run, the array would be created
                return None
            if segment.append:
                if dry_run:
                    return None
                node = LeafNode(value)
                array.children.append(node)
                return node
            slots = array.children
            if segment.is_index:
                slot = segment.index
                if not dry_run:
                    array.set(slot, array.get(slot))
            else:
                slot = find_by_id(array, segment.id, config)
                if slot < 0:
                    if dry_run:
                        return None
                    array.children.append(None)
                    slot = len(array.children) - 1

        if isinstance(slots, dict):
            existing = slots.get(slot)
        else:
            existing = slots[slot] if slot < len(slots) else None

        merging = merge and not is_vacant(existing)
        if merging and (not is_object_typed(existing) or not isinstance(value, dict)):
            raise StructuralConflictError(
                f"Cannot merge into {path_to_str(segments)}: both the stored value and "
                f"the new value must be objects"
            )
        if dry_run:
            return None

        node = self._merged(existing, value) if merging else LeafNode(value)
        if segment.is_identity:
            node.id = segment.id
        slots[slot] = node
        return node

    @staticmethod
    def _merged(existing: CacheNode, value: dict) -> CacheNode:
        """Shallow merge of ``value`` into an object-typed node."""
        if isinstance(existing, LeafNode):
            merged = dict(existing.value)
            merged.update(value)
            return LeafNode(merged).copy_metadata(existing)
        for key, item in value.items():
            existing.children[key] = LeafNode(item)
        return existing
