"""Path grammar for PopulatingCache.

A path addresses a value in the cache tree. Callers may write it as:

- a dotted string: ``"posts/11.comments[0].text"``
- a list mixing string tokens and single-key dicts:
  ``["posts/11", "comments[0]", {"likes": "u42"}]``
- a single bare token or single-key dict: ``"users/abc67"``, ``{"users": "abc67"}``

Every form normalizes to a list of PathSegment. A string token is a key,
optionally followed by exactly one of ``[index]``, ``[]`` (append) or ``/id``.
"""

import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

from cachetools import LRUCache, cached

from .errors import PathSyntaxError


SEPARATOR = "."

KEY_PATTERN = r"[a-zA-Z_$][0-9a-zA-Z\-_$]*"
ID_PATTERN = r"[0-9a-zA-Z_$][0-9a-zA-Z\-_$]*"

TOKEN_RE = re.compile(
    rf"^(?P<key>{KEY_PATTERN})"
    r"(?:\[(?P<index>\d*)\])?"
    rf"(?:/(?P<id>{ID_PATTERN}))?$"
)
ID_RE = re.compile(rf"^{ID_PATTERN}$")
KEY_RE = re.compile(rf"^{KEY_PATTERN}$")


@dataclass(frozen=True)
class PathSegment:
    """One normalized step of a path.

    At most one of ``id``, ``index`` and ``append`` is set.
    """
    key: str
    id: Any = None
    index: Optional[int] = None
    append: bool = False

    @property
    def is_plain(self) -> bool:
        return self.id is None and self.index is None and not self.append

    @property
    def is_index(self) -> bool:
        return self.index is not None

    @property
    def is_identity(self) -> bool:
        return self.id is not None

    def to_external(self) -> Union[str, dict]:
        """Render this segment the way a caller would write it."""
        if self.append:
            return f"{self.key}[]"
        if self.index is not None:
            return f"{self.key}[{self.index}]"
        if self.id is None:
            return self.key
        # "key/42" and "key/abc" parse back to the same id, "key/007" would not
        if isinstance(self.id, int) and not isinstance(self.id, bool) and self.id >= 0:
            return f"{self.key}/{self.id}"
        if isinstance(self.id, str) and ID_RE.match(self.id) and not self.id.isdigit():
            return f"{self.key}/{self.id}"
        return {self.key: self.id}

    def __str__(self) -> str:
        external = self.to_external()
        if isinstance(external, dict):
            return f"{self.key}/{self.id}"
        return external


PathType = Union[str, dict, PathSegment, Sequence[Union[str, dict, PathSegment]]]


def normalize_id(value: Any) -> Any:
    """Turn an all-digit string id into an int, leave anything else alone."""
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return value


def ids_equal(a: Any, b: Any, coerce: bool = True) -> bool:
    """Compare two identities.

    Args:
        a: First identity
        b: Second identity
        coerce: If True, ``"42"`` and ``42`` are equal

    Returns:
        True if both denote the same entity
    """
    if a is None or b is None:
        return False
    # True == 1 in Python, never for identities
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b
    if coerce:
        return normalize_id(a) == normalize_id(b)
    return type(a) is type(b) and a == b


def _parse_token(token: str, position: int, path: Any) -> PathSegment:
    """Parse one string token into a segment."""
    if not token:
        raise PathSyntaxError(path, f"element {position} is empty")
    match = TOKEN_RE.match(token)
    if match is None:
        raise PathSyntaxError(path, f"element {position} ({token!r}) matches no path rule")

    key = match.group("key")
    index = match.group("index")
    ident = match.group("id")

    if index is not None and ident is not None:
        raise PathSyntaxError(path, f"element {position} ({token!r}) has both an index and an id")
    if index == "":
        return PathSegment(key=key, append=True)
    if index is not None:
        return PathSegment(key=key, index=int(index))
    if ident is not None:
        return PathSegment(key=key, id=normalize_id(ident))
    return PathSegment(key=key)


def _parse_object(element: dict, position: int, path: Any) -> PathSegment:
    """Parse a ``{key: id}`` element; the id keeps the caller's type."""
    if len(element) != 1:
        raise PathSyntaxError(path, f"element {position} must be a dict with exactly one key")
    key, ident = next(iter(element.items()))
    if not isinstance(key, str) or not KEY_RE.match(key):
        raise PathSyntaxError(path, f"element {position} has an invalid key {key!r}")
    if ident is None:
        raise PathSyntaxError(path, f"element {position} has no id for key {key!r}")
    return PathSegment(key=key, id=ident)


def _parse_element(element: Any, position: int, path: Any) -> PathSegment:
    if isinstance(element, PathSegment):
        return element
    if isinstance(element, str):
        return _parse_token(element, position, path)
    if isinstance(element, dict):
        return _parse_object(element, position, path)
    if element is None:
        raise PathSyntaxError(path, f"element {position} is None")
    raise PathSyntaxError(path, f"element {position} has unsupported type {type(element).__name__}")


@cached(LRUCache(maxsize=1024))
def _parse_string(path: str) -> Tuple[PathSegment, ...]:
    tokens = path.split(SEPARATOR) if SEPARATOR in path else [path]
    return tuple(_parse_token(token, i, path) for i, token in enumerate(tokens))


def parse_path(path: PathType) -> List[PathSegment]:
    """Parse any accepted path form into a list of segments.

    Args:
        path: Dotted string, list/tuple of elements, single dict or segment

    Returns:
        Non-empty list of PathSegment

    Raises:
        PathSyntaxError: If the path or any element is malformed
    """
    if path is None:
        raise PathSyntaxError(path, "path is None")
    if isinstance(path, str):
        if not path:
            raise PathSyntaxError(path, "path is empty")
        return list(_parse_string(path))
    if isinstance(path, (dict, PathSegment)):
        return [_parse_element(path, 0, path)]
    if isinstance(path, (list, tuple)):
        if not path:
            raise PathSyntaxError(path, "path is empty")
        return [_parse_element(element, i, path) for i, element in enumerate(path)]
    raise PathSyntaxError(path, "path must be a string, a list or a single-key dict")


def to_external(segments: Sequence[PathSegment]) -> List[Union[str, dict]]:
    """Reconstruct the list form of a parsed path.

    ``parse_path(to_external(segments)) == list(segments)`` holds for every
    segment list produced by parse_path.
    """
    return [segment.to_external() for segment in segments]


def path_to_str(segments: Sequence[PathSegment]) -> str:
    """Dotted representation, for log and error messages."""
    return SEPARATOR.join(str(segment) for segment in segments)


def path2rest(path: PathType) -> str:
    """Convert a path into a REST style URL fragment.

    ``["posts/11", "comments/4711"]`` becomes ``"/posts/11/comments/4711"``.

    Raises:
        PathSyntaxError: If the path contains ``[index]`` or ``[]`` elements,
            which have no REST equivalent
    """
    rest = []
    for segment in parse_path(path):
        if segment.index is not None or segment.append:
            raise PathSyntaxError(
                path, f"cannot convert array element {segment} to a REST URL"
            )
        rest.append(f"/{segment.key}")
        if segment.id is not None:
            rest.append(f"/{segment.id}")
    return "".join(rest)
