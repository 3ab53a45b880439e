"""Reference resolution ("populate").

A cached value may point to another path of the same cache with a
reference marker, ``{"$refPath": "users/abc67"}``. Populating a value
builds a copy in which markers are replaced by their targets. The cached
value, markers included, is never modified.
"""

from typing import Any, Awaitable, Callable, Hashable, Optional

Predicate = Callable[[Optional[Hashable], Any], bool]
Resolver = Callable[[Any], Awaitable[Any]]


def is_reference(value: Any, ref_attr: str) -> bool:
    """True for a dict carrying a reference marker."""
    return isinstance(value, dict) and value.get(ref_attr) is not None


def marker_predicate(ref_attr: str, ref_field: Optional[str] = None) -> Predicate:
    """Build the predicate selecting markers to resolve.

    Args:
        ref_attr: Name of the marker attribute, e.g. ``"$refPath"``
        ref_field: Only resolve markers stored under this field name
            (directly or as items of a list); None resolves every marker

    Returns:
        ``predicate(field_name, value)``
    """
    def predicate(field: Optional[Hashable], value: Any) -> bool:
        if not is_reference(value, ref_attr):
            return False
        return ref_field is None or field == ref_field
    return predicate


async def transform(value: Any, predicate: Predicate, resolve: Resolver,
                    field: Optional[Hashable] = None) -> Any:
    """Rebuild ``value``, replacing every node selected by ``predicate``.

    Dicts and lists are rebuilt, everything else is returned as-is. List
    items are checked against the field name of the list itself. Replaced
    values are not visited again, so reference cycles terminate.
    """
    if predicate(field, value):
        return await resolve(value)
    if isinstance(value, dict):
        return {key: await transform(item, predicate, resolve, key) for key, item in value.items()}
    if isinstance(value, list):
        return [await transform(item, predicate, resolve, field) for item in value]
    return value


async def populate(value: Any, resolve: Resolver, ref_attr: str, ref_field: Optional[str] = None) -> Any:
    """Resolve reference markers in ``value``.

    Args:
        value: Any plain value, typically one returned by the cache
        resolve: Coroutine function turning a marker into its target value
        ref_attr: Name of the marker attribute
        ref_field: Restrict resolution to markers under this field name

    Returns:
        A populated copy of ``value``
    """
    return await transform(value, marker_predicate(ref_attr, ref_field), resolve)
