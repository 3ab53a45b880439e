"""
Tests for writing into PopulatingCache and for its synchronous read API.
"""

import logging

import pytest

from populatingcache import (
    IdentityMismatchError,
    PathSyntaxError,
    PopulatingCache,
    StructuralConflictError,
)
from populatingcache.errors import ExpiredValueError
from populatingcache.expiration import now
from populatingcache.testing import expire
from populatingcache.tree import ObjectNode


@pytest.fixture
def cache():
    """Cache whose backend must never be reached."""
    def no_backend(path):
        raise AssertionError(f"Backend called for {path!r}")
    return PopulatingCache(no_backend)


class TestPut:
    """Test PUT semantics."""

    def test_put_returns_cache_for_chaining(self, cache):
        assert cache.put("a", 1).put("b", 2) is cache
        assert cache.get_cache_data() == {"a": 1, "b": 2}

    def test_equivalent_path_forms(self, cache):
        cache.put("posts/11.comments[0].text", "Hi")
        assert cache.get_sync(["posts/11", "comments[0]", "text"]) == "Hi"
        assert cache.get_sync([{"posts": 11}, "comments[0]", "text"]) == "Hi"

    def test_ttl_bounds(self, cache):
        before = now()
        cache.put("a", 1, ttl=30)
        stamp = cache.get_metadata("a").ttl
        assert before + 30 <= stamp <= now() + 30

    def test_default_ttl(self):
        cache = PopulatingCache(lambda path: None, ttl=5)
        before = now()
        cache.put("a", 1)
        assert before + 5 <= cache.get_metadata("a").ttl <= now() + 5

    def test_reput_replaces_stamp(self, cache):
        cache.put("a", 1, ttl=1000)
        cache.put("a", 1, ttl=10)
        assert cache.get_metadata("a").ttl <= now() + 10

    def test_idempotent_reput(self, cache):
        value = {"_id": 11, "tags": ["x"]}
        cache.put("posts/11", value)
        once = cache.get_cache_data()
        cache.put("posts/11", value)
        assert cache.get_cache_data() == once

    def test_append(self, cache):
        cache.put("parent.array[]", "one")
        cache.put("parent.array[]", "two")
        assert cache.get_sync(["parent", "array[1]"]) == "two"

    def test_merge_option(self, cache):
        cache.put("user", {"name": "Ann", "email": "a@x"})
        cache.put("user", {"email": "ann@x"}, merge=True)
        assert cache.get_sync("user") == {"name": "Ann", "email": "ann@x"}
        cache.put("user", {"email": "b@x"})
        assert cache.get_sync("user") == {"email": "b@x"}

    def test_merge_default_from_config(self):
        cache = PopulatingCache(lambda path: None, merge=True)
        cache.put("user", {"name": "Ann"})
        cache.put("user", {"email": "a@x"})
        assert cache.get_sync("user") == {"name": "Ann", "email": "a@x"}

    def test_merge_on_non_object(self, cache):
        cache.put("count", 1)
        with pytest.raises(StructuralConflictError):
            cache.put("count", {"n": 2}, merge=True)
        assert cache.get_sync("count") == 1

    def test_put_below_none(self, cache):
        cache.put("a", None)
        cache.put("a.b", 1)
        assert cache.get_sync("a") == {"b": 1}
        assert cache.get_cache_data() == {"a": {"b": 1}}

    def test_invalid_path(self, cache):
        with pytest.raises(PathSyntaxError):
            cache.put("a..b", 1)

    def test_identity_mismatch_leaves_cache_empty(self, cache):
        with pytest.raises(IdentityMismatchError):
            cache.put("wrongId/99", {"_id": 66, "name": "x"})
        assert cache.get_sync("wrongId/99") is None
        assert cache.get_cache_data() == {}

    def test_missing_identity_is_healed(self, cache, caplog):
        value = {"title": "Hello"}
        with caplog.at_level(logging.WARNING, logger="populatingcache"):
            cache.put("posts/11", value)
        assert cache.get_sync("posts/11") == {"title": "Hello", "_id": 11}
        assert value == {"title": "Hello"}
        assert "has no _id" in caplog.text

    def test_scalar_under_identity_rejected(self, cache):
        with pytest.raises(StructuralConflictError):
            cache.put("tags/red", "Red")

    def test_scalar_under_identity_wrapped(self):
        cache = PopulatingCache(lambda path: None, scalar_id_values="wrap")
        cache.put("tags/red", "Red")
        assert cache.get_sync("tags/red") == {"_id": "red", "value": "Red"}

    def test_plain_id_key_warns(self, cache, caplog):
        with caplog.at_level(logging.WARNING, logger="populatingcache"):
            cache.put("user._id", 5)
        assert "did you mean" in caplog.text
        assert cache.get_sync("user._id") == 5

    def test_plain_id_key_warning_can_be_disabled(self, caplog):
        cache = PopulatingCache(lambda path: None, warn_on_id_key=False)
        with caplog.at_level(logging.WARNING, logger="populatingcache"):
            cache.put("user._id", 5)
        assert caplog.text == ""


class TestSyncReads:
    """Test get_sync and is_in_cache."""

    def test_absent(self, cache):
        assert cache.get_sync("nothing") is None
        assert cache.get_sync("nothing", throw_on_expired=True) is None
        assert not cache.is_in_cache("nothing")

    def test_fresh(self, cache):
        cache.put("a.b", 1)
        assert cache.get_sync("a") == {"b": 1}
        assert cache.is_in_cache("a.b")

    def test_none_value_is_not_in_cache(self, cache):
        cache.put("a", None)
        assert not cache.is_in_cache("a")

    def test_expired(self, cache):
        cache.put("a", 1)
        expire(cache, "a")
        assert cache.get_sync("a") is None
        assert not cache.is_in_cache("a")
        with pytest.raises(ExpiredValueError):
            cache.get_sync("a", throw_on_expired=True)

    def test_expired_ancestor(self, cache):
        cache.put("a", {"b": 1})
        expire(cache, "a")
        assert cache.get_sync("a.b") is None
        with pytest.raises(ExpiredValueError):
            cache.get_sync("a.b", throw_on_expired=True)

    def test_expired_descendant_does_not_affect_ancestor(self, cache):
        cache.put("a", {"b": 1})
        cache.put("a.c", 2, ttl=-1)
        assert cache.is_in_cache("a")
        assert not cache.is_in_cache("a.c")

    def test_follows_cached_references(self, cache):
        cache.put("users/abc67", {"_id": "abc67", "email": "u@d.com"})
        cache.put("post.author", {"$refPath": "users/abc67"})
        assert cache.get_sync("post.author.email") == "u@d.com"
        assert cache.get_sync("post.author")["email"] == "u@d.com"
        assert cache.get_sync("post.author", populate=False) == {"$refPath": "users/abc67"}

    def test_uncached_reference_target(self, cache):
        cache.put("post.author", {"$refPath": "users/abc67"})
        assert cache.get_sync("post.author.email") is None

    def test_returns_stored_object(self, cache):
        value = {"x": 1}
        cache.put("a", value)
        assert cache.get_sync("a") is value

    def test_return_clones(self):
        cache = PopulatingCache(lambda path: None, return_clones=True)
        value = {"x": [1]}
        cache.put("a", value)
        copy = cache.get_sync("a")
        assert copy == value and copy is not value
        copy["x"].append(2)
        assert cache.get_sync("a") == {"x": [1]}


class TestDeleteAndMaintenance:
    """Test delete, pruning and introspection."""

    def test_delete(self, cache):
        cache.put("a", {"x": 1, "y": 2})
        assert cache.delete("a.x") is True
        assert cache.get_sync("a") == {"y": 2}
        assert cache.delete("a.x") is False

    def test_delete_keeps_array_slots(self, cache):
        cache.put("list", ["a", "b", "c"])
        cache.delete("list[0]")
        assert cache.get_sync("list") == [None, "b", "c"]
        assert cache.get_sync("list[2]") == "c"

    def test_delete_expired_elems(self, cache):
        cache.put("keep", 1)
        cache.put("drop", 2, ttl=-1)
        cache.put("deep.drop", 3, ttl=-1)
        assert cache.delete_expired_elems() == 2
        assert cache.get_cache_data() == {"keep": 1, "deep": {}}

    def test_empty_cache(self, cache):
        cache.put("a", 1)
        cache.empty_cache()
        assert cache.get_cache_data() == {}
        assert cache.get_metadata("a") is None

    def test_get_metadata(self, cache):
        cache.put("posts/11", {"_id": 11})
        assert isinstance(cache.get_metadata(), ObjectNode)
        node = cache.get_metadata("posts/11")
        assert node.id == 11
        assert node.value_type == "dict"
        assert cache.get_metadata("posts/12") is None

    def test_path_helpers(self, cache):
        assert cache.path2rest("posts/11.comments/4711") == "/posts/11/comments/4711"
        assert len(cache.parse_path("a.b[0]")) == 2
