"""Shared fixtures for the PopulatingCache test suite."""

import copy

import pytest

from populatingcache import PopulatingCache
from populatingcache.testing import RecordingBackend


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: waits for real TTLs to run out")


POST_11 = {
    "_id": 11,
    "title": "Hello",
    "comments": [
        {"_id": 4711, "text": "First!", "createdBy": {"$refPath": "users/abc67"}},
        {"_id": 4712, "text": "Second", "createdBy": {"$refPath": "users/xyz99"}},
    ],
}

USER_ABC67 = {"_id": "abc67", "name": "Ann", "email": "ann@example.com"}
USER_XYZ99 = {"_id": "xyz99", "name": "Xavier", "email": "x@example.com"}


@pytest.fixture
def backend():
    """Backend knowing one post and two users."""
    return RecordingBackend({
        "posts/11": POST_11,
        "users/abc67": USER_ABC67,
        "users/xyz99": USER_XYZ99,
    })


@pytest.fixture
def cache(backend):
    """Empty cache in front of the recording backend."""
    return PopulatingCache(backend)


@pytest.fixture
def post():
    """A fresh copy of post 11, safe to PUT and modify."""
    return copy.deepcopy(POST_11)
