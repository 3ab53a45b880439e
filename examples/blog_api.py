#!/usr/bin/env python3
"""
Caching a small REST-style blog API with PopulatingCache.

This example demonstrates:
- Lazy fetching of absent values through a fetch function
- Following $refPath references from comments to users
- Forcing a value to expire and watching it being refreshed
- Listening for changes below a path
"""

import asyncio
import copy
import logging
import sys
from pathlib import Path

# Add parent directory to path for development
sys.path.insert(0, str(Path(__file__).parent.parent))

from populatingcache import PopulatingCache, path2rest


# Stands in for a remote server, keyed by REST URL
API = {
    "/posts/11": {
        "_id": 11,
        "title": "Caching trees",
        "comments": [
            {"_id": 4711, "text": "Nice!", "createdBy": {"$refPath": "users/abc67"}},
        ],
    },
    "/users/abc67": {"_id": "abc67", "name": "Ann", "email": "ann@example.com"},
}


async def fetch(path):
    """Pretend to GET the REST resource for ``path``."""
    url = path2rest(path)
    print(f"  -> GET {url}")
    await asyncio.sleep(0.05)
    return copy.deepcopy(API[url])


async def main():
    logging.basicConfig(level=logging.INFO)
    cache = PopulatingCache(fetch, ttl=300)
    cache.subscribe("posts/11", lambda path, value: print(f"  [changed] {path}"))

    print("Reading the post fetches it from the API:")
    print(f"  title = {(await cache.get('posts/11'))['title']}")

    print("\nFollowing the comment author fetches only the user:")
    email = await cache.get("posts/11.comments/4711.createdBy.email")
    print(f"  email = {email}")

    print("\nSecond read is served from the cache:")
    print(f"  name = {await cache.get('posts/11.comments/4711.createdBy.name')}")

    print("\nPopulating the whole post:")
    post = await cache.populate(await cache.get("posts/11"))
    print(f"  {post['comments'][0]['createdBy']['name']} wrote {post['comments'][0]['text']!r}")

    print("\nAfter the post expires, only the post is fetched again:")
    API["/posts/11"]["title"] = "Caching trees, revisited"
    cache.get_metadata("posts/11").ttl = 0
    print(f"  title = {await cache.get('posts/11.title')}")

    print(f"\nStats: {cache.get_stats()}")


if __name__ == "__main__":
    asyncio.run(main())
