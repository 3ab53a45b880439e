"""PopulatingCache - path-addressed TTL tree cache for slow backends.

PopulatingCache keeps a tree of values fetched from a slow source (usually a
REST API) in memory. Values are addressed with flexible paths, expire after a
TTL, are refetched lazily when stale, and may reference each other:

    from populatingcache import PopulatingCache

    cache = PopulatingCache(fetch)
    cache.put("posts/11", post)
    text = await cache.get("posts/11.comments[0].text")
    author = await cache.get("posts/11.comments[0].createdBy")   # follows $refPath
"""

__version__ = "0.1.0"

from .cache import PopulatingCache
from .config import CacheConfig, CallBackend, ScalarIdPolicy
from .error_policies import (
    ErrorPolicy,
    FailFastPolicy,
    ContinueOnErrorsPolicy,
    CollectErrorsPolicy,
    ThresholdPolicy,
)
from .errors import (
    CacheError,
    PathSyntaxError,
    StructuralConflictError,
    IdentityMismatchError,
    CacheMissError,
    ExpiredValueError,
    BackendError,
)
from .listeners import Listener
from .path import PathSegment, parse_path, path2rest

__all__ = [
    "__version__",
    "PopulatingCache",
    "CacheConfig",
    "CallBackend",
    "ScalarIdPolicy",
    "ErrorPolicy",
    "FailFastPolicy",
    "ContinueOnErrorsPolicy",
    "CollectErrorsPolicy",
    "ThresholdPolicy",
    "CacheError",
    "PathSyntaxError",
    "StructuralConflictError",
    "IdentityMismatchError",
    "CacheMissError",
    "ExpiredValueError",
    "BackendError",
    "Listener",
    "PathSegment",
    "parse_path",
    "path2rest",
]
