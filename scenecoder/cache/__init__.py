"""Content-addressed cache for pipeline stage results

Responsibilities:
- Compute fingerprints identifying a stage's effective inputs
- Persist stage results in the output directory's record file
- Verify file-backed results before reporting a hit
"""

from .fingerprint import canonical_bytes, fingerprint
from .store import ArtifactRef, CachedResult, CacheEntry, CacheStore

__all__ = [
    "ArtifactRef",
    "CachedResult",
    "CacheEntry",
    "CacheStore",
    "canonical_bytes",
    "fingerprint",
]
