"""Stage fingerprints

A fingerprint is the sha256 of a stage id, the fingerprints of the
upstream results the stage consumes (in order) and the stage's canonical
configuration. Downstream stages chain on upstream fingerprints rather
than on artifact bytes, so a change anywhere upstream propagates without
rehashing large files.
"""

import hashlib
import json
from typing import Any, Mapping, Sequence, Union

# Bump when the fingerprint layout changes; invalidates every record
FINGERPRINT_VERSION = "scenecoder-fp-1"

Config = Union[bytes, Mapping[str, Any]]


def canonical_bytes(config: Config) -> bytes:
    """Serialize a configuration mapping deterministically

    Keys are sorted and whitespace is fixed so two equal mappings always
    produce the same bytes regardless of insertion order.
    """
    if isinstance(config, bytes):
        return config
    return json.dumps(
        config, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def _update(digest, data: bytes) -> None:
    # Length prefix keeps field boundaries unambiguous
    digest.update(str(len(data)).encode("ascii"))
    digest.update(b":")
    digest.update(data)


def fingerprint(stage_id: str, upstream: Sequence[str], config: Config) -> str:
    """Return the hex fingerprint for one stage invocation

    Args:
        stage_id: Name of the stage, e.g. ``"encode"``
        upstream: Fingerprints of the inputs, order-sensitive
        config: Canonical bytes or a JSON-serializable mapping

    Returns:
        64 character hex digest
    """
    digest = hashlib.sha256()
    _update(digest, FINGERPRINT_VERSION.encode("ascii"))
    _update(digest, stage_id.encode("utf-8"))
    _update(digest, str(len(upstream)).encode("ascii"))
    for fp in upstream:
        _update(digest, fp.encode("ascii"))
    _update(digest, canonical_bytes(config))
    return digest.hexdigest()
