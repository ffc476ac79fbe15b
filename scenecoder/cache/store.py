"""Cache record store

Responsibilities:
- Own the output directory's cache record file (``cache.json``)
- Report hits only for entries whose artifacts still verify
- Serialize writes and persist the record atomically
- Commit artifacts with write-then-verify-then-commit ordering

The record file is never deleted by scenecoder. Removing it, or the whole
output directory, is how a user resets the cache.
"""

import json
import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from ..exceptions import ArtifactError, CacheCorruptError
from ..utils import hash_file, remove_if_exists
from .fingerprint import fingerprint

logger = logging.getLogger(__name__)

RECORD_VERSION = 1


@dataclass(frozen=True)
class ArtifactRef:
    """A file referenced by a cache entry, relative to the output directory"""
    path: str
    sha256: str
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "sha256": self.sha256, "size": self.size}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactRef":
        return cls(str(data["path"]), str(data["sha256"]), int(data["size"]))


@dataclass(frozen=True)
class CachedResult:
    """Inline value, file reference, or both"""
    value: Any = None
    artifact: Optional[ArtifactRef] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "artifact": self.artifact.to_dict() if self.artifact else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedResult":
        artifact = data.get("artifact")
        return cls(
            value=data.get("value"),
            artifact=ArtifactRef.from_dict(artifact) if artifact else None,
        )


@dataclass(frozen=True)
class CacheEntry:
    stage: str
    result: CachedResult
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.result.to_dict()
        data["stage"] = self.stage
        data["created_at"] = self.created_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            stage=str(data["stage"]),
            result=CachedResult.from_dict(data),
            created_at=str(data.get("created_at", "")),
        )


class CacheStore:
    """Fingerprint -> result mapping persisted next to the outputs

    Lookups may run concurrently from any number of worker threads.
    Entries are immutable and replaced wholesale, so readers never see a
    half-updated entry. Every mutation takes ``_lock`` and rewrites the
    record file through a temporary file and ``os.replace``.
    """

    def __init__(self, path: Path, root: Optional[Path] = None,
                 force_stages: Iterable[str] = ()):
        self.path = Path(path)
        self.root = Path(root) if root is not None else self.path.parent
        self.force_stages = frozenset(force_stages)
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._sources: Dict[str, Dict[str, Any]] = {}
        self._stale = set()
        self._refreshed = set()
        self._verified: Dict[str, Tuple[int, int, str]] = {}
        self._hits = Counter()
        self._misses = Counter()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.debug("No cache record at %s; starting empty", self.path)
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheCorruptError(
                f"Unable to read cache record {self.path}: {e}", module="cache"
            ) from e
        if not isinstance(data, dict) or data.get("version") != RECORD_VERSION:
            version = data.get("version") if isinstance(data, dict) else None
            raise CacheCorruptError(
                f"Unsupported cache record version {version!r} in {self.path}",
                module="cache"
            )
        try:
            self._entries = {
                fp: CacheEntry.from_dict(entry)
                for fp, entry in data.get("entries", {}).items()
            }
        except (KeyError, TypeError, ValueError) as e:
            raise CacheCorruptError(
                f"Malformed entry in cache record {self.path}: {e}", module="cache"
            ) from e
        self._sources = dict(data.get("sources", {}))
        logger.info("Loaded %d cache entries from %s", len(self._entries), self.path)

    def _save(self) -> None:
        """Persist the record; caller holds ``_lock``"""
        data = {
            "version": RECORD_VERSION,
            "entries": {fp: entry.to_dict() for fp, entry in self._entries.items()},
            "sources": self._sources,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fp: str) -> bool:
        return fp in self._entries

    def entry(self, fp: str) -> Optional[CacheEntry]:
        """Raw entry without verification"""
        return self._entries.get(fp)

    def artifact_path(self, result: CachedResult) -> Optional[Path]:
        if result.artifact is None:
            return None
        return self.root / result.artifact.path

    def relative(self, path: Path) -> str:
        path = Path(path)
        try:
            return path.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return str(path.resolve())

    def _verify(self, fp: str, entry: CacheEntry) -> bool:
        """Check an artifact against its record

        Each run hashes an artifact once, when it is committed or first
        checked. Later checks in the same run trust an unchanged size and
        mtime, so an in-place edit that restores both (e.g. ``touch -r``)
        goes unnoticed until the next run.
        """
        artifact = entry.result.artifact
        path = self.root / artifact.path
        try:
            stat = path.stat()
        except FileNotFoundError:
            logger.warning(
                "Cached %s artifact %s is missing; recomputing", entry.stage, artifact.path
            )
            return False
        if stat.st_size != artifact.size:
            logger.warning(
                "Cached %s artifact %s changed size (%d != %d); recomputing",
                entry.stage, artifact.path, stat.st_size, artifact.size
            )
            return False
        seen = self._verified.get(fp)
        if seen == (stat.st_size, stat.st_mtime_ns, artifact.sha256):
            return True
        digest = hash_file(path)
        if digest != artifact.sha256:
            logger.warning(
                "Cached %s artifact %s failed its integrity check; recomputing",
                entry.stage, artifact.path
            )
            return False
        self._verified[fp] = (stat.st_size, stat.st_mtime_ns, artifact.sha256)
        return True

    def lookup(self, fp: str, stage: Optional[str] = None) -> Optional[CachedResult]:
        """Return the stored result for ``fp`` if it is present and valid

        File-backed results are only returned when the file exists and its
        sha256 still matches the record. Anything else is a miss, and the
        entry is marked stale so the recomputed result replaces it quietly.
        """
        entry = self._entries.get(fp)
        result = None
        if entry is not None:
            forced = entry.stage in self.force_stages and fp not in self._refreshed
            if forced:
                logger.debug("Ignoring cached %s result %s (forced)", entry.stage, fp[:12])
            elif entry.result.artifact is None or self._verify(fp, entry):
                result = entry.result
            else:
                self._stale.add(fp)
        if stage is not None:
            counter = self._hits if result is not None else self._misses
            with self._lock:
                counter[stage] += 1
        return result

    def store(self, fp: str, result: CachedResult, stage: str) -> bool:
        """Record ``result`` under ``fp``

        Returns:
            bool: False when an equal result was already stored
        """
        with self._lock:
            existing = self._entries.get(fp)
            if existing is not None and existing.result == result:
                self._refreshed.add(fp)
                return False
            if existing is not None:
                expected = (
                    fp in self._stale
                    or existing.stage in self.force_stages
                )
                if not expected:
                    logger.warning(
                        "Cache conflict for %s fingerprint %s: stored result differs "
                        "from the new one; replacing it. This points to a setting "
                        "missing from the fingerprint.",
                        stage, fp[:12]
                    )
            self._entries[fp] = CacheEntry(
                stage=stage,
                result=result,
                created_at=datetime.now().isoformat(timespec="seconds"),
            )
            self._stale.discard(fp)
            self._refreshed.add(fp)
            self._verified.pop(fp, None)
            self._save()
            return True

    def commit_artifact(self, fp: str, stage: str, temp_path: Path, final_path: Path,
                        value: Any = None) -> CachedResult:
        """Move a finished artifact into place and record it

        The artifact must already be fully written to ``temp_path``. It is
        checked, renamed to ``final_path`` and hashed before the record entry
        is stored, so an interrupted run never leaves an entry pointing at a
        partial file.

        Raises:
            ArtifactError: If the temporary file is missing or empty
        """
        temp_path = Path(temp_path)
        final_path = Path(final_path)
        if not temp_path.exists() or temp_path.stat().st_size == 0:
            remove_if_exists(temp_path)
            raise ArtifactError(
                f"{stage} produced no output at {temp_path.name}", module="cache"
            )
        os.replace(temp_path, final_path)
        stat = final_path.stat()
        artifact = ArtifactRef(
            path=self.relative(final_path),
            sha256=hash_file(final_path),
            size=stat.st_size,
        )
        result = CachedResult(value=value, artifact=artifact)
        self.store(fp, result, stage)
        self._verified[fp] = (stat.st_size, stat.st_mtime_ns, artifact.sha256)
        return result

    def source_identity(self, path: Union[str, Path]) -> str:
        """Identity of a source file: content hash, length and mtime

        The content hash is remembered under the resolved path, size and
        mtime so an unchanged source is not rehashed on every run.
        This memo is persisted, so an edit that preserves both the size and
        the mtime of the source is not detected. Delete the record file to
        force a rehash.
        """
        path = Path(path).resolve()
        stat = path.stat()
        key = str(path)
        known = self._sources.get(key)
        if (known and known.get("size") == stat.st_size
                and known.get("mtime_ns") == stat.st_mtime_ns):
            return known["identity"]

        logger.info("Hashing source %s", path.name)
        content = hash_file(path)
        identity = fingerprint("source", [], {
            "sha256": content,
            "size": stat.st_size,
            "mtime_ns": stat.st_mtime_ns,
        })
        with self._lock:
            self._sources[key] = {
                "sha256": content,
                "size": stat.st_size,
                "mtime_ns": stat.st_mtime_ns,
                "identity": identity,
            }
            self._save()
        return identity

    def stats(self) -> Tuple[Dict[str, int], Dict[str, int]]:
        """Per-stage (hits, misses) counted by ``lookup`` during this run"""
        with self._lock:
            return dict(self._hits), dict(self._misses)
