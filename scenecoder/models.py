"""Data model shared by the stages, scheduler and orchestrator"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

from .exceptions import SceneBoundaryError


@dataclass(frozen=True)
class CropRect:
    width: int
    height: int
    x: int = 0
    y: int = 0

    @property
    def filter(self) -> str:
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height, "x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, int]]) -> Optional["CropRect"]:
        if not data:
            return None
        return cls(int(data["width"]), int(data["height"]), int(data["x"]), int(data["y"]))


@dataclass(frozen=True)
class ProbeInfo:
    """What the media backend reports about a source."""
    frame_count: int
    frame_rate: float
    duration: float
    width: int
    height: int
    crop: Optional[CropRect] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame_count": self.frame_count,
            "frame_rate": self.frame_rate,
            "duration": self.duration,
            "width": self.width,
            "height": self.height,
            "crop": self.crop.to_dict() if self.crop else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProbeInfo":
        return cls(
            frame_count=int(data["frame_count"]),
            frame_rate=float(data["frame_rate"]),
            duration=float(data["duration"]),
            width=int(data["width"]),
            height=int(data["height"]),
            crop=CropRect.from_dict(data.get("crop")),
        )


@dataclass(frozen=True)
class SourceVideo:
    path: Path
    identity: str
    info: ProbeInfo

    @property
    def frame_count(self) -> int:
        return self.info.frame_count

    @property
    def frame_rate(self) -> float:
        return self.info.frame_rate

    @property
    def crop(self) -> Optional[CropRect]:
        return self.info.crop


@dataclass(frozen=True)
class Scene:
    """Half-open frame range ``[start, end)`` of the source."""
    index: int
    start: int
    end: int
    crop: Optional[CropRect] = None

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def name(self) -> str:
        return f"scene-{self.index:05d}"


def validate_boundaries(boundaries: Sequence[int], total_frames: int) -> None:
    """Check that boundaries partition ``[0, total_frames)``

    Raises:
        SceneBoundaryError: If the boundaries are not strictly increasing
            from 0 to total_frames
    """
    if len(boundaries) < 2:
        raise SceneBoundaryError(
            f"Need at least two boundaries, got {list(boundaries)}", module="scenes"
        )
    if boundaries[0] != 0:
        raise SceneBoundaryError(f"First boundary is {boundaries[0]}, not 0", module="scenes")
    if boundaries[-1] != total_frames:
        raise SceneBoundaryError(
            f"Last boundary is {boundaries[-1]}, expected {total_frames}", module="scenes"
        )
    for previous, current in zip(boundaries, boundaries[1:]):
        if current <= previous:
            raise SceneBoundaryError(
                f"Boundaries not strictly increasing at {previous} -> {current}", module="scenes"
            )


def scenes_from_boundaries(boundaries: Sequence[int], total_frames: int,
                           crop: Optional[CropRect] = None) -> List[Scene]:
    validate_boundaries(boundaries, total_frames)
    return [
        Scene(index=i, start=start, end=end, crop=crop)
        for i, (start, end) in enumerate(zip(boundaries, boundaries[1:]))
    ]


class SceneStatus(Enum):
    CACHED = "cached"
    RECOMPUTED = "recomputed"
    FAILED = "failed"


@dataclass
class SceneResult:
    scene: Scene
    status: SceneStatus
    hits: Dict[str, bool] = field(default_factory=dict)
    extract_fp: Optional[str] = None
    encode_fp: Optional[str] = None
    measure_fp: Optional[str] = None
    encoded_path: Optional[Path] = None
    encoded_size: Optional[int] = None
    quality: Optional[float] = None
    candidates: int = 0
    measurement: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not SceneStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.scene.index,
            "start": self.scene.start,
            "end": self.scene.end,
            "status": self.status.value,
            "hits": dict(self.hits),
            "encoded": str(self.encoded_path) if self.encoded_path else None,
            "size": self.encoded_size,
            "quality": self.quality,
            "candidates": self.candidates,
            "measurement": self.measurement,
            "error": self.error,
        }


@dataclass
class RunSummary:
    """Outcome of one pipeline run, consumed by the report writer."""
    source: SourceVideo
    scenes: List[Scene]
    results: List[SceneResult]
    stage_hits: Dict[str, int]
    stage_misses: Dict[str, int]
    output_path: Optional[Path] = None
    aggregate: Optional[Dict[str, Any]] = None
    elapsed: float = 0.0

    @property
    def failed(self) -> List[SceneResult]:
        return [r for r in self.results if not r.ok]


def normalize_boundaries(boundaries: Sequence[int], total_frames: int) -> List[int]:
    """Add the implicit 0 and end boundaries a detector may leave out

    Scene detectors report scene starts; the partition also needs the
    end of the source. Nothing is sorted or deduplicated, so a detector
    returning garbage still fails validation.
    """
    result = [int(b) for b in boundaries]
    if not result or result[0] != 0:
        result.insert(0, 0)
    if result[-1] < total_frames:
        result.append(total_frames)
    return result


def split_long_scenes(boundaries: Sequence[int], max_length: int) -> List[int]:
    """Insert artificial boundaries so no scene exceeds ``max_length`` frames"""
    if max_length <= 0 or not boundaries:
        return list(boundaries)
    result = [boundaries[0]]
    for end in boundaries[1:]:
        start = result[-1]
        gap = end - start
        if gap > max_length:
            # Split evenly rather than leaving a short tail
            pieces = -(-gap // max_length)
            for i in range(1, pieces):
                result.append(start + (gap * i) // pieces)
        result.append(end)
    return result


@dataclass(frozen=True)
class StageOutcome:
    """What one stage invocation produced and whether it came from cache"""
    stage: str
    fingerprint: str
    hit: bool
    value: Any = None
    path: Optional[Path] = None


@dataclass
class PipelineRun:
    """Per-run scene bookkeeping; never persisted"""
    pending: Set[int] = field(default_factory=set)
    in_flight: Set[int] = field(default_factory=set)
    complete: Set[int] = field(default_factory=set)
    failed: Set[int] = field(default_factory=set)

    def start(self, index: int) -> None:
        self.pending.discard(index)
        self.in_flight.add(index)

    def finish(self, index: int, ok: bool) -> None:
        self.in_flight.discard(index)
        (self.complete if ok else self.failed).add(index)
