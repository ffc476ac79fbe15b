"""Pipeline stages

Each stage computes its fingerprint from upstream fingerprints and its own
configuration, asks the cache store for a verified result and only calls
the media backend on a miss. File-producing stages write to a temporary
path and hand the finished file to ``CacheStore.commit_artifact``.
"""

import errno
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple, Type

from .cache import CacheStore, CachedResult, fingerprint
from .config import CropConfig, DetectionConfig, EncoderConfig, MetricConfig
from .exceptions import (
    EncodeError, ExtractError, MeasureError, MergeError, PipelineError,
    ProbeError, RunCancelledError, StageError
)
from .media import MediaBackend
from .models import (
    ProbeInfo, Scene, SceneResult, SourceVideo, StageOutcome,
    normalize_boundaries, scenes_from_boundaries, split_long_scenes,
    validate_boundaries
)
from .utils import remove_if_exists, temporary_path

logger = logging.getLogger(__name__)

PROBE = "probe"
DETECT = "detect"
EXTRACT = "extract"
ENCODE = "encode"
MEASURE = "measure"
MERGE = "merge"

CONTAINER = "mkv"


@contextmanager
def stage_errors(error_cls: Type[StageError], scene: Scene) -> Iterator[None]:
    """Convert anything a scene's sub-stage raises into ``error_cls``

    Fatal pipeline errors, cancellation and a full disk still propagate.
    """
    try:
        yield
    except (StageError, PipelineError, RunCancelledError):
        raise
    except OSError as e:
        if e.errno == errno.ENOSPC:
            raise
        raise error_cls(str(e), scene_index=scene.index) from e
    except Exception as e:
        raise error_cls(str(e), scene_index=scene.index) from e


def _artifact_name(scene: Scene, fp: str) -> str:
    return f"{scene.name}-{fp[:12]}.{CONTAINER}"


def probe_stage(store: CacheStore, backend: MediaBackend, source_path: Path,
                crop: CropConfig) -> Tuple[SourceVideo, str]:
    """Frame count and crop of the source

    Raises:
        ProbeError: If the source cannot be read or has no video stream
    """
    source_path = Path(source_path)
    if not source_path.is_file():
        raise ProbeError(f"Source {source_path} does not exist", module=PROBE)
    try:
        identity = store.source_identity(source_path)
    except OSError as e:
        raise ProbeError(f"Unable to read {source_path}: {e}", module=PROBE) from e

    fp = fingerprint(PROBE, [identity], crop.canonical())
    cached = store.lookup(fp, stage=PROBE)
    if cached is not None:
        info = ProbeInfo.from_dict(cached.value)
        logger.info("Using cached probe for %s (%d frames)", source_path.name, info.frame_count)
    else:
        try:
            info = backend.probe(source_path, crop)
        except ProbeError:
            raise
        except Exception as e:
            raise ProbeError(f"Unable to probe {source_path.name}: {e}", module=PROBE) from e
        if info.frame_count <= 0:
            raise ProbeError(f"No usable video stream in {source_path.name}", module=PROBE)
        store.store(fp, CachedResult(value=info.to_dict()), PROBE)

    return SourceVideo(path=source_path, identity=identity, info=info), fp


def detect_stage(store: CacheStore, backend: MediaBackend, source: SourceVideo,
                 probe_fp: str, detection: DetectionConfig) -> Tuple[List[Scene], str]:
    """Scene partition of the source

    Raises:
        SceneBoundaryError: If the detector's boundaries do not partition
            the source's frames
    """
    fp = fingerprint(DETECT, [probe_fp], detection.canonical())
    cached = store.lookup(fp, stage=DETECT)
    if cached is not None:
        boundaries = [int(b) for b in cached.value]
        logger.info("Using cached scene boundaries (%d scenes)", len(boundaries) - 1)
    else:
        raw = backend.detect_scenes(source.path, source.frame_count, detection)
        boundaries = normalize_boundaries(raw, source.frame_count)
        boundaries = split_long_scenes(boundaries, detection.max_scene_length)
        validate_boundaries(boundaries, source.frame_count)
        store.store(fp, CachedResult(value=boundaries), DETECT)
        logger.info("Detected %d scenes", len(boundaries) - 1)

    return scenes_from_boundaries(boundaries, source.frame_count, source.crop), fp


def extract_stage(store: CacheStore, backend: MediaBackend, source: SourceVideo,
                  probe_fp: str, scene: Scene, clip_dir: Path) -> StageOutcome:
    crop = scene.crop.to_dict() if scene.crop else None
    fp = fingerprint(EXTRACT, [probe_fp], {"start": scene.start, "end": scene.end, "crop": crop})
    cached = store.lookup(fp, stage=EXTRACT)
    if cached is not None:
        return StageOutcome(EXTRACT, fp, True, cached.value, store.artifact_path(cached))

    final = clip_dir / _artifact_name(scene, fp)
    temp = temporary_path(final)
    with stage_errors(ExtractError, scene):
        try:
            backend.extract(source, scene, temp)
            result = store.commit_artifact(fp, EXTRACT, temp, final, {"frames": scene.length})
        finally:
            remove_if_exists(temp)
    return StageOutcome(EXTRACT, fp, False, result.value, final)


def encode_stage(store: CacheStore, backend: MediaBackend, extracted: StageOutcome,
                 scene: Scene, encoder: EncoderConfig, keyframe_interval: int,
                 encode_dir: Path) -> StageOutcome:
    config = encoder.canonical()
    config["keyframe_interval"] = keyframe_interval
    fp = fingerprint(ENCODE, [extracted.fingerprint], config)
    cached = store.lookup(fp, stage=ENCODE)
    if cached is not None:
        return StageOutcome(ENCODE, fp, True, cached.value, store.artifact_path(cached))

    final = encode_dir / _artifact_name(scene, fp)
    temp = temporary_path(final)
    with stage_errors(EncodeError, scene):
        try:
            backend.encode(extracted.path, temp, encoder, keyframe_interval)
            size = temp.stat().st_size if temp.exists() else 0
            result = store.commit_artifact(fp, ENCODE, temp, final, {"size": size})
        finally:
            remove_if_exists(temp)
    return StageOutcome(ENCODE, fp, False, result.value, final)


def measure_stage(store: CacheStore, backend: MediaBackend, extracted: StageOutcome,
                  encoded: StageOutcome, scene: Scene, metric: MetricConfig) -> StageOutcome:
    fp = fingerprint(MEASURE, [encoded.fingerprint, extracted.fingerprint], metric.canonical())
    cached = store.lookup(fp, stage=MEASURE)
    if cached is not None:
        return StageOutcome(MEASURE, fp, True, cached.value)

    with stage_errors(MeasureError, scene):
        measurement = backend.measure(extracted.path, encoded.path, metric)
        store.store(fp, CachedResult(value=measurement), MEASURE)
    return StageOutcome(MEASURE, fp, False, measurement)


def merge_fingerprint(results: Sequence[SceneResult], name: str) -> str:
    ordered = sorted(results, key=lambda r: r.scene.index)
    return fingerprint(MERGE, [r.encode_fp for r in ordered], {"container": CONTAINER, "name": name})


def merge_stage(store: CacheStore, backend: MediaBackend, results: Sequence[SceneResult],
                output_dir: Path, label: str) -> Tuple[Path, str]:
    """Concatenate every scene's encoded artifact in scene index order

    Raises:
        MergeError: If any scene has no encoded artifact, or concatenation fails
    """
    ordered = sorted(results, key=lambda r: r.scene.index)
    missing = [r.scene.index for r in ordered if not r.ok or r.encoded_path is None]
    if missing:
        raise MergeError(
            f"Cannot merge: scene(s) {', '.join(map(str, missing))} have no encoded output",
            module=MERGE
        )
    for expected, result in enumerate(ordered):
        if result.scene.index != expected:
            raise MergeError(f"Scene {expected} is missing from the results", module=MERGE)

    fp = merge_fingerprint(ordered, label)
    cached = store.lookup(fp, stage=MERGE)
    if cached is not None:
        path = store.artifact_path(cached)
        logger.info("Using cached merged output %s", path)
        return path, fp

    final = output_dir / f"{label}.{CONTAINER}"
    temp = temporary_path(final)
    try:
        backend.merge([r.encoded_path for r in ordered], temp)
        store.commit_artifact(fp, MERGE, temp, final, {"scenes": len(ordered)})
    except (MergeError, RunCancelledError):
        raise
    except Exception as e:
        raise MergeError(f"Concatenation failed: {e}", module=MERGE) from e
    finally:
        remove_if_exists(temp)
    logger.info("Merged %d scenes into %s", len(ordered), final)
    return final, fp
