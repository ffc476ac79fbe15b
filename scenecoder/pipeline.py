"""Pipeline orchestration

Runs probe -> detect -> per-scene extract/encode/measure -> merge ->
aggregate -> report over one output directory. Whether a stage does real
work is decided entirely by the cache store, so rerunning an interrupted
or partially failed run only recomputes what is missing.
"""

import logging
import time
from typing import Optional

from .aggregate import aggregate
from .cache import CacheStore
from .config import PipelineConfig, keyframe_interval
from .events import EventEmitter, EventType
from .exceptions import SceneFailuresError
from .media import FfmpegBackend, MediaBackend
from .models import RunSummary
from .report import write_report
from .scheduler import SceneContext, SceneScheduler
from .stages import detect_stage, merge_stage, probe_stage
from .utils import verify_directory

logger = logging.getLogger(__name__)


def open_store(config: PipelineConfig) -> CacheStore:
    return CacheStore(
        config.cache_path, root=config.output_dir, force_stages=config.forced_stages
    )


def run_pipeline(config: PipelineConfig, backend: Optional[MediaBackend] = None,
                 store: Optional[CacheStore] = None,
                 emitter: Optional[EventEmitter] = None) -> RunSummary:
    """
    Encode ``config.source`` scene by scene into ``config.output_dir``.

    Args:
        config: Run configuration
        backend: Media backend; ffmpeg when omitted
        store: Cache store; opened from the output directory when omitted
        emitter: Receives progress events

    Returns:
        RunSummary: Per-scene results, cache statistics, merged output path
        and aggregate scores

    Raises:
        PipelineError: On unrecoverable errors (probe, scene boundaries,
            cache record, merge)
        SceneFailuresError: If any scene failed; raised after every scene
            was attempted and the report was written
    """
    config.validate()
    started = time.monotonic()
    for directory in (config.output_dir, config.source_dir,
                      config.encode_dir, config.merged_dir):
        verify_directory(directory)

    backend = backend or FfmpegBackend()
    store = store or open_store(config)
    emitter = emitter or EventEmitter()

    source, probe_fp = probe_stage(store, backend, config.source, config.crop)
    emitter.emit(EventType.PROBE_COMPLETE, source.info.to_dict(), source="pipeline")

    scenes, _ = detect_stage(store, backend, source, probe_fp, config.detection)
    emitter.emit(EventType.SCENES_DETECTED, {"count": len(scenes)}, source="pipeline")

    context = SceneContext(
        source=source,
        probe_fp=probe_fp,
        encoder=config.encoder,
        metric=config.metric,
        keyframe_interval=keyframe_interval(source.frame_rate),
        clip_dir=config.source_dir,
        encode_dir=config.encode_dir,
        search=config.search,
    )
    scheduler = SceneScheduler(store, backend, context, config.workers, emitter)
    results = scheduler.run(scenes)

    hits, misses = store.stats()
    summary = RunSummary(
        source=source,
        scenes=scenes,
        results=results,
        stage_hits=hits,
        stage_misses=misses,
    )

    failures = {r.scene.index: r.error for r in summary.failed}
    if not failures:
        summary.output_path, _ = merge_stage(
            store, backend, results, config.merged_dir, config.output_label
        )
        emitter.emit(
            EventType.MERGE_COMPLETE, {"path": str(summary.output_path)}, source="pipeline"
        )
        summary.stage_hits, summary.stage_misses = store.stats()
    else:
        logger.error("Skipping merge: %d scene(s) failed", len(failures))

    summary.aggregate = aggregate(results, source.frame_rate)
    summary.elapsed = time.monotonic() - started
    write_report(config.output_dir, summary)
    emitter.emit(EventType.RUN_COMPLETE, {"failed": sorted(failures)}, source="pipeline")

    if failures:
        raise SceneFailuresError(failures)
    logger.info(
        "Run complete: %d scenes, %s",
        len(results),
        ", ".join(f"{stage} {hits.get(stage, 0)} cached/{misses.get(stage, 0)} computed"
                  for stage in ("extract", "encode", "measure"))
    )
    return summary
