"""Scene scheduler for parallel extract/encode/measure

Responsibilities:
- Run one task per scene on a fixed-size thread pool
- Keep each scene's sub-stages in extract -> encode -> measure order
- Search per-scene quality when a search rule is configured
- Record per-scene failures without stopping sibling scenes
- Terminate child processes and stop dispatching on interrupt
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .cache import CacheStore
from .config import EncoderConfig, MetricConfig, SearchConfig, quality_range
from .events import EventEmitter, EventType
from .exceptions import MeasureError, RunCancelledError, StageError
from .media import MediaBackend
from .models import PipelineRun, Scene, SceneResult, SceneStatus, SourceVideo, StageOutcome
from .search import search_quality, search_score
from .stages import (
    ENCODE, EXTRACT, MEASURE, encode_stage, extract_stage, measure_stage, stage_errors
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SceneContext:
    """Run-wide inputs every scene task needs"""
    source: SourceVideo
    probe_fp: str
    encoder: EncoderConfig
    metric: MetricConfig
    keyframe_interval: int
    clip_dir: Path
    encode_dir: Path
    search: SearchConfig = SearchConfig()


class SceneScheduler:
    """Bounded-parallel executor of per-scene tasks

    Each worker runs a scene's sub-stages back to back and holds at most one
    child process at a time, so ``workers`` caps the number of concurrent
    external processes.
    """

    def __init__(self, store: CacheStore, backend: MediaBackend, context: SceneContext,
                 workers: int, emitter: Optional[EventEmitter] = None):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.store = store
        self.backend = backend
        self.context = context
        self.workers = workers
        self.emitter = emitter or EventEmitter()
        self.run_state = PipelineRun()
        self._state_lock = threading.Lock()
        self._cancelled = threading.Event()

    def _emit(self, event_type: EventType, data: Dict) -> None:
        self.emitter.emit(event_type, data, source="scheduler")

    def process_scene(self, scene: Scene) -> SceneResult:
        """Extract, encode and measure one scene

        With a quality search configured, the scene is encoded and measured
        once per candidate quality and the best candidate is kept.

        Stage failures are returned as a failed result. Cancellation and
        fatal errors propagate.
        """
        with self._state_lock:
            self.run_state.start(scene.index)
        self._emit(EventType.SCENE_STARTED, {"index": scene.index, "frames": scene.length})
        ctx = self.context
        result = SceneResult(scene=scene, status=SceneStatus.FAILED)
        try:
            self._check_cancelled()
            extracted = extract_stage(
                self.store, self.backend, ctx.source, ctx.probe_fp, scene, ctx.clip_dir
            )
            result.extract_fp = extracted.fingerprint
            result.hits[EXTRACT] = extracted.hit

            if ctx.search.enabled:
                encoded, measured = self._search(scene, extracted, result)
            else:
                encoded, measured = self._encode_and_measure(
                    scene, extracted, ctx.encoder, result
                )
                result.quality = float(ctx.encoder.quality)
            result.encode_fp = encoded.fingerprint
            result.encoded_path = encoded.path
            result.encoded_size = (encoded.value or {}).get("size")
            result.measure_fp = measured.fingerprint
            result.measurement = measured.value

            cached = all(result.hits.values())
            result.status = SceneStatus.CACHED if cached else SceneStatus.RECOMPUTED
        except StageError as e:
            result.error = e.message
            logger.error("Scene %d failed: %s", scene.index, e.message)

        with self._state_lock:
            self.run_state.finish(scene.index, result.ok)
        if result.ok:
            self._emit(EventType.SCENE_COMPLETE, result.to_dict())
        else:
            self._emit(EventType.SCENE_FAILED, result.to_dict())
        return result

    def _encode_and_measure(self, scene: Scene, extracted: StageOutcome,
                            encoder: EncoderConfig,
                            result: SceneResult) -> Tuple[StageOutcome, StageOutcome]:
        ctx = self.context
        self._check_cancelled()
        encoded = encode_stage(
            self.store, self.backend, extracted, scene, encoder,
            ctx.keyframe_interval, ctx.encode_dir
        )
        result.hits[ENCODE] = result.hits.get(ENCODE, True) and encoded.hit

        self._check_cancelled()
        measured = measure_stage(
            self.store, self.backend, extracted, encoded, scene, ctx.metric
        )
        result.hits[MEASURE] = result.hits.get(MEASURE, True) and measured.hit
        return encoded, measured

    def _search(self, scene: Scene, extracted: StageOutcome,
                result: SceneResult) -> Tuple[StageOutcome, StageOutcome]:
        ctx = self.context
        outcomes: Dict[int, Tuple[StageOutcome, StageOutcome]] = {}

        def evaluate(quality: int) -> float:
            outcomes[quality] = self._encode_and_measure(
                scene, extracted, ctx.encoder.with_quality(quality), result
            )
            with stage_errors(MeasureError, scene):
                return search_score(outcomes[quality][1].value)

        found = search_quality(
            evaluate,
            quality_range(ctx.encoder.encoder, ctx.encoder.mode),
            ctx.search.rule,
            ctx.search.target,
            ctx.encoder.mode,
        )
        if found.quality not in outcomes:
            # No candidate satisfied the rule; encode at the fallback end of the range
            outcomes[found.quality] = self._encode_and_measure(
                scene, extracted, ctx.encoder.with_quality(found.quality), result
            )
        result.quality = float(found.quality)
        result.candidates = len(found.tried)
        logger.info(
            "Scene %d: %s %d after %d candidate(s)",
            scene.index, ctx.encoder.mode.value, found.quality, len(found.tried)
        )
        return outcomes[found.quality]

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise RunCancelledError("Run cancelled", module="scheduler")

    def cancel(self) -> None:
        """Stop starting new sub-stages and kill running child processes"""
        self._cancelled.set()
        self.backend.terminate()

    def run(self, scenes: Sequence[Scene]) -> List[SceneResult]:
        """Process every scene and return results ordered by scene index

        Longer scenes are dispatched first so the slowest work does not end
        up alone at the tail of the run. At most ``workers`` scenes are
        submitted at a time, so nothing is left queued when a run stops.
        """
        self.run_state = PipelineRun(pending={scene.index for scene in scenes})
        queue = iter(sorted(scenes, key=lambda s: (-s.length, s.index)))
        results: Dict[int, SceneResult] = {}
        in_flight: Dict[Future, Scene] = {}
        logger.info("Processing %d scenes with %d workers", len(scenes), self.workers)

        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="scene")

        def submit_next() -> None:
            scene = next(queue, None)
            if scene is not None:
                in_flight[executor.submit(self.process_scene, scene)] = scene

        try:
            for _ in range(self.workers):
                submit_next()
            while in_flight:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    del in_flight[future]
                    result = future.result()
                    results[result.scene.index] = result
                    logger.info(
                        "Scene %d %s (%d/%d)", result.scene.index, result.status.value,
                        len(results), len(scenes)
                    )
                    submit_next()
        except BaseException:
            logger.warning("Stopping scene processing")
            self.cancel()
            for future in in_flight:
                future.cancel()
            raise
        finally:
            executor.shutdown(wait=True)

        return [results[index] for index in sorted(results)]
