"""Unit tests for the scene scheduler"""

import tempfile
import unittest
from pathlib import Path

from scenecoder.cache import CacheStore
from scenecoder.config import EncoderConfig, MetricConfig, PipelineConfig
from scenecoder.events import EventEmitter, EventType
from scenecoder.models import SceneStatus, scenes_from_boundaries
from scenecoder.scheduler import SceneContext, SceneScheduler
from scenecoder.stages import probe_stage
from scenecoder.utils import verify_directory

from .fakes import FakeBackend


class SchedulerTestCase(unittest.TestCase):
    boundaries = [0, 10, 30, 45, 80, 100]

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.source_file = root / "source.mkv"
        self.source_file.write_bytes(b"source video bytes")
        self.config = PipelineConfig(source=self.source_file, output_dir=root / "out")
        for directory in (self.config.source_dir, self.config.encode_dir):
            verify_directory(directory)
        self.store = CacheStore(self.config.cache_path)

    def tearDown(self):
        self._tmp.cleanup()

    def make_scheduler(self, backend, workers=3, emitter=None):
        source, probe_fp = probe_stage(self.store, backend, self.source_file, self.config.crop)
        context = SceneContext(
            source=source,
            probe_fp=probe_fp,
            encoder=EncoderConfig(),
            metric=MetricConfig(),
            keyframe_interval=125,
            clip_dir=self.config.source_dir,
            encode_dir=self.config.encode_dir,
        )
        scenes = scenes_from_boundaries(self.boundaries, 100)
        return SceneScheduler(self.store, backend, context, workers, emitter), scenes


class TestSceneScheduler(SchedulerTestCase):
    def test_results_ordered_by_index(self):
        backend = FakeBackend()
        scheduler, scenes = self.make_scheduler(backend)
        results = scheduler.run(scenes)
        self.assertEqual([r.scene.index for r in results], list(range(5)))
        self.assertTrue(all(r.status is SceneStatus.RECOMPUTED for r in results))
        self.assertEqual(scheduler.run_state.complete, set(range(5)))
        self.assertTrue(all(r.encoded_path.exists() for r in results))

    def test_sub_stages_run_in_order(self):
        backend = FakeBackend()
        scheduler, scenes = self.make_scheduler(backend)
        scheduler.run(scenes)
        for index in range(5):
            self.assertEqual(backend.order[index], ["extract", "encode", "measure"])

    def test_second_run_is_fully_cached(self):
        scheduler, scenes = self.make_scheduler(FakeBackend())
        scheduler.run(scenes)
        backend = FakeBackend()
        scheduler, scenes = self.make_scheduler(backend)
        results = scheduler.run(scenes)
        self.assertTrue(all(r.status is SceneStatus.CACHED for r in results))
        self.assertEqual(sum(backend.calls.values()), 0)

    def test_failed_scene_does_not_stop_siblings(self):
        backend = FakeBackend(fail_encode={2})
        scheduler, scenes = self.make_scheduler(backend)
        results = scheduler.run(scenes)
        failed = [r for r in results if not r.ok]
        self.assertEqual([r.scene.index for r in failed], [2])
        self.assertIn("invalid parameter", failed[0].error)
        self.assertIsNone(failed[0].encoded_path)
        self.assertEqual(backend.calls["measure"], 4)
        self.assertEqual(scheduler.run_state.failed, {2})

    def test_failed_encode_leaves_no_temp_file(self):
        backend = FakeBackend(fail_encode={0})
        scheduler, scenes = self.make_scheduler(backend)
        scheduler.run(scenes)
        leftovers = list(self.config.encode_dir.glob("*.tmp.*"))
        self.assertEqual(leftovers, [])

    def test_interrupt_terminates_backend(self):
        backend = FakeBackend(interrupt_encode=0)
        scheduler, scenes = self.make_scheduler(backend, workers=1)
        with self.assertRaises(KeyboardInterrupt):
            scheduler.run(scenes)
        self.assertTrue(backend.terminated)

    def test_longest_scenes_dispatched_first(self):
        backend = FakeBackend()
        started = []
        emitter = EventEmitter()
        emitter.on(EventType.SCENE_STARTED, lambda event: started.append(event.data["index"]))
        scheduler, scenes = self.make_scheduler(backend, workers=1, emitter=emitter)
        scheduler.run(scenes)
        # lengths: 10, 20, 15, 35, 20
        self.assertEqual(started, [3, 1, 4, 2, 0])

    def test_invalid_worker_count(self):
        with self.assertRaises(ValueError):
            self.make_scheduler(FakeBackend(), workers=0)


if __name__ == "__main__":
    unittest.main()
