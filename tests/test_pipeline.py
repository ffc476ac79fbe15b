"""End-to-end pipeline tests against the fake media backend"""

import json
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from scenecoder.config import (
    CropConfig,
    DetectionConfig,
    EncoderConfig,
    MetricConfig,
    PipelineConfig,
    QualityRule,
    SearchConfig,
)
from scenecoder.events import EventEmitter, EventType
from scenecoder.exceptions import ProbeError, SceneBoundaryError, SceneFailuresError
from scenecoder.models import CropRect, SceneStatus
from scenecoder.pipeline import run_pipeline

from .fakes import FakeBackend


class PipelineTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.source = self.root / "movie.mkv"
        self.source.write_bytes(b"pretend this is a video")

    def tearDown(self):
        self._tmp.cleanup()

    def config(self, output="out", **kwargs):
        kwargs.setdefault("workers", 2)
        return PipelineConfig(source=self.source, output_dir=self.root / output, **kwargs)


class TestScenario(PipelineTestCase):
    def test_two_scenes_weighted_score(self):
        backend = FakeBackend(frame_count=100, boundaries=[0, 40, 100], scores={0: 80.0, 1: 95.0})
        summary = run_pipeline(self.config(), backend=backend)

        self.assertEqual([(s.start, s.end) for s in summary.scenes], [(0, 40), (40, 100)])
        self.assertAlmostEqual(summary.aggregate["score"], 80.0 * 40 / 100 + 95.0 * 60 / 100)
        self.assertTrue(summary.output_path.exists())
        self.assertEqual(backend.calls["encode"], 2)
        self.assertEqual(backend.calls["merge"], 1)

    def test_merged_output_in_scene_order(self):
        backend = FakeBackend(boundaries=[0, 10, 80, 100])
        summary = run_pipeline(self.config(), backend=backend)
        expected = b"".join(r.encoded_path.read_bytes() for r in summary.results)
        self.assertEqual(summary.output_path.read_bytes(), expected)

    def test_detector_starts_are_normalized(self):
        # PySceneDetect reports scene starts only
        backend = FakeBackend(boundaries=[0, 40])
        summary = run_pipeline(self.config(), backend=backend)
        self.assertEqual(summary.scenes[-1].end, 100)

    def test_crop_is_inherited_by_scenes(self):
        crop = CropRect(1920, 800, 0, 140)
        summary = run_pipeline(self.config(), backend=FakeBackend(crop=crop))
        self.assertTrue(all(scene.crop == crop for scene in summary.scenes))

    def test_disabled_crop_applies_none(self):
        config = self.config(crop=CropConfig(enabled=False))
        summary = run_pipeline(config, backend=FakeBackend(crop=CropRect(1920, 800, 0, 140)))
        self.assertTrue(all(scene.crop is None for scene in summary.scenes))

    def test_long_scenes_are_split(self):
        config = self.config(detection=DetectionConfig(max_scene_length=30))
        summary = run_pipeline(config, backend=FakeBackend(boundaries=[0, 40, 100]))
        self.assertEqual(
            [(s.start, s.end) for s in summary.scenes],
            [(0, 20), (20, 40), (40, 70), (70, 100)],
        )

    def test_report_written(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())
        report = json.loads((config.output_dir / "report.json").read_text())
        self.assertEqual([s["status"] for s in report["scenes"]], ["recomputed", "recomputed"])
        self.assertEqual(report["failed"], [])
        self.assertIn("Scenes", (config.output_dir / "report.txt").read_text())

    def test_events_emitted(self):
        emitter = EventEmitter()
        seen = []
        for event_type in EventType:
            emitter.on(event_type, lambda event: seen.append(event.type))
        run_pipeline(self.config(), backend=FakeBackend(), emitter=emitter)
        self.assertEqual(seen[0], EventType.PROBE_COMPLETE)
        self.assertEqual(seen[-1], EventType.RUN_COMPLETE)
        self.assertEqual(seen.count(EventType.SCENE_COMPLETE), 2)
        self.assertIn(EventType.MERGE_COMPLETE, seen)


class TestIdempotence(PipelineTestCase):
    def test_second_run_recomputes_nothing(self):
        config = self.config()
        first = run_pipeline(config, backend=FakeBackend())
        merged = first.output_path.read_bytes()
        artifacts = {r.scene.index: r.encoded_path.read_bytes() for r in first.results}

        backend = FakeBackend()
        second = run_pipeline(config, backend=backend)
        self.assertEqual(sum(backend.calls.values()), 0)
        self.assertEqual(second.stage_misses, {})
        self.assertEqual(second.stage_hits["encode"], 2)
        self.assertEqual(second.stage_hits["merge"], 1)
        self.assertTrue(all(r.status is SceneStatus.CACHED for r in second.results))
        self.assertEqual(second.output_path.read_bytes(), merged)
        for result in second.results:
            self.assertEqual(result.encoded_path.read_bytes(), artifacts[result.scene.index])


class TestFingerprintSensitivity(PipelineTestCase):
    def test_encoder_change_invalidates_encode_and_downstream_only(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())

        changed = replace(config, encoder=EncoderConfig(quality=30))
        backend = FakeBackend()
        summary = run_pipeline(changed, backend=backend)
        self.assertEqual(backend.calls["probe"], 0)
        self.assertEqual(backend.calls["detect"], 0)
        self.assertEqual(backend.calls["extract"], 0)
        self.assertEqual(backend.calls["encode"], 2)
        self.assertEqual(backend.calls["measure"], 2)
        self.assertEqual(backend.calls["merge"], 1)
        self.assertEqual(summary.stage_hits["extract"], 2)

    def test_metric_change_only_remeasures(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())

        changed = replace(config, metric=MetricConfig(percentile=0.5))
        backend = FakeBackend()
        run_pipeline(changed, backend=backend)
        self.assertEqual(backend.calls["encode"], 0)
        self.assertEqual(backend.calls["measure"], 2)
        self.assertEqual(backend.calls["merge"], 0)

    def test_detection_change_reruns_from_detect(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())

        changed = replace(config, detection=DetectionConfig(max_scene_length=30))
        backend = FakeBackend()
        summary = run_pipeline(changed, backend=backend)
        self.assertEqual(backend.calls["probe"], 0)
        self.assertEqual(backend.calls["detect"], 1)
        self.assertEqual(len(summary.scenes), 4)
        self.assertEqual(backend.calls["extract"], 4)
        self.assertEqual(backend.calls["encode"], 4)
        self.assertEqual(backend.calls["measure"], 4)
        self.assertEqual(backend.calls["merge"], 1)

    def test_detection_change_with_same_partition_reuses_scenes(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())

        changed = replace(config, detection=DetectionConfig(threshold=40.0))
        backend = FakeBackend()
        run_pipeline(changed, backend=backend)
        self.assertEqual(backend.calls["detect"], 1)
        self.assertEqual(backend.calls["extract"], 0)
        self.assertEqual(backend.calls["encode"], 0)

    def test_crop_change_reruns_every_stage(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())

        changed = replace(config, crop=CropConfig(limit=10))
        backend = FakeBackend()
        run_pipeline(changed, backend=backend)
        self.assertEqual(backend.calls["probe"], 1)
        self.assertEqual(backend.calls["detect"], 1)
        self.assertEqual(backend.calls["extract"], 2)
        self.assertEqual(backend.calls["encode"], 2)
        self.assertEqual(backend.calls["measure"], 2)
        self.assertEqual(backend.calls["merge"], 1)

    def test_old_entries_survive_a_config_change(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())
        run_pipeline(replace(config, encoder=EncoderConfig(quality=30)), backend=FakeBackend())

        backend = FakeBackend()
        run_pipeline(config, backend=backend)
        self.assertEqual(sum(backend.calls.values()), 0)

    def test_source_change_invalidates_everything(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())
        self.source.write_bytes(b"a different video")
        backend = FakeBackend()
        run_pipeline(config, backend=backend)
        self.assertEqual(backend.calls["probe"], 1)
        self.assertEqual(backend.calls["encode"], 2)

    def test_forced_stage_recomputes_downstream(self):
        config = self.config()
        run_pipeline(config, backend=FakeBackend())
        backend = FakeBackend()
        run_pipeline(replace(config, force_stages=frozenset({"encode"})), backend=backend)
        self.assertEqual(backend.calls["extract"], 0)
        self.assertEqual(backend.calls["encode"], 2)
        self.assertEqual(backend.calls["measure"], 2)
        self.assertEqual(backend.calls["merge"], 1)


def scene_difficulty(index, quality):
    # Scene 1 scores two points lower than scene 0 at every CRF
    return 100.0 - quality - 2 * index


class TestQualitySearch(PipelineTestCase):
    def search_config(self, **kwargs):
        return self.config(search=SearchConfig(QualityRule.MINIMUM, 93.0), **kwargs)

    def test_each_scene_gets_its_own_quality(self):
        config = self.search_config()
        summary = run_pipeline(config, backend=FakeBackend(quality_score=scene_difficulty))
        self.assertEqual([r.quality for r in summary.results], [7.0, 5.0])
        self.assertEqual([r.measurement["score"] for r in summary.results], [93.0, 93.0])
        self.assertEqual(summary.output_path.name, "movie-x264-crf-vmaf-minimum93.mkv")
        merged = summary.output_path.read_text()
        self.assertIn(" q7 ", merged)
        self.assertIn(" q5 ", merged)

        report = json.loads((config.output_dir / "report.json").read_text())
        self.assertEqual([s["quality"] for s in report["scenes"]], [7.0, 5.0])
        self.assertTrue(all(s["candidates"] > 1 for s in report["scenes"]))

    def test_rerun_replays_every_candidate_from_cache(self):
        config = self.search_config()
        run_pipeline(config, backend=FakeBackend(quality_score=scene_difficulty))

        backend = FakeBackend(quality_score=scene_difficulty)
        summary = run_pipeline(config, backend=backend)
        self.assertEqual(sum(backend.calls.values()), 0)
        self.assertEqual([r.quality for r in summary.results], [7.0, 5.0])
        self.assertTrue(all(r.status is SceneStatus.CACHED for r in summary.results))

    def test_nominal_quality_does_not_change_search(self):
        config = self.search_config()
        run_pipeline(config, backend=FakeBackend(quality_score=scene_difficulty))

        backend = FakeBackend(quality_score=scene_difficulty)
        run_pipeline(replace(config, encoder=EncoderConfig(quality=40)), backend=backend)
        self.assertEqual(backend.calls["encode"], 0)

    def test_interrupted_search_resumes_from_finished_candidates(self):
        config = self.search_config(workers=1)
        scored = []

        def interrupt_on_fourth(index, quality):
            scored.append((index, quality))
            if len(scored) == 4:
                raise KeyboardInterrupt
            return scene_difficulty(index, quality)

        # The longer scene 1 runs first: CRF 25, 12 and 5 are scored, CRF 8 is
        # encoded and then interrupted while being measured
        with self.assertRaises(KeyboardInterrupt):
            run_pipeline(config, backend=FakeBackend(quality_score=interrupt_on_fourth))
        self.assertEqual(scored[-1], (1, 8.0))

        backend = FakeBackend(quality_score=scene_difficulty)
        summary = run_pipeline(config, backend=backend)
        self.assertEqual(backend.encoded_qualities[1], [6.0])
        self.assertEqual(backend.order[1].count("measure"), 2)
        self.assertEqual(summary.results[1].quality, 5.0)
        self.assertIs(summary.results[1].status, SceneStatus.RECOMPUTED)


class TestResume(PipelineTestCase):
    boundaries = [0, 20, 40, 60, 80, 100]

    def test_interrupted_run_resumes(self):
        config = self.config(workers=1)
        # Equal-length scenes run in index order with one worker
        with self.assertRaises(KeyboardInterrupt):
            run_pipeline(config, backend=FakeBackend(boundaries=self.boundaries, interrupt_encode=3))

        backend = FakeBackend(boundaries=self.boundaries)
        summary = run_pipeline(config, backend=backend)
        self.assertEqual(backend.calls["encode"], 2)
        self.assertEqual(sorted(backend.order), [3, 4])
        self.assertEqual(summary.stage_hits["encode"], 3)
        self.assertEqual(
            [r.status for r in summary.results],
            [SceneStatus.CACHED] * 3 + [SceneStatus.RECOMPUTED] * 2,
        )

        uninterrupted = run_pipeline(
            self.config(output="clean"), backend=FakeBackend(boundaries=self.boundaries)
        )
        self.assertEqual(summary.output_path.read_bytes(), uninterrupted.output_path.read_bytes())

    def test_deleted_artifact_is_recomputed(self):
        config = self.config()
        first = run_pipeline(config, backend=FakeBackend())
        first.results[1].encoded_path.unlink()

        backend = FakeBackend()
        with self.assertLogs("scenecoder.cache.store", level="WARNING"):
            summary = run_pipeline(config, backend=backend)
        self.assertEqual(backend.order, {1: ["encode"]})
        self.assertTrue(summary.results[1].encoded_path.exists())
        self.assertEqual(summary.results[0].status, SceneStatus.CACHED)
        self.assertEqual(summary.results[1].status, SceneStatus.RECOMPUTED)


class TestFailures(PipelineTestCase):
    def test_partial_failure_reports_every_scene(self):
        config = self.config()
        backend = FakeBackend(boundaries=[0, 20, 40, 60, 100], fail_encode={2})
        with self.assertRaises(SceneFailuresError) as ctx:
            run_pipeline(config, backend=backend)

        self.assertEqual(list(ctx.exception.failures), [2])
        self.assertEqual(backend.calls["merge"], 0)
        self.assertEqual(backend.calls["measure"], 3)
        report = json.loads((config.output_dir / "report.json").read_text())
        self.assertEqual(report["failed"], [2])
        self.assertIsNone(report["output"])
        statuses = [s["status"] for s in report["scenes"]]
        self.assertEqual(statuses, ["recomputed", "recomputed", "failed", "recomputed"])

        # Fixing the problem only reruns the failed scene
        retry = FakeBackend(boundaries=[0, 20, 40, 60, 100])
        summary = run_pipeline(config, backend=retry)
        self.assertEqual(dict(retry.order), {2: ["encode", "measure"]})
        self.assertTrue(summary.output_path.exists())

    def test_missing_source_is_fatal(self):
        self.source.unlink()
        with self.assertRaises(ProbeError):
            run_pipeline(self.config(), backend=FakeBackend())

    def test_empty_stream_is_fatal(self):
        with self.assertRaises(ProbeError):
            run_pipeline(self.config(), backend=FakeBackend(frame_count=0, boundaries=[0]))

    def test_bad_boundaries_are_fatal(self):
        backend = FakeBackend(boundaries=[0, 60, 40])
        with self.assertRaises(SceneBoundaryError):
            run_pipeline(self.config(), backend=backend)
        self.assertEqual(backend.calls["extract"], 0)


if __name__ == "__main__":
    unittest.main()
