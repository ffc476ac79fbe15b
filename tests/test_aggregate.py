"""Unit tests for whole-video aggregation"""

import unittest

from scenecoder.aggregate import aggregate, histogram, weighted_mean
from scenecoder.models import SceneResult, SceneStatus, scenes_from_boundaries


def measured(scene, score, size=1000, status=SceneStatus.RECOMPUTED):
    stats = {"mean": score, "min": score, "max": score, "harmonic_mean": score, "percentile": score}
    return SceneResult(
        scene=scene,
        status=status,
        encoded_size=size,
        measurement={"metric": "vmaf", "score": score, "scores": {"vmaf": stats}},
    )


class TestAggregate(unittest.TestCase):
    def test_frame_weighted_mean(self):
        first, second = scenes_from_boundaries([0, 40, 100], 100)
        summary = aggregate([measured(first, 80.0), measured(second, 90.0)], frame_rate=25.0)
        self.assertAlmostEqual(summary["score"], 80.0 * 0.4 + 90.0 * 0.6)
        self.assertEqual(summary["frames"], 100)
        self.assertEqual(summary["bytes"], 2000)
        # 2000 bytes over 4 seconds
        self.assertAlmostEqual(summary["bitrate"], 4000.0)
        vmaf = summary["metrics"]["vmaf"]
        self.assertAlmostEqual(vmaf["mean"], 85.0)
        self.assertEqual((vmaf["min"], vmaf["max"]), (80.0, 90.0))
        self.assertAlmostEqual(vmaf["percentiles"]["50"], 85.0)

    def test_failed_scenes_are_excluded(self):
        first, second = scenes_from_boundaries([0, 40, 100], 100)
        failed = SceneResult(scene=second, status=SceneStatus.FAILED, error="boom")
        summary = aggregate([measured(first, 80.0), failed])
        self.assertEqual(summary["scenes"], 1)
        self.assertEqual(summary["score"], 80.0)
        self.assertEqual(summary["frames"], 40)
        self.assertIsNone(summary["bitrate"])

    def test_nothing_measured(self):
        summary = aggregate([])
        self.assertIsNone(summary["score"])
        self.assertEqual(summary["metrics"], {})

    def test_deterministic(self):
        scenes = scenes_from_boundaries([0, 10, 30, 60], 60)
        results = [measured(s, 70.0 + s.index) for s in scenes]
        self.assertEqual(aggregate(results, 24.0), aggregate(list(reversed(results)), 24.0))


class TestHelpers(unittest.TestCase):
    def test_weighted_mean(self):
        self.assertAlmostEqual(weighted_mean([1.0, 3.0], [1, 3]), 2.5)
        with self.assertRaises(ValueError):
            weighted_mean([1.0], [0])

    def test_histogram(self):
        bins = histogram([0.0, 1.0, 2.0, 10.0], bins=5)
        self.assertEqual(len(bins), 5)
        self.assertEqual(sum(b["count"] for b in bins), 4)
        self.assertEqual(bins[0]["count"], 2)
        self.assertEqual(bins[-1]["count"], 1)
        self.assertEqual(histogram([5.0, 5.0])[0]["count"], 2)


if __name__ == "__main__":
    unittest.main()
