"""Unit tests for report artifacts"""

import json
import tempfile
import unittest
from pathlib import Path

from scenecoder.aggregate import aggregate
from scenecoder.models import (
    ProbeInfo, RunSummary, SceneResult, SceneStatus, SourceVideo, scenes_from_boundaries
)
from scenecoder.report import render_text, write_report


def make_summary(output_path=None):
    info = ProbeInfo(100, 25.0, 4.0, 1920, 1080)
    source = SourceVideo(Path("movie.mkv"), "ab" * 32, info)
    scenes = scenes_from_boundaries([0, 40, 70, 100], 100)
    stats = {"mean": 92.5, "min": 90.0, "max": 95.0, "harmonic_mean": 92.4, "percentile": 90.5}
    measurement = {"metric": "vmaf", "score": 92.5, "scores": {"vmaf": stats}}
    results = [
        SceneResult(scenes[0], SceneStatus.CACHED, encoded_size=2048, measurement=measurement),
        SceneResult(scenes[1], SceneStatus.RECOMPUTED, encoded_size=1024, measurement=measurement),
        SceneResult(scenes[2], SceneStatus.FAILED, error="encode failed: exit code 1"),
    ]
    summary = RunSummary(
        source=source,
        scenes=scenes,
        results=results,
        stage_hits={"encode": 1},
        stage_misses={"encode": 2},
        output_path=output_path,
        elapsed=12.0,
    )
    summary.aggregate = aggregate(results, info.frame_rate)
    return summary


class TestReport(unittest.TestCase):
    def test_json_report_lists_every_scene(self):
        with tempfile.TemporaryDirectory() as tmp:
            json_path, text_path = write_report(Path(tmp), make_summary())
            report = json.loads(json_path.read_text())
            self.assertTrue(text_path.exists())
        self.assertEqual(
            [s["status"] for s in report["scenes"]], ["cached", "recomputed", "failed"]
        )
        self.assertEqual(report["failed"], [2])
        self.assertEqual(report["cache"]["misses"], {"encode": 2})
        self.assertAlmostEqual(report["aggregate"]["score"], 92.5)
        self.assertEqual(report["source"]["frame_count"], 100)

    def test_text_report(self):
        text = render_text(make_summary(Path("out/movie.mkv")))
        self.assertIn("Scenes", text)
        self.assertIn("recomputed", text)
        self.assertIn("exit code 1", text)
        self.assertIn("Failed scenes: 2", text)
        self.assertIn("vmaf score distribution", text)


if __name__ == "__main__":
    unittest.main()
