"""Whole-video statistics from per-scene measurements

Scores are measured per scene, not on the merged output, so values near
scene boundaries may differ slightly from a full-file measurement.
"""

import math
import statistics
from typing import Any, Dict, List, Optional, Sequence

from .media.quality import percentile
from .models import SceneResult

# Percentiles at -3..+3 sigma of a normal distribution
SIGMA_PERCENTILES = (0.00135, 0.02275, 0.15866, 0.5, 0.84134, 0.97725, 0.99865)


def weighted_mean(values: Sequence[float], weights: Sequence[float]) -> float:
    total = sum(weights)
    if total <= 0:
        raise ValueError("weights must sum to a positive value")
    return sum(v * w for v, w in zip(values, weights)) / total


def histogram(values: Sequence[float], bins: int = 10) -> List[Dict[str, float]]:
    """Equal-width bins between the smallest and largest value"""
    if not values:
        return []
    low, high = min(values), max(values)
    if math.isclose(low, high):
        return [{"low": low, "high": high, "count": len(values)}]
    width = (high - low) / bins
    counts = [0] * bins
    for value in values:
        counts[min(int((value - low) / width), bins - 1)] += 1
    return [
        {"low": low + i * width, "high": low + (i + 1) * width, "count": count}
        for i, count in enumerate(counts)
    ]


def metric_stats(values: Sequence[float], weights: Sequence[float]) -> Dict[str, Any]:
    return {
        "weighted_mean": weighted_mean(values, weights),
        "mean": statistics.fmean(values),
        "min": min(values),
        "max": max(values),
        "stdev": statistics.pstdev(values) if len(values) > 1 else 0.0,
        "percentiles": {
            f"{p * 100:g}": percentile(values, p) for p in SIGMA_PERCENTILES
        },
    }


def aggregate(results: Sequence[SceneResult], frame_rate: Optional[float] = None) -> Dict[str, Any]:
    """
    Reduce per-scene results to whole-video numbers.

    Each scene's score is weighted by its frame count. Failed scenes and
    scenes without a measurement are left out.

    Args:
        results: Per-scene results from the scheduler
        frame_rate: Source frame rate, used for the overall bitrate

    Returns:
        dict: ``scenes``, ``frames``, ``bytes``, ``bitrate`` (bits/s or None),
        ``score`` (weighted mean of the primary metric), ``metrics``
        (statistics per metric) and ``histogram`` of primary scores
    """
    measured = [r for r in results if r.ok and r.measurement]
    frames = sum(r.scene.length for r in results if r.ok)
    size = sum(r.encoded_size or 0 for r in results if r.ok)
    bitrate = None
    if frame_rate and frames:
        bitrate = size * 8 / (frames / frame_rate)

    summary: Dict[str, Any] = {
        "scenes": len(measured),
        "frames": frames,
        "bytes": size,
        "bitrate": bitrate,
        "metric": None,
        "score": None,
        "metrics": {},
        "histogram": [],
    }
    if not measured:
        return summary

    weights = [r.scene.length for r in measured]
    primary = measured[0].measurement["metric"]
    names = sorted(set.intersection(*(set(r.measurement["scores"]) for r in measured)))
    for name in names:
        values = [r.measurement["scores"][name]["mean"] for r in measured]
        summary["metrics"][name] = metric_stats(values, weights)

    scores = [r.measurement["score"] for r in measured]
    summary["metric"] = primary
    summary["score"] = weighted_mean(scores, weights)
    summary["histogram"] = histogram(scores)
    return summary
