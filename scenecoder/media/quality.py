"""Quality metrics from libvmaf JSON logs and packet sizes

Responsibilities:
- Map metric names to libvmaf feature keys
- Turn packet sizes into per-frame bitrates
- Reduce per-frame scores to per-scene statistics
"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..config import Metric, MetricConfig

logger = logging.getLogger(__name__)

# Key of each metric in libvmaf's per-frame "metrics" object
FEATURE_KEYS = {
    Metric.VMAF: "vmaf",
    Metric.PSNR: "psnr_y",
    Metric.SSIM: "float_ssim",
}


def percentile(values: Sequence[float], fraction: float) -> float:
    """Linear-interpolated percentile, ``fraction`` in [0, 1]"""
    if not values:
        raise ValueError("percentile of empty sequence")
    ordered = sorted(values)
    position = (len(ordered) - 1) * fraction
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(ordered[lower])
    weight = position - lower
    return float(ordered[lower] * (1 - weight) + ordered[upper] * weight)


def harmonic_mean(values: Sequence[float]) -> float:
    """Harmonic mean as libvmaf pools it, offset by one to tolerate zeros"""
    return len(values) / sum(1.0 / (v + 1.0) for v in values) - 1.0


def summarize(values: Sequence[float], fraction: float) -> Dict[str, float]:
    return {
        "mean": sum(values) / len(values),
        "min": float(min(values)),
        "max": float(max(values)),
        "harmonic_mean": harmonic_mean(values),
        "percentile": percentile(values, fraction),
    }


def frame_scores(log_data: Dict[str, Any]) -> Dict[Metric, List[float]]:
    """Collect per-frame scores for every metric present in the log"""
    scores: Dict[Metric, List[float]] = {metric: [] for metric in FEATURE_KEYS}
    for frame in log_data.get("frames", []):
        metrics = frame.get("metrics", {})
        for metric, key in FEATURE_KEYS.items():
            if key in metrics:
                scores[metric].append(float(metrics[key]))
    return {metric: values for metric, values in scores.items() if values}


def parse_vmaf_log(log_data: Dict[str, Any], config: MetricConfig) -> Dict[str, Any]:
    """
    Reduce a libvmaf JSON log to the measurement stored for a scene.

    Returns:
        dict: ``metric`` (primary metric name), ``score`` (its mean),
        ``frames_scored`` and ``scores`` (statistics per metric)

    Raises:
        ValueError: If the log has no score for the primary metric
    """
    scores = frame_scores(log_data)
    if config.metric not in scores:
        raise ValueError(f"No {config.metric.value} scores in libvmaf log")
    stats = {
        metric.value: summarize(values, config.percentile)
        for metric, values in scores.items()
    }
    primary = stats[config.metric.value]
    return {
        "metric": config.metric.value,
        "score": primary["mean"],
        "frames_scored": len(scores[config.metric]),
        "scores": stats,
    }


def read_vmaf_log(log_file: Path, config: MetricConfig) -> Dict[str, Any]:
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)
    return parse_vmaf_log(data, config)


def frame_bitrates(packet_sizes: Sequence[int], frame_rate: float) -> List[float]:
    """Per-frame bitrate in kbps from video packet sizes in bytes"""
    return [size * 8 * frame_rate / 1000 for size in packet_sizes]


def bitrate_measurement(packet_sizes: Sequence[int], frame_rate: float,
                        config: MetricConfig) -> Dict[str, Any]:
    """Scene measurement for the bitrate metric, shaped like ``parse_vmaf_log``"""
    values = frame_bitrates(packet_sizes, frame_rate)
    if not values:
        raise ValueError("No video packets in encoded scene")
    stats = summarize(values, config.percentile)
    return {
        "metric": Metric.BITRATE.value,
        "score": stats["mean"],
        "frames_scored": len(values),
        "scores": {Metric.BITRATE.value: stats},
    }
