"""Configuration settings for the scenecoder pipeline

This module centralizes all configuration settings including:
- Default encoder, metric and scene detection parameters
- Logging defaults
- The closed set of supported encoders and quality metrics

User-configurable defaults are read from environment variables. Each
stage configuration knows how to serialize itself canonically so that
fingerprints cover every setting that can change a stage's output.
"""

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import psutil

from .exceptions import ConfigurationError

# Worker count; defaults to the available CPU parallelism
WORKERS = int(os.environ.get("SCENECODER_WORKERS", "0")) or psutil.cpu_count() or 1

# Logging configuration
LOG_LEVEL = os.environ.get("SCENECODER_LOG_LEVEL", "INFO")

# Encoding settings
PRESET = os.environ.get("SCENECODER_PRESET", "medium")
QUALITY = float(os.environ.get("SCENECODER_QUALITY", "23"))
KEYFRAME_SECONDS = 5.0

# Quality metric settings
PERCENTILE = 0.05
VMAF_SUBSAMPLE = 1

# Quality search settings
SEARCH_TARGET = float(os.environ.get("SCENECODER_TARGET", "93"))
BITRATE_RANGE = (100, 50000)  # kbps searched in bitrate mode

# Crop detection settings
CROP_LIMIT = 24
CROP_ROUND = 4
CROP_SAMPLE_INTERVAL = 5.0  # seconds between sampled frames

# Scene detection settings
SCENE_THRESHOLD = 27.0
MIN_SCENE_LENGTH = 24  # frames
MAX_SCENE_LENGTH = 0  # frames; 0 disables artificial splits

# Output directory layout
CACHE_FILENAME = "cache.json"
SOURCE_DIRNAME = "source"
ENCODE_DIRNAME = "encode"
OUTPUT_DIRNAME = "output"
LOG_DIRNAME = "logs"


class Encoder(Enum):
    """Supported encoders; the value is the ffmpeg codec name"""
    X264 = "libx264"
    X265 = "libx265"
    AOM = "libaom-av1"
    SVTAV1 = "libsvtav1"

    @property
    def label(self) -> str:
        return self.name.lower()

    @property
    def extension(self) -> str:
        return "mkv"

    @classmethod
    def from_label(cls, label: str) -> "Encoder":
        try:
            return cls[label.upper()]
        except KeyError as e:
            raise ConfigurationError(f"Unknown encoder: {label}", module="config") from e


class RateMode(Enum):
    CRF = "crf"
    QP = "qp"
    BITRATE = "bitrate"


class Metric(Enum):
    """Quality metrics

    VMAF, PSNR and SSIM come from a single libvmaf pass. BITRATE is the
    per-frame bitrate of the encoded scene in kbps, read from packet sizes.
    """
    VMAF = "vmaf"
    PSNR = "psnr"
    SSIM = "ssim"
    BITRATE = "bitrate"


class QualityRule(Enum):
    """How a searched scene's metric must relate to the target"""
    MINIMUM = "minimum"
    MAXIMUM = "maximum"
    TARGET = "target"


# Valid quality ranges per encoder and rate mode
QUALITY_RANGES = {
    (Encoder.X264, RateMode.CRF): (0, 51),
    (Encoder.X264, RateMode.QP): (0, 69),
    (Encoder.X265, RateMode.CRF): (0, 51),
    (Encoder.X265, RateMode.QP): (0, 51),
    (Encoder.AOM, RateMode.CRF): (0, 63),
    (Encoder.AOM, RateMode.QP): (0, 63),
    (Encoder.SVTAV1, RateMode.CRF): (1, 63),
    (Encoder.SVTAV1, RateMode.QP): (1, 63),
}

# Encoders whose ffmpeg wrapper supports -pass/-passlogfile
TWO_PASS_ENCODERS = frozenset({Encoder.X264, Encoder.AOM})


def quality_range(encoder: Encoder, mode: RateMode) -> Tuple[int, int]:
    """Inclusive range of quality values for an encoder and rate mode"""
    if mode is RateMode.BITRATE:
        return BITRATE_RANGE
    return QUALITY_RANGES[(encoder, mode)]


@dataclass(frozen=True)
class EncoderConfig:
    """Encoder choice and its parameters."""
    encoder: Encoder = Encoder.X264
    mode: RateMode = RateMode.CRF
    quality: float = QUALITY
    preset: str = PRESET
    extra_params: str = ""
    passes: int = 1

    def validate(self) -> None:
        if self.passes not in (1, 2):
            raise ConfigurationError("Passes must be 1 or 2", module="config")
        if self.passes == 2 and self.encoder not in TWO_PASS_ENCODERS:
            raise ConfigurationError(
                f"{self.encoder.label} does not support two-pass encoding", module="config"
            )
        if self.mode is RateMode.BITRATE:
            if self.quality <= 0:
                raise ConfigurationError("Bitrate must be positive", module="config")
            return
        low, high = quality_range(self.encoder, self.mode)
        if not low <= self.quality <= high:
            raise ConfigurationError(
                f"{self.mode.value} {self.quality} outside {low}-{high} for {self.encoder.label}",
                module="config"
            )
        if self.encoder is Encoder.SVTAV1 and self.mode is RateMode.QP:
            raise ConfigurationError("svtav1 does not support qp mode", module="config")

    def canonical(self) -> Dict[str, Any]:
        return {
            "encoder": self.encoder.value,
            "mode": self.mode.value,
            "quality": float(self.quality),
            "preset": self.preset,
            "extra_params": self.extra_params,
            "passes": int(self.passes),
        }

    def with_quality(self, quality: float) -> "EncoderConfig":
        return replace(self, quality=float(quality))

    @property
    def identifier(self) -> str:
        """Short human-readable identifier, e.g. ``x264-crf23``"""
        quality = f"{self.quality:g}"
        return f"{self.encoder.label}-{self.mode.value}{quality}"


@dataclass(frozen=True)
class SearchConfig:
    """Per-scene quality search, disabled while ``rule`` is None

    Each scene is encoded at candidate quality values chosen by bisection
    over the encoder's range until the percentile score satisfies ``rule``
    against ``target``.
    """
    rule: Optional[QualityRule] = None
    target: float = SEARCH_TARGET

    @property
    def enabled(self) -> bool:
        return self.rule is not None

    def validate(self) -> None:
        if self.enabled and self.target <= 0:
            raise ConfigurationError("Search target must be positive", module="config")

    @property
    def identifier(self) -> str:
        return f"{self.rule.value}{self.target:g}" if self.enabled else ""


@dataclass(frozen=True)
class MetricConfig:
    metric: Metric = Metric.VMAF
    percentile: float = PERCENTILE
    n_subsample: int = VMAF_SUBSAMPLE

    def validate(self) -> None:
        if not 0.0 <= self.percentile <= 1.0:
            raise ConfigurationError("Percentile must be between 0 and 1", module="config")
        if self.n_subsample < 1:
            raise ConfigurationError("n_subsample must be at least 1", module="config")

    def canonical(self) -> Dict[str, Any]:
        # The libvmaf metrics share one pass; the choice selects which score
        # is primary.
        return {
            "metric": self.metric.value,
            "percentile": float(self.percentile),
            "n_subsample": int(self.n_subsample),
        }


@dataclass(frozen=True)
class CropConfig:
    enabled: bool = True
    limit: int = CROP_LIMIT
    round: int = CROP_ROUND
    sample_interval: float = CROP_SAMPLE_INTERVAL

    def canonical(self) -> Dict[str, Any]:
        if not self.enabled:
            return {"enabled": False}
        return {
            "enabled": True,
            "limit": self.limit,
            "round": self.round,
            "sample_interval": float(self.sample_interval),
        }


@dataclass(frozen=True)
class DetectionConfig:
    threshold: float = SCENE_THRESHOLD
    min_scene_length: int = MIN_SCENE_LENGTH
    max_scene_length: int = MAX_SCENE_LENGTH

    def validate(self) -> None:
        if self.threshold <= 0:
            raise ConfigurationError("Scene threshold must be positive", module="config")
        if self.min_scene_length < 1:
            raise ConfigurationError("Minimum scene length must be at least 1", module="config")
        if self.max_scene_length and self.max_scene_length < self.min_scene_length:
            raise ConfigurationError(
                "Maximum scene length must not be below the minimum", module="config"
            )

    def canonical(self) -> Dict[str, Any]:
        return {
            "threshold": float(self.threshold),
            "min_scene_length": int(self.min_scene_length),
            "max_scene_length": int(self.max_scene_length),
        }


@dataclass
class PipelineConfig:
    """Everything one run needs."""
    source: Path
    output_dir: Path
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    metric: MetricConfig = field(default_factory=MetricConfig)
    crop: CropConfig = field(default_factory=CropConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    workers: int = WORKERS
    force_stages: frozenset = frozenset()
    label: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.source, str):
            self.source = Path(self.source)
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        self.force_stages = frozenset(self.force_stages)

    def validate(self) -> None:
        if self.workers < 1:
            raise ConfigurationError("Worker count must be at least 1", module="config")
        unknown = self.force_stages - STAGES
        if unknown:
            raise ConfigurationError(
                f"Unknown stage(s) to force: {', '.join(sorted(unknown))}", module="config"
            )
        self.encoder.validate()
        self.metric.validate()
        self.detection.validate()
        self.search.validate()

    @property
    def forced_stages(self) -> frozenset:
        return downstream_stages(self.force_stages)

    @property
    def output_label(self) -> str:
        if self.label:
            return self.label
        if self.search.enabled:
            encoder = self.encoder
            return (
                f"{self.source.stem}-{encoder.encoder.label}-{encoder.mode.value}"
                f"-{self.metric.metric.value}-{self.search.identifier}"
            )
        return f"{self.source.stem}-{self.encoder.identifier}"

    @property
    def cache_path(self) -> Path:
        return self.output_dir / CACHE_FILENAME

    @property
    def source_dir(self) -> Path:
        return self.output_dir / SOURCE_DIRNAME

    @property
    def encode_dir(self) -> Path:
        return self.output_dir / ENCODE_DIRNAME

    @property
    def merged_dir(self) -> Path:
        return self.output_dir / OUTPUT_DIRNAME

    @property
    def log_dir(self) -> Path:
        return self.output_dir / LOG_DIRNAME


STAGE_ORDER = ("probe", "detect", "extract", "encode", "measure", "merge")
STAGES = frozenset(STAGE_ORDER)


def downstream_stages(stages) -> frozenset:
    """Expand forced stages to everything that consumes their output"""
    if not stages:
        return frozenset()
    first = min(STAGE_ORDER.index(stage) for stage in stages)
    return frozenset(STAGE_ORDER[first:])


def keyframe_interval(frame_rate: float) -> int:
    """GOP length in frames for a source frame rate"""
    return max(1, int(round(frame_rate * KEYFRAME_SECONDS)))
