"""ffmpeg/ffprobe implementation of the media backend

Responsibilities:
- Probe frame count, frame rate and dimensions with ffprobe
- Detect crop rectangles with ffmpeg's cropdetect filter
- Run extraction, one- or two-pass encoding and concatenation
- Score scenes with libvmaf, or by per-frame bitrate from packet sizes
"""

import logging
import re
import tempfile
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import ffmpeg

from ..config import CropConfig, DetectionConfig, EncoderConfig, Metric, MetricConfig
from ..exceptions import CommandExecutionError, ProbeError
from ..models import CropRect, ProbeInfo, Scene, SourceVideo
from ..utils import remove_if_exists
from .backend import MediaBackend
from .command_builders import (
    build_concat_command, build_cropdetect_command, build_encode_commands,
    build_extract_command, build_vmaf_command
)
from .processes import ProcessRegistry
from .quality import bitrate_measurement, read_vmaf_log
from .scene_detection import detect_scene_starts

logger = logging.getLogger(__name__)

CROP_PATTERN = re.compile(r"crop=(\d+):(\d+):(\d+):(\d+)")


def parse_frame_rate(rate: str) -> float:
    """Parse ffprobe's ``num/den`` frame rate"""
    if not rate:
        return 0.0
    if "/" in rate:
        numerator, denominator = rate.split("/", 1)
        if float(denominator) == 0:
            return 0.0
        return float(numerator) / float(denominator)
    return float(rate)


def parse_crop(output: str, width: int, height: int) -> Optional[CropRect]:
    """Pick the most frequent cropdetect suggestion

    Returns None when the suggestion keeps the full frame.
    """
    suggestions = Counter(
        tuple(int(v) for v in match.groups())
        for match in CROP_PATTERN.finditer(output)
    )
    if not suggestions:
        return None
    (w, h, x, y), _ = suggestions.most_common(1)[0]
    if (w, h) == (width, height) or w <= 0 or h <= 0:
        return None
    return CropRect(width=w, height=h, x=x, y=y)


def packet_sizes(info: Dict[str, Any]) -> List[int]:
    """Sizes in bytes of the video packets listed by ``ffprobe -show_packets``"""
    return [
        int(packet["size"]) for packet in info.get("packets", [])
        if packet.get("codec_type", "video") == "video" and "size" in packet
    ]


def _video_stream(info: Dict[str, Any]) -> Dict[str, Any]:
    for stream in info.get("streams", []):
        if stream.get("codec_type") == "video":
            return stream
    raise ProbeError("No video stream found", module="probe")


class FfmpegBackend(MediaBackend):
    def __init__(self, registry: Optional[ProcessRegistry] = None):
        self.registry = registry or ProcessRegistry()

    def probe(self, path: Path, crop: CropConfig) -> ProbeInfo:
        try:
            info = ffmpeg.probe(str(path), select_streams="v:0", count_packets=None)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf-8", "replace") if e.stderr else str(e)
            raise ProbeError(f"ffprobe failed for {path.name}: {stderr.strip()}", module="probe") from e

        stream = _video_stream(info)
        frame_rate = parse_frame_rate(stream.get("avg_frame_rate") or stream.get("r_frame_rate"))
        frame_count = int(stream.get("nb_read_packets") or stream.get("nb_frames") or 0)
        duration = float(stream.get("duration") or info.get("format", {}).get("duration") or 0.0)
        width = int(stream.get("width") or 0)
        height = int(stream.get("height") or 0)
        if frame_count <= 0 and duration > 0 and frame_rate > 0:
            frame_count = int(round(duration * frame_rate))
        if frame_count <= 0 or frame_rate <= 0:
            raise ProbeError(f"No usable video stream in {path.name}", module="probe")

        rect = None
        if crop.enabled:
            rect = self.detect_crop(path, crop, frame_rate, width, height)
        logger.info(
            "Probed %s: %d frames at %.3f fps, %dx%d, crop %s",
            path.name, frame_count, frame_rate, width, height,
            rect.filter if rect else "none"
        )
        return ProbeInfo(
            frame_count=frame_count,
            frame_rate=frame_rate,
            duration=duration,
            width=width,
            height=height,
            crop=rect,
        )

    def detect_crop(self, path: Path, crop: CropConfig, frame_rate: float,
                    width: int, height: int) -> Optional[CropRect]:
        cmd = build_cropdetect_command(path, crop, frame_rate)
        try:
            result = self.registry.run(cmd, module="probe")
        except CommandExecutionError as e:
            raise ProbeError(f"Crop detection failed: {e.message}", module="probe") from e
        return parse_crop(result.stderr, width, height)

    def detect_scenes(self, path: Path, frame_count: int,
                      params: DetectionConfig) -> List[int]:
        return detect_scene_starts(path, params)

    def extract(self, source: SourceVideo, scene: Scene, output: Path) -> None:
        cmd = build_extract_command(source.path, output, scene.start, scene.end, scene.crop)
        self.registry.run(cmd, module="extract")

    def encode(self, clip: Path, output: Path, config: EncoderConfig,
               keyframe_interval: int) -> None:
        with tempfile.TemporaryDirectory(prefix="scenecoder-pass-") as tmp:
            passlog = Path(tmp) / "passlog"
            for cmd in build_encode_commands(clip, output, config, keyframe_interval, passlog):
                self.registry.run(cmd, module="encode")

    def measure(self, reference: Path, distorted: Path,
                config: MetricConfig) -> Dict[str, Any]:
        if config.metric is Metric.BITRATE:
            return self.measure_bitrate(distorted, config)
        with tempfile.TemporaryDirectory(prefix="scenecoder-vmaf-") as tmp:
            log_file = Path(tmp) / "vmaf.json"
            cmd = build_vmaf_command(reference, distorted, log_file, config)
            self.registry.run(cmd, module="measure")
            return read_vmaf_log(log_file, config)

    def measure_bitrate(self, distorted: Path, config: MetricConfig) -> Dict[str, Any]:
        try:
            info = ffmpeg.probe(str(distorted), select_streams="v:0", show_packets=None)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf-8", "replace") if e.stderr else str(e)
            raise CommandExecutionError(
                f"ffprobe failed for {distorted.name}: {stderr.strip()}", module="measure"
            ) from e
        streams = [s for s in info.get("streams", []) if s.get("codec_type") == "video"]
        if not streams:
            raise CommandExecutionError(f"No video stream in {distorted.name}", module="measure")
        stream = streams[0]
        frame_rate = parse_frame_rate(stream.get("avg_frame_rate") or stream.get("r_frame_rate"))
        return bitrate_measurement(packet_sizes(info), frame_rate, config)

    def merge(self, inputs: Sequence[Path], output: Path) -> None:
        concat_file = output.with_name(output.stem + ".concat.txt")
        try:
            with open(concat_file, "w", encoding="utf-8") as f:
                for path in inputs:
                    escaped = str(Path(path).resolve()).replace("'", "'\\''")
                    f.write(f"file '{escaped}'\n")
            self.registry.run(build_concat_command(concat_file, output), module="merge")
        finally:
            remove_if_exists(concat_file)

    def terminate(self) -> None:
        self.registry.terminate_all()
