"""Helper functions for building ffmpeg commands"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import ffmpeg

from ..config import CropConfig, Encoder, EncoderConfig, MetricConfig, RateMode
from ..models import CropRect

log = logging.getLogger(__name__)

GLOBAL_ARGS = ("-hide_banner", "-nostdin")

# Option carrying free-form encoder parameters
EXTRA_PARAMS_OPTION = {
    Encoder.X264: "x264-params",
    Encoder.X265: "x265-params",
    Encoder.AOM: "aom-params",
    Encoder.SVTAV1: "svtav1-params",
}


def _compile(stream, loglevel: str = "error") -> List[str]:
    return stream.global_args(*GLOBAL_ARGS, "-loglevel", loglevel).overwrite_output().compile()


def build_cropdetect_command(input_file: Path, crop: CropConfig,
                             frame_rate: float) -> List[str]:
    """Sample one frame every ``sample_interval`` seconds through cropdetect"""
    step = max(1, int(round(frame_rate * crop.sample_interval)))
    video = (
        ffmpeg.input(str(input_file))
        .video
        .filter("select", f"not(mod(n,{step}))")
        .filter("cropdetect", limit=crop.limit, round=crop.round, reset=1)
    )
    # cropdetect reports on stderr at info level
    return _compile(ffmpeg.output(video, "-", f="null"), loglevel="info")


def build_extract_command(input_file: Path, output_file: Path, start: int, end: int,
                          crop: Optional[CropRect] = None) -> List[str]:
    """Cut frames ``[start, end)`` into a lossless FFV1 clip"""
    video = (
        ffmpeg.input(str(input_file))
        .video
        .trim(start_frame=start, end_frame=end)
        .setpts("PTS-STARTPTS")
    )
    if crop is not None:
        video = video.crop(crop.x, crop.y, crop.width, crop.height)
    return _compile(ffmpeg.output(
        video, str(output_file), vcodec="ffv1", level=3, an=None, sn=None
    ))


def encoder_options(config: EncoderConfig, keyframe_interval: int) -> Dict[str, Union[str, int, float]]:
    options: Dict[str, Union[str, int, float]] = {
        "vcodec": config.encoder.value,
        "g": keyframe_interval,
    }
    quality = int(config.quality) if float(config.quality).is_integer() else config.quality
    if config.mode is RateMode.CRF:
        options["crf"] = quality
        if config.encoder is Encoder.AOM:
            options["b:v"] = 0
    elif config.mode is RateMode.QP:
        options["qp"] = quality
    else:
        options["b:v"] = f"{int(config.quality)}k"

    if config.encoder is Encoder.AOM:
        options["cpu-used"] = config.preset
    else:
        options["preset"] = config.preset
    if config.extra_params:
        options[EXTRA_PARAMS_OPTION[config.encoder]] = config.extra_params
    return options


def build_encode_command(input_file: Path, output_file: Path, config: EncoderConfig,
                         keyframe_interval: int, pass_number: Optional[int] = None,
                         passlog: Optional[Path] = None) -> List[str]:
    """Encode one lossless scene clip with the configured encoder

    The first of two passes only writes the stats log, so its video goes to
    the null muxer.
    """
    options = encoder_options(config, keyframe_interval)
    if pass_number is not None:
        options["pass"] = pass_number
        options["passlogfile"] = str(passlog)
    stream = ffmpeg.input(str(input_file))
    if pass_number == 1:
        return _compile(stream.output("-", f="null", an=None, **options))
    return _compile(stream.output(str(output_file), an=None, **options))


def build_encode_commands(input_file: Path, output_file: Path, config: EncoderConfig,
                          keyframe_interval: int, passlog: Path) -> List[List[str]]:
    """Every command of a one- or two-pass encode, in run order"""
    if config.passes == 1:
        return [build_encode_command(input_file, output_file, config, keyframe_interval)]
    return [
        build_encode_command(input_file, output_file, config, keyframe_interval,
                             pass_number=number, passlog=passlog)
        for number in range(1, config.passes + 1)
    ]


def build_vmaf_command(reference: Path, distorted: Path, log_file: Path,
                       metric: MetricConfig) -> List[str]:
    """Score ``distorted`` against ``reference`` with libvmaf, JSON log"""
    distorted_stream = ffmpeg.input(str(distorted)).video
    reference_stream = ffmpeg.input(str(reference)).video
    scored = ffmpeg.filter(
        [distorted_stream, reference_stream],
        "libvmaf",
        log_fmt="json",
        log_path=str(log_file),
        n_subsample=metric.n_subsample,
        n_threads=1,
        feature="name=psnr|name=float_ssim",
    )
    return _compile(ffmpeg.output(scored, "-", f="null"))


def build_concat_command(concat_file: Path, output_file: Path) -> List[str]:
    """Concatenate scene artifacts listed in ``concat_file`` without re-encoding"""
    stream = ffmpeg.input(str(concat_file), f="concat", safe=0)
    return _compile(stream.output(str(output_file), c="copy", fflags="+genpts"))
