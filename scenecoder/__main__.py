"""
Command-line interface for the scenecoder pipeline
"""
import argparse
import logging
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from . import __version__
from .config import (
    MAX_SCENE_LENGTH, MIN_SCENE_LENGTH, PERCENTILE, PRESET, QUALITY,
    SCENE_THRESHOLD, SEARCH_TARGET, STAGE_ORDER, WORKERS, CropConfig,
    DetectionConfig, Encoder, EncoderConfig, Metric, MetricConfig,
    PipelineConfig, QualityRule, RateMode, SearchConfig
)
from .exceptions import SceneFailuresError, ScenecoderError
from .formatting import print_banner, print_error, print_run_summary, print_scene_failures
from .logging import configure_logging
from .pipeline import run_pipeline
from .utils import check_dependencies

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_SCENES_FAILED = 2
EXIT_INTERRUPTED = 130


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="scenecoder",
        description="Scene-parallel video encoder with a resumable cache. "
                    "Delete OUTPUT_DIR/cache.json to discard all cached results."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("source", type=Path, help="Source video file")
    parser.add_argument("output", type=Path, help="Output directory (holds the cache)")
    parser.add_argument(
        "--encoder",
        choices=[encoder.label for encoder in Encoder],
        default=Encoder.X264.label,
        help="Encoder (default: %(default)s)"
    )
    parser.add_argument("--preset", default=PRESET, help="Encoder preset (default: %(default)s)")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in RateMode],
        default=RateMode.CRF.value,
        help="Rate control mode (default: %(default)s)"
    )
    parser.add_argument(
        "--quality",
        type=float,
        default=QUALITY,
        help="CRF/QP value, or bitrate in kbps for bitrate mode (default: %(default)s)"
    )
    parser.add_argument(
        "--encoder-params",
        dest="encoder_params",
        default="",
        help="Extra encoder parameters, e.g. 'aq-mode=3'"
    )
    parser.add_argument(
        "--passes",
        type=int,
        choices=[1, 2],
        default=1,
        help="Encoder passes, 2 for x264 and aom only (default: %(default)s)"
    )
    parser.add_argument(
        "--rule",
        choices=[rule.value for rule in QualityRule],
        default=None,
        help="Search each scene's quality so its percentile score meets --target "
             "under this rule; --quality is ignored when set"
    )
    parser.add_argument(
        "--target",
        type=float,
        default=SEARCH_TARGET,
        help="Metric score the quality search aims for (default: %(default)s)"
    )
    parser.add_argument(
        "--metric",
        choices=[metric.value for metric in Metric],
        default=Metric.VMAF.value,
        help="Primary quality metric (default: %(default)s)"
    )
    parser.add_argument(
        "--percentile",
        type=float,
        default=PERCENTILE,
        help="Per-scene score percentile to report, 0-1 (default: %(default)s)"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=WORKERS,
        help="Scenes processed in parallel (default: %(default)s)"
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=SCENE_THRESHOLD,
        help="Scene detection threshold (default: %(default)s)"
    )
    parser.add_argument(
        "--min-scene-length",
        dest="min_scene_length",
        type=int,
        default=MIN_SCENE_LENGTH,
        help="Minimum scene length in frames (default: %(default)s)"
    )
    parser.add_argument(
        "--max-scene-length",
        dest="max_scene_length",
        type=int,
        default=MAX_SCENE_LENGTH,
        help="Split scenes longer than this many frames, 0 disables (default: %(default)s)"
    )
    parser.add_argument(
        "--disable-crop",
        dest="disable_crop",
        action="store_true",
        help="Disable automatic crop detection"
    )
    parser.add_argument(
        "--force",
        action="append",
        choices=STAGE_ORDER,
        default=[],
        help="Recompute this stage and everything after it (repeatable)"
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Set logging level (default from SCENECODER_LOG_LEVEL)"
    )
    return parser.parse_args(argv)


def build_config(args) -> PipelineConfig:
    return PipelineConfig(
        source=args.source,
        output_dir=args.output,
        encoder=EncoderConfig(
            encoder=Encoder.from_label(args.encoder),
            mode=RateMode(args.mode),
            quality=args.quality,
            preset=args.preset,
            extra_params=args.encoder_params,
            passes=args.passes,
        ),
        metric=MetricConfig(metric=Metric(args.metric), percentile=args.percentile),
        crop=CropConfig(enabled=not args.disable_crop),
        detection=DetectionConfig(
            threshold=args.threshold,
            min_scene_length=args.min_scene_length,
            max_scene_length=args.max_scene_length,
        ),
        search=SearchConfig(
            rule=QualityRule(args.rule) if args.rule else None,
            target=args.target,
        ),
        workers=args.workers,
        force_stages=frozenset(args.force),
    )


def _interrupt(signum, frame):
    raise KeyboardInterrupt(f"signal {signum}")


@contextmanager
def terminate_as_interrupt() -> Iterator[None]:
    """Treat SIGTERM like Ctrl-C for the duration of the block

    The KeyboardInterrupt raised in the main thread takes the scheduler's
    cancellation path, which kills every running child process.
    """
    previous = signal.signal(signal.SIGTERM, _interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    log = logging.getLogger("scenecoder")
    try:
        config = build_config(args)
        config.validate()
    except ScenecoderError as e:
        print_error(e.message)
        return EXIT_FATAL

    log_file = configure_logging(args.log_level, config.log_dir)
    print_banner(__version__, log_file)

    try:
        with terminate_as_interrupt():
            check_dependencies()
            summary = run_pipeline(config)
    except SceneFailuresError as e:
        print_scene_failures(e.failures)
        return EXIT_SCENES_FAILED
    except KeyboardInterrupt:
        log.warning("Interrupted; completed scenes stay cached")
        return EXIT_INTERRUPTED
    except ScenecoderError as e:
        log.error("%s", e)
        print_error(e.message)
        return EXIT_FATAL
    except Exception as e:
        log.exception("Encoding failed: %s", e)
        return EXIT_FATAL

    print_run_summary(summary)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
