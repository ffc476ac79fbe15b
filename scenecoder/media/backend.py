"""Interface to the external media library

Every operation here is slow, fallible and versioned outside scenecoder.
The pipeline only relies on the declared inputs and outputs: stage
fingerprints cover the arguments passed in, never the backend internals.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..config import CropConfig, DetectionConfig, EncoderConfig, MetricConfig
from ..models import ProbeInfo, Scene, SourceVideo


class MediaBackend(ABC):
    """Operations the pipeline delegates to ffmpeg and friends"""

    @abstractmethod
    def probe(self, path: Path, crop: CropConfig) -> ProbeInfo:
        """Frame count, frame rate, dimensions and crop rectangle"""

    @abstractmethod
    def detect_scenes(self, path: Path, frame_count: int,
                      params: DetectionConfig) -> List[int]:
        """Ordered scene boundary frame indices"""

    @abstractmethod
    def extract(self, source: SourceVideo, scene: Scene, output: Path) -> None:
        """Write the scene's frame range, cropped, as a lossless clip"""

    @abstractmethod
    def encode(self, clip: Path, output: Path, config: EncoderConfig,
               keyframe_interval: int) -> None:
        """Encode a lossless clip"""

    @abstractmethod
    def measure(self, reference: Path, distorted: Path,
                config: MetricConfig) -> Dict[str, Any]:
        """Quality scores of ``distorted`` against ``reference``"""

    @abstractmethod
    def merge(self, inputs: Sequence[Path], output: Path) -> None:
        """Concatenate encoded scenes, in the given order, into one file"""

    def terminate(self) -> None:
        """Kill in-flight child processes; called on interrupt"""
