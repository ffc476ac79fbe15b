"""Scene detection using PySceneDetect"""

import logging
from pathlib import Path
from typing import List

from scenedetect import ContentDetector, detect

from ..config import DetectionConfig

logger = logging.getLogger(__name__)


def detect_scene_starts(input_file: Path, params: DetectionConfig) -> List[int]:
    """
    Run content-aware scene detection over the whole source.

    Args:
        input_file: Path to the source video
        params: Threshold and minimum scene length (frames)

    Returns:
        List[int]: Sorted start frame of every detected scene. PySceneDetect
        reports scene starts, so the list normally begins with 0 and never
        contains the total frame count.
    """
    detector = ContentDetector(
        threshold=params.threshold,
        min_scene_len=params.min_scene_length,
    )
    scenes = detect(str(input_file), detector)
    starts = []
    for start, _ in scenes:
        starts.append(start.get_frames())
    logger.info("Scene detection found %d scene(s) in %s", len(starts), input_file.name)
    return sorted(starts)
