"""
scenecoder - scene-parallel video encoding with a resumable cache

This package re-encodes a source video by:
- Probing frame count and crop once
- Splitting the source into scenes with PySceneDetect
- Extracting, encoding and scoring scenes in parallel
- Concatenating the encoded scenes in order
- Reporting per-scene and whole-video quality

Every expensive step is keyed on a fingerprint of its inputs and stored in
the output directory, so reruns only recompute what changed.
"""

__version__ = "0.1.0"
