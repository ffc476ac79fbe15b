"""External media library boundary

The pipeline talks to ffmpeg, ffprobe, libvmaf and PySceneDetect only
through :class:`MediaBackend`.
"""

from .backend import MediaBackend
from .ffmpeg_backend import FfmpegBackend
from .processes import ProcessRegistry

__all__ = ["MediaBackend", "FfmpegBackend", "ProcessRegistry"]
