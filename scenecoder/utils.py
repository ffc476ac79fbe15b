"""Utility functions for the scenecoder pipeline"""

import hashlib
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Union

from .exceptions import DependencyError

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024


def hash_file(path: Union[str, Path]) -> str:
    """Return the sha256 hex digest of a file's content"""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_directory(path: Path) -> Path:
    """Create a directory if missing; fail if the path is something else"""
    if path.exists() and not path.is_dir():
        raise NotADirectoryError(f"{path} exists but is not a directory")
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_if_exists(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def temporary_path(path: Path) -> Path:
    """Sibling path used while an artifact is being written"""
    return path.with_name(f"{path.stem}.tmp{path.suffix}")


def get_timestamp() -> str:
    """Get current timestamp in YYYYMMDD_HHMMSS format"""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def format_size(size: float) -> str:
    """Format file size for display"""
    for unit in ['B', 'KiB', 'MiB', 'GiB', 'TiB']:
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TiB"


def format_bitrate(bits_per_second: float) -> str:
    """Format a bitrate with decimal prefixes, e.g. ``2.500 Mbps``"""
    value = float(bits_per_second)
    if value < 1000:
        return f"{value:.0f} bps"
    for prefix in ["k", "M", "G", "T"]:
        value /= 1000
        if value < 1000:
            break
    return f"{value:.3f} {prefix}bps"


def format_duration(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    return f"{hours:02d}h {minutes:02d}m {secs:02d}s"


def check_dependencies() -> None:
    """Check for required external tools

    Raises:
        DependencyError: If a tool is missing from PATH
    """
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            logger.error("Required dependency not found: %s", cmd)
            raise DependencyError(f"Required dependency not found: {cmd}", module="utils")
