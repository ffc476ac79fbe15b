"""Custom exceptions for the scenecoder pipeline"""

from typing import Dict, Optional


class ScenecoderError(Exception):
    """Base exception for all scenecoder errors"""
    def __init__(self, message: str, module: str = None):
        self.message = message
        self.module = module or "unknown"
        super().__init__(f"[{self.module}] {self.message}")


class ConfigurationError(ScenecoderError):
    """Error in configuration/setup"""


class DependencyError(ScenecoderError):
    """Missing required dependencies"""


class CommandExecutionError(ScenecoderError):
    """A child process exited with a non-zero status"""
    def __init__(self, message: str, module: str = None, output: str = ""):
        super().__init__(message, module)
        self.output = output


class PipelineError(ScenecoderError):
    """Fatal error that aborts the whole run"""


class ProbeError(PipelineError):
    """Source cannot be opened or has no usable video stream"""


class SceneBoundaryError(PipelineError):
    """Scene detector returned boundaries that do not partition the source"""


class CacheCorruptError(PipelineError):
    """The cache record file exists but cannot be read"""


class MergeError(PipelineError):
    """Scene artifacts could not be merged into the final output"""


class StageError(ScenecoderError):
    """Recoverable failure of one scene's sub-stage"""
    stage = "stage"

    def __init__(self, message: str, scene_index: Optional[int] = None, module: str = None):
        self.scene_index = scene_index
        super().__init__(f"{self.stage} failed: {message}", module or self.stage)


class ExtractError(StageError):
    stage = "extract"


class EncodeError(StageError):
    stage = "encode"


class MeasureError(StageError):
    stage = "measure"


class SceneFailuresError(ScenecoderError):
    """One or more scenes failed after every scene was attempted"""
    def __init__(self, failures: Dict[int, str]):
        self.failures = dict(sorted(failures.items()))
        indices = ", ".join(str(i) for i in self.failures)
        super().__init__(
            f"{len(self.failures)} scene(s) failed: {indices}",
            module="scheduler"
        )


class ArtifactError(ScenecoderError):
    """An artifact could not be committed to the cache"""


class RunCancelledError(ScenecoderError):
    """The run was interrupted while child processes were active"""
