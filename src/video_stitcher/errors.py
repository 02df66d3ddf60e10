"""Exception hierarchy for the transcoding engine.

Job-level failures (bad inputs, ffmpeg exits, filesystem trouble) are caught by
the orchestrator and reported as ``failed`` events. Only misuse of the core
(e.g. committing a temp file that was never written) surfaces as a raised
exception to the caller.
"""

from enum import Enum
from typing import Optional


class FfmpegErrorType(Enum):
    """FFmpeg error classification, attached to failures for reporting."""
    PERMANENT = "permanent"     # File not found, invalid format, codec error
    TRANSIENT = "transient"     # I/O stall, resource temporarily unavailable
    TIMEOUT = "timeout"         # Per-job timeout exceeded
    PROCESS_KILLED = "killed"   # Cancelled by the caller


class StitcherError(Exception):
    """Base class for all engine errors."""


class UnsupportedModeError(StitcherError, ValueError):
    """Raised when a request names a composition mode or preset that does not exist."""


class MissingAssetError(StitcherError, ValueError):
    """Raised when a job lacks an asset for a role its mode requires."""


class ProbeError(StitcherError, RuntimeError):
    """Raised when ffprobe fails or returns output we cannot use."""


class StagingError(StitcherError, OSError):
    """Raised when the staging area is used incorrectly."""


class FfmpegError(StitcherError, RuntimeError):
    """FFmpeg exited unsuccessfully or could not be spawned.

    Attributes:
        returncode: Process exit status (None if the process never started)
        signal: Terminating signal number on POSIX, if any
        stderr_tail: Last diagnostic lines emitted before exit
        error_type: Classification of the failure
    """

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        signal: Optional[int] = None,
        stderr_tail: str = "",
        error_type: FfmpegErrorType = FfmpegErrorType.TRANSIENT,
    ):
        super().__init__(message)
        self.returncode = returncode
        self.signal = signal
        self.stderr_tail = stderr_tail
        self.error_type = error_type


class FfmpegTimeoutError(FfmpegError):
    """FFmpeg ran longer than the configured per-job timeout."""


class FfmpegCancelledError(FfmpegError):
    """FFmpeg was killed because the caller cancelled the job."""
