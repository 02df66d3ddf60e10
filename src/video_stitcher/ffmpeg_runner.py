"""FFmpeg runner with process isolation, log streaming, timeout and cancellation.

Key Features:
- Process isolation with subprocess.Popen in its own session
- Diagnostic output streamed line-by-line to a caller-supplied sink
- Bounded tail of diagnostic output carried by errors
- Optional per-job timeout and cooperative cancellation
- Cross-platform process tree cleanup via psutil
- Error classification for reporting
"""

import logging
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Sequence

import imageio_ffmpeg
import psutil

from .errors import (
    FfmpegCancelledError,
    FfmpegError,
    FfmpegErrorType,
    FfmpegTimeoutError,
)

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], None]


def get_ffmpeg_exe() -> str:
    """Path of the bundled ffmpeg binary."""
    return imageio_ffmpeg.get_ffmpeg_exe()


def check_ffmpeg(ffmpeg_path: Optional[str] = None) -> bool:
    """Verify ffmpeg is installed and runs."""
    try:
        exe = ffmpeg_path or get_ffmpeg_exe()
        subprocess.run(
            [exe, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
        return True
    except (FileNotFoundError, subprocess.CalledProcessError, OSError, RuntimeError):
        return False


@dataclass
class FfmpegResult:
    """Result of a successful FFmpeg execution."""
    returncode: int
    duration_s: float
    stderr_tail: str


class FfmpegRunner:
    """Spawns ffmpeg for one argument list at a time and supervises it.

    A runner holds no per-run state, so one instance may be shared by every
    worker thread of a queue.

    Example:
        >>> runner = FfmpegRunner(global_timeout_s=1800)
        >>> runner.run(["-y", "-i", "in.mp4", "out.mp4"], on_log=print)
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        global_timeout_s: Optional[float] = None,
        kill_grace_period_s: float = 5,
        log_tail_lines: int = 40,
        loglevel: Optional[str] = None,
        poll_interval_s: float = 0.1,
    ):
        """Initialize FFmpeg runner.

        Args:
            ffmpeg_path: Binary to run (None = bundled imageio-ffmpeg build)
            global_timeout_s: Maximum duration of one run (None = no limit)
            kill_grace_period_s: Grace period between SIGTERM and SIGKILL
            log_tail_lines: Diagnostic lines retained for error messages
            loglevel: ffmpeg -loglevel value (None = ffmpeg default)
            poll_interval_s: How often timeout and cancellation are checked
        """
        self.ffmpeg_path = ffmpeg_path
        self.global_timeout_s = global_timeout_s
        self.kill_grace_period_s = kill_grace_period_s
        self.log_tail_lines = log_tail_lines
        self.loglevel = loglevel
        self.poll_interval_s = poll_interval_s

    @property
    def ffmpeg_exe(self) -> str:
        return self.ffmpeg_path or get_ffmpeg_exe()

    def build_command(self, argv: Sequence[str]) -> List[str]:
        """Full command line: binary, non-interactive flags, then ``argv``."""
        cmd = [self.ffmpeg_exe, "-hide_banner", "-nostdin"]
        if self.loglevel:
            cmd.extend(["-loglevel", self.loglevel])
        cmd.extend(argv)
        return cmd

    def run(
        self,
        argv: Sequence[str],
        on_log: Optional[LogCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FfmpegResult:
        """Run ffmpeg with ``argv`` and block until it exits.

        Args:
            argv: Arguments after the binary path (from the command builder)
            on_log: Receives each diagnostic line; used for feedback only
            cancel_event: When set, the process tree is killed

        Returns:
            FfmpegResult on exit status 0

        Raises:
            FfmpegError: Non-zero exit or spawn failure
            FfmpegTimeoutError: ``global_timeout_s`` exceeded
            FfmpegCancelledError: ``cancel_event`` was set
        """
        cmd = self.build_command(argv)
        logger.debug("Running: %s", " ".join(cmd))

        start_time = time.time()
        tail: Deque[str] = deque(maxlen=self.log_tail_lines)

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            raise FfmpegError(
                f"failed to start ffmpeg ({cmd[0]}): {e}",
                error_type=FfmpegErrorType.PERMANENT,
            ) from e

        reader = threading.Thread(
            target=self._pump_stderr,
            args=(process.stderr, tail, on_log),
            daemon=True,
        )
        reader.start()

        try:
            returncode = self._wait(process, start_time, cancel_event)
        except FfmpegError as e:
            reader.join(timeout=2)
            e.stderr_tail = "\n".join(tail)
            raise
        finally:
            if process.poll() is None:
                self._kill_process_tree(process)

        reader.join(timeout=2)
        duration = time.time() - start_time
        stderr_tail = "\n".join(tail)

        if returncode != 0:
            signal_number = -returncode if returncode < 0 else None
            raise FfmpegError(
                f"ffmpeg exit code={returncode}\n{stderr_tail}",
                returncode=returncode,
                signal=signal_number,
                stderr_tail=stderr_tail,
                error_type=self._classify_error(stderr_tail),
            )

        return FfmpegResult(returncode=returncode, duration_s=duration, stderr_tail=stderr_tail)

    def _wait(
        self,
        process: subprocess.Popen,
        start_time: float,
        cancel_event: Optional[threading.Event],
    ) -> int:
        while True:
            try:
                return process.wait(timeout=self.poll_interval_s)
            except subprocess.TimeoutExpired:
                pass

            if cancel_event is not None and cancel_event.is_set():
                self._kill_process_tree(process)
                raise FfmpegCancelledError(
                    "ffmpeg cancelled",
                    returncode=process.returncode,
                    error_type=FfmpegErrorType.PROCESS_KILLED,
                )

            if self.global_timeout_s is not None:
                elapsed = time.time() - start_time
                if elapsed > self.global_timeout_s:
                    self._kill_process_tree(process)
                    raise FfmpegTimeoutError(
                        f"ffmpeg timed out after {self.global_timeout_s}s",
                        returncode=process.returncode,
                        error_type=FfmpegErrorType.TIMEOUT,
                    )

    @staticmethod
    def _pump_stderr(stream, tail: Deque[str], on_log: Optional[LogCallback]) -> None:
        """Forward stderr lines to ``on_log`` and keep the last few."""
        for raw in stream:
            line = raw.rstrip("\r\n")
            if not line:
                continue
            tail.append(line)
            if on_log is None:
                continue
            try:
                on_log(line)
            except Exception as e:
                # Log sinks are UI feedback; they must not stop the drain.
                logger.warning("Log callback error: %s", e)
        stream.close()

    def _kill_process_tree(self, process: subprocess.Popen) -> None:
        """Kill ffmpeg and all its children.

        Kill sequence:
        1. SIGTERM every process in the tree
        2. Wait grace period
        3. SIGKILL survivors
        """
        try:
            parent = psutil.Process(process.pid)
            children = parent.children(recursive=True)
        except psutil.NoSuchProcess:
            process.wait()
            return

        for proc in children + [parent]:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs([parent] + children, timeout=self.kill_grace_period_s)

        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        process.wait()

    @staticmethod
    def _classify_error(stderr: str) -> FfmpegErrorType:
        """Classify an FFmpeg failure from its diagnostic output."""
        stderr_lower = stderr.lower()

        permanent_patterns = [
            "no such file or directory",
            "invalid data found",
            "invalid argument",
            "permission denied",
            "unsupported codec",
            "invalid codec",
            "moov atom not found",
            "error initializing filter",
            "corrupt",
        ]
        for pattern in permanent_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.PERMANENT

        transient_patterns = [
            "i/o error",
            "resource temporarily unavailable",
            "no space left on device",
            "disk full",
        ]
        for pattern in transient_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.TRANSIENT

        return FfmpegErrorType.TRANSIENT
