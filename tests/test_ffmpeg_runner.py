"""Unit tests for the FFmpeg runner.

Real processes are spawned, but the binary is the current Python interpreter
running a small script, so no ffmpeg install is needed.
"""

import sys
import threading
import time
from unittest.mock import patch

import psutil
import pytest

from video_stitcher.errors import (
    FfmpegCancelledError,
    FfmpegError,
    FfmpegErrorType,
    FfmpegTimeoutError,
)
from video_stitcher.ffmpeg_runner import FfmpegRunner, check_ffmpeg


class PythonRunner(FfmpegRunner):
    """Runs ``python <argv>`` instead of ffmpeg."""

    def build_command(self, argv):
        return [sys.executable, *argv]


def script(code):
    return ["-c", code]


STDERR_LINES = "import sys\nfor i in range({n}):\n    print(f'line {{i}}', file=sys.stderr)\n"


class TestRun:
    """Test process execution and log streaming."""

    def test_success_streams_lines(self):
        lines = []
        runner = PythonRunner()
        result = runner.run(script(STDERR_LINES.format(n=3)), on_log=lines.append)

        assert result.returncode == 0
        assert lines == ["line 0", "line 1", "line 2"]
        assert result.stderr_tail.endswith("line 2")

    def test_nonzero_exit_raises_with_code_and_tail(self):
        runner = PythonRunner()
        code = STDERR_LINES.format(n=2) + "sys.exit(1)\n"

        with pytest.raises(FfmpegError) as exc_info:
            runner.run(script(code))

        error = exc_info.value
        assert "exit code=1" in str(error)
        assert error.returncode == 1
        assert "line 1" in error.stderr_tail

    def test_tail_is_bounded(self):
        runner = PythonRunner(log_tail_lines=3)
        code = STDERR_LINES.format(n=10) + "sys.exit(2)\n"

        with pytest.raises(FfmpegError) as exc_info:
            runner.run(script(code))

        assert exc_info.value.stderr_tail.splitlines() == ["line 7", "line 8", "line 9"]

    def test_failing_log_callback_does_not_stop_run(self):
        def bad_sink(line):
            raise ValueError("ui went away")

        result = PythonRunner().run(script(STDERR_LINES.format(n=2)), on_log=bad_sink)
        assert result.returncode == 0

    def test_spawn_failure_is_permanent_error(self, tmp_path):
        runner = FfmpegRunner(ffmpeg_path=str(tmp_path / "no-such-ffmpeg"))
        with pytest.raises(FfmpegError) as exc_info:
            runner.run(["-version"])
        assert exc_info.value.error_type == FfmpegErrorType.PERMANENT


class TestTimeoutAndCancel:
    """Test that hung processes are killed."""

    SLEEPER = "import os, sys, time\nprint(os.getpid(), file=sys.stderr, flush=True)\ntime.sleep(30)\n"

    def test_timeout_kills_process(self):
        pids = []
        runner = PythonRunner(global_timeout_s=0.5, kill_grace_period_s=1)

        start = time.time()
        with pytest.raises(FfmpegTimeoutError) as exc_info:
            runner.run(script(self.SLEEPER), on_log=pids.append)

        assert time.time() - start < 10
        assert exc_info.value.error_type == FfmpegErrorType.TIMEOUT
        assert pids
        assert not psutil.pid_exists(int(pids[0]))

    def test_cancel_event_kills_process(self):
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        try:
            with pytest.raises(FfmpegCancelledError) as exc_info:
                PythonRunner(kill_grace_period_s=1).run(
                    script(self.SLEEPER), cancel_event=cancel
                )
        finally:
            timer.cancel()
        assert exc_info.value.error_type == FfmpegErrorType.PROCESS_KILLED


class TestBuildCommand:
    def test_non_interactive_flags(self):
        runner = FfmpegRunner(ffmpeg_path="/opt/ffmpeg", loglevel="info")
        cmd = runner.build_command(["-i", "in.mp4", "out.mp4"])
        assert cmd == [
            "/opt/ffmpeg", "-hide_banner", "-nostdin", "-loglevel", "info",
            "-i", "in.mp4", "out.mp4",
        ]

    def test_bundled_binary_used_by_default(self):
        with patch("video_stitcher.ffmpeg_runner.imageio_ffmpeg.get_ffmpeg_exe", return_value="/b/ffmpeg"):
            assert FfmpegRunner().build_command([])[0] == "/b/ffmpeg"


class TestErrorClassification:
    """Test FFmpeg error classification."""

    @pytest.mark.parametrize(
        "stderr",
        [
            "input.mp4: No such file or directory",
            "Invalid data found when processing input",
            "Permission denied",
            "Error initializing filter 'overlay'",
            "moov atom not found",
        ],
    )
    def test_permanent(self, stderr):
        assert FfmpegRunner._classify_error(stderr) == FfmpegErrorType.PERMANENT

    @pytest.mark.parametrize(
        "stderr",
        ["I/O error reading input", "No space left on device", "Some unknown error"],
    )
    def test_transient(self, stderr):
        assert FfmpegRunner._classify_error(stderr) == FfmpegErrorType.TRANSIENT


class TestCheckFfmpeg:
    def test_missing_binary(self, tmp_path):
        assert check_ffmpeg(str(tmp_path / "missing")) is False

    def test_working_binary(self):
        with patch("video_stitcher.ffmpeg_runner.subprocess.run") as mock_run:
            assert check_ffmpeg("/opt/ffmpeg") is True
        assert mock_run.call_args[0][0] == ["/opt/ffmpeg", "-version"]
