import threading
import time
from pathlib import Path

import pytest

from video_stitcher.errors import FfmpegError, FfmpegErrorType
from video_stitcher.ffmpeg_runner import FfmpegResult
from video_stitcher.models import StitcherConfig


class FakeRunner:
    """Stands in for FfmpegRunner: writes the file named last in argv.

    Tracks how many runs overlap so tests can check the concurrency cap.
    """

    def __init__(self, delay=0.0, fail_when=None, log_lines=("frame=1 fps=30",)):
        self.delay = delay
        self.fail_when = fail_when
        self.log_lines = log_lines
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run(self, argv, on_log=None, cancel_event=None):
        with self._lock:
            self.calls.append(list(argv))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            for line in self.log_lines:
                if on_log is not None:
                    on_log(line)
            if self.delay:
                time.sleep(self.delay)
            if self.fail_when is not None and self.fail_when(argv):
                raise FfmpegError(
                    "ffmpeg exit code=1\nInvalid data found when processing input",
                    returncode=1,
                    stderr_tail="Invalid data found when processing input",
                    error_type=FfmpegErrorType.PERMANENT,
                )
            Path(argv[-1]).write_bytes(b"rendered:" + argv[-1].encode())
            return FfmpegResult(returncode=0, duration_s=self.delay, stderr_tail="")
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def config():
    """Default config with a fixed concurrency of 2."""
    return StitcherConfig.from_dict({"queue": {"concurrency": 2}})


@pytest.fixture
def media_files(tmp_path):
    """Placeholder source files; the fake runner never reads them."""
    src = tmp_path / "src"
    src.mkdir()
    names = ["a1.mp4", "a2.mp4", "b1.mp4", "b2.mp4", "intro.mp4", "cover.png", "bg.jpg"]
    paths = {}
    for name in names:
        path = src / name
        path.write_bytes(b"\x00")
        paths[name] = str(path)
    return paths


def hidden_entries(directory):
    """Dot-prefixed leftovers (staging directories) in ``directory``."""
    return [p.name for p in Path(directory).iterdir() if p.name.startswith(".")]
