"""Video metadata via ffprobe."""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ProbeError
from .ffmpeg_runner import get_ffmpeg_exe

logger = logging.getLogger(__name__)


@dataclass
class VideoMetadata:
    """Video metadata from ffprobe."""
    width: int
    height: int
    duration: float
    fps: float
    codec: str
    bitrate: Optional[int]
    orientation: str            # landscape | portrait | square
    aspect_ratio: str           # "16:9", "9:16", ... or "<r>:1"


def find_ffprobe(ffprobe_path: Optional[str] = None) -> str:
    """Explicit path, else ffprobe on PATH, else the binary next to ffmpeg."""
    if ffprobe_path:
        return ffprobe_path
    on_path = shutil.which("ffprobe")
    if on_path:
        return on_path
    ffmpeg_exe = Path(get_ffmpeg_exe())
    return str(ffmpeg_exe.with_name(ffmpeg_exe.name.replace("ffmpeg", "ffprobe")))


def orientation_of(width: int, height: int) -> str:
    if width == height:
        return "square"
    return "portrait" if height > width else "landscape"


def aspect_ratio_label(width: int, height: int) -> str:
    """Nearest common aspect ratio, or ``<ratio>:1`` rounded to one decimal."""
    ratio = width / height
    for label, value, tolerance in (
        ("16:9", 16 / 9, 0.1),
        ("9:16", 9 / 16, 0.1),
        ("4:3", 4 / 3, 0.1),
        ("3:4", 3 / 4, 0.1),
        ("1:1", 1.0, 0.05),
    ):
        if abs(ratio - value) < tolerance:
            return label
    return f"{round(ratio, 1)}:1"


def _fraction_to_float(rate: str) -> float:
    """Convert '60/1' or '30000/1001' to float."""
    try:
        num, denom = rate.split("/")
        return float(num) / float(denom) if float(denom) != 0 else 0.0
    except (ValueError, ZeroDivisionError):
        return 0.0


def probe_video(
    video_path: str, ffprobe_path: Optional[str] = None, timeout_s: float = 30
) -> VideoMetadata:
    """Probe a video file with ffprobe.

    Raises:
        ProbeError: If ffprobe fails, times out, prints unparseable output,
            or the file has no video stream.

    Example:
        >>> meta = probe_video("clip.mp4")
        >>> print(meta.width, meta.height, meta.aspect_ratio)
    """
    cmd = [
        find_ffprobe(ffprobe_path),
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        result = subprocess.run(
            cmd, capture_output=True, check=True, text=True, timeout=timeout_s
        )
        data = json.loads(result.stdout)
    except subprocess.CalledProcessError as e:
        raise ProbeError(f"ffprobe exit code={e.returncode}: {e.stderr}") from e
    except json.JSONDecodeError as e:
        raise ProbeError(f"ffprobe output parsing failed: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise ProbeError(f"ffprobe timed out after {timeout_s}s") from e
    except OSError as e:
        raise ProbeError(f"failed to start ffprobe: {e}") from e

    video_stream = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "video"), None
    )
    if not video_stream:
        raise ProbeError(f"No video stream found in {video_path}")

    width = int(video_stream.get("width") or 0)
    height = int(video_stream.get("height") or 0)
    if not width or not height:
        raise ProbeError(f"ffprobe reported no dimensions for {video_path}")

    format_info = data.get("format", {})
    duration = float(video_stream.get("duration") or format_info.get("duration") or 0)
    bit_rate = format_info.get("bit_rate")

    fps = _fraction_to_float(video_stream.get("avg_frame_rate", "0/1"))
    if fps <= 0:
        fps = _fraction_to_float(video_stream.get("r_frame_rate", "0/1"))

    return VideoMetadata(
        width=width,
        height=height,
        duration=duration,
        fps=fps,
        codec=video_stream.get("codec_name", "unknown"),
        bitrate=int(bit_rate) if bit_rate else None,
        orientation=orientation_of(width, height),
        aspect_ratio=aspect_ratio_label(width, height),
    )
