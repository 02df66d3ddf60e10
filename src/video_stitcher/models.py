"""Pydantic models for configuration and composition data."""

import os
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Orientation = Literal["horizontal", "vertical"]
StitchOrientation = Literal["landscape", "portrait"]
Quality = Literal["low", "medium", "high"]


def default_concurrency() -> int:
    """One worker per core, leaving one core for the coordinator."""
    return max(1, (os.cpu_count() or 2) - 1)


class Role(str, Enum):
    """Compositional function an asset plays inside a job."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    INTRO = "intro"
    COVER = "cover"
    BACKGROUND = "background"
    LOGO = "logo"
    OVERLAY = "overlay"
    SOURCE = "source"


class Position(BaseModel):
    """Axis-aligned rectangle in output-canvas pixels.

    Bounds are not checked against the canvas; callers clamp before building.
    """

    x: float = Field(default=0, description="Left edge")
    y: float = Field(default=0, description="Top edge")
    width: float = Field(gt=0, description="Rectangle width")
    height: float = Field(gt=0, description="Rectangle height")

    def scaled(self, sx: float, sy: float) -> "Position":
        """Scale to a different canvas size, rounding to whole pixels."""
        return Position(
            x=round(self.x * sx),
            y=round(self.y * sy),
            width=round(self.width * sx),
            height=round(self.height * sy),
        )


class Trim(BaseModel):
    """Time window of an asset's own timeline, in seconds."""

    start: Optional[float] = Field(default=None, ge=0.0, description="Seek offset")
    duration: Optional[float] = Field(default=None, gt=0.0, description="Clip length")


class AssetRef(BaseModel):
    """One input file and the role it plays."""

    path: str = Field(description="Filesystem path of the asset")
    role: Role = Field(description="Compositional role")
    index: int = Field(default=1, ge=0, description="1-based position in its source list")


class PreviewOverride(BaseModel):
    """Low-resolution preview parameters; only dimensions and quality change."""

    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    crf: Optional[int] = Field(default=None, ge=0, le=51)
    preset: Optional[str] = Field(default=None, description="x264 preset")
    audio_bitrate: Optional[str] = Field(default=None, description="AAC bitrate, e.g. 64k")
    duration: Optional[float] = Field(default=None, gt=0.0, description="Clip seconds")


# ---------------------------------------------------------------------------
# Application configuration
# ---------------------------------------------------------------------------


class QueueConfig(BaseModel):
    """Worker pool settings."""

    concurrency: int = Field(
        default_factory=default_concurrency, ge=1, description="Maximum concurrent ffmpeg jobs"
    )


class FfmpegConfig(BaseModel):
    """External binary location and process supervision."""

    ffmpeg_path: Optional[str] = Field(
        default=None, description="Explicit ffmpeg binary (None = bundled imageio-ffmpeg build)"
    )
    ffprobe_path: Optional[str] = Field(
        default=None, description="Explicit ffprobe binary (None = PATH or next to ffmpeg)"
    )
    global_timeout_s: Optional[float] = Field(
        default=None, gt=0, description="Per-job timeout in seconds (None = wait forever)"
    )
    kill_grace_period_s: float = Field(
        default=5, gt=0, description="Grace period between SIGTERM and SIGKILL"
    )
    log_tail_lines: int = Field(
        default=40, ge=1, description="Diagnostic lines kept for error messages"
    )
    loglevel: str = Field(default="info", description="ffmpeg -loglevel value")


class PreviewEncodingConfig(BaseModel):
    """Encoder settings for preview renders."""

    crf: int = Field(default=35, ge=0, le=51)
    preset: str = Field(default="ultrafast")
    audio_bitrate: str = Field(default="64k")
    max_dimension: int = Field(default=1080, gt=0, description="Longest side of a preview")
    clip_seconds: float = Field(default=10, gt=0, description="Length of a resize preview")


class EncodingConfig(BaseModel):
    """Output encoding defaults."""

    quality: Quality = Field(default="medium", description="Quality preset name")
    fps: int = Field(default=30, gt=0, description="Output frame rate (CFR)")
    audio_sample_rate: int = Field(default=48000, gt=0, description="Output sample rate in Hz")
    preview: PreviewEncodingConfig = Field(default_factory=PreviewEncodingConfig)


class OutputConfig(BaseModel):
    """Output naming and staging."""

    temp_prefix: str = Field(default="task", description="Prefix of hidden staging directories")
    max_filename_bytes: int = Field(default=255, ge=16, description="Filesystem name limit")
    reserve_suffix_bytes: int = Field(
        default=5, ge=0, description="Bytes kept free for a disambiguating suffix"
    )
    video_extension: str = Field(default=".mp4")

    @field_validator("video_extension")
    @classmethod
    def extension_has_dot(cls, v: str) -> str:
        """Normalize 'mp4' to '.mp4'."""
        return v if v.startswith(".") else "." + v


class ImagesConfig(BaseModel):
    """Image compression and material export settings."""

    target_size_kb: int = Field(default=380, gt=0)
    default_quality: int = Field(default=90, ge=1, le=100)
    max_iterations: int = Field(default=15, ge=1)
    material_size: int = Field(
        default=800, gt=0, description="Side of a material single image and grid tile"
    )
    material_target_kb: int = Field(
        default=400, gt=0, description="Target size of material exports"
    )
    logo_width: int = Field(default=200, gt=0, description="Logo width on a material single image")


class ResizeTarget(BaseModel):
    """One output size produced by a resize preset."""

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    suffix: str = Field(description="Appended to the source name, e.g. '_1920x1080'")


class ResizeConfig(BaseModel):
    """Reframe-with-blurred-background settings."""

    blur_amount: int = Field(default=20, ge=0, description="boxblur radius (0 disables blur)")
    presets: Dict[str, List[ResizeTarget]] = Field(
        default_factory=dict, description="Extra or overriding named presets"
    )


class StitcherConfig(BaseModel):
    """Complete application configuration with validation."""

    queue: QueueConfig = Field(default_factory=QueueConfig)
    ffmpeg: FfmpegConfig = Field(default_factory=FfmpegConfig)
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    images: ImagesConfig = Field(default_factory=ImagesConfig)
    resize: ResizeConfig = Field(default_factory=ResizeConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "StitcherConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_cli_overrides(self, cli_args: dict) -> "StitcherConfig":
        """Apply CLI overrides and return new config instance."""
        config_dict = self.model_dump()

        if cli_args.get("concurrency") is not None:
            config_dict["queue"]["concurrency"] = cli_args["concurrency"]
        if cli_args.get("quality") is not None:
            config_dict["encoding"]["quality"] = cli_args["quality"]
        if cli_args.get("timeout") is not None:
            config_dict["ffmpeg"]["global_timeout_s"] = cli_args["timeout"]
        if cli_args.get("ffmpeg_path") is not None:
            config_dict["ffmpeg"]["ffmpeg_path"] = cli_args["ffmpeg_path"]
        if cli_args.get("ffprobe_path") is not None:
            config_dict["ffmpeg"]["ffprobe_path"] = cli_args["ffprobe_path"]

        return StitcherConfig.from_dict(config_dict)
