"""Argument-list builders, one per composition mode.

Every builder is a pure function of its request: no filesystem access, no
randomness, no clock. The returned argv excludes the ffmpeg binary itself,
which :class:`~video_stitcher.ffmpeg_runner.FfmpegRunner` prepends.

Layer order inside every graph is bottom-up: background, primary content,
cover, logo. Trims are applied as input options (``-ss``/``-t`` before
``-i``) so assets are clipped before they enter the graph. Preview requests
change only dimensions and encoder numbers, never the graph topology.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, Field

from .errors import MissingAssetError, UnsupportedModeError
from .filtergraph import FilterGraph, filt, fmt
from .models import (
    Orientation,
    Position,
    PreviewOverride,
    Quality,
    ResizeTarget,
    Role,
    StitchOrientation,
    Trim,
)

TARGET_FPS = 30
AUDIO_SAMPLE_RATE = 48000

LANDSCAPE = (1920, 1080)
PORTRAIT = (1080, 1920)

PREVIEW_CRF = 35
PREVIEW_PRESET = "ultrafast"
PREVIEW_AUDIO_BITRATE = "64k"
PREVIEW_MAX_DIMENSION = 1080
PREVIEW_CLIP_SECONDS = 10

RESIZE_CRF = 23
RESIZE_PREVIEW_CRF = 28


@dataclass(frozen=True)
class EncodeSettings:
    crf: int
    preset: str
    audio_bitrate: str


QUALITY_PRESETS: Dict[str, EncodeSettings] = {
    "low": EncodeSettings(28, "ultrafast", "64k"),
    "medium": EncodeSettings(23, "fast", "128k"),
    "high": EncodeSettings(18, "slow", "192k"),
}

# Composites are heavier to encode, so the default preset trades size for speed.
MERGE_QUALITY_PRESETS: Dict[str, EncodeSettings] = {
    **QUALITY_PRESETS,
    "medium": EncodeSettings(23, "superfast", "128k"),
}

RESIZE_PRESETS: Dict[str, List[ResizeTarget]] = {
    "siya": [
        ResizeTarget(width=1920, height=1080, suffix="_1920x1080"),
        ResizeTarget(width=1920, height=1920, suffix="_1920x1920"),
    ],
    "fishing": [
        ResizeTarget(width=1080, height=1920, suffix="_1080x1920"),
        ResizeTarget(width=1920, height=1920, suffix="_1920x1920"),
    ],
    "unify_h": [ResizeTarget(width=1920, height=1080, suffix="_1920x1080")],
    "unify_v": [ResizeTarget(width=1080, height=1920, suffix="_1080x1920")],
}


def resize_targets(
    mode: str, extra: Optional[Dict[str, List[ResizeTarget]]] = None
) -> List[ResizeTarget]:
    """Output sizes of a named resize preset.

    Raises:
        UnsupportedModeError: If ``mode`` names no preset.
    """
    presets = {**RESIZE_PRESETS, **(extra or {})}
    if mode not in presets:
        raise UnsupportedModeError(
            f"unknown resize mode {mode!r} (expected one of: {', '.join(sorted(presets))})"
        )
    return list(presets[mode])


def encode_settings(
    quality: str,
    preview: Optional[PreviewOverride],
    presets: Dict[str, EncodeSettings] = QUALITY_PRESETS,
) -> EncodeSettings:
    if preview is not None:
        return EncodeSettings(
            preview.crf if preview.crf is not None else PREVIEW_CRF,
            preview.preset or PREVIEW_PRESET,
            preview.audio_bitrate or PREVIEW_AUDIO_BITRATE,
        )
    if quality not in presets:
        raise UnsupportedModeError(f"unknown quality {quality!r}")
    return presets[quality]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ImagePreviewRequest(BaseModel):
    """Scale an image into a padded square thumbnail."""

    mode: Literal["image_preview"] = "image_preview"
    image: str
    output: str
    size: int = Field(default=1080, gt=0)


class LogoOverlayRequest(BaseModel):
    """Padded square image with a logo in the bottom-right corner."""

    mode: Literal["logo"] = "logo"
    image: str
    logo: str
    output: str
    size: int = Field(default=1080, gt=0)
    logo_width: int = Field(default=200, gt=0)
    margin: int = Field(default=20, ge=0)


class StitchRequest(BaseModel):
    """Play ``primary`` then ``secondary`` on one fixed canvas."""

    mode: Literal["stitch"] = "stitch"
    primary: str
    secondary: str
    output: str
    orientation: StitchOrientation = "landscape"
    trim_primary: Optional[Trim] = None
    trim_secondary: Optional[Trim] = None
    quality: Quality = "medium"
    preview: Optional[PreviewOverride] = None
    fps: int = Field(default=TARGET_FPS, gt=0)
    sample_rate: int = Field(default=AUDIO_SAMPLE_RATE, gt=0)


class MergeRequest(BaseModel):
    """Layered composite: optional cover still, intro segment(s), then main video.

    ``positions`` and ``trims`` are keyed by role (primary, intro, background,
    cover). ``intro_tail`` adds a second segment cut from the intro file.
    """

    mode: Literal["merge"] = "merge"
    main: str
    output: str
    intro: Optional[str] = None
    intro_tail: Optional[Trim] = None
    background: Optional[str] = None
    cover: Optional[str] = None
    positions: Dict[Role, Position] = Field(default_factory=dict)
    trims: Dict[Role, Trim] = Field(default_factory=dict)
    cover_duration: float = Field(default=1.0, gt=0)
    orientation: Orientation = "horizontal"
    quality: Quality = "medium"
    preview: Optional[PreviewOverride] = None
    threads: Optional[int] = Field(default=None, gt=0)
    fps: int = Field(default=TARGET_FPS, gt=0)
    sample_rate: int = Field(default=AUDIO_SAMPLE_RATE, gt=0)


class ResizeRequest(BaseModel):
    """Reframe a video to ``width``x``height`` over a blurred copy of itself."""

    mode: Literal["resize"] = "resize"
    input: str
    output: str
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    blur_amount: int = Field(default=20, ge=0)
    preview: bool = False
    preview_seconds: float = Field(default=PREVIEW_CLIP_SECONDS, gt=0)
    preview_max_dimension: int = Field(default=PREVIEW_MAX_DIMENSION, gt=0)
    threads: Optional[int] = Field(default=None, gt=0)


Request = Union[
    ImagePreviewRequest, LogoOverlayRequest, StitchRequest, MergeRequest, ResizeRequest
]


@dataclass
class BuiltCommand:
    """Argument list plus the graph it was serialized from."""
    argv: List[str]
    graph: FilterGraph


# ---------------------------------------------------------------------------
# Shared graph fragments
# ---------------------------------------------------------------------------


def _trim_options(trim: Optional[Trim]) -> List[str]:
    options: List[str] = []
    if trim is not None and trim.start is not None:
        options += ["-ss", fmt(trim.start)]
    if trim is not None and trim.duration is not None:
        options += ["-t", fmt(trim.duration)]
    return options


def _fit_and_pad(width: int, height: int) -> List[str]:
    """Scale inside ``width``x``height`` keeping aspect, then pad to exactly that size."""
    return [
        filt("scale", width, height, force_original_aspect_ratio="decrease"),
        filt("pad", width, height, "(ow-iw)/2", "(oh-ih)/2"),
        filt("setsar", "1:1"),
    ]


def _cover_crop(width: float, height: float) -> List[str]:
    """Scale to cover ``width``x``height`` keeping aspect, then centre-crop."""
    w, h = fmt(width), fmt(height)
    return [
        filt("scale", w, h, force_original_aspect_ratio="increase"),
        filt("crop", w, h, f"(iw-{w})/2", f"(ih-{h})/2"),
        filt("setsar", "1:1"),
    ]


def _cfr(fps: int) -> List[str]:
    return [filt("settb", f"1/{fps}"), filt("setpts", f"N/{fps}/TB")]


def _normalize_audio(sample_rate: int) -> List[str]:
    return [
        filt("aresample", sample_rate),
        filt(
            "aformat",
            sample_fmts="fltp",
            sample_rates=sample_rate,
            channel_layouts="stereo",
        ),
        filt("asetpts", "PTS-STARTPTS"),
    ]


def _video_output(settings: EncodeSettings, fps: int) -> List[str]:
    return [
        "-r", str(fps),
        "-vsync", "cfr",
        "-c:v", "libx264",
        "-preset", settings.preset,
        "-crf", str(settings.crf),
        "-c:a", "aac",
        "-b:a", settings.audio_bitrate,
        "-pix_fmt", "yuv420p",
    ]


def _even(value: float) -> int:
    return int(round(value / 2) * 2)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _build_image_preview(req: ImagePreviewRequest) -> BuiltCommand:
    graph = FilterGraph()
    out = graph.label("out")
    graph.add(["0:v"], _fit_and_pad(req.size, req.size), [out])
    argv = [
        "-y",
        "-i", req.image,
        "-filter_complex", graph.serialize(),
        "-map", f"[{out}]",
        "-frames:v", "1",
        req.output,
    ]
    return BuiltCommand(argv, graph)


def _build_logo(req: LogoOverlayRequest) -> BuiltCommand:
    graph = FilterGraph()
    base, logo, out = graph.label("base"), graph.label("logo"), graph.label("out")
    graph.add(["0:v"], _fit_and_pad(req.size, req.size), [base])
    graph.add(["1:v"], [filt("scale", req.logo_width, -1)], [logo])
    graph.add(
        [base, logo],
        [filt("overlay", f"W-w-{req.margin}", f"H-h-{req.margin}")],
        [out],
    )
    argv = [
        "-y",
        "-i", req.image,
        "-i", req.logo,
        "-filter_complex", graph.serialize(),
        "-map", f"[{out}]",
        "-frames:v", "1",
        req.output,
    ]
    return BuiltCommand(argv, graph)


def _build_stitch(req: StitchRequest) -> BuiltCommand:
    width, height = LANDSCAPE if req.orientation == "landscape" else PORTRAIT
    if req.preview is not None:
        width = req.preview.width or width
        height = req.preview.height or height
    settings = encode_settings(req.quality, req.preview)

    graph = FilterGraph()
    segments: List[Tuple[str, str]] = []
    for index in range(2):
        v, a = graph.label(f"v{index}"), graph.label(f"a{index}")
        graph.add(
            [f"{index}:v"],
            _fit_and_pad(width, height) + [filt("fps", req.fps)] + _cfr(req.fps),
            [v],
        )
        graph.add([f"{index}:a"], _normalize_audio(req.sample_rate), [a])
        segments.append((v, a))

    final_v, final_a = graph.label("final_v"), graph.label("final_a")
    graph.add(
        [label for pair in segments for label in pair],
        [filt("concat", n=2, v=1, a=1)],
        [final_v, final_a],
    )

    argv = ["-y"]
    argv += _trim_options(req.trim_primary) + ["-i", req.primary]
    argv += _trim_options(req.trim_secondary) + ["-i", req.secondary]
    argv += ["-filter_complex", graph.serialize()]
    argv += ["-map", f"[{final_v}]", "-map", f"[{final_a}]"]
    argv += _video_output(settings, req.fps)
    if req.preview is not None and req.preview.duration is not None:
        argv += ["-t", fmt(req.preview.duration)]
    argv += ["-shortest", req.output]
    return BuiltCommand(argv, graph)


def default_merge_positions(orientation: str) -> Dict[Role, Position]:
    """Default layer rectangles on the full-size canvas.

    The main video gets a centred 9:16 column on a horizontal canvas or a
    centred 16:9 band on a vertical one; every other layer fills the canvas.
    """
    width, height = LANDSCAPE if orientation == "horizontal" else PORTRAIT
    full = Position(x=0, y=0, width=width, height=height)
    if orientation == "horizontal":
        column = _even(height * 9 / 16)
        main = Position(x=(width - column) // 2, y=0, width=column, height=height)
    else:
        band = _even(width * 9 / 16)
        main = Position(x=0, y=(height - band) // 2, width=width, height=band)
    return {
        Role.PRIMARY: main,
        Role.INTRO: full,
        Role.BACKGROUND: full,
        Role.COVER: full,
    }


def _build_merge(req: MergeRequest) -> BuiltCommand:
    fps, rate = req.fps, req.sample_rate
    base_w, base_h = LANDSCAPE if req.orientation == "horizontal" else PORTRAIT
    canvas_w, canvas_h = base_w, base_h
    if req.preview is not None:
        canvas_w = req.preview.width or base_w
        canvas_h = req.preview.height or base_h
    sx, sy = canvas_w / base_w, canvas_h / base_h
    settings = encode_settings(req.quality, req.preview, MERGE_QUALITY_PRESETS)

    defaults = default_merge_positions(req.orientation)

    def position(role: Role) -> Position:
        pos = req.positions.get(role, defaults[role])
        return pos.scaled(sx, sy) if req.preview is not None else pos

    # Inputs, in the order their indices are assigned.
    argv: List[str] = ["-y"]
    if req.threads:
        argv += ["-threads", str(req.threads)]

    next_index = 0
    # (stream index, role, audio+video segment name) for each video segment
    segments: List[Tuple[int, Role, str]] = []
    if req.intro:
        argv += _trim_options(req.trims.get(Role.INTRO)) + ["-i", req.intro]
        segments.append((next_index, Role.INTRO, "intro"))
        next_index += 1
        if req.intro_tail is not None:
            argv += _trim_options(req.intro_tail) + ["-i", req.intro]
            segments.append((next_index, Role.INTRO, "intro_tail"))
            next_index += 1
    argv += _trim_options(req.trims.get(Role.PRIMARY)) + ["-i", req.main]
    segments.append((next_index, Role.PRIMARY, "main"))
    next_index += 1

    bg_index = cover_index = None
    if req.background:
        bg_index = next_index
        argv += ["-i", req.background]
        next_index += 1
    if req.cover:
        cover_index = next_index
        argv += ["-i", req.cover]
        next_index += 1

    graph = FilterGraph()
    black = filt("color", "black", s=f"{canvas_w}x{canvas_h}", r=fps)

    # Audio of each video segment.
    audio: Dict[str, str] = {}
    for index, _, name in segments:
        audio[name] = graph.label(f"a_{name}")
        graph.add([f"{index}:a"], _normalize_audio(rate), [audio[name]])

    # Canvas, with the background image cover-cropped into its rectangle.
    canvas = graph.label("canvas")
    if bg_index is not None:
        bg_pos = position(Role.BACKGROUND)
        bg, blank = graph.label("bg_processed"), graph.label("canvas_bg")
        graph.add(
            [f"{bg_index}:v"],
            [filt("loop", -1, size=1, start=0)]
            + _cover_crop(bg_pos.width, bg_pos.height)
            + [filt("fps", fps), filt("format", "yuv420p")],
            [bg],
        )
        graph.add([], [black, filt("format", "yuv420p")], [blank])
        graph.add([blank, bg], [filt("overlay", fmt(bg_pos.x), fmt(bg_pos.y))], [canvas])
    else:
        graph.add([], [black, filt("format", "yuv420p")], [canvas])

    # One copy of the canvas per video segment.
    if len(segments) > 1:
        bases = [graph.label(f"bg_for_{name}") for _, _, name in segments]
        graph.add([canvas], [filt("split", len(segments))], bases)
    else:
        bases = [graph.label(f"bg_for_{segments[0][2]}")]
        graph.add([canvas], ["null"], bases)

    # Each segment fitted inside its rectangle, centred there, over the canvas.
    video: Dict[str, str] = {}
    for (index, role, name), base in zip(segments, bases):
        pos = position(role)
        w, h = fmt(pos.width), fmt(pos.height)
        scaled, video[name] = graph.label(f"{name}_scaled"), graph.label(f"v_{name}")
        graph.add(
            [f"{index}:v"],
            [
                filt("scale", w, h, force_original_aspect_ratio="decrease", flags="bicubic"),
                filt("setsar", "1:1"),
                filt("fps", fps),
                filt("format", "yuv420p"),
            ],
            [scaled],
        )
        graph.add(
            [base, scaled],
            [
                filt(
                    "overlay",
                    f"{fmt(pos.x)}+({w}-w)/2",
                    f"{fmt(pos.y)}+({h}-h)/2",
                    shortest=1,
                )
            ]
            + _cfr(fps),
            [video[name]],
        )

    # Cover still, held for cover_duration over silence.
    concat: List[Tuple[str, str]] = []
    if cover_index is not None:
        cv_pos = position(Role.COVER)
        cv_scaled, cv_blank = graph.label("cv_scaled"), graph.label("cv_bg")
        cover_v, cover_a = graph.label("cover_v"), graph.label("cover_a")
        frames = max(1, round(req.cover_duration * fps))
        graph.add(
            [f"{cover_index}:v"],
            _cover_crop(cv_pos.width, cv_pos.height) + [filt("fps", fps), filt("format", "yuv420p")],
            [cv_scaled],
        )
        graph.add([], [black, filt("format", "yuv420p")], [cv_blank])
        graph.add(
            [cv_blank, cv_scaled],
            [filt("overlay", fmt(cv_pos.x), fmt(cv_pos.y), shortest=1)]
            + _cfr(fps)
            + [filt("loop", frames - 1, size=1, start=0)],
            [cover_v],
        )
        graph.add(
            [],
            [
                filt("anullsrc", r=rate, cl="stereo"),
                filt(
                    "aformat",
                    sample_fmts="fltp",
                    sample_rates=rate,
                    channel_layouts="stereo",
                ),
                filt("atrim", 0, fmt(req.cover_duration)),
                filt("asetpts", "PTS-STARTPTS"),
            ],
            [cover_a],
        )
        concat.append((cover_v, cover_a))

    for _, _, name in segments:
        concat.append((video[name], audio[name]))

    if len(concat) > 1:
        final_v, final_a = graph.label("final_v"), graph.label("final_a")
        graph.add(
            [label for pair in concat for label in pair],
            [filt("concat", n=len(concat), v=1, a=1)],
            [final_v, final_a],
        )
    else:
        final_v, final_a = concat[0]

    argv += ["-filter_complex", graph.serialize()]
    argv += ["-map", f"[{final_v}]", "-map", f"[{final_a}]"]
    argv += _video_output(settings, fps)
    argv.append(req.output)
    return BuiltCommand(argv, graph)


def preview_dimensions(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """Clamp the longest side to ``max_dimension`` keeping the aspect ratio."""
    ratio = width / height
    if width >= height:
        return max_dimension, round(max_dimension / ratio)
    return round(max_dimension * ratio), max_dimension


def _build_resize(req: ResizeRequest) -> BuiltCommand:
    width, height = req.width, req.height
    if req.preview:
        width, height = preview_dimensions(width, height, req.preview_max_dimension)

    graph = FilterGraph()
    bg_src, fg_src = graph.label("bg_src"), graph.label("fg_src")
    bg, fg, out = graph.label("bg"), graph.label("fg"), graph.label("out")

    graph.add(["0:v"], [filt("split", 2)], [bg_src, fg_src])
    background = [
        filt("scale", width, height, force_original_aspect_ratio="increase"),
        filt("crop", width, height, f"(iw-{width})/2", f"(ih-{height})/2"),
    ]
    if req.blur_amount > 0:
        background.append(filt("boxblur", req.blur_amount, req.blur_amount))
    graph.add([bg_src], background, [bg])
    graph.add(
        [fg_src],
        [filt("scale", width, height, force_original_aspect_ratio="decrease")],
        [fg],
    )
    graph.add([bg, fg], [filt("overlay", "(W-w)/2", "(H-h)/2")], [out])

    argv = ["-y", "-i", req.input]
    if req.preview:
        argv += ["-t", fmt(req.preview_seconds)]
    argv += [
        "-filter_complex", graph.serialize(),
        "-map", f"[{out}]",
        "-map", "0:a?",
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-tune", "fastdecode",
    ]
    if req.preview:
        argv += ["-crf", str(RESIZE_PREVIEW_CRF), "-r", str(TARGET_FPS)]
    else:
        argv += ["-crf", str(RESIZE_CRF)]
    argv += ["-threads", str(req.threads or 0)]
    argv += ["-pix_fmt", "yuv420p", "-c:a", "copy", req.output]
    return BuiltCommand(argv, graph)


BUILDERS: Dict[str, Tuple[Type[BaseModel], Callable[..., BuiltCommand]]] = {
    "image_preview": (ImagePreviewRequest, _build_image_preview),
    "logo": (LogoOverlayRequest, _build_logo),
    "stitch": (StitchRequest, _build_stitch),
    "merge": (MergeRequest, _build_merge),
    "resize": (ResizeRequest, _build_resize),
}


def build_command(request: Union[Request, dict]) -> BuiltCommand:
    """Build the argv and filter graph for ``request``.

    ``request`` may be a request model or a plain dict with a ``mode`` key.

    Raises:
        UnsupportedModeError: If the mode is missing or unknown.
        MissingAssetError: If a required input path is empty.
    """
    mode = request.get("mode") if isinstance(request, dict) else getattr(request, "mode", None)
    if mode not in BUILDERS:
        raise UnsupportedModeError(
            f"unsupported composition mode {mode!r} (expected one of: {', '.join(BUILDERS)})"
        )

    model, builder = BUILDERS[mode]
    if isinstance(request, dict):
        request = model(**request)
    elif not isinstance(request, model):
        raise UnsupportedModeError(f"{type(request).__name__} cannot be built as {mode!r}")

    _require_inputs(request)
    return builder(request)


def build(request: Union[Request, dict]) -> List[str]:
    """Argument list for ``request`` (binary path excluded)."""
    return build_command(request).argv


_REQUIRED_FIELDS = {
    "image_preview": ("image", "output"),
    "logo": ("image", "logo", "output"),
    "stitch": ("primary", "secondary", "output"),
    "merge": ("main", "output"),
    "resize": ("input", "output"),
}


def _require_inputs(request: BaseModel) -> None:
    for name in _REQUIRED_FIELDS[request.mode]:
        if not getattr(request, name):
            raise MissingAssetError(f"{request.mode} request has no {name}")
