"""Image work with Pillow: target-size JPEG compression, grid tiles and cover formats."""

import io
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from PIL import Image

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp"})

MIN_QUALITY = 50
QUALITY_STEP = 10
SCALE_STEP = 0.85


@dataclass
class CompressResult:
    """Outcome of one compression."""
    output_path: Path
    original_size: int
    compressed_size: int
    skipped: bool = False
    quality: Optional[int] = None
    scale: float = 1.0


def is_supported(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def needs_compression(path: Union[str, Path], target_size_kb: int) -> bool:
    """True if the file is larger than ``target_size_kb``."""
    return os.path.getsize(path) > target_size_kb * 1024


def open_rgb(path: Union[str, Path]) -> Image.Image:
    """Load an image as RGB, flattening transparency onto white."""
    with Image.open(path) as img:
        img.load()
        # JPEG has no alpha channel.
        if img.mode in ("RGBA", "LA", "P"):
            rgba = img.convert("RGBA")
            rgb = Image.new("RGB", rgba.size, (255, 255, 255))
            rgb.paste(rgba, mask=rgba.split()[-1])
            return rgb
        return img.convert("RGB")


def _encode(image: Image.Image, quality: int, scale: float) -> bytes:
    if scale < 1.0:
        size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
        image = image.resize(size, Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, progressive=True, optimize=True)
    return buffer.getvalue()


def find_optimal_compression(
    image: Image.Image, target_bytes: int, quality: int = 90, max_iterations: int = 15
) -> Tuple[bytes, int, float]:
    """Lower quality, then dimensions, until the JPEG fits in ``target_bytes``.

    Quality drops by 10 per step down to 50; after that the image shrinks by
    15% per step. Gives up after ``max_iterations`` encodes and returns the
    last (smallest) attempt.

    Returns:
        (jpeg bytes, quality used, scale used)
    """
    scale = 1.0
    data = _encode(image, quality, scale)
    iterations = 1
    while len(data) > target_bytes and iterations < max_iterations:
        if quality - QUALITY_STEP >= MIN_QUALITY:
            quality -= QUALITY_STEP
        else:
            scale *= SCALE_STEP
        data = _encode(image, quality, scale)
        iterations += 1
    return data, quality, scale


def compress_image(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    target_size_kb: int = 380,
    quality: int = 90,
    max_iterations: int = 15,
) -> CompressResult:
    """Write a JPEG of at most ``target_size_kb`` (best effort) to ``output_path``.

    Sources already within the target are copied unchanged.

    Raises:
        ValueError: If the file extension is not a supported image type.
        OSError: If Pillow cannot read the image.
    """
    input_path, output_path = Path(input_path), Path(output_path)
    if not is_supported(input_path):
        raise ValueError(f"unsupported image type: {input_path.suffix or input_path.name}")

    original_size = input_path.stat().st_size
    if not needs_compression(input_path, target_size_kb):
        shutil.copyfile(input_path, output_path)
        logger.debug("%s already within %d KB, copied", input_path, target_size_kb)
        return CompressResult(output_path, original_size, original_size, skipped=True)

    rgb = open_rgb(input_path)

    data, used_quality, scale = find_optimal_compression(
        rgb, target_size_kb * 1024, quality, max_iterations
    )
    output_path.write_bytes(data)
    logger.debug(
        "Compressed %s: %d -> %d bytes (quality=%d, scale=%.2f)",
        input_path, original_size, len(data), used_quality, scale,
    )
    return CompressResult(
        output_path, original_size, len(data), quality=used_quality, scale=scale
    )


# ---------------------------------------------------------------------------
# Material exports: grid tiles and cover formats
# ---------------------------------------------------------------------------

GRID_ROWS = 3
GRID_COLS = 3

# Width/height ratio band treated as square.
SQUARE_RATIO = (0.9, 1.1)

COVER_SIZES = {
    "square": (800, 800, "_800x800"),
    "landscape": (1920, 1080, "_1920x1080"),
    "portrait": (1080, 1920, "_1080x1920"),
}


def image_kind(width: int, height: int) -> str:
    """``square``, ``landscape`` or ``portrait``; near-square counts as square."""
    ratio = max(width, 1) / max(height, 1)
    if SQUARE_RATIO[0] <= ratio <= SQUARE_RATIO[1]:
        return "square"
    return "landscape" if width >= height else "portrait"


def image_size(path: Union[str, Path]) -> Tuple[int, int]:
    with Image.open(path) as img:
        return img.size


def cover_target(width: int, height: int) -> Tuple[int, int, str]:
    """Cover size and filename suffix for an image of the given dimensions."""
    return COVER_SIZES[image_kind(width, height)]


def convert_cover(
    input_path: Union[str, Path], output_path: Union[str, Path], quality: int = 90
) -> Tuple[int, int]:
    """Stretch an image to its cover size and save it as JPEG.

    Returns:
        (width, height) written
    """
    rgb = open_rgb(input_path)
    width, height, _ = cover_target(*rgb.size)
    rgb.resize((width, height), Image.Resampling.LANCZOS).save(
        output_path, format="JPEG", quality=quality
    )
    return width, height


def grid_tiles(input_path: Union[str, Path], tile_size: int = 800) -> List[Image.Image]:
    """Cut an image into a 3x3 grid, row by row.

    Square sources smaller than three tiles are enlarged first so each tile
    is ``tile_size`` wide. Other sources are cut at their own size.
    """
    rgb = open_rgb(input_path)
    if image_kind(*rgb.size) == "square" and rgb.width < tile_size * GRID_COLS:
        side = tile_size * GRID_COLS
        rgb = rgb.resize((side, side), Image.Resampling.LANCZOS)

    tile_w = rgb.width // GRID_COLS
    tile_h = rgb.height // GRID_ROWS
    if tile_w == 0 or tile_h == 0:
        raise ValueError(f"image too small for a {GRID_ROWS}x{GRID_COLS} grid: {rgb.size}")

    return [
        rgb.crop((col * tile_w, row * tile_h, (col + 1) * tile_w, (row + 1) * tile_h))
        for row in range(GRID_ROWS)
        for col in range(GRID_COLS)
    ]


def save_jpeg_under(
    image: Image.Image,
    output_path: Union[str, Path],
    target_size_kb: int,
    quality: int = 90,
    max_iterations: int = 15,
) -> int:
    """Write ``image`` as a JPEG of at most ``target_size_kb`` (best effort).

    Returns the number of bytes written.
    """
    data, _, _ = find_optimal_compression(image, target_size_kb * 1024, quality, max_iterations)
    Path(output_path).write_bytes(data)
    return len(data)
