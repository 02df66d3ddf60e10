"""Tests for target-size JPEG compression."""

import os

import pytest
from PIL import Image

from video_stitcher.images import (
    compress_image,
    convert_cover,
    cover_target,
    find_optimal_compression,
    grid_tiles,
    image_kind,
    is_supported,
    needs_compression,
    save_jpeg_under,
)


def noise_image(path, size=500):
    """Random pixels compress badly, so the file is large."""
    Image.frombytes("RGB", (size, size), os.urandom(size * size * 3)).save(path)
    return path


class TestHelpers:
    def test_is_supported(self):
        assert is_supported("a.JPG")
        assert is_supported("b.webp")
        assert not is_supported("c.tiff")
        assert not is_supported("noext")

    def test_needs_compression(self, tmp_path):
        path = tmp_path / "f.bin"
        path.write_bytes(b"x" * 2048)
        assert needs_compression(path, 1)
        assert not needs_compression(path, 2)


class TestCompressImage:
    """Test compression and copy behaviour."""

    def test_small_file_copied(self, tmp_path):
        src = tmp_path / "small.png"
        Image.new("RGB", (8, 8), "blue").save(src)
        dst = tmp_path / "out.png"

        result = compress_image(src, dst, target_size_kb=50)

        assert result.skipped
        assert dst.read_bytes() == src.read_bytes()

    def test_large_file_reduced_to_target(self, tmp_path):
        src = noise_image(tmp_path / "big.png")
        dst = tmp_path / "big.jpg"

        result = compress_image(src, dst, target_size_kb=60)

        assert not result.skipped
        assert result.compressed_size == dst.stat().st_size
        assert result.compressed_size <= 60 * 1024
        assert result.compressed_size < result.original_size
        with Image.open(dst) as img:
            assert img.format == "JPEG"

    def test_transparency_flattened(self, tmp_path):
        src = tmp_path / "alpha.png"
        Image.frombytes("RGBA", (300, 300), os.urandom(300 * 300 * 4)).save(src)
        dst = tmp_path / "alpha.jpg"

        compress_image(src, dst, target_size_kb=40)

        with Image.open(dst) as img:
            assert img.mode == "RGB"

    def test_unsupported_extension(self, tmp_path):
        src = tmp_path / "notes.txt"
        src.write_text("hello")
        with pytest.raises(ValueError, match="unsupported"):
            compress_image(src, tmp_path / "out.jpg")


class TestFindOptimalCompression:
    def test_quality_drops_before_scaling(self):
        image = Image.frombytes("RGB", (300, 300), os.urandom(300 * 300 * 3))
        data, quality, scale = find_optimal_compression(image, target_bytes=10 ** 9)
        assert (quality, scale) == (90, 1.0)

    def test_gives_up_after_max_iterations(self):
        image = Image.frombytes("RGB", (300, 300), os.urandom(300 * 300 * 3))
        data, quality, scale = find_optimal_compression(image, target_bytes=1, max_iterations=3)
        assert quality == 70
        assert scale == 1.0
        assert len(data) > 1


class TestMaterialHelpers:
    """Test grid slicing and cover conversion."""

    @pytest.mark.parametrize(
        "size, kind",
        [
            ((800, 800), "square"),
            ((1000, 950), "square"),
            ((1920, 1080), "landscape"),
            ((720, 1280), "portrait"),
        ],
    )
    def test_image_kind(self, size, kind):
        assert image_kind(*size) == kind

    def test_cover_target(self):
        assert cover_target(500, 500) == (800, 800, "_800x800")
        assert cover_target(1280, 720) == (1920, 1080, "_1920x1080")
        assert cover_target(720, 1280) == (1080, 1920, "_1080x1920")

    def test_small_square_enlarged_before_slicing(self, tmp_path):
        src = tmp_path / "square.png"
        Image.new("RGB", (300, 300), "blue").save(src)

        tiles = grid_tiles(src, tile_size=100)

        assert len(tiles) == 9
        assert all(tile.size == (100, 100) for tile in tiles)

    def test_tiles_in_row_order(self, tmp_path):
        src = tmp_path / "wide.png"
        img = Image.new("RGB", (90, 30), "white")
        img.paste((255, 0, 0), (30, 0, 60, 10))
        img.save(src)

        tiles = grid_tiles(src, tile_size=800)

        assert [tile.size for tile in tiles] == [(30, 10)] * 9
        assert tiles[1].getpixel((5, 5)) == (255, 0, 0)
        assert tiles[3].getpixel((5, 5)) == (255, 255, 255)

    def test_too_small_for_grid(self, tmp_path):
        src = tmp_path / "thin.png"
        Image.new("RGB", (2, 90), "white").save(src)
        with pytest.raises(ValueError, match="too small"):
            grid_tiles(src)

    def test_convert_cover(self, tmp_path):
        src = tmp_path / "portrait.png"
        Image.new("RGBA", (360, 640), (0, 128, 0, 128)).save(src)
        dst = tmp_path / "portrait_cover.jpg"

        assert convert_cover(src, dst) == (1080, 1920)
        with Image.open(dst) as img:
            assert img.format == "JPEG"
            assert img.size == (1080, 1920)

    def test_save_jpeg_under(self, tmp_path):
        image = Image.frombytes("RGB", (300, 300), os.urandom(300 * 300 * 3))
        dst = tmp_path / "tile.jpg"

        written = save_jpeg_under(image, dst, target_size_kb=30)

        assert written == dst.stat().st_size
        assert written <= 30 * 1024
