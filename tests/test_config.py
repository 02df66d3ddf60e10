import pytest
from pathlib import Path
from pydantic import ValidationError

from video_stitcher.config import get_config_value, load_yaml, merge_dicts, resolve_config
from video_stitcher.models import StitcherConfig


def test_default_config_loads():
    """Test default.yaml loads without errors."""
    config = resolve_config()
    assert isinstance(config, StitcherConfig)
    assert config.encoding.quality == "medium"
    assert config.encoding.preview.crf == 35
    assert config.ffmpeg.global_timeout_s is None
    assert config.images.target_size_kb == 380
    assert config.images.material_size == 800
    assert config.images.material_target_kb == 400
    assert config.queue.concurrency >= 1


def test_cli_override_concurrency():
    """Test CLI args override YAML defaults."""
    config = resolve_config({"concurrency": 6})
    assert config.queue.concurrency == 6


def test_cli_override_quality_and_timeout():
    config = resolve_config({"quality": "high", "timeout": 900})
    assert config.encoding.quality == "high"
    assert config.ffmpeg.global_timeout_s == 900


def test_cli_override_binaries():
    config = resolve_config({"ffmpeg_path": "/opt/ffmpeg", "ffprobe_path": "/opt/ffprobe"})
    assert config.ffmpeg.ffmpeg_path == "/opt/ffmpeg"
    assert config.ffmpeg.ffprobe_path == "/opt/ffprobe"


def test_unrelated_cli_keys_ignored():
    config = resolve_config({"output": "out", "verbose": True, "command": "stitch"})
    assert isinstance(config, StitcherConfig)


def test_local_yaml_overrides_default(tmp_path):
    """Test Default < Local layering."""
    default = tmp_path / "default.yaml"
    local = tmp_path / "local.yaml"
    default.write_text("encoding:\n  quality: low\n  fps: 25\n")
    local.write_text("encoding:\n  fps: 60\n")

    config = resolve_config(default_path=default, local_path=local)

    assert config.encoding.quality == "low"
    assert config.encoding.fps == 60


def test_invalid_cli_value_rejected():
    """Test validation catches invalid values."""
    with pytest.raises(ValidationError):
        resolve_config({"concurrency": 0})
    with pytest.raises(ValidationError):
        resolve_config({"quality": "ultra"})


def test_missing_yaml_returns_empty_dict():
    """Test graceful handling of missing config files."""
    assert load_yaml(Path("nonexistent.yaml")) == {}


def test_merge_dicts_is_recursive():
    merged = merge_dicts({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})
    assert merged == {"a": {"x": 1, "y": 3}, "b": 1}


def test_get_config_value():
    config = StitcherConfig()
    assert get_config_value(config, "encoding.preview.crf") == 35
    assert get_config_value(config, "encoding.nope", default="x") == "x"
    assert get_config_value({"a": {"b": 2}}, "a.b") == 2


def test_video_extension_normalized():
    config = StitcherConfig.from_dict({"output": {"video_extension": "mkv"}})
    assert config.output.video_extension == ".mkv"


def test_resize_presets_from_yaml(tmp_path):
    default = tmp_path / "default.yaml"
    default.write_text(
        "resize:\n  presets:\n    square:\n      - {width: 1080, height: 1080, suffix: _sq}\n"
    )
    config = resolve_config(default_path=default, local_path=tmp_path / "none.yaml")
    assert config.resize.presets["square"][0].width == 1080
