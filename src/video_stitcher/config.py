import yaml
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .models import StitcherConfig

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")


def get_config_value(config: Union[StitcherConfig, Dict], path: str, default=None):
    """
    Safely get a config value from either Pydantic model or dict.

    Args:
        config: StitcherConfig model or dict
        path: Dot-separated path like "encoding.preview.crf"
        default: Default value if not found

    Returns:
        The config value or default
    """
    if isinstance(config, StitcherConfig):
        config = config.model_dump()

    value = config
    for key in path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file, returning empty dict if not found."""
    path = Path(path)
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: Dict, override: Dict) -> Dict:
    """Recursive merge of two dictionaries."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def resolve_config(
    cli_args: Optional[Dict[str, Any]] = None,
    default_path: Path = DEFAULT_CONFIG_PATH,
    local_path: Path = LOCAL_CONFIG_PATH,
) -> StitcherConfig:
    """
    Resolve config: Default < Local < CLI

    Raises:
        pydantic.ValidationError: If the merged values are invalid
    """
    cli_args = cli_args or {}

    config_data = load_yaml(default_path)
    config_data = merge_dicts(config_data, load_yaml(local_path))

    config = StitcherConfig.from_dict(config_data)
    return config.merge_cli_overrides(cli_args)
