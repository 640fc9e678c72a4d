# catsync Configuration Loader
# Load, save, and manage YAML configuration files

import copy
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from catsync.config.defaults import DEFAULT_CONFIG, generate_default_config
from catsync.config.schema import CatsyncConfig

# Sections merged key by key with their defaults
_NESTED_SECTIONS = ("remote", "retry", "batching", "priority", "detection", "safety", "storage", "output")


def get_config_dir() -> Path:
    """Get the catsync configuration directory."""
    return Path.home() / ".config" / "catsync"


def get_config_path() -> Path:
    """Get the path to the configuration file."""
    # Allow override via environment variable
    env_path = os.environ.get("CATSYNC_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return get_config_dir() / "config.yaml"


def load_config(config_path: Optional[Path] = None) -> CatsyncConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        CatsyncConfig: Validated configuration object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValidationError: If config file is invalid.
    """
    if config_path is None:
        config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}\nRun 'catsync config init' to create one.")

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}

    merged = _merge_with_defaults(data)

    return CatsyncConfig.model_validate(merged)


def save_config(config: CatsyncConfig, config_path: Optional[Path] = None) -> Path:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration object to save.
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Path: Path where config was saved.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    # mode='json' serializes Enums as their string values
    data = config.model_dump(exclude_none=True, mode="json")

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    return config_path


def ensure_config_exists() -> tuple[Path, bool]:
    """
    Ensure configuration file exists, creating default if needed.

    Returns:
        Tuple of (config_path, was_created).
    """
    config_path = get_config_path()

    if config_path.exists():
        return config_path, False

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(generate_default_config(), encoding="utf-8")
    return config_path, True


def validate_config_file(config_path: Optional[Path] = None) -> tuple[bool, list[str]]:
    """
    Validate a configuration file without loading it into the system.

    Args:
        config_path: Path to config file to validate.

    Returns:
        Tuple of (is_valid, error_messages).
    """
    if config_path is None:
        config_path = get_config_path()

    errors: list[str] = []

    if not config_path.exists():
        return False, [f"Configuration file not found: {config_path}"]

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        return False, [f"Invalid YAML syntax: {e}"]

    if data is None:
        return False, ["Configuration file is empty"]

    if not isinstance(data, dict):
        return False, ["Configuration root must be a mapping"]

    try:
        CatsyncConfig.model_validate(_merge_with_defaults(data))
    except ValidationError as e:
        for error in e.errors():
            loc = " -> ".join(str(part) for part in error["loc"])
            errors.append(f"{loc}: {error['msg']}")
        return False, errors

    if "remote" not in data or not (data["remote"] or {}).get("shop"):
        errors.append("Missing 'remote.shop' setting")

    if not data.get("datasets"):
        errors.append("No datasets defined")

    return len(errors) == 0, errors


def _merge_with_defaults(data: dict) -> dict:
    """Merge loaded data with default values for missing keys."""
    result = copy.deepcopy(DEFAULT_CONFIG)

    for section in _NESTED_SECTIONS:
        if section in data and data[section] is not None:
            result[section] = {**result[section], **data[section]}

    # User datasets replace the sample datasets entirely
    if "datasets" in data:
        result["datasets"] = data["datasets"] or {}

    return result
