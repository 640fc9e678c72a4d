# catsync Configuration Module
# Handles YAML-based configuration loading, validation, and defaults

from catsync.config.defaults import DEFAULT_CONFIG, generate_default_config
from catsync.config.loader import (
    ensure_config_exists,
    get_config_path,
    load_config,
    save_config,
    validate_config_file,
)
from catsync.config.schema import (
    BatchingConfig,
    CatsyncConfig,
    DatasetConfig,
    DetectionConfig,
    OutputConfig,
    PriorityConfig,
    RemoteConfig,
    RetryConfig,
    SafetyConfig,
    StorageConfig,
    VolumeTier,
)

__all__ = [
    # Schema
    "CatsyncConfig",
    "RemoteConfig",
    "RetryConfig",
    "BatchingConfig",
    "VolumeTier",
    "PriorityConfig",
    "DetectionConfig",
    "SafetyConfig",
    "StorageConfig",
    "DatasetConfig",
    "OutputConfig",
    # Loader
    "load_config",
    "save_config",
    "get_config_path",
    "ensure_config_exists",
    "validate_config_file",
    # Defaults
    "DEFAULT_CONFIG",
    "generate_default_config",
]
