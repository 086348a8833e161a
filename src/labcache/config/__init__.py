"""Configuration models and loaders for labcache."""

from .loader import ConfigError, DEFAULT_CONFIG_PATH, dump_example_config, load_config
from .models import (
    CacheConfig,
    FetchConfig,
    LabCacheConfig,
    PartitionConfig,
    RuntimeConfig,
)

__all__ = [
    "CacheConfig",
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "FetchConfig",
    "LabCacheConfig",
    "PartitionConfig",
    "RuntimeConfig",
    "dump_example_config",
    "load_config",
]
