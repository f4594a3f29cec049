"""Configuration helpers for the Paint Bridge daemon."""

from .model import RuntimeConfig
from .settings import build_runtime_config, load_runtime_config

__all__ = ["RuntimeConfig", "build_runtime_config", "load_runtime_config"]
