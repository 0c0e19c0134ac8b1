"""Configuration loading and validation."""

from .models import (
    SystemConfig,
    MemoryConfig,
    DuplicateDetectionConfig,
    GenerationConfig,
)
from .loader import ConfigLoader, ConfigLoadError, ConfigValidationError

__all__ = [
    "SystemConfig",
    "MemoryConfig",
    "DuplicateDetectionConfig",
    "GenerationConfig",
    "ConfigLoader",
    "ConfigLoadError",
    "ConfigValidationError",
]
