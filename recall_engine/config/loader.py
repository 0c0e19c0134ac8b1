"""
Loading of the system configuration file into SystemConfig.

The file is resolved in order: an explicit path, then the
RECALL_ENGINE_CONFIG environment variable, then
<config_dir>/config/system.yaml. A missing file means defaults.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from .models import SystemConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RECALL_ENGINE_CONFIG"


def format_validation_errors(errors: List[Dict[str, Any]]) -> List[str]:
    """Render pydantic error dicts as 'section → field: message' lines."""
    return [f"{' → '.join(str(part) for part in err['loc'])}: {err['msg']}" for err in errors]


class ConfigLoadError(Exception):
    """The configuration file could not be read or parsed."""
    pass


class ConfigValidationError(ConfigLoadError):
    """The configuration file parsed but does not satisfy the schema."""

    def __init__(self, errors: List[Dict[str, Any]], file_path: Path):
        self.errors = errors
        self.file_path = file_path
        details = "\n".join(f"  • {line}" for line in format_validation_errors(errors))
        super().__init__(f"Configuration validation failed for {file_path}:\n{details}")


class ConfigLoader:
    """Resolves, reads and validates the system configuration."""

    def __init__(self, config_dir: Path = Path(".")):
        self.config_dir = Path(config_dir)

    def resolve_path(self, file_path: Optional[Path] = None) -> Path:
        if file_path is not None:
            return Path(file_path)
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return Path(env_path)
        return self.config_dir / "config" / "system.yaml"

    def load_yaml(self, file_path: Path) -> Dict[str, Any]:
        """
        Parse a YAML document that must be a mapping.

        An empty document is treated as an empty mapping.

        Raises:
            ConfigLoadError: Unreadable file, invalid YAML or a non-mapping document
        """
        try:
            text = Path(file_path).read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ConfigLoadError(f"Configuration file not found: {file_path}") from e
        except OSError as e:
            raise ConfigLoadError(f"Failed to read {file_path}: {e}") from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML in {file_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigLoadError(
                f"Expected a mapping at the top of {file_path}, got {type(data).__name__}"
            )
        return data

    def load_system_config(self, file_path: Optional[Path] = None) -> SystemConfig:
        """
        Load and validate the system configuration.

        Raises:
            ConfigLoadError: The file exists but cannot be parsed
            ConfigValidationError: The file violates the schema
        """
        path = self.resolve_path(file_path)
        if not path.exists():
            logger.info(f"[CONFIG] No system config at {path}, using defaults")
            return SystemConfig()

        data = self.load_yaml(path)
        try:
            config = SystemConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigValidationError(e.errors(), path) from e

        logger.info(f"[CONFIG] Loaded system config from {path}")
        return config

    def validate_system_config(self, data: Dict[str, Any]) -> Tuple[bool, List[str]]:
        """Check config data without loading it; returns (is_valid, errors)."""
        try:
            SystemConfig.model_validate(data)
        except ValidationError as e:
            return False, format_validation_errors(e.errors())
        return True, []
