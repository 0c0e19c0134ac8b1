"""Tests for YAML configuration loading and validation."""

import pytest

from recall_engine.config import (
    ConfigLoader,
    ConfigLoadError,
    ConfigValidationError,
    DuplicateDetectionConfig,
    MemoryConfig,
    SystemConfig,
)
from recall_engine.config.loader import CONFIG_ENV_VAR


@pytest.fixture(autouse=True)
def no_config_env(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)


def write_config(tmp_path, content: str):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    path = config_dir / "system.yaml"
    path.write_text(content, encoding="utf-8")
    return path


class TestConfigLoader:
    """Test suite for ConfigLoader.load_system_config."""

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test a missing system.yaml yields the default config."""
        config = ConfigLoader(tmp_path).load_system_config()

        assert config == SystemConfig()
        assert config.memory.embedding_chunk_limit == 480
        assert config.duplicate_detection.similarity_threshold == 0.85
        assert config.generation.max_attempts == 3

    def test_empty_file_uses_defaults(self, tmp_path):
        """Test an empty file is treated as an empty mapping."""
        write_config(tmp_path, "")
        assert ConfigLoader(tmp_path).load_system_config() == SystemConfig()

    def test_overrides_applied(self, tmp_path):
        """Test values from YAML override defaults."""
        write_config(tmp_path, (
            "memory:\n"
            "  embedding_chunk_limit: 256\n"
            "  channel_budget_ratio: 0.75\n"
            "duplicate_detection:\n"
            "  anchor_length: 40\n"
            "generation:\n"
            "  max_attempts: 5\n"
            "debug: true\n"
        ))

        config = ConfigLoader(tmp_path).load_system_config()

        assert config.memory.embedding_chunk_limit == 256
        assert config.memory.channel_budget_ratio == 0.75
        assert config.duplicate_detection.anchor_length == 40
        assert config.generation.max_attempts == 5
        assert config.debug is True

    def test_unknown_top_level_keys_ignored(self, tmp_path):
        """Test unrelated sections do not break loading."""
        write_config(tmp_path, "server:\n  port: 8080\n")
        assert ConfigLoader(tmp_path).load_system_config() == SystemConfig()

    def test_malformed_yaml(self, tmp_path):
        """Test a YAML syntax error raises ConfigLoadError."""
        write_config(tmp_path, "memory: [unclosed\n")
        with pytest.raises(ConfigLoadError, match="Invalid YAML"):
            ConfigLoader(tmp_path).load_system_config()

    def test_non_mapping_document(self, tmp_path):
        """Test a top-level list is rejected."""
        write_config(tmp_path, "- one\n- two\n")
        with pytest.raises(ConfigLoadError, match="Expected a mapping"):
            ConfigLoader(tmp_path).load_system_config()

    def test_validation_error_lists_locations(self, tmp_path):
        """Test invalid values raise ConfigValidationError with field locations."""
        path = write_config(tmp_path, "generation:\n  max_attempts: 0\n")

        with pytest.raises(ConfigValidationError) as exc_info:
            ConfigLoader(tmp_path).load_system_config()

        error = exc_info.value
        assert error.file_path == path
        assert error.errors[0]["loc"] == ("generation", "max_attempts")
        assert "generation → max_attempts" in str(error)

    def test_explicit_path(self, tmp_path):
        """Test a file path can be given directly."""
        path = tmp_path / "custom.yaml"
        path.write_text("memory:\n  default_limit: 25\n", encoding="utf-8")

        assert ConfigLoader().load_system_config(path).memory.default_limit == 25

    def test_environment_override(self, tmp_path, monkeypatch):
        """Test RECALL_ENGINE_CONFIG points at a file outside the config dir."""
        path = tmp_path / "elsewhere.yaml"
        path.write_text("generation:\n  temperature: 0.2\n", encoding="utf-8")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert ConfigLoader(tmp_path).load_system_config().generation.temperature == 0.2


class TestValidateSystemConfig:
    """Test suite for ConfigLoader.validate_system_config."""

    def test_valid(self):
        """Test valid data reports no errors."""
        assert ConfigLoader().validate_system_config({"memory": {"default_limit": 5}}) == (True, [])

    def test_invalid(self):
        """Test invalid data reports formatted errors."""
        valid, errors = ConfigLoader().validate_system_config({"memory": {"default_limit": -1}})

        assert valid is False
        assert errors[0].startswith("memory → default_limit")


class TestConfigModels:
    """Test suite for cross-field validation."""

    def test_chunk_limit_cannot_exceed_embedding_limit(self):
        """Test chunks must fit within the embedding input."""
        with pytest.raises(ValueError):
            MemoryConfig(embedding_chunk_limit=600, embedding_max_tokens=512)

    def test_channel_pattern_must_compile(self):
        """Test an invalid regex is rejected."""
        with pytest.raises(ValueError):
            MemoryConfig(channel_id_pattern="[unclosed")

    def test_near_miss_below_threshold(self):
        """Test the near-miss band must sit below the duplicate threshold."""
        with pytest.raises(ValueError):
            DuplicateDetectionConfig(similarity_threshold=0.8, near_miss_threshold=0.9)
