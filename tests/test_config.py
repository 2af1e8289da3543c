"""
Tests for recovery preferences and the YAML resilience config.
"""

import pytest
import yaml
from pydantic import ValidationError

from toolhost_resilience.config import (
    RecoveryPreferences,
    ResilienceConfig,
    load_resilience_config,
)


class TestRecoveryPreferences:
    """Test RecoveryPreferences defaults and merging."""

    def test_defaults(self) -> None:
        prefs = RecoveryPreferences()
        assert prefs.auto_retry is True
        assert prefs.max_retries == 3
        assert prefs.use_alternative_services is True
        assert prefs.enable_offline_mode is True
        assert prefs.show_recovery_notifications is True

    def test_merged_keeps_unspecified_fields(self) -> None:
        """Test that a partial update leaves the other fields untouched."""
        prefs = RecoveryPreferences(max_retries=5).merged(auto_retry=False)
        assert prefs.auto_retry is False
        assert prefs.max_retries == 5

    def test_merged_ignores_none(self) -> None:
        prefs = RecoveryPreferences().merged(max_retries=None, enable_offline_mode=False)
        assert prefs.max_retries == 3
        assert prefs.enable_offline_mode is False

    def test_merged_rejects_unknown_keys(self) -> None:
        with pytest.raises(ValueError, match="max_retry"):
            RecoveryPreferences().merged(max_retry=2)

    def test_negative_max_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RecoveryPreferences(max_retries=-1)


class TestResilienceConfig:

    def test_default_tables(self) -> None:
        config = ResilienceConfig()
        assert config.alternatives["replit"] == ["codepen", "jsbin"]
        assert "code-editor" in config.offline_capable_services
        assert config.transformation_compatibility["image"] == ["image", "document"]
        assert config.max_checkpoints == 10

    def test_max_delay_below_base_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ResilienceConfig(base_delay_ms=5000, max_delay_ms=1000)

    def test_self_alternatives_dropped(self) -> None:
        config = ResilienceConfig(alternatives={"a": ["a", "b"]})
        assert config.alternatives == {"a": ["b"]}


class TestLoadResilienceConfig:

    def test_writes_defaults_when_missing(self, tmp_path) -> None:
        """Test that a missing file is created with the default values."""
        path = tmp_path / "conf" / "resilience.yaml"
        config = load_resilience_config(path)

        assert config == ResilienceConfig()
        assert path.exists()
        data = yaml.safe_load(path.read_text())
        assert data["version"] == 1
        assert data["max_checkpoints"] == 10

    def test_reads_existing_file(self, tmp_path) -> None:
        path = tmp_path / "resilience.yaml"
        path.write_text(yaml.dump({"version": 1, "max_checkpoints": 4, "alternatives": {"x": ["y"]}}))
        config = load_resilience_config(path)
        assert config.max_checkpoints == 4
        assert config.alternatives == {"x": ["y"]}

    def test_invalid_yaml_falls_back_to_defaults(self, tmp_path) -> None:
        path = tmp_path / "resilience.yaml"
        path.write_text("max_checkpoints: [unclosed")
        assert load_resilience_config(path) == ResilienceConfig()
        assert path.read_text() == "max_checkpoints: [unclosed"

    def test_invalid_values_fall_back_to_defaults(self, tmp_path) -> None:
        path = tmp_path / "resilience.yaml"
        path.write_text(yaml.dump({"max_checkpoints": 0}))
        assert load_resilience_config(path).max_checkpoints == 10

    def test_non_mapping_falls_back_to_defaults(self, tmp_path) -> None:
        path = tmp_path / "resilience.yaml"
        path.write_text("- just\n- a list\n")
        assert load_resilience_config(path) == ResilienceConfig()
