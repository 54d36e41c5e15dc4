"""Unit tests for self-healing configuration loading."""

import pytest
import yaml
from dataclasses import replace

from api_healer.core.config_loader import SelfHealingConfigLoader
from api_healer.core.exceptions import ConfigurationError
from api_healer.core.models import FailureKind, HealingConfiguration


class TestSelfHealingConfigLoader:
    """Test YAML loading, defaults and validation."""

    def test_defaults_when_file_missing(self, tmp_path):
        loader = SelfHealingConfigLoader(str(tmp_path / "missing.yaml"))

        config = loader.load_config()

        assert config.max_attempts_per_test == 2
        assert config.max_total_time == 300.0
        assert FailureKind.STATUS_CODE_CHANGED in config.healable_failure_kinds
        assert FailureKind.AUTH not in config.healable_failure_kinds

    def test_file_values_merge_over_defaults(self, tmp_path):
        """Partial sections keep the defaults for keys they omit."""
        config_path = tmp_path / "self_healing.yaml"
        config_path.write_text(yaml.safe_dump({
            "self_healing": {
                "budgets": {"max_attempts_per_test": 4},
                "completion": {"model": "gpt-4o-mini"},
                "cache": {"max_size": 10},
            }
        }), encoding="utf-8")

        config = SelfHealingConfigLoader(str(config_path)).load_config()

        assert config.max_attempts_per_test == 4
        assert config.max_total_time == 300.0
        assert config.ai_model == "gpt-4o-mini"
        assert config.ai_temperature == 0.2
        assert config.cache_max_size == 10

    def test_save_and_reload(self, tmp_path):
        loader = SelfHealingConfigLoader(str(tmp_path / "nested" / "self_healing.yaml"))
        config = HealingConfiguration(min_confidence=0.75, healable_failure_kinds=[FailureKind.FIELD_MISSING])

        loader.save_config(config)
        reloaded = SelfHealingConfigLoader(str(loader.config_path)).load_config()

        assert reloaded.min_confidence == 0.75
        assert reloaded.healable_failure_kinds == [FailureKind.FIELD_MISSING]

    def test_cached_config_is_reused(self, tmp_path):
        loader = SelfHealingConfigLoader(str(tmp_path / "missing.yaml"))

        assert loader.load_config() is loader.load_config()

    def test_invalid_failure_kind(self, tmp_path):
        config_path = tmp_path / "self_healing.yaml"
        config_path.write_text(yaml.safe_dump({
            "self_healing": {"policy": {"healable_failure_kinds": ["flaky_selector"]}}
        }), encoding="utf-8")

        with pytest.raises(ConfigurationError):
            SelfHealingConfigLoader(str(config_path)).load_config()

    def test_invalid_yaml(self, tmp_path):
        config_path = tmp_path / "self_healing.yaml"
        config_path.write_text("self_healing: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            SelfHealingConfigLoader(str(config_path)).load_config()


class TestValidateConfig:
    """Test configuration validation rules."""

    def test_default_configuration_is_valid(self):
        SelfHealingConfigLoader.validate_config(HealingConfiguration())

    @pytest.mark.parametrize("changes", [
        {"max_attempts_per_test": 0},
        {"max_total_time": 0},
        {"min_confidence": 1.2},
        {"healable_failure_kinds": [FailureKind.FIELD_MISSING, FailureKind.FIELD_MISSING]},
        {"few_shot_count": 6},
        {"ai_max_retries": 11},
        {"cache_eviction_policy": "fifo"},
        {"enable_rule_based": False, "enable_ai": False},
    ])
    def test_invalid_values(self, changes):
        with pytest.raises(ConfigurationError) as exc_info:
            SelfHealingConfigLoader.validate_config(replace(HealingConfiguration(), **changes))

        assert exc_info.value.details["errors"]
