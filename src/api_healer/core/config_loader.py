"""Configuration loading and validation utilities for self-healing."""

import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from .models.healing_models import HealingConfiguration, FailureKind
from .exceptions import ConfigurationError
from .config import settings

logger = logging.getLogger(__name__)


class SelfHealingConfigLoader:
    """Loads and validates self-healing configuration."""

    DEFAULT_CONFIG = {
        "self_healing": {
            "enabled": True,
            "budgets": {
                "max_attempts_per_test": 2,
                "max_total_time": 300
            },
            "policy": {
                "min_confidence": 0.6,
                "healable_failure_kinds": [
                    "field_missing",
                    "type_mismatch",
                    "status_code_changed",
                    "endpoint_not_found",
                    "schema_validation"
                ]
            },
            "strategies": {
                "auto_retry": True,
                "backup_original": True,
                "enable_rule_based": True,
                "enable_ai": True,
                "rename_similarity_threshold": 0.8,
                "few_shot_count": 3
            },
            "completion": {
                "model": "gemini/gemini-2.5-flash",
                "temperature": 0.2,
                "max_tokens": 2000,
                "max_retries": 3,
                "timeout": 30,
                "base_delay": 2.0
            },
            "cache": {
                "enabled": True,
                "default_ttl": 86400,
                "max_size": 1000,
                "eviction_policy": "lru",
                "persistence_path": None
            }
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config loader with optional custom path."""
        self.config_path = Path(
            config_path or settings.SELF_HEALING_CONFIG_PATH)
        self._config_cache: Optional[HealingConfiguration] = None
        self._config_file_mtime: Optional[float] = None

    def load_config(self, force_reload: bool = False) -> HealingConfiguration:
        """Load and validate self-healing configuration.

        Args:
            force_reload: Force reload even if cached config exists

        Returns:
            HealingConfiguration: Validated configuration object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not force_reload and self._config_cache and self._is_config_current():
            return self._config_cache

        try:
            config_data = self._load_config_file()
            healing_config = self._parse_healing_config(config_data)
            self.validate_config(healing_config)
        except ConfigurationError as e:
            logger.error(f"Failed to load self-healing configuration: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load self-healing configuration: {e}")
            raise ConfigurationError(
                f"Configuration loading failed: {e}") from e

        self._config_cache = healing_config
        if self.config_path.exists():
            self._config_file_mtime = self.config_path.stat().st_mtime
        else:
            self._config_file_mtime = None

        logger.info(
            f"Loaded self-healing configuration from {self.config_path}")
        return healing_config

    def save_config(self, config: HealingConfiguration) -> None:
        """Save configuration to file.

        Args:
            config: Configuration to save

        Raises:
            ConfigurationError: If saving fails
        """
        self.validate_config(config)

        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            config_data = {
                "self_healing": self._config_to_dict(config)
            }

            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(config_data, f, default_flow_style=False, indent=2)

            self._config_cache = config
            self._config_file_mtime = self.config_path.stat().st_mtime

            logger.info(
                f"Saved self-healing configuration to {self.config_path}")

        except OSError as e:
            logger.error(f"Failed to save self-healing configuration: {e}")
            raise ConfigurationError(
                f"Configuration saving failed: {e}") from e

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration from file or return defaults."""
        if not self.config_path.exists():
            logger.info(
                f"Config file {self.config_path} not found, using defaults")
            return copy.deepcopy(self.DEFAULT_CONFIG)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}")

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        return self._deep_merge(copy.deepcopy(self.DEFAULT_CONFIG), config_data)

    def _parse_healing_config(self, config_data: Dict[str, Any]) -> HealingConfiguration:
        """Parse configuration data into HealingConfiguration object."""
        healing_section = config_data.get("self_healing", {})

        budgets = healing_section.get("budgets", {})
        policy = healing_section.get("policy", {})
        strategies = healing_section.get("strategies", {})
        completion = healing_section.get("completion", {})
        cache = healing_section.get("cache", {})

        try:
            kinds = [FailureKind(k) for k in policy.get("healable_failure_kinds", [])]
        except ValueError as e:
            raise ConfigurationError(f"Invalid failure kind: {e}")

        return HealingConfiguration(
            enabled=healing_section.get("enabled", True),
            max_attempts_per_test=budgets.get("max_attempts_per_test", 2),
            max_total_time=float(budgets.get("max_total_time", 300)),
            min_confidence=policy.get("min_confidence", 0.6),
            healable_failure_kinds=kinds,
            auto_retry=strategies.get("auto_retry", True),
            backup_original=strategies.get("backup_original", True),
            enable_rule_based=strategies.get("enable_rule_based", True),
            enable_ai=strategies.get("enable_ai", True),
            rename_similarity_threshold=strategies.get("rename_similarity_threshold", 0.8),
            few_shot_count=strategies.get("few_shot_count", 3),
            ai_model=completion.get("model", "gemini/gemini-2.5-flash"),
            ai_temperature=completion.get("temperature", 0.2),
            ai_max_tokens=completion.get("max_tokens", 2000),
            ai_max_retries=completion.get("max_retries", 3),
            ai_timeout=float(completion.get("timeout", 30)),
            ai_base_delay=float(completion.get("base_delay", 2.0)),
            cache_enabled=cache.get("enabled", True),
            cache_default_ttl=float(cache.get("default_ttl", 86400)),
            cache_max_size=cache.get("max_size", 1000),
            cache_eviction_policy=cache.get("eviction_policy", "lru"),
            cache_persistence_path=cache.get("persistence_path")
        )

    def _config_to_dict(self, config: HealingConfiguration) -> Dict[str, Any]:
        """Convert HealingConfiguration to nested dictionary structure."""
        return {
            "enabled": config.enabled,
            "budgets": {
                "max_attempts_per_test": config.max_attempts_per_test,
                "max_total_time": config.max_total_time
            },
            "policy": {
                "min_confidence": config.min_confidence,
                "healable_failure_kinds": [k.value for k in config.healable_failure_kinds]
            },
            "strategies": {
                "auto_retry": config.auto_retry,
                "backup_original": config.backup_original,
                "enable_rule_based": config.enable_rule_based,
                "enable_ai": config.enable_ai,
                "rename_similarity_threshold": config.rename_similarity_threshold,
                "few_shot_count": config.few_shot_count
            },
            "completion": {
                "model": config.ai_model,
                "temperature": config.ai_temperature,
                "max_tokens": config.ai_max_tokens,
                "max_retries": config.ai_max_retries,
                "timeout": config.ai_timeout,
                "base_delay": config.ai_base_delay
            },
            "cache": {
                "enabled": config.cache_enabled,
                "default_ttl": config.cache_default_ttl,
                "max_size": config.cache_max_size,
                "eviction_policy": config.cache_eviction_policy,
                "persistence_path": config.cache_persistence_path
            }
        }

    @staticmethod
    def validate_config(config: HealingConfiguration) -> None:
        """Validate configuration values.

        Args:
            config: Configuration to validate

        Raises:
            ConfigurationError: If validation fails
        """
        errors = []

        if config.max_attempts_per_test < 1 or config.max_attempts_per_test > 10:
            errors.append("max_attempts_per_test must be between 1 and 10")

        if config.max_total_time <= 0:
            errors.append("max_total_time must be positive")

        if config.min_confidence < 0.0 or config.min_confidence > 1.0:
            errors.append("min_confidence must be between 0.0 and 1.0")

        if len(config.healable_failure_kinds) != len(set(config.healable_failure_kinds)):
            errors.append("Duplicate healable failure kinds are not allowed")

        if not 0.0 < config.rename_similarity_threshold <= 1.0:
            errors.append("rename_similarity_threshold must be in (0.0, 1.0]")

        if config.few_shot_count < 0 or config.few_shot_count > 5:
            errors.append("few_shot_count must be between 0 and 5")

        if config.ai_temperature < 0.0 or config.ai_temperature > 2.0:
            errors.append("ai_temperature must be between 0.0 and 2.0")

        if config.ai_max_tokens < 1:
            errors.append("ai_max_tokens must be positive")

        if config.ai_max_retries < 0 or config.ai_max_retries > 10:
            errors.append("ai_max_retries must be between 0 and 10")

        if config.ai_timeout <= 0:
            errors.append("ai_timeout must be positive")

        if config.ai_base_delay < 0:
            errors.append("ai_base_delay must not be negative")

        if config.cache_max_size < 1:
            errors.append("cache_max_size must be at least 1")

        if config.cache_default_ttl < 0:
            errors.append("cache_default_ttl must not be negative")

        if config.cache_eviction_policy != "lru":
            errors.append("cache_eviction_policy must be 'lru'")

        if not config.enable_rule_based and not config.enable_ai:
            errors.append("At least one healing strategy must be enabled")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed: " + "; ".join(errors),
                {"errors": errors})

    def _is_config_current(self) -> bool:
        """Check if cached config is still current."""
        if not self.config_path.exists():
            return self._config_file_mtime is None

        current_mtime = self.config_path.stat().st_mtime
        return self._config_file_mtime == current_mtime

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


# Global config loader instance
config_loader = SelfHealingConfigLoader()


def get_healing_config(force_reload: bool = False) -> HealingConfiguration:
    """Get the current self-healing configuration.

    Args:
        force_reload: Force reload from file

    Returns:
        HealingConfiguration: Current configuration
    """
    config = config_loader.load_config(force_reload)

    # Environment switch wins over the file
    if not settings.SELF_HEALING_ENABLED:
        config.enabled = False
    if settings.CACHE_SNAPSHOT_PATH and not config.cache_persistence_path:
        config.cache_persistence_path = settings.CACHE_SNAPSHOT_PATH

    return config


def save_healing_config(config: HealingConfiguration) -> None:
    """Save self-healing configuration.

    Args:
        config: Configuration to save
    """
    config_loader.save_config(config)
