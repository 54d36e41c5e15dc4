"""
Core module for the API test healer.

This module contains:
- config.py: Environment settings
- config_loader.py: YAML self-healing configuration
- exceptions.py: Error taxonomy
- logging_config.py: Logging configuration
- healing_utils.py: Helpers for building and hashing model objects
"""

__all__ = ["config", "config_loader", "exceptions", "logging_config", "healing_utils"]
