"""
Logging configuration for the API test self-healing system.

This module provides structured logging configuration with different loggers
for the components of the healing pipeline.
"""

import logging
import logging.handlers
import json
import os
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
from dataclasses import asdict, is_dataclass

from .config import settings


PACKAGE_NAME = __name__.split(".")[0]

# Component name -> modules whose __name__ loggers feed that component
COMPONENT_MODULES: Dict[str, Tuple[str, ...]] = {
    "orchestrator": ("services.healing_orchestrator", "services.healing_strategies"),
    "failure_classifier": ("services.failure_classifier",),
    "spec_differ": ("services.spec_differ",),
    "rule_healer": ("services.rule_based_healer",),
    "ai_regenerator": ("services.ai_regenerator", "services.completion_service", "services.prompt_assembler"),
    "response_cache": ("services.response_cache",),
    "code_updater": ("services.test_code_updater",),
    "config": ("core.config_loader",),
}

HEALING_COMPONENTS = tuple(COMPONENT_MODULES)


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    EXTRA_FIELDS = ('session_id', 'test_case', 'operation', 'phase', 'duration',
                    'success', 'error_code', 'progress', 'metadata')

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(log_data, default=self._json_serializer)

    def _json_serializer(self, obj):
        """Custom JSON serializer for complex objects."""
        if is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        elif isinstance(obj, Enum):
            return obj.value
        elif hasattr(obj, 'isoformat'):  # datetime objects
            return obj.isoformat()
        elif hasattr(obj, '__dict__'):
            return obj.__dict__
        else:
            return str(obj)


class HealingLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter for healing operations with contextual information."""

    def __init__(self, logger: logging.Logger, extra: Dict[str, Any]):
        super().__init__(logger, extra)

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Process log message and add contextual information."""
        if 'extra' not in kwargs:
            kwargs['extra'] = {}
        kwargs['extra'].update(self.extra)
        return msg, kwargs

    def log_operation_start(self, operation: str, **metadata):
        """Log the start of a healing operation."""
        self.info(f"Starting {operation}", extra={
            'operation': operation,
            'phase': 'start',
            'metadata': metadata
        })

    def log_operation_success(self, operation: str, duration: float, **metadata):
        """Log successful completion of a healing operation."""
        self.info(f"Completed {operation} successfully", extra={
            'operation': operation,
            'phase': 'complete',
            'success': True,
            'duration': duration,
            'metadata': metadata
        })

    def log_operation_failure(self, operation: str, duration: float, error: str,
                              error_code: Optional[str] = None, **metadata):
        """Log failure of a healing operation."""
        self.error(f"Failed {operation}: {error}", extra={
            'operation': operation,
            'phase': 'complete',
            'success': False,
            'duration': duration,
            'error_code': error_code,
            'metadata': metadata
        })

    def log_progress(self, operation: str, progress: float, message: str, **metadata):
        """Log progress of a healing operation."""
        self.info(f"{operation} progress: {message}", extra={
            'operation': operation,
            'phase': 'progress',
            'progress': progress,
            'metadata': metadata
        })


def setup_healing_logging(log_level: Optional[str] = None, log_dir: Optional[str] = None) -> Dict[str, logging.Logger]:
    """
    Set up structured logging for the healing system.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR), defaults to LOG_LEVEL
        log_dir: Directory to store log files, defaults to LOG_DIR

    Returns:
        Dictionary of configured loggers
    """
    log_level = log_level or settings.LOG_LEVEL
    log_path = Path(log_dir or settings.LOG_DIR)
    log_path.mkdir(parents=True, exist_ok=True)

    litellm_level = getattr(logging, os.getenv("LITELLM_LOG_LEVEL", "WARNING").upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    structured_formatter = StructuredFormatter()
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Console handler for development
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(getattr(logging, log_level.upper()))

    all_logs_handler = logging.handlers.RotatingFileHandler(
        log_path / "healing_all.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    all_logs_handler.setFormatter(structured_formatter)
    all_logs_handler.setLevel(logging.DEBUG)

    healing_handler = logging.handlers.RotatingFileHandler(
        log_path / "healing_operations.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10
    )
    healing_handler.setFormatter(structured_formatter)
    healing_handler.setLevel(logging.INFO)

    error_handler = logging.handlers.RotatingFileHandler(
        log_path / "healing_errors.log",
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=10
    )
    error_handler.setFormatter(structured_formatter)
    error_handler.setLevel(logging.ERROR)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(all_logs_handler)

    loggers = {}

    for component, modules in COMPONENT_MODULES.items():
        component_logger = logging.getLogger(f"healing.{component}")
        module_loggers = [logging.getLogger(f"{PACKAGE_NAME}.{module}") for module in modules]
        for target in [component_logger] + module_loggers:
            target.addHandler(healing_handler)
            target.addHandler(error_handler)
        loggers[component] = component_logger

    # Audit logger
    audit_logger = logging.getLogger("healing.audit")
    audit_handler = logging.handlers.RotatingFileHandler(
        log_path / "healing_audit.log",
        maxBytes=20 * 1024 * 1024,  # 20MB
        backupCount=20
    )
    audit_handler.setFormatter(structured_formatter)
    audit_logger.addHandler(audit_handler)
    loggers["audit"] = audit_logger

    # LiteLLM logger
    litellm_logger = logging.getLogger("LiteLLM")
    litellm_logger.setLevel(litellm_level)
    litellm_handler = logging.handlers.RotatingFileHandler(
        log_path / "litellm.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    litellm_handler.setFormatter(structured_formatter)
    litellm_logger.addHandler(litellm_handler)
    loggers["litellm"] = litellm_logger

    _configure_external_library_logging()

    return loggers


def _configure_external_library_logging():
    """Configure logging for LiteLLM."""
    import litellm

    os.environ.setdefault("LITELLM_LOG", os.getenv("LITELLM_LOG_LEVEL", "WARNING"))
    # Keep the provider banner out of test and CI output
    litellm.suppress_debug_info = True


def get_healing_logger(component: str, session_id: str = None, test_case: str = None) -> HealingLoggerAdapter:
    """
    Get a healing logger adapter with contextual information.

    Args:
        component: Component name (orchestrator, failure_classifier, etc.)
        session_id: Optional healing session ID
        test_case: Optional test case name

    Returns:
        HealingLoggerAdapter instance
    """
    logger = logging.getLogger(f"healing.{component}")

    extra = {}
    if session_id:
        extra['session_id'] = session_id
    if test_case:
        extra['test_case'] = test_case

    return HealingLoggerAdapter(logger, extra)
