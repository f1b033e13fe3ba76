"""
Core utilities for mapsharvest.

This module contains shared utilities used across all components:
- Configuration management
- Structured logging
- Error logging and tracking
- Time budget math
"""

from mapsharvest.core.logging import get_logger, setup_logging
from mapsharvest.core.config import get_config, validate_config, Config
from mapsharvest.core.budget import BudgetSettings, TimeBudget
from mapsharvest.core.error_logger import get_error_logger
from mapsharvest.core.error_models import (
    ErrorComponent,
    ErrorSeverity,
    ErrorType,
    ErrorStage,
    ErrorRecord,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "get_config",
    "validate_config",
    "Config",
    "BudgetSettings",
    "TimeBudget",
    "get_error_logger",
    "ErrorComponent",
    "ErrorSeverity",
    "ErrorType",
    "ErrorStage",
    "ErrorRecord",
]
