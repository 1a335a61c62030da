"""
Core Utilities Module
Configuration, logging, math and visualization helpers.
"""

from corridor_replanner.utils.config_loader import ConfigManager, SystemConfig, load_config, validate_config
from corridor_replanner.utils.logger import SystemLogger, setup_logging, get_logger
from corridor_replanner.utils.math_utils import MathUtils

__all__ = [
    # Config
    "ConfigManager",
    "SystemConfig",
    "load_config",
    "validate_config",
    # Logging
    "SystemLogger",
    "setup_logging",
    "get_logger",
    # Math
    "MathUtils",
]
