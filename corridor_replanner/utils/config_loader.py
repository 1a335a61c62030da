"""
Configuration Management
Centralized configuration loading and validation for the replanner.
Supports YAML, JSON, and environment variable overrides.
"""

import os
import yaml
import json
import logging
import copy
from typing import Dict, List, Optional, Any
from pathlib import Path
from dataclasses import dataclass, field, asdict

DEFAULT_CONFIG: Dict[str, Any] = {
    "planner": {
        "plan_rate": 10.0,
        "safety_margin": 1.0,
        "search_margin": 0.5,
        "max_radius": 1.0,
        "sensing_range": 10.0,
        "refine_portion": 0.8,
        "evaluate_portion": 0.05,
        "sample_portion": 0.1,
        "goal_portion": 0.05,
        "path_find_limit": 5.0,
        "max_samples": 3000,
        "commit_time": 1.0,
        "arrival_threshold": 0.5,
        "bounds": {"low": [-5.0, -5.0, 0.0], "high": [15.0, 15.0, 1.0]},
        "tree": {"initial_capacity": 1024, "seed": None},
    },
    "corridor": {
        "progress": 7.0,
        "range": 3.0,
        "eps": 1.0e-6,
        "overlap_eps": 0.01,
        "gap_threshold": 3,
    },
    "optimizer": {
        "time_weight": 20.0,
        "time_limit": 0.05,
        "smoothing_eps": 0.01,
        "quadrature_resolution": 16,
        "relative_cost_tolerance": 1.0e-5,
        "max_iterations": 30,
        "magnitude_bounds": {"v_max": 2.0, "a_max": 3.0},
        "penalty_weights": {"position": 1.0e4, "velocity": 1.0e3,
                            "acceleration": 1.0e3, "thrust": 1.0e2},
        "physical_params": {"mass": 1.0, "gravity": 9.81,
                            "min_thrust": 2.0, "max_thrust": 20.0},
    },
    "follower": {
        "control_rate": 100.0,
        "w_max": 1.0,
        "alpha": 0.5,
        "face_goal": True,
        "repeat_hover": False,
    },
    "bridge": {"topics": {}},
    "visualization": {"figure_size": [10, 8], "dpi": 150},
    "logging": {
        "level": "INFO",
        "log_dir": "logs",
        "console_logging": True,
        "file_logging": False,
        "error_file_logging": False,
    },
}

@dataclass
class SystemConfig:
    """Complete replanner configuration."""

    planner: Dict[str, Any] = field(default_factory=dict)
    corridor: Dict[str, Any] = field(default_factory=dict)
    optimizer: Dict[str, Any] = field(default_factory=dict)
    follower: Dict[str, Any] = field(default_factory=dict)
    bridge: Dict[str, Any] = field(default_factory=dict)
    visualization: Dict[str, Any] = field(default_factory=dict)
    logging: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

class ConfigManager:
    """
    Configuration loader.
    Handles file loading, environment overrides, defaults merging and caching.
    """

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.logger = logging.getLogger(__name__)

        self._config_cache: Dict[str, SystemConfig] = {}

        self.default_configs = {
            "main": self.config_dir / "planner_config.yaml",
        }

        # Environment variable prefix
        self.env_prefix = "CORRIDOR_REPLANNER_"

        self.logger.info(f"Config Manager initialized: {config_dir}")

    def load_config(self, config_name: str = "main") -> SystemConfig:
        """
        Load configuration merged over defaults, with environment overrides.

        Args:
            config_name: Configuration name to load

        Returns:
            Loaded system configuration
        """
        if config_name in self._config_cache:
            return self._config_cache[config_name]

        config_path = self.default_configs.get(
            config_name, self.config_dir / f"{config_name}_config.yaml"
        )

        if config_path.exists():
            config_data = self._load_config_file(config_path)
        else:
            self.logger.warning(f"Config file not found: {config_path}, using defaults")
            config_data = {}

        system_config = self.build_config(config_data)
        self._config_cache[config_name] = system_config

        self.logger.info(f"Configuration loaded: {config_name}")
        return system_config

    def build_config(self, config_data: Dict[str, Any]) -> SystemConfig:
        """Merge ``config_data`` over the defaults and apply overrides."""
        merged = self._merge_configs(DEFAULT_CONFIG, config_data or {})
        merged = self._apply_env_overrides(merged)

        known = set(SystemConfig.__dataclass_fields__)
        unknown = set(merged) - known
        if unknown:
            self.logger.warning(f"Ignoring unknown config sections: {sorted(unknown)}")

        return SystemConfig(**{key: value for key, value in merged.items() if key in known})

    def _load_config_file(self, config_path: Path) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        try:
            with open(config_path, "r") as f:
                if config_path.suffix.lower() in [".yaml", ".yml"]:
                    return yaml.safe_load(f) or {}
                elif config_path.suffix.lower() == ".json":
                    return json.load(f)
                else:
                    raise ValueError(f"Unsupported config format: {config_path.suffix}")

        except Exception as e:
            self.logger.error(f"Failed to load config {config_path}: {e}")
            return {}

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment variable overrides.

        ``CORRIDOR_REPLANNER_PLANNER_PLAN_RATE=5`` sets ``planner.plan_rate``:
        the first token names the section, the rest is matched against the
        section's existing keys so underscores inside key names survive.
        """
        overrides: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(self.env_prefix):
                continue

            tokens = key[len(self.env_prefix):].lower().split("_")
            config_path = self._resolve_path(config_data, tokens)
            if config_path is None:
                self.logger.warning(f"Unmatched environment override: {key}")
                continue

            self._set_nested_value(overrides, config_path, self._parse_env_value(value))

        if overrides:
            config_data = self._merge_configs(config_data, overrides)
            self.logger.info(f"Applied environment overrides to {sorted(overrides)}")

        return config_data

    def _resolve_path(self, config: Dict[str, Any], tokens: List[str]) -> Optional[List[str]]:
        """Greedy longest-key match of underscore tokens against nested keys."""
        if not tokens:
            return None

        for split in range(len(tokens), 0, -1):
            candidate = "_".join(tokens[:split])
            if candidate not in config:
                continue
            rest = tokens[split:]
            if not rest:
                return [candidate]
            if isinstance(config[candidate], dict):
                sub_path = self._resolve_path(config[candidate], rest)
                if sub_path is not None:
                    return [candidate] + sub_path
        return None

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value to appropriate type."""
        # Try boolean
        if value.lower() in ["true", "false"]:
            return value.lower() == "true"

        # Try integer
        try:
            return int(value)
        except ValueError:
            pass

        # Try float
        try:
            return float(value)
        except ValueError:
            pass

        # Try JSON for complex types
        try:
            return json.loads(value)
        except (json.JSONDecodeError, ValueError):
            pass

        return value

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any):
        """Set value in nested dictionary."""
        current = config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[path[-1]] = value

    def _merge_configs(
        self, base_config: Dict[str, Any], override_config: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = copy.deepcopy(base_config)

        for key, value in override_config.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def save_config(self, config: SystemConfig, output_path: str):
        """Save configuration to file."""
        output_path = Path(output_path)

        with open(output_path, "w") as f:
            if output_path.suffix.lower() in [".yaml", ".yml"]:
                yaml.safe_dump(config.to_dict(), f, default_flow_style=False, indent=2)
            else:
                json.dump(config.to_dict(), f, indent=2)

        self.logger.info(f"Configuration saved to {output_path}")

# Convenience functions
def load_config(config_path: Optional[str] = None) -> SystemConfig:
    """Load the replanner configuration, defaults only if no file is found."""
    if config_path:
        custom_path = Path(config_path)
        manager = ConfigManager(str(custom_path.parent))
        if custom_path.exists():
            return manager.build_config(manager._load_config_file(custom_path))
        manager.logger.warning(f"Config file not found: {custom_path}, using defaults")
        return manager.build_config({})

    return ConfigManager().load_config("main")

def validate_config(config: SystemConfig) -> Dict[str, List[str]]:
    """
    Validate replanner configuration.

    Returns:
        Dictionary of validation errors by section
    """
    errors = {}

    planner_errors = []
    planner = config.planner
    if planner.get("plan_rate", 0) <= 0:
        planner_errors.append("Plan rate must be positive")
    if planner.get("search_margin", 0) <= 0:
        planner_errors.append("Search margin must be positive")
    if planner.get("max_radius", 0) < planner.get("search_margin", 0):
        planner_errors.append("Max radius must not be smaller than search margin")
    if planner.get("commit_time", 0) < 0:
        planner_errors.append("Commit time must be non-negative")
    for key in ("refine_portion", "evaluate_portion", "sample_portion", "goal_portion"):
        if not 0.0 <= planner.get(key, 0.0) <= 1.0:
            planner_errors.append(f"{key} must be within [0, 1]")
    bounds = planner.get("bounds", {})
    low, high = bounds.get("low"), bounds.get("high")
    if low is None or high is None or len(low) != 3 or len(high) != 3:
        planner_errors.append("Bounds need 3-D low and high corners")
    elif any(lo >= hi for lo, hi in zip(low, high)):
        planner_errors.append("Bounds low corner must be below the high corner")

    if planner_errors:
        errors["planner"] = planner_errors

    corridor_errors = []
    if config.corridor.get("progress", 0) <= 0:
        corridor_errors.append("Corridor progress must be positive")
    if config.corridor.get("range", -1) < 0:
        corridor_errors.append("Corridor range must be non-negative")
    if config.corridor.get("gap_threshold", 0) < 1:
        corridor_errors.append("Gap threshold must be at least 1")

    if corridor_errors:
        errors["corridor"] = corridor_errors

    optimizer_errors = []
    magnitude = config.optimizer.get("magnitude_bounds", {})
    if magnitude.get("v_max", 0) <= 0 or magnitude.get("a_max", 0) <= 0:
        optimizer_errors.append("Velocity and acceleration bounds must be positive")
    if config.optimizer.get("quadrature_resolution", 0) < 1:
        optimizer_errors.append("Quadrature resolution must be at least 1")

    if optimizer_errors:
        errors["optimizer"] = optimizer_errors

    follower_errors = []
    if config.follower.get("control_rate", 0) <= 0:
        follower_errors.append("Control rate must be positive")
    if not 0.0 <= config.follower.get("alpha", 0.0) < 1.0:
        follower_errors.append("Yaw filter alpha must be within [0, 1)")

    if follower_errors:
        errors["follower"] = follower_errors

    return errors
