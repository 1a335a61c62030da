import logging
from pathlib import Path

import yaml

from corridor_replanner.utils import (
    ConfigManager,
    load_config,
    setup_logging,
    validate_config,
)

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config" / "planner_config.yaml"


class TestConfigManager:

    def test_defaults_without_file(self, tmp_path):
        config = ConfigManager(str(tmp_path)).load_config("main")

        assert config.planner['plan_rate'] == 10.0
        assert config.corridor['progress'] == 7.0
        assert config.optimizer['magnitude_bounds']['v_max'] == 2.0

    def test_file_merged_over_defaults(self, tmp_path):
        with open(tmp_path / "planner_config.yaml", "w") as f:
            yaml.safe_dump({'planner': {'plan_rate': 5.0}}, f)

        config = ConfigManager(str(tmp_path)).load_config("main")

        assert config.planner['plan_rate'] == 5.0
        assert config.planner['safety_margin'] == 1.0

    def test_load_is_cached(self, tmp_path):
        manager = ConfigManager(str(tmp_path))
        assert manager.load_config("main") is manager.load_config("main")

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CORRIDOR_REPLANNER_PLANNER_PLAN_RATE", "7")
        monkeypatch.setenv("CORRIDOR_REPLANNER_OPTIMIZER_MAGNITUDE_BOUNDS_V_MAX", "3.5")
        monkeypatch.setenv("CORRIDOR_REPLANNER_FOLLOWER_FACE_GOAL", "false")
        monkeypatch.setenv("CORRIDOR_REPLANNER_NOT_A_KEY", "1")

        config = ConfigManager().build_config({})

        assert config.planner['plan_rate'] == 7
        assert config.optimizer['magnitude_bounds']['v_max'] == 3.5
        assert config.optimizer['magnitude_bounds']['a_max'] == 3.0
        assert config.follower['face_goal'] is False

    def test_unknown_section_ignored(self):
        config = ConfigManager().build_config({'training': {'epochs': 3}})
        assert not hasattr(config, 'training')

    def test_repository_config(self):
        config = load_config(str(REPO_CONFIG))

        assert validate_config(config) == {}
        assert config.optimizer['penalty_weights']['position'] == 1.0e4
        assert config.corridor['eps'] == 1.0e-6

    def test_missing_custom_path_uses_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "absent.yaml"))
        assert config.planner['max_samples'] == 3000

    def test_save_config(self, tmp_path):
        manager = ConfigManager(str(tmp_path))
        config = manager.build_config({'planner': {'plan_rate': 4.0}})
        manager.save_config(config, str(tmp_path / "planner_config.yaml"))

        with open(tmp_path / "planner_config.yaml") as f:
            saved = yaml.safe_load(f)
        assert saved['planner']['plan_rate'] == 4.0


class TestValidateConfig:

    def test_defaults_are_valid(self):
        assert validate_config(ConfigManager().build_config({})) == {}

    def test_invalid_values_reported(self):
        config = ConfigManager().build_config({
            'planner': {'plan_rate': 0.0, 'refine_portion': 1.5,
                        'bounds': {'low': [0, 0, 0], 'high': [1, -1, 1]}},
            'corridor': {'progress': -1.0},
            'follower': {'alpha': 1.0},
        })

        errors = validate_config(config)

        assert set(errors) == {'planner', 'corridor', 'follower'}
        assert len(errors['planner']) == 3

    def test_radius_below_search_margin(self):
        config = ConfigManager().build_config({'planner': {'max_radius': 0.2}})
        assert 'planner' in validate_config(config)


class TestLogging:

    def test_file_handlers(self, tmp_path, restore_logging):
        log_dir = tmp_path / "logs"
        system_logger = setup_logging({
            'log_dir': str(log_dir),
            'console_logging': False,
            'file_logging': True,
            'error_file_logging': True,
        })

        system_logger.log_performance_metrics("planning", {'tick_time': 0.01})
        logging.getLogger("corridor_replanner.planning").error("tick failed")

        assert (log_dir / "replanner.log").exists()
        assert (log_dir / "errors.log").exists()
        assert set(system_logger.component_loggers) == {'planning', 'corridor',
                                                         'trajectory', 'bridges'}

    def test_console_only_creates_no_directory(self, tmp_path, restore_logging):
        log_dir = tmp_path / "logs"
        setup_logging({'log_dir': str(log_dir), 'file_logging': False,
                       'error_file_logging': False})

        assert not log_dir.exists()
        assert logging.getLogger("corridor_replanner.bridges").level == logging.WARNING

    def test_error_with_context(self, tmp_path, restore_logging):
        system_logger = setup_logging({'log_dir': str(tmp_path), 'console_logging': False,
                                       'file_logging': False, 'error_file_logging': True})
        try:
            raise ValueError("bad corridor")
        except ValueError as e:
            system_logger.log_error_with_context("corridor", e, {'polytopes': 0})

        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "bad corridor" in (tmp_path / "errors.log").read_text()
