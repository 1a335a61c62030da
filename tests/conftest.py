import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import matplotlib

matplotlib.use("Agg")

import logging

import numpy as np
import pytest

from corridor_replanner.planning.geometry import Polytope, box_half_spaces
from corridor_replanner.planning.trajectory.polynomial_trajectory import PolynomialTrajectory
from corridor_replanner.utils.config_loader import ConfigManager


def box_polytope(low, high, is_connector=False):
    low = np.asarray(low, dtype=float)
    high = np.asarray(high, dtype=float)
    return Polytope(half_spaces=box_half_spaces(low, high), seed_start=low.copy(),
                    seed_end=high.copy(), is_connector=is_connector)


def line_trajectory(start, end, duration):
    """Single linear segment from ``start`` to ``end``."""
    start = np.asarray(start, dtype=float)
    end = np.asarray(end, dtype=float)
    coefficients = np.zeros((1, 3, 6))
    coefficients[0, :, 4] = (end - start) / duration
    coefficients[0, :, 5] = start
    return PolynomialTrajectory([duration], coefficients)


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def fast_config():
    """Configuration with small budgets for simulation tests."""
    return ConfigManager().build_config({
        "planner": {
            "max_samples": 1500,
            "path_find_limit": 5.0,
            "refine_portion": 0.2,
            "bounds": {"low": [-20.0, -20.0, -20.0], "high": [20.0, 20.0, 20.0]},
            "tree": {"seed": 7},
        },
        "follower": {"control_rate": 20.0},
    })


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests that run the full planning stack")
