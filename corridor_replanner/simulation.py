"""
Deterministic scenario simulation.

The robot tracks every command perfectly, simulated time advances at the
control period and the planner ticks at the plan period, so runs are
repeatable for a fixed tree seed.
"""

import copy
import logging
import numpy as np
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field

from corridor_replanner.bridges.messages import TrajectoryCommand
from corridor_replanner.node import PlannerNode
from corridor_replanner.planning.integration.replanning_orchestrator import TickResult
from corridor_replanner.planning.status import PlannerState
from corridor_replanner.utils.config_loader import SystemConfig
from corridor_replanner.utils.logger import SystemLogger

logger = logging.getLogger(__name__)

@dataclass
class Scenario:
    name: str
    start: np.ndarray
    goal: np.ndarray
    bounds: np.ndarray
    obstacles: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))

@dataclass
class SimulationResult:
    scenario: str
    commands: List[TrajectoryCommand] = field(default_factory=list)
    ticks: List[TickResult] = field(default_factory=list)
    final_position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    goal_reached: bool = False
    sim_time: float = 0.0
    statistics: Dict[str, Any] = field(default_factory=dict)

def open_field_scenario() -> Scenario:
    """Straight 10 m flight without obstacles."""
    return Scenario(
        name="open_field",
        start=np.array([0.0, 0.0, 0.0]),
        goal=np.array([10.0, 0.0, 0.0]),
        bounds=np.array([[-20.0, -20.0, -20.0], [20.0, 20.0, 20.0]])
    )

def blocked_wall_scenario(spacing: float = 0.25) -> Scenario:
    """A wall at x = 5 covering the whole workspace cross-section."""
    bounds = np.array([[-2.0, -3.0, 0.0], [12.0, 3.0, 2.0]])
    ys = np.arange(bounds[0, 1], bounds[1, 1] + 0.5 * spacing, spacing)
    zs = np.arange(bounds[0, 2], bounds[1, 2] + 0.5 * spacing, spacing)
    grid_y, grid_z = np.meshgrid(ys, zs, indexing='ij')
    wall = np.column_stack([np.full(grid_y.size, 5.0), grid_y.ravel(), grid_z.ravel()])

    return Scenario(
        name="blocked_wall",
        start=np.array([0.0, 0.0, 1.0]),
        goal=np.array([10.0, 0.0, 1.0]),
        bounds=bounds,
        obstacles=wall
    )

SCENARIOS = {
    "open_field": open_field_scenario,
    "blocked_wall": blocked_wall_scenario,
}

def scenario_config(scenario: Scenario, config: SystemConfig) -> SystemConfig:
    """Copy of ``config`` whose workspace bounds match the scenario."""
    config = copy.deepcopy(config)
    config.planner['bounds'] = {
        'low': scenario.bounds[0].tolist(),
        'high': scenario.bounds[1].tolist(),
    }
    return config

class ScenarioSimulator:
    """Runs a PlannerNode against a scenario on simulated time."""

    def __init__(self, scenario: Scenario, config: SystemConfig,
                 system_logger: Optional[SystemLogger] = None):
        self.scenario = scenario
        self.config = scenario_config(scenario, config)
        self.logger = logging.getLogger(__name__)

        self.now = 0.0
        self.node = PlannerNode(self.config, clock=lambda: self.now, system_logger=system_logger)

        self.plan_period = 1.0 / self.config.planner.get('plan_rate', 10.0)
        self.control_period = 1.0 / self.config.follower.get('control_rate', 100.0)

    def run(self, duration: float) -> SimulationResult:
        scenario = self.scenario
        bridge = self.node.bridge
        result = SimulationResult(scenario=scenario.name)

        position = scenario.start.astype(float).copy()
        velocity = np.zeros(3)

        bridge.receive_point_cloud(scenario.obstacles)
        bridge.receive_pose(position, timestamp=self.now)
        bridge.receive_goal([scenario.goal])

        next_plan = 0.0
        while self.now <= duration:
            if self.now >= next_plan - 1e-9:
                result.ticks.append(self.node.orchestrator.tick(self.now))
                next_plan += self.plan_period

            command = self.node.follower.compute_command(self.now)
            if command is not None:
                result.commands.append(command)
                position = command.position.copy()
                velocity = command.velocity.copy()

            self.now += self.control_period
            bridge.receive_pose(position, velocity=velocity, timestamp=self.now)

            if self.node.orchestrator.state is PlannerState.NO_TARGET and \
                    self.node.orchestrator.goal is None:
                result.goal_reached = True
                break

        result.final_position = position
        result.sim_time = self.now
        result.statistics = self.node.get_statistics()
        self.node.log_performance()

        self.logger.info(f"Scenario {scenario.name}: {len(result.ticks)} ticks, "
                         f"{len(result.commands)} commands, goal reached: {result.goal_reached}")
        return result

    @property
    def views(self) -> Dict[str, Any]:
        return self.node.orchestrator.views

def run_scenario(name: str, config: SystemConfig, duration: float = 30.0,
                 seed: Optional[int] = None,
                 system_logger: Optional[SystemLogger] = None) -> SimulationResult:
    scenario = SCENARIOS[name]()
    config = copy.deepcopy(config)
    if seed is not None:
        config.planner.setdefault('tree', {})['seed'] = seed
    return ScenarioSimulator(scenario, config, system_logger=system_logger).run(duration)
