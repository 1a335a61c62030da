"""
Planner Node
Long-lived planning context: owns the bridge, orchestrator and follower, wires
the bridge topics to them, and runs the planning and control loops.
"""

import logging
import threading
import time
from typing import Dict, Optional, Any, Callable

from corridor_replanner.bridges.message_bridge import MessageBridge
from corridor_replanner.planning.integration.replanning_orchestrator import (
    ReplanningOrchestrator,
    TickResult,
)
from corridor_replanner.planning.integration.trajectory_follower import TrajectoryFollower
from corridor_replanner.bridges.messages import TrajectoryCommand
from corridor_replanner.utils.config_loader import SystemConfig
from corridor_replanner.utils.logger import SystemLogger

class PlannerNode:
    """
    Planner node lifecycle.

    ``start()`` spawns a planning thread at ``plan_rate`` and a control thread
    at ``control_rate``; ``stop()`` joins both. ``step(now)`` runs one tick and
    one command synchronously for simulation and tests.
    """

    def __init__(self, config: SystemConfig,
                 orchestrator: Optional[ReplanningOrchestrator] = None,
                 follower: Optional[TrajectoryFollower] = None,
                 bridge: Optional[MessageBridge] = None,
                 clock: Optional[Callable[[], float]] = None,
                 system_logger: Optional[SystemLogger] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        # Structured event sink from setup_logging(); plain logging when absent
        self.system_logger = system_logger
        self.clock = clock or time.time

        self.bridge = bridge or MessageBridge(config.bridge)
        self.orchestrator = orchestrator or ReplanningOrchestrator(
            {'planner': config.planner, 'corridor': config.corridor,
             'optimizer': config.optimizer},
            bridge=self.bridge, clock=self.clock
        )
        self.follower = follower or TrajectoryFollower(config.follower, bridge=self.bridge,
                                                       clock=self.clock)

        self.plan_rate = config.planner.get('plan_rate', 10.0)          # Hz
        self.control_rate = config.follower.get('control_rate', 100.0)  # Hz

        self.planning_thread: Optional[threading.Thread] = None
        self.control_thread: Optional[threading.Thread] = None
        self.is_running = False

        self.last_tick: Optional[TickResult] = None
        self.node_stats = {
            'planning_overruns': 0,
            'control_overruns': 0,
            'loop_errors': 0,
        }

        self._connect_topics()

        self.logger.info("Planner Node initialized")
        self.logger.info(f"Plan rate: {self.plan_rate}Hz, Control rate: {self.control_rate}Hz")

    def _connect_topics(self):
        topics = self.bridge.topics
        self.bridge.subscribe(topics.pose, self.orchestrator.on_pose)
        self.bridge.subscribe(topics.pose, self.follower.update_pose)
        self.bridge.subscribe(topics.goal, self.orchestrator.on_goal)
        self.bridge.subscribe(topics.goal, self.follower.set_goal)
        self.bridge.subscribe(topics.point_cloud, self.orchestrator.on_obstacles)
        self.bridge.subscribe(topics.obstacle_state, self.orchestrator.on_start_position)
        self.bridge.subscribe(topics.desired_trajectory, self.follower.handle_trajectory_message)

    def start(self):
        if self.is_running:
            return

        self.is_running = True

        self.planning_thread = threading.Thread(target=self._planning_loop, daemon=True)
        self.control_thread = threading.Thread(target=self._control_loop, daemon=True)
        self.planning_thread.start()
        self.control_thread.start()

        self.logger.info("Planner node started")

    def stop(self):
        self.is_running = False

        for thread in (self.planning_thread, self.control_thread):
            if thread and thread.is_alive():
                thread.join(timeout=2.0)

        self.log_performance()
        self.logger.info("Planner node stopped")

    def step(self, now: Optional[float] = None) -> Optional[TrajectoryCommand]:
        """One planning tick followed by one control command at ``now``."""
        now = self.clock() if now is None else now
        self.last_tick = self.orchestrator.tick(now)
        return self.follower.compute_command(now)

    def _planning_loop(self):

        period = 1.0 / self.plan_rate

        while self.is_running:
            loop_start = time.time()

            try:
                self.last_tick = self.orchestrator.tick()
            except Exception as e:
                self._report_loop_error("planning", e)

            elapsed = time.time() - loop_start
            if elapsed > period:
                self.node_stats['planning_overruns'] += 1
                self.logger.debug(f"Planning tick overran: {elapsed:.3f}s > {period:.3f}s")
            time.sleep(max(0.0, period - elapsed))

    def _control_loop(self):

        period = 1.0 / self.control_rate

        while self.is_running:
            loop_start = time.time()

            try:
                self.follower.compute_command()
            except Exception as e:
                self._report_loop_error("control", e)

            elapsed = time.time() - loop_start
            if elapsed > period:
                self.node_stats['control_overruns'] += 1
            time.sleep(max(0.0, period - elapsed))

    def _report_loop_error(self, loop: str, error: Exception):
        self.node_stats['loop_errors'] += 1
        self.logger.error(f"{loop.capitalize()} loop error: {error}")

        if self.system_logger is not None:
            self.system_logger.log_error_with_context(
                "planning", error, {'loop': loop, 'loop_errors': self.node_stats['loop_errors']}
            )

    def log_performance(self):
        """Emit numeric planning and node counters as a performance event."""
        if self.system_logger is None:
            return

        metrics = {
            key: value for key, value in self.orchestrator.get_statistics().items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }
        metrics.update(self.node_stats)
        self.system_logger.log_performance_metrics("planning", metrics)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'node': self.node_stats.copy(),
            'planning': self.orchestrator.get_statistics(),
            'follower': self.follower.get_statistics(),
            'bridge': self.bridge.get_statistics(),
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.stop()
        return False
