"""
Replanning Orchestrator
Fixed-rate receding-horizon planning loop: sampling tree -> corridor ->
trajectory -> commit point -> new tree root.
"""

import numpy as np
import logging
import time
import threading
from typing import Dict, List, Tuple, Optional, Any, Callable
from dataclasses import dataclass
from collections import deque

from corridor_replanner.bridges.messages import (
    DesiredTrajectoryMessage,
    PoseMessage,
    TrajectoryAction,
)
from corridor_replanner.planning.corridor.corridor_builder import CorridorBuilder
from corridor_replanner.planning.geometry import Polytope, path_length
from corridor_replanner.planning.integration.trajectory_committer import (
    TrajectoryCommitter,
    check_arrival,
)
from corridor_replanner.planning.local_planner.safe_region_rrt import SafeRegionRRTStar
from corridor_replanner.planning.status import PlannerState, PlanningStatus
from corridor_replanner.planning.trajectory.polynomial_trajectory import PolynomialTrajectory
from corridor_replanner.planning.trajectory.trajectory_optimizer import (
    MagnitudeBounds,
    PenaltyWeights,
    PhysicalParams,
    TrajectoryOptimizer,
)
from corridor_replanner.utils.visualization import corridor_view, path_view, trajectory_view, tree_view

@dataclass
class TickResult:
    """Outcome of one planning tick."""
    state: PlannerState
    status: PlanningStatus
    trajectory_updated: bool = False
    replan_event: bool = False
    tick_time: float = 0.0

@dataclass(frozen=True)
class TrajectorySnapshot:
    """Installed trajectory as seen by the follower."""
    trajectory: PolynomialTrajectory
    trajectory_id: int
    start_time: float

class ReplanningOrchestrator:
    """
    Per-tick planning state machine.

    Inbound updates are queued by the ``on_*`` handlers from any thread and
    drained at the start of each tick. All planner-level failures degrade to
    "no trajectory" so the follower hovers; nothing raises across ``tick``.
    """

    def __init__(self, config: Dict[str, Any],
                 tree: Optional[SafeRegionRRTStar] = None,
                 corridor_builder: Optional[CorridorBuilder] = None,
                 optimizer: Optional[TrajectoryOptimizer] = None,
                 bridge=None,
                 clock: Optional[Callable[[], float]] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        planner_config = config.get('planner', {})
        optimizer_config = config.get('optimizer', {})

        # Tick and tree budgets
        self.plan_rate = planner_config.get('plan_rate', 10.0)                 # Hz
        self.path_find_limit = planner_config.get('path_find_limit', 5.0)      # seconds
        self.max_expand_iterations = planner_config.get('max_expand_iterations')
        self.max_samples = planner_config.get('max_samples', 3000)
        self.refine_portion = planner_config.get('refine_portion', 0.8)
        self.evaluate_portion = planner_config.get('evaluate_portion', 0.05)
        self.sample_portion = planner_config.get('sample_portion', 0.1)
        self.goal_portion = planner_config.get('goal_portion', 0.05)

        # Tree geometry
        self.safety_margin = planner_config.get('safety_margin', 1.0)          # meters
        self.search_margin = planner_config.get('search_margin', 0.5)          # meters
        self.max_radius = planner_config.get('max_radius', 1.0)                # meters
        self.sensing_range = planner_config.get('sensing_range', 10.0)         # meters
        self.local_range = planner_config.get('local_range', self.sensing_range)

        bounds = planner_config.get('bounds', {})
        self.bounds = np.array([
            bounds.get('low', [-5.0, -5.0, 0.0]),
            bounds.get('high', [15.0, 15.0, 1.0])
        ], dtype=float)

        # Optimizer problem parameters
        self.time_weight = optimizer_config.get('time_weight', 20.0)
        self.optimizer_time_limit = optimizer_config.get('time_limit', 0.05)   # seconds
        self.smoothing_eps = optimizer_config.get('smoothing_eps', 0.01)
        self.quadrature_resolution = optimizer_config.get('quadrature_resolution', 16)
        self.relative_cost_tolerance = optimizer_config.get('relative_cost_tolerance', 1e-5)
        self.magnitude_bounds = MagnitudeBounds(**optimizer_config.get('magnitude_bounds', {}))
        self.penalty_weights = PenaltyWeights(**optimizer_config.get('penalty_weights', {}))
        self.physical_params = PhysicalParams(**optimizer_config.get('physical_params', {}))

        self.tree = tree or SafeRegionRRTStar(planner_config.get('tree', {}))
        self.tree.configure(self.safety_margin, self.search_margin,
                            self.max_radius, self.sensing_range)
        self.corridor_builder = corridor_builder or CorridorBuilder(config.get('corridor', {}))
        self.optimizer = optimizer or TrajectoryOptimizer(optimizer_config)
        self.committer = TrajectoryCommitter(planner_config)
        self.bridge = bridge
        self.clock = clock or time.time

        # Planning state, owned by the tick
        self.state = PlannerState.NO_TARGET
        self.goal: Optional[np.ndarray] = None
        self.obstacles: Optional[np.ndarray] = None
        self.pose: Optional[PoseMessage] = None
        self.path = np.zeros((0, 3))
        self.radii = np.zeros(0)
        self._tree_path = np.zeros((0, 3))
        self.corridor: List[Polytope] = []
        self.trajectory: Optional[PolynomialTrajectory] = None
        self.trajectory_start_time = 0.0
        self.trajectory_id = 0
        self.navigation_complete = False

        self._inbox: deque = deque()
        self._inbox_lock = threading.Lock()
        self.planning_lock = threading.Lock()
        self._snapshot_lock = threading.Lock()
        self._snapshot: Optional[TrajectorySnapshot] = None

        self.views: Dict[str, Any] = {'tree': None, 'corridor': None, 'trajectory': None, 'path': None}
        self._corridor_dirty = True

        self.planning_statistics = {
            'ticks': 0,
            'initial_plans': 0,
            'replans': 0,
            'refinements': 0,
            'regenerations': 0,
            'failures': 0,
            'path_length': 0.0,             # m, installed path
            'total_tick_time': 0.0,
            'average_tick_time': 0.0,
        }

        self.logger.info("Replanning Orchestrator initialized")
        self.logger.info(f"Plan rate: {self.plan_rate}Hz, Path find limit: {self.path_find_limit}s")
        self.logger.info(f"Bounds: {self.bounds[0].tolist()} -> {self.bounds[1].tolist()}")

    # Inbound handlers, callable from any thread

    def on_pose(self, pose: PoseMessage):
        self._enqueue('pose', pose)

    def on_goal(self, goal: np.ndarray):
        self._enqueue('goal', np.asarray(goal, dtype=float))

    def on_obstacles(self, points: np.ndarray):
        self._enqueue('obstacles', np.asarray(points, dtype=float).reshape(-1, 3))

    def on_start_position(self, position: np.ndarray):
        self._enqueue('start', np.asarray(position, dtype=float))

    def _enqueue(self, kind: str, payload: Any):
        with self._inbox_lock:
            self._inbox.append((kind, payload))

    # Planning tick

    def tick(self, now: Optional[float] = None) -> TickResult:
        """Run one planning cycle."""
        tick_start = time.time()
        now = self.clock() if now is None else now

        with self.planning_lock:
            self._drain_inbox(now)

            if self.goal is None or self.obstacles is None or self.pose is None:
                return TickResult(state=self.state, status=PlanningStatus.NOT_READY,
                                  tick_time=time.time() - tick_start)

            self.planning_statistics['ticks'] += 1
            replan_event = False

            if self.trajectory is None:
                self.state = PlannerState.INITIAL_PLAN
                status = self._plan_initial(now)
            else:
                status, replan_event = self._plan_incremental(now)

            self._publish_views()

        tick_time = time.time() - tick_start
        self._update_statistics(tick_time)

        return TickResult(
            state=self.state,
            status=status,
            trajectory_updated=status is PlanningStatus.SUCCESS,
            replan_event=replan_event,
            tick_time=tick_time
        )

    def _drain_inbox(self, now: float):
        with self._inbox_lock:
            updates = list(self._inbox)
            self._inbox.clear()

        for kind, payload in updates:
            if kind == 'pose':
                self.pose = payload
                self._check_arrival(payload.position)
            elif kind == 'start':
                if self.pose is None:
                    self.pose = PoseMessage(timestamp=now, position=payload)
                else:
                    self.pose = PoseMessage(timestamp=now, position=payload,
                                            velocity=self.pose.velocity,
                                            acceleration=self.pose.acceleration,
                                            yaw=self.pose.yaw)
                self._check_arrival(payload)
            elif kind == 'goal':
                self._reset_target(payload)
            elif kind == 'obstacles':
                self.obstacles = payload
                self.tree.set_obstacles(payload)

    def _check_arrival(self, position: np.ndarray):
        if self.committer.update_position(position):
            self.state = PlannerState.REPLAN_PENDING
            self.logger.debug(f"Arrived at commit target {self.committer.commit_target}")

    def _reset_target(self, goal: np.ndarray):
        self.logger.info(f"New goal received: {goal}")
        had_trajectory = self.trajectory is not None

        self.goal = goal.copy()
        self.navigation_complete = False
        self._clear_trajectory()
        self.state = PlannerState.INITIAL_PLAN

        if had_trajectory:
            self._send_action(TrajectoryAction.ABORT)

    def _plan_initial(self, now: float) -> PlanningStatus:
        start_state = self._pose_state()

        self.tree.reset()
        self.tree.set_endpoints(start_state[0], self.goal, self.bounds, self.local_range,
                                self.max_samples, self.sample_portion, self.goal_portion)
        self.tree.expand(self.path_find_limit, self.max_expand_iterations)

        if not self.tree.path_exists():
            self.logger.warning("No path found in initial trajectory planning")
            return self._fail(PlanningStatus.PATH_NOT_FOUND)

        path, radii = self.tree.best_path()
        status = self._regenerate(path, radii, start_state, now)
        if status is not PlanningStatus.SUCCESS:
            return self._fail(status)

        self._commit()
        self.state = PlannerState.TRACKING
        self.planning_statistics['initial_plans'] += 1
        self.logger.info(f"Initial trajectory planned: {path.shape[0]} waypoints, "
                         f"{len(self.corridor)} polytopes, "
                         f"{self.trajectory.total_duration():.2f}s")
        return PlanningStatus.SUCCESS

    def _plan_incremental(self, now: float) -> Tuple[PlanningStatus, bool]:
        if self.navigation_complete or self.tree.goal_region_fully_explored():
            return self._complete_navigation(), False

        if self.committer.consume_arrival():
            self.planning_statistics['replans'] += 1

            if not self.tree.path_exists():
                self.logger.warning("Reached committed target but no feasible path exists")
                return self._fail(PlanningStatus.PATH_NOT_FOUND), True

            path, radii = self.tree.best_path()
            start_state = self.trajectory.state(now - self.trajectory_start_time)

            status = self._regenerate(path, radii, start_state, now)
            if status is not PlanningStatus.SUCCESS:
                return self._fail(status), True

            self._commit()
            self.state = PlannerState.TRACKING
            self.logger.info("Trajectory replan triggered")
            return PlanningStatus.SUCCESS, True

        cycle = 1.0 / self.plan_rate
        self.tree.refine(self.refine_portion, self.refine_portion * cycle)
        self.tree.evaluate(self.evaluate_portion, self.evaluate_portion * cycle)
        self.planning_statistics['refinements'] += 1

        if not self.tree.path_exists():
            return PlanningStatus.UNCHANGED, False

        path, radii = self.tree.best_path()
        if self._same_path(path):
            return PlanningStatus.UNCHANGED, False

        commit_time = self.committer.commit_time
        if now - self.trajectory_start_time >= commit_time:
            # Already past the commit point; the arrival branch takes over
            return PlanningStatus.UNCHANGED, False

        start_state = self.trajectory.state(commit_time)
        status = self._regenerate(path, radii, start_state, now, splice_time=commit_time)
        if status is not PlanningStatus.SUCCESS:
            return self._fail(status), False

        return PlanningStatus.SUCCESS, False

    def _complete_navigation(self) -> PlanningStatus:
        if not self.navigation_complete:
            self.navigation_complete = True
            self.logger.info("Goal inside the root region; global navigation complete")
            self._send_action(TrajectoryAction.WARN_FINAL, self.trajectory_id)

        if self.pose is not None and check_arrival(self.pose.position, self.goal,
                                                   self.committer.arrival_threshold):
            self.logger.info(f"Goal {self.goal} reached")
            self.goal = None
            self.state = PlannerState.NO_TARGET

        return PlanningStatus.NAVIGATION_COMPLETE

    def _regenerate(self, tree_path: np.ndarray, radii: np.ndarray, start_state: np.ndarray,
                    now: float, splice_time: Optional[float] = None) -> PlanningStatus:
        """
        Corridor + optimizer; installs the trajectory on success.

        The first waypoint of the tree path is replaced by the start position.
        With ``splice_time`` the new trajectory is appended to the installed
        one truncated at that time.
        """
        path = np.asarray(tree_path, dtype=float).copy()
        path[0] = start_state[0]

        corridor_result = self.corridor_builder.build(path, self.obstacles,
                                                      self.bounds[0], self.bounds[1])
        if not corridor_result.success:
            return corridor_result.status

        final_state = np.zeros((3, 3))
        final_state[0] = path[-1]

        accepted = self.optimizer.setup(
            self.time_weight, start_state, final_state, corridor_result.polytopes,
            self.optimizer_time_limit, self.smoothing_eps, self.quadrature_resolution,
            self.magnitude_bounds, self.penalty_weights, self.physical_params
        )
        if not accepted:
            return PlanningStatus.TRAJECTORY_SETUP_REJECTED

        trajectory = PolynomialTrajectory()
        cost = self.optimizer.optimize(trajectory, self.relative_cost_tolerance)
        if not np.isfinite(cost) or trajectory.is_empty():
            return PlanningStatus.TRAJECTORY_DIVERGED

        if splice_time is not None:
            trajectory = self.trajectory.truncated(splice_time).concatenated(trajectory)
            start_time = self.trajectory_start_time
        else:
            start_time = now

        self.path = path
        self.radii = radii
        self._tree_path = np.asarray(tree_path, dtype=float).copy()
        self.corridor = corridor_result.polytopes
        self._corridor_dirty = True
        self._install(trajectory, start_time)
        self.planning_statistics['regenerations'] += 1
        self.planning_statistics['path_length'] = path_length(path)
        self.logger.debug(f"Trajectory {self.trajectory_id} installed: {len(self.corridor)} polytopes, "
                          f"path {self.planning_statistics['path_length']:.2f}m")
        return PlanningStatus.SUCCESS

    def _install(self, trajectory: PolynomialTrajectory, start_time: float):
        self.trajectory_id += 1
        self.trajectory = trajectory
        self.trajectory_start_time = start_time

        with self._snapshot_lock:
            self._snapshot = TrajectorySnapshot(trajectory, self.trajectory_id, start_time)

        if self.bridge is not None:
            self.bridge.send_trajectory(DesiredTrajectoryMessage.from_trajectory(
                trajectory, self.trajectory_id, start_time))
            self.bridge.publish(self.bridge.topics.committed_path, self.path.copy())

    def _commit(self):
        target = self.committer.commit(self.trajectory)
        self.tree.reroot(target)
        if self.tree.path_exists():
            self._tree_path = np.asarray(self.tree.best_path()[0], dtype=float).copy()

    def _fail(self, status: PlanningStatus) -> PlanningStatus:
        self.planning_statistics['failures'] += 1
        self.logger.warning(f"Planning failed: {status.value}")

        had_trajectory = self.trajectory is not None
        self._clear_trajectory()
        self.state = PlannerState.INITIAL_PLAN
        if had_trajectory:
            self._send_action(TrajectoryAction.ABORT)
        return status

    def _clear_trajectory(self):
        self.trajectory = None
        self.trajectory_start_time = 0.0
        self.corridor = []
        self._corridor_dirty = True
        self.committer.clear()
        with self._snapshot_lock:
            self._snapshot = None

    def _send_action(self, action: TrajectoryAction, trajectory_id: Optional[int] = None):
        if self.bridge is None:
            return
        self.bridge.send_action(action, self.trajectory_id if trajectory_id is None else trajectory_id)

    def _pose_state(self) -> np.ndarray:
        return np.vstack([self.pose.position, self.pose.velocity, self.pose.acceleration])

    def _same_path(self, path: np.ndarray) -> bool:
        return path.shape == self._tree_path.shape and np.allclose(path, self._tree_path, atol=1e-9)

    def _publish_views(self):
        self.views['tree'] = tree_view(self.tree.tree())
        if self._corridor_dirty:
            self.views['corridor'] = corridor_view(self.corridor)
            self._corridor_dirty = False
        self.views['trajectory'] = trajectory_view(self.trajectory)
        self.views['path'] = path_view(self.path, self.radii)

        if self.bridge is not None:
            self.bridge.publish(self.bridge.topics.tree_view, self.views['tree'])
            self.bridge.publish(self.bridge.topics.corridor_view, self.views['corridor'])
            self.bridge.publish(self.bridge.topics.trajectory_view, self.views['trajectory'])

    def _update_statistics(self, tick_time: float):
        stats = self.planning_statistics
        stats['total_tick_time'] += tick_time
        if stats['ticks'] > 0:
            stats['average_tick_time'] = stats['total_tick_time'] / stats['ticks']

    # Read-side accessors

    def current_trajectory(self) -> Optional[TrajectorySnapshot]:
        with self._snapshot_lock:
            return self._snapshot

    def get_statistics(self) -> Dict[str, Any]:
        stats = self.planning_statistics.copy()
        stats['state'] = self.state.value
        stats['trajectory_id'] = self.trajectory_id
        return stats
