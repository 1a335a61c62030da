from corridor_replanner.planning.trajectory.polynomial_trajectory import PolynomialTrajectory
from corridor_replanner.planning.trajectory.trajectory_optimizer import (
    MagnitudeBounds,
    PenaltyWeights,
    PhysicalParams,
    TrajectoryOptimizer,
)

__all__ = [
    "PolynomialTrajectory",
    "TrajectoryOptimizer",
    "MagnitudeBounds",
    "PenaltyWeights",
    "PhysicalParams",
]
