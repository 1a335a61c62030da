"""
Planning Module
Sampling tree, corridor construction, trajectory generation and the
receding-horizon integration layer.
"""

from corridor_replanner.planning.status import PlannerState, PlanningStatus

__all__ = ["PlannerState", "PlanningStatus"]
