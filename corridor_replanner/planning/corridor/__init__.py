from corridor_replanner.planning.corridor.corridor_builder import (
    CorridorBuilder,
    CorridorResult,
    corridor_contains,
    corridor_is_connected,
)
from corridor_replanner.planning.corridor.polytope_solver import largest_free_polytope

__all__ = [
    "CorridorBuilder",
    "CorridorResult",
    "corridor_contains",
    "corridor_is_connected",
    "largest_free_polytope",
]
