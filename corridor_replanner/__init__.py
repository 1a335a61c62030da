"""
corridor-replanner: receding-horizon safe flight corridor replanning.
Main package initialization.

Kept minimal to avoid circular imports; import from submodules instead.

Example:
    from corridor_replanner.node import PlannerNode
    from corridor_replanner.planning.corridor import CorridorBuilder
"""

import logging

# Package version
__version__ = "1.0.0"
__description__ = "Receding-horizon corridor replanning core"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = ['__version__', '__description__']
