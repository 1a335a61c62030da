"""
Planning Visualization
View builders for the tree, corridor and trajectory, and a matplotlib
renderer for a complete planning scene. Views are plain dicts so any
transport can carry them.
"""

import numpy as np
import logging
from pathlib import Path
from typing import Dict, List, Optional, Any

import matplotlib.pyplot as plt

from corridor_replanner.planning.geometry import Polytope, polytope_vertices

logger = logging.getLogger(__name__)

def tree_view(nodes) -> Dict[str, Any]:
    """Root positions and parent-child edges of the sampling tree."""
    positions = {node.index: node.position for node in nodes}
    roots = [node.position for node in nodes if node.parent < 0]
    edges = [np.vstack([node.position, positions[node.parent]])
             for node in nodes if node.parent >= 0 and node.parent in positions]

    return {
        'roots': np.asarray(roots).reshape(-1, 3),
        'edges': np.asarray(edges).reshape(-1, 2, 3),
        'radii': np.array([node.radius for node in nodes]),
        'node_count': len(nodes),
    }

def corridor_view(polytopes: List[Polytope]) -> Dict[str, Any]:
    polytope_views = []
    for polytope in polytopes:
        polytope_views.append({
            'half_spaces': polytope.half_spaces.copy(),
            'vertices': polytope_vertices(polytope.half_spaces),
            'connector': polytope.is_connector,
        })
    return {'polytopes': polytope_views}

def trajectory_view(trajectory, dt: float = 0.05) -> Dict[str, Any]:
    """Uniform samples of the trajectory; empty when there is none."""
    if trajectory is None or trajectory.is_empty():
        return {'times': np.zeros(0), 'positions': np.zeros((0, 3)), 'duration': 0.0}

    times, positions = trajectory.sample(dt)
    return {'times': times, 'positions': positions, 'duration': trajectory.total_duration()}

def path_view(path: np.ndarray, radii: np.ndarray) -> Dict[str, Any]:
    """Committed waypoints with their safe-region radii."""
    return {
        'waypoints': np.asarray(path, dtype=float).reshape(-1, 3).copy(),
        'radii': np.asarray(radii, dtype=float).reshape(-1).copy(),
    }

class PlanningVisualizer:
    """Renders planning views into a 3-D matplotlib figure."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.figure_size = tuple(config.get('figure_size', (10, 8)))
        self.dpi = config.get('dpi', 150)
        self.show_tree = config.get('show_tree', True)
        self.show_corridor = config.get('show_corridor', True)

    def plot_planning_scene(self, views: Dict[str, Any],
                            obstacles: Optional[np.ndarray] = None,
                            start: Optional[np.ndarray] = None,
                            goal: Optional[np.ndarray] = None,
                            save_path: Optional[str] = None):
        """
        Draw obstacles, tree edges, corridor vertices and the trajectory.

        Returns the figure when ``save_path`` is None, otherwise saves and
        closes it.
        """
        figure = plt.figure(figsize=self.figure_size)
        axes = figure.add_subplot(111, projection='3d')

        if obstacles is not None and len(obstacles) > 0:
            points = np.asarray(obstacles).reshape(-1, 3)
            axes.scatter(points[:, 0], points[:, 1], points[:, 2], s=2, c='k', alpha=0.3,
                         label='obstacles')

        tree = views.get('tree')
        if self.show_tree and tree is not None:
            for edge in tree['edges']:
                axes.plot(edge[:, 0], edge[:, 1], edge[:, 2], color='g', linewidth=0.4, alpha=0.6)

        corridor = views.get('corridor')
        if self.show_corridor and corridor is not None:
            for polytope in corridor['polytopes']:
                vertices = polytope['vertices']
                if vertices.shape[0] == 0:
                    continue
                color = 'm' if polytope['connector'] else 'c'
                axes.scatter(vertices[:, 0], vertices[:, 1], vertices[:, 2], s=4, c=color, alpha=0.5)

        trajectory = views.get('trajectory')
        if trajectory is not None and trajectory['positions'].shape[0] > 0:
            positions = trajectory['positions']
            axes.plot(positions[:, 0], positions[:, 1], positions[:, 2], color='r', linewidth=2,
                      label=f"trajectory ({trajectory['duration']:.1f}s)")

        if start is not None:
            axes.scatter(*np.asarray(start), c='b', s=40, marker='o', label='start')
        if goal is not None:
            axes.scatter(*np.asarray(goal), c='r', s=60, marker='*', label='goal')

        axes.set_xlabel('X (m)')
        axes.set_ylabel('Y (m)')
        axes.set_zlabel('Z (m)')
        axes.set_title('Receding-horizon corridor plan')
        axes.legend(loc='upper left')

        if save_path:
            output = Path(save_path)
            output.parent.mkdir(parents=True, exist_ok=True)
            figure.savefig(output, dpi=self.dpi, bbox_inches='tight')
            plt.close(figure)
            self.logger.info(f"Saved planning scene to {output}")
            return None

        return figure
