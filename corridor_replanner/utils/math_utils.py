import numpy as np

class MathUtils:

    @staticmethod
    def normalize_angle(angle: float) -> float:
        """Wrap to (-pi, pi]."""
        while angle > np.pi:
            angle -= 2 * np.pi
        while angle <= -np.pi:
            angle += 2 * np.pi
        return angle

    @staticmethod
    def clamp(value: float, min_val: float, max_val: float) -> float:
        return max(min_val, min(value, max_val))

    @staticmethod
    def heading(direction: np.ndarray) -> float:
        """Planar heading of a direction vector."""
        return float(np.arctan2(direction[1], direction[0]))

def normalize_angle(angle: float) -> float:
    return MathUtils.normalize_angle(angle)
