# core/uv.py
import math
import numpy as np


class UV:
    """
    Represents a 2D equirectangular map coordinate.
    u spans the azimuth phi in [0, 2*pi), v spans the polar angle theta in [0, pi].
    """
    def __init__(self, u: float, v: float):
        self.u = u
        self.v = v

    def pixel(self, width: int, height: int):
        """
        Quantize to the (u_index, v_index) pixel containing this coordinate,
        clamped to the map.
        """
        u_index = min(max(int(math.floor(self.u * width)), 0), width - 1)
        v_index = min(max(int(math.floor(self.v * height)), 0), height - 1)
        return u_index, v_index

    def direction(self) -> np.ndarray:
        return env_uv_to_dir(self.u, self.v)

    @classmethod
    def from_direction(cls, direction) -> "UV":
        u, v = env_dir_to_uv(direction)
        return cls(u, v)

    def __repr__(self) -> str:
        return f"UV({self.u}, {self.v})"


def env_dir_to_uv(direction):
    """
    Convert a normalized 3D direction (y-up) to equirectangular UV coordinates.
    Returns (u, v) with u in [0, 1) and v in [0, 1].
    """
    x, y, z = direction[0], direction[1], direction[2]
    # Compute phi in [0, 2*pi)
    phi = math.atan2(-z, x)
    if phi < 0.0:
        phi += 2.0 * math.pi
    # Compute theta in [0, pi]
    theta = math.acos(max(-1.0, min(1.0, y)))
    return phi / (2.0 * math.pi), theta / math.pi


def env_uv_to_dir(u: float, v: float) -> np.ndarray:
    """
    Convert equirectangular UV coordinates (u,v) to a normalized 3D direction.
    """
    phi = 2.0 * math.pi * u
    theta = math.pi * v
    sin_theta = math.sin(theta)
    return np.array([math.cos(phi) * sin_theta,
                     math.cos(theta),
                     -math.sin(phi) * sin_theta], dtype=np.float32)
