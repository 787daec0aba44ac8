"""Planar rigid transforms from a sensor frame into the server's common frame"""

import math
from dataclasses import dataclass, replace

import numpy as np

from robomap_py.data import Point
from robomap_py.errors import InvalidParameter


@dataclass(frozen=True)
class FrameTransform:
    cos_theta: float = 1.0
    sin_theta: float = 0.0
    dx: float = 0.0
    dy: float = 0.0
    frame_id: str = "common"

    @classmethod
    def from_degrees(
        cls, theta: float, dx: float = 0.0, dy: float = 0.0, frame_id: str = "common"
    ) -> "FrameTransform":
        rad = math.radians(theta)
        return cls(math.cos(rad), math.sin(rad), float(dx), float(dy), frame_id)

    @property
    def theta_degrees(self) -> float:
        return math.degrees(math.atan2(self.sin_theta, self.cos_theta))

    def inverse(self) -> "FrameTransform":
        # R^T (p - t)
        c, s = self.cos_theta, self.sin_theta
        return replace(
            self,
            sin_theta=-s,
            dx=-(c * self.dx + s * self.dy),
            dy=-(-s * self.dx + c * self.dy),
        )


def transform_point(point: Point, frame: FrameTransform) -> Point:
    if not point.is_finite():
        raise InvalidParameter(f"Cannot transform non-finite point {point}")

    c, s = frame.cos_theta, frame.sin_theta
    return Point(
        x=point.x * c - point.y * s + frame.dx,
        y=point.x * s + point.y * c + frame.dy,
        z=point.z,
        rgb=point.rgb,
    )


def transform_points(xyz: np.ndarray, frame: FrameTransform) -> np.ndarray:
    """Vectorised ``transform_point`` over an (N, 3) array. Returns a new array."""
    xyz = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)
    if not np.all(np.isfinite(xyz)):
        raise InvalidParameter("Cannot transform non-finite coordinates")

    c, s = frame.cos_theta, frame.sin_theta
    out = np.empty_like(xyz)
    out[:, 0] = xyz[:, 0] * c - xyz[:, 1] * s + frame.dx
    out[:, 1] = xyz[:, 0] * s + xyz[:, 1] * c + frame.dy
    out[:, 2] = xyz[:, 2]

    return out
