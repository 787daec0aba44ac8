"""Spatial reduction of point clouds.

Both filters return a new ``PointCloud`` and never hand back more points than
they were given. Invalid parameters raise ``InvalidParameter`` before any
work is done, so a rejected call leaves the caller's cloud as it was.
"""

import logging
from typing import Sequence

import numpy as np
from scipy.spatial import cKDTree

from robomap_py.data import Point, PointCloud
from robomap_py.errors import InvalidParameter

logger = logging.getLogger(__name__)


def _leaf_vector(leaf_size: float | Sequence[float]) -> np.ndarray:
    leaf = np.asarray(leaf_size, dtype=np.float64).reshape(-1)
    if leaf.size == 1:
        leaf = np.repeat(leaf, 3)
    if leaf.size != 3:
        raise InvalidParameter(f"Leaf size must be a scalar or have 3 components: {leaf_size}")
    if not np.all(np.isfinite(leaf)) or np.any(leaf <= 0.0):
        raise InvalidParameter(f"Leaf size must be positive: {leaf_size}")

    return leaf


def _as_xyz(value: Point | Sequence[float]) -> np.ndarray:
    if isinstance(value, Point):
        return np.array([value.x, value.y, value.z], dtype=np.float64)
    return np.asarray(value, dtype=np.float64).reshape(3)


def voxel_filter(cloud: PointCloud, leaf_size: float | Sequence[float]) -> PointCloud:
    """Replaces the points of every occupied grid cell with their centroid.

    The cell keeps the color of its first point in input order, and cells are
    emitted in order of first occurrence, which makes the filter idempotent
    on its own output.
    """
    leaf = _leaf_vector(leaf_size)
    if len(cloud) == 0:
        return cloud

    keys = np.floor(cloud.xyz / leaf).astype(np.int64)
    _, first_idx, inverse, counts = np.unique(
        keys, axis=0, return_index=True, return_inverse=True, return_counts=True
    )
    inverse = inverse.reshape(-1)

    sums = np.zeros((counts.size, 3), dtype=np.float64)
    np.add.at(sums, inverse, cloud.xyz)
    centroids = sums / counts[:, None]

    order = np.argsort(first_idx, kind="stable")
    return PointCloud(centroids[order], cloud.rgb[first_idx[order]])


def stats_filter(cloud: PointCloud, k: int, std_mul: float = 1.0) -> PointCloud:
    """Statistical outlier removal.

    A point is dropped when the mean distance to its ``k`` nearest neighbours
    exceeds ``mean + std_mul * std`` of that quantity over the whole cloud.
    """
    n = len(cloud)
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise InvalidParameter(f"k must be an integer, got {k!r}")
    if k < 1 or k >= n:
        raise InvalidParameter(f"k must satisfy 1 <= k < {n}, got {k}")

    tree = cKDTree(cloud.xyz)
    # Nearest hit is the point itself
    distances, _ = tree.query(cloud.xyz, k=k + 1)
    mean_distances = distances[:, 1:].mean(axis=1)

    threshold = mean_distances.mean() + std_mul * mean_distances.std()
    keep = mean_distances <= threshold

    logger.debug(f"Statistical filter kept {int(keep.sum())} of {n} points")

    return PointCloud(cloud.xyz[keep], cloud.rgb[keep])


def calc_region_density(
    cloud: PointCloud,
    min_val: Point | Sequence[float],
    max_val: Point | Sequence[float],
    divisor: int,
) -> float:
    """Mean number of points per sub-cell of the box [min_val, max_val].

    The box is split into ``divisor`` equal sub-cells along each axis.
    """
    if isinstance(divisor, bool) or not isinstance(divisor, (int, np.integer)) or divisor < 1:
        raise InvalidParameter(f"divisor must be a positive integer, got {divisor!r}")

    lo = _as_xyz(min_val)
    hi = _as_xyz(max_val)
    if not np.all(np.isfinite(lo)) or not np.all(np.isfinite(hi)) or np.any(hi <= lo):
        raise InvalidParameter(f"Degenerate region {lo.tolist()} .. {hi.tolist()}")

    if len(cloud) == 0:
        return 0.0

    inside = np.all((cloud.xyz >= lo) & (cloud.xyz <= hi), axis=1)
    return float(inside.sum()) / float(divisor**3)
