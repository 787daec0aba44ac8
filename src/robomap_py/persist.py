import logging
import os
from typing import Iterable

import numpy as np
import open3d as o3d
import yaml

from robomap_py.data import PointCloud, RobotPose
from robomap_py.errors import PersistenceFailure

logger = logging.getLogger(__name__)


def safe_name(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name)


def unpack_rgb(rgb: np.ndarray) -> np.ndarray:
    """Packed 0xRRGGBB integers to an (N, 3) array of floats in [0, 1]"""
    rgb = np.asarray(rgb, dtype=np.uint32)
    channels = np.column_stack([(rgb >> 16) & 0xFF, (rgb >> 8) & 0xFF, rgb & 0xFF])
    return channels.astype(np.float64) / 255.0


def to_o3d(cloud: PointCloud) -> o3d.geometry.PointCloud:
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(cloud.xyz.astype(np.float64))
    pcd.colors = o3d.utility.Vector3dVector(unpack_rgb(cloud.rgb))
    return pcd


def write_pcd(path: str, cloud: PointCloud) -> bool:
    """Writes ``cloud`` as an ASCII PCD file. Returns False for an empty cloud,
    which open3d cannot write."""
    if len(cloud) == 0:
        logger.info(f"Nothing to write to {path}, cloud is empty")
        return False

    try:
        written = o3d.io.write_point_cloud(path, to_o3d(cloud), write_ascii=True)
    except (OSError, RuntimeError) as e:
        raise PersistenceFailure(f"Could not write cloud to {path}: {e}") from e

    if not written:
        raise PersistenceFailure(f"Could not write cloud to {path}")
    return True


def write_path(path: str, poses: Iterable[RobotPose], meta: dict | None = None) -> None:
    document = dict(meta or {})
    document["poses"] = [
        {
            "x": float(p.position.x),
            "y": float(p.position.y),
            "heading": float(p.heading),
            "timestamp": int(p.timestamp),
        }
        for p in poses
    ]
    try:
        with open(path, "w") as f:
            yaml.safe_dump(document, f, sort_keys=False)
    except OSError as e:
        raise PersistenceFailure(f"Could not write path to {path}: {e}") from e


def ensure_dir(out_dir: str) -> None:
    try:
        os.makedirs(out_dir, exist_ok=True)
    except OSError as e:
        raise PersistenceFailure(f"Could not create output directory {out_dir}: {e}") from e


def path_length(poses: Iterable[RobotPose]) -> float:
    xy = np.array([[p.position.x, p.position.y] for p in poses], dtype=np.float64)
    if xy.shape[0] < 2:
        return 0.0
    return float(np.linalg.norm(np.diff(xy, axis=0), axis=1).sum())


class Persister:
    """Writes the union of every accumulating handler's display cloud"""

    def __init__(self, out_dir: str):
        self.out_dir = out_dir

    def write(self, handlers) -> str:
        """Each handler contributes its reduced cloud, as in ``SensorHandler.write_to``"""
        ensure_dir(self.out_dir)

        clouds = []
        summary = {}
        for handler in handlers:
            if not handler.accumulates:
                continue
            cloud = handler.export_cloud()
            history = handler.path_history()
            clouds.append(cloud)
            summary[handler.name] = {
                "points": len(cloud),
                "poses": len(history),
                "path_length": path_length(history),
            }

        combined = PointCloud.concat(*clouds)

        cloud_path = os.path.join(self.out_dir, "combined_cloud.pcd")
        write_pcd(cloud_path, combined)

        meta_path = os.path.join(self.out_dir, "combined_meta.yaml")
        try:
            with open(meta_path, "w") as f:
                yaml.safe_dump(
                    {"total_points": len(combined), "handlers": summary},
                    f,
                    sort_keys=False,
                )
        except OSError as e:
            raise PersistenceFailure(f"Could not write metadata to {meta_path}: {e}") from e

        logger.info(f"Wrote {len(combined)} points from {len(summary)} handlers to {cloud_path}")
        return cloud_path
