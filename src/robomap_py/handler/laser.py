import logging
import math
from collections.abc import Mapping

import numpy as np

from robomap_py.comms import RobotClient
from robomap_py.config import HostInfo
from robomap_py.data import (
    LaserScanPacket,
    Point,
    PointCloud,
    PoseSample,
    RobotPose,
    TimestampedCloud,
    decode_pose,
    decode_scan,
)
from robomap_py.errors import FilterDivergence, MalformedPacket
from robomap_py.estimator import PoseFilter
from robomap_py.estimator.kalman import KalmanConfig, KalmanPoseFilter
from robomap_py.handler import SensorHandler
from robomap_py.transform import transform_points

logger = logging.getLogger(__name__)


class LaserHandler(SensorHandler):
    """Robot pose samples and laser range scans.

    A message carries a ``pose`` object, a ``scan`` object, or both. The whole
    message is decoded before anything is recorded, so a malformed half
    discards the packet without touching state.
    """

    def __init__(
        self,
        client: RobotClient,
        host_info: HostInfo,
        pose_filter: PoseFilter = None,
    ):
        super().__init__(client, host_info.laser_data_name, host_info)

        self.laser_color = host_info.laser_color
        self.max_range = host_info.max_range

        if pose_filter is None:
            pose_filter = KalmanPoseFilter(
                KalmanConfig(
                    process_noise=host_info.kalman_q,
                    measurement_noise=host_info.kalman_r,
                )
            )
        self.pose_filter = pose_filter

    def _streams(self):
        return [(self.data_name, self.handle)]

    def handle(self, message: dict) -> None:
        try:
            if not isinstance(message, Mapping):
                raise MalformedPacket(f"Expected an object, got {type(message).__name__}")

            pose = decode_pose(message["pose"]) if "pose" in message else None
            scan = decode_scan(message["scan"]) if "scan" in message else None

            if pose is None and scan is None:
                raise MalformedPacket("Packet has neither 'pose' nor 'scan'")
            if pose is not None and not all(
                math.isfinite(v) for v in (pose.x, pose.y, pose.heading)
            ):
                raise MalformedPacket(f"Non-finite pose {pose}")
            if scan is not None and not (
                math.isfinite(scan.angle_min) and math.isfinite(scan.angle_increment)
            ):
                raise MalformedPacket("Non-finite scan angles")
        except MalformedPacket as e:
            self._report_malformed(e)
            return

        if pose is not None:
            self.update_robot_location(pose)
        if scan is not None:
            self.update_laser_readings(scan)

    def update_robot_location(self, pose: PoseSample) -> None:
        with self._lock:
            if not self._accept_timestamp(pose.timestamp):
                return

        measured = Point(pose.x, pose.y, 0.0, self.robot_color)
        filtered = self.filter_robot_location(measured)

        self._record_pose(RobotPose(filtered, pose.heading, pose.timestamp))

    def filter_robot_location(self, measured: Point) -> Point:
        """Returns the filter's estimate for ``measured``; reseeds after divergence."""
        try:
            return self.pose_filter.update(measured)
        except FilterDivergence as e:
            self.anomalies["divergence"] += 1
            logger.error(f"{self.name}: {e}; reseeding from the next measurement")
            self.pose_filter.reset()
            return self.pose_filter.update(measured)

    def update_laser_readings(self, scan: LaserScanPacket) -> None:
        with self._lock:
            if not self._accept_timestamp(scan.timestamp):
                return

        ranges = np.asarray(scan.ranges, dtype=np.float64)
        bearings = np.radians(
            scan.angle_min + np.arange(ranges.size) * scan.angle_increment
        )

        valid = np.isfinite(ranges) & (ranges > 0.0) & (ranges <= self.max_range)
        if not np.any(valid):
            logger.debug(f"{self.name}: scan at {scan.timestamp} has no valid readings")
            return

        r = ranges[valid]
        b = bearings[valid]
        local = np.column_stack([r * np.cos(b), r * np.sin(b), np.zeros(r.size)])

        cloud = PointCloud(
            transform_points(local, self.frame), default_rgb=self.laser_color
        )
        self._merge(TimestampedCloud(cloud, scan.timestamp))
