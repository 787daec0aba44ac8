import logging
from collections import OrderedDict

import numpy as np

from robomap_py.comms import RobotClient
from robomap_py.config import HostInfo
from robomap_py.data import (
    Point,
    PointCloud,
    RobotPose,
    StereoMetaPacket,
    StereoPointsPacket,
    TimestampedCloud,
    decode_pose,
    decode_stereo_meta,
    decode_stereo_points,
)
from robomap_py.errors import InvalidParameter, MalformedPacket
from robomap_py.handler import SensorHandler
from robomap_py.reducer import stats_filter
from robomap_py.transform import transform_points

logger = logging.getLogger(__name__)


class StereoCamHandler(SensorHandler):
    """Stereo point batches correlated with their metadata by timestamp.

    The points arrive on ``data_name`` (``handle``) and the metadata on
    ``data_name2`` (``handle2``). Whichever half arrives first is parked until
    its partner shows up; the pending maps are bounded by the cloud capacity.
    """

    def __init__(self, client: RobotClient, host_info: HostInfo):
        super().__init__(client, host_info.stereo_data_name, host_info)

        self.data_name2 = host_info.stereo_meta_name
        self.stat_filter_k = host_info.stat_filter_k
        self.stereo_color = host_info.stereo_color
        self.pending_capacity = host_info.cloud_capacity

        self._pending_points: OrderedDict[int, StereoPointsPacket] = OrderedDict()
        self._pending_meta: OrderedDict[int, StereoMetaPacket] = OrderedDict()

    def _streams(self):
        return [(self.data_name, self.handle), (self.data_name2, self.handle2)]

    def handle(self, message: dict) -> None:
        try:
            points = decode_stereo_points(message)
            if not np.all(np.isfinite(points.xyz)):
                raise MalformedPacket("Non-finite stereo coordinates")
        except MalformedPacket as e:
            self._report_malformed(e)
            return

        self._park(self._pending_points, points)
        self._correlate(points.timestamp)

    def handle2(self, message: dict) -> None:
        try:
            meta = decode_stereo_meta(message)
        except MalformedPacket as e:
            self._report_malformed(e)
            return

        self._park(self._pending_meta, meta)
        self._correlate(meta.timestamp)

    def pending(self) -> tuple[int, int]:
        with self._lock:
            return len(self._pending_points), len(self._pending_meta)

    def _park(self, pending: OrderedDict, packet) -> None:
        with self._lock:
            if packet.timestamp in pending:
                self.anomalies["dropped_batches"] += 1
                logger.warning(
                    f"{self.name}: duplicate half for timestamp {packet.timestamp}, "
                    "replacing the pending one"
                )
                del pending[packet.timestamp]
            pending[packet.timestamp] = packet
            while len(pending) > self.pending_capacity:
                timestamp, _ = pending.popitem(last=False)
                self.anomalies["dropped_batches"] += 1
                logger.warning(f"{self.name}: no partner for timestamp {timestamp}, dropped")

    def _correlate(self, timestamp: int) -> None:
        with self._lock:
            if timestamp not in self._pending_points or timestamp not in self._pending_meta:
                return
            points = self._pending_points.pop(timestamp)
            meta = self._pending_meta.pop(timestamp)

            if not self._accept_timestamp(timestamp):
                return

        self._process(points, meta)

    def _process(self, points: StereoPointsPacket, meta: StereoMetaPacket) -> None:
        raw = PointCloud(points.xyz, points.rgb, default_rgb=self.stereo_color)

        try:
            denoised = stats_filter(raw, self.stat_filter_k)
        except InvalidParameter as e:
            self.anomalies["dropped_batches"] += 1
            logger.warning(f"{self.name}: batch at {points.timestamp} too small to denoise: {e}")
            return

        self._record_meta_pose(meta)

        cloud = PointCloud(transform_points(denoised.xyz, self.frame), denoised.rgb)
        self._merge(TimestampedCloud(cloud, points.timestamp, meta=meta.fields))

    def _record_meta_pose(self, meta: StereoMetaPacket) -> None:
        if not all(key in meta.fields for key in ("x", "y", "heading")):
            return

        try:
            sample = decode_pose({**meta.fields, "timestamp": meta.timestamp})
        except MalformedPacket as e:
            logger.warning(f"{self.name}: ignoring pose in metadata: {e}")
            return

        position = Point(sample.x, sample.y, 0.0, self.robot_color)
        self._record_pose(RobotPose(position, sample.heading, sample.timestamp))
