import logging
import os
import threading
from typing import Callable

from robomap_py.comms import RobotClient, Subscription
from robomap_py.config import HostInfo
from robomap_py.data import Point, PointCloud, RobotPose, TimestampedCloud
from robomap_py.errors import OutOfOrderTimestamp
from robomap_py.history import RingBuffer
from robomap_py.persist import ensure_dir, safe_name, write_path, write_pcd
from robomap_py.reducer import voxel_filter
from robomap_py.transform import FrameTransform, transform_point

logger = logging.getLogger(__name__)


class SensorHandler:
    """Shared contract for the per-connection sensor handlers.

    A handler owns its path history, its rolling set of timestamped clouds and
    its display cloud. Only the transport thread delivering its packets
    mutates that state; readers on other threads go through
    ``get_display_cloud`` / ``path_history`` / ``write_to``, which take the
    handler lock and only ever see a complete, immutable ``PointCloud``.
    """

    accumulates: bool = True

    def __init__(self, client: RobotClient, data_name: str, host_info: HostInfo):
        self.client = client
        self.data_name = data_name
        self.host_info = host_info
        self.name = f"{host_info.name}:{data_name}"

        self.request_freq = host_info.request_freq
        self.voxel_leaf = host_info.voxel_leaf
        self.robot_color = host_info.robot_color
        self.frame: FrameTransform = host_info.transform
        self.reject_out_of_order = host_info.reject_out_of_order

        self.anomalies: dict[str, int] = {
            "malformed": 0,
            "out_of_order": 0,
            "divergence": 0,
            "forward_failed": 0,
            "dropped_batches": 0,
        }

        self.robot_map = None
        self._subscriptions: list[Subscription] = []

        self._lock = threading.Lock()
        self._reduce_lock = threading.Lock()
        self._display_cloud = PointCloud.empty()
        self._last_timestamp: int | None = None

        if self.accumulates:
            self._robot_infos = RingBuffer(host_info.path_capacity)
            self._ts_clouds = RingBuffer(
                host_info.cloud_capacity, on_evict=lambda c: c.release()
            )
        else:
            self._robot_infos = None
            self._ts_clouds = None

    def _streams(self) -> list[tuple[str, Callable[[dict], None]]]:
        raise NotImplementedError

    def request(self) -> list[Subscription]:
        if not self._subscriptions:
            self._subscriptions = [
                self.client.subscribe(data_name, callback, self.request_freq)
                for data_name, callback in self._streams()
            ]
        return list(self._subscriptions)

    def handle(self, message: dict) -> None:
        raise NotImplementedError

    def close(self) -> None:
        for subscription in self._subscriptions:
            self.client.unsubscribe(subscription.data_name)
        self._subscriptions = []

        if self._ts_clouds is not None:
            with self._lock:
                self._ts_clouds.clear()

    # Read side

    def get_display_cloud(self) -> PointCloud:
        with self._lock:
            return self._display_cloud

    def path_history(self) -> tuple[RobotPose, ...]:
        if self._robot_infos is None:
            return ()
        with self._lock:
            return tuple(self._robot_infos)

    def timestamped_clouds(self) -> tuple[TimestampedCloud, ...]:
        if self._ts_clouds is None:
            return ()
        with self._lock:
            return tuple(self._ts_clouds)

    def transform_point(self, frame: FrameTransform, point: Point) -> Point:
        return transform_point(point, frame)

    def hookup_robot_map(self, robot_map) -> None:
        self.robot_map = robot_map

    def export_cloud(self) -> PointCloud:
        """The display cloud as it is written out: voxel-filtered, whatever was
        merged since the last periodic reduction included."""
        return voxel_filter(self.get_display_cloud(), self.voxel_leaf)

    def write_to(self, out_dir: str) -> None:
        with self._lock:
            snapshot = self._display_cloud
            history = tuple(self._robot_infos)
        cloud = voxel_filter(snapshot, self.voxel_leaf)

        ensure_dir(out_dir)
        prefix = os.path.join(out_dir, safe_name(self.name))

        write_pcd(f"{prefix}_cloud.pcd", cloud)
        write_path(
            f"{prefix}_path.yaml",
            history,
            meta={
                "handler": self.name,
                "frame": self.frame.frame_id,
                "points": len(cloud),
                "anomalies": dict(self.anomalies),
            },
        )
        logger.info(f"Wrote {len(cloud)} points and {len(history)} poses for {self.name}")

    def reduce_display_cloud(self) -> tuple[int, int]:
        """Voxel-filters the display cloud without holding the lock while filtering.

        Merges only ever append to the display cloud, so anything merged while
        the pass runs is the tail beyond the snapshot and is kept as is.
        """
        with self._reduce_lock:
            with self._lock:
                snapshot = self._display_cloud

            before = len(snapshot)
            reduced = voxel_filter(snapshot, self.voxel_leaf)

            with self._lock:
                current = self._display_cloud
                tail = PointCloud(current.xyz[before:], current.rgb[before:])
                self._display_cloud = PointCloud.concat(reduced, tail)

        logger.debug(f"Reduced {self.name} from {before} to {len(reduced)} points")
        return before, len(reduced)

    # Write side, transport thread only

    def _report_malformed(self, error: Exception) -> None:
        self.anomalies["malformed"] += 1
        logger.warning(f"{self.name}: discarding malformed packet: {error}")

    def _accept_timestamp(self, timestamp: int) -> bool:
        """Must be called with the lock held."""
        last = self._last_timestamp
        if last is not None and timestamp < last:
            self.anomalies["out_of_order"] += 1
            logger.warning(f"{self.name}: {OutOfOrderTimestamp(timestamp, last)}")
            if self.reject_out_of_order:
                return False
        else:
            self._last_timestamp = timestamp

        return True

    def _record_pose(self, pose: RobotPose) -> None:
        with self._lock:
            self._robot_infos.append(pose)

    def _merge(self, ts_cloud: TimestampedCloud) -> None:
        cloud = ts_cloud.cloud
        with self._lock:
            self._ts_clouds.append(ts_cloud)
            self._display_cloud = PointCloud.concat(self._display_cloud, cloud)

        if self.robot_map is not None:
            try:
                self.robot_map.add_cloud(self.name, cloud)
            except Exception:
                logger.exception(f"{self.name}: robot map rejected merged cloud")
