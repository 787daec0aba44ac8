from robomap_py.comms import RobotClient
from robomap_py.config import HostInfo
from robomap_py.estimator import PoseFilter
from robomap_py.handler import SensorHandler
from robomap_py.handler.laser import LaserHandler
from robomap_py.handler.map import MapHandler
from robomap_py.handler.stereo import StereoCamHandler


def create_handler(
    kind: str,
    client: RobotClient,
    host_info: HostInfo,
    peers: list[RobotClient] = None,
    pose_filter: PoseFilter = None,
) -> SensorHandler:
    if kind == "laser":
        return LaserHandler(client, host_info, pose_filter=pose_filter)
    if kind == "stereo":
        return StereoCamHandler(client, host_info)
    if kind == "map":
        return MapHandler(client, host_info, peers=peers)

    raise ValueError(f"Unknown sensor kind '{kind}'")
