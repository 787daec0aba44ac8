import yaml

from robomap_py.errors import ConfigError
from robomap_py.transform import FrameTransform

SENSOR_KINDS = ("laser", "stereo", "map")


class HostInfo:
    """Per-robot settings consumed by the sensor handlers of one connection"""

    def __init__(
        self,
        name: str = "robot0",
        url: str = "localhost",
        port: int = 9000,
        sensors: list[str] = None,
        request_freq: int = 100,
        voxel_leaf: float | list[float] = 0.05,
        stat_filter_k: int = 8,
        robot_color: int = 0xFF0000,
        laser_color: int = 0x00FF00,
        stereo_color: int = 0x0000FF,
        transform: FrameTransform = None,
        path_capacity: int = 10000,
        cloud_capacity: int = 100,
        max_range: float = 30.0,
        reject_out_of_order: bool = False,
        laser_data_name: str = "laser",
        stereo_data_name: str = "stereoPoints",
        stereo_meta_name: str = "stereoMeta",
        map_data_name: str = "mapUpdate",
        kalman_q: float = 1e-4,
        kalman_r: float = 1e-1,
    ):
        self.name = name
        self.url = url
        self.port = port
        self.sensors = list(sensors) if sensors is not None else ["laser"]

        self.request_freq = request_freq
        self.voxel_leaf = voxel_leaf
        self.stat_filter_k = stat_filter_k

        self.robot_color = robot_color
        self.laser_color = laser_color
        self.stereo_color = stereo_color

        self.transform = transform if transform is not None else FrameTransform()

        self.path_capacity = path_capacity
        self.cloud_capacity = cloud_capacity
        self.max_range = max_range
        self.reject_out_of_order = reject_out_of_order

        self.laser_data_name = laser_data_name
        self.stereo_data_name = stereo_data_name
        self.stereo_meta_name = stereo_meta_name
        self.map_data_name = map_data_name

        self.kalman_q = kalman_q
        self.kalman_r = kalman_r

        for sensor in self.sensors:
            if sensor not in SENSOR_KINDS:
                raise ConfigError(
                    f"Unknown sensor kind '{sensor}' for host '{name}'. Expected one of {SENSOR_KINDS}"
                )


class ServerConfig:
    def __init__(
        self,
        hosts: list[HostInfo] = None,
        output_dir: str = "output",
        reduce_frequency: float = 1.0,
        persist_frequency: float = 0.0,
    ):
        self.hosts = hosts if hosts is not None else []
        self.output_dir = output_dir
        self.reduce_frequency = reduce_frequency
        self.persist_frequency = persist_frequency


def _parse_color(value) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def parse_host(host_dict: dict) -> HostInfo:
    host_dict = dict(host_dict)

    transform_dict = host_dict.pop("transform", None) or {}
    try:
        transform = FrameTransform.from_degrees(
            float(transform_dict.get("theta", 0.0)),
            float(transform_dict.get("dx", 0.0)),
            float(transform_dict.get("dy", 0.0)),
            str(transform_dict.get("frame", host_dict.get("name", "common"))),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Bad transform for host {host_dict.get('name')}: {e}") from e

    for key in ("robot_color", "laser_color", "stereo_color"):
        if key in host_dict:
            host_dict[key] = _parse_color(host_dict[key])

    try:
        return HostInfo(transform=transform, **host_dict)
    except TypeError as e:
        raise ConfigError(f"Bad host entry {host_dict.get('name')}: {e}") from e


def read_config_file(config_file_path) -> ServerConfig:
    with open(config_file_path, "r") as file:
        yaml_data = yaml.safe_load(file)

    if not isinstance(yaml_data, dict) or "hosts" not in yaml_data:
        raise ConfigError(f"{config_file_path} has no 'hosts' section")

    hosts = [parse_host(h) for h in yaml_data["hosts"]]

    return ServerConfig(
        hosts=hosts,
        output_dir=yaml_data.get("output_dir", "output"),
        reduce_frequency=float(yaml_data.get("reduce_frequency", 1.0)),
        persist_frequency=float(yaml_data.get("persist_frequency", 0.0)),
    )
