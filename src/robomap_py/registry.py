import logging
from typing import Iterator

from robomap_py.comms import RobotClient
from robomap_py.config import HostInfo
from robomap_py.data import PointCloud
from robomap_py.handler import SensorHandler
from robomap_py.handler.factory import create_handler
from robomap_py.persist import Persister

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """All sensor handlers of the server, one per (client, sensor kind)"""

    def __init__(self):
        self.handlers: list[SensorHandler] = []

    @classmethod
    def create_sensor_data_handlers(
        cls,
        clients: list[RobotClient],
        hosts_info: list[HostInfo],
        robot_map=None,
    ) -> "HandlerRegistry":
        if len(clients) != len(hosts_info):
            raise ValueError(
                f"Got {len(clients)} clients but {len(hosts_info)} host entries"
            )

        registry = cls()
        for client, host_info in zip(clients, hosts_info):
            for kind in host_info.sensors:
                handler = create_handler(kind, client, host_info, peers=clients)
                if robot_map is not None:
                    handler.hookup_robot_map(robot_map)
                registry.add(handler)

        logger.info(
            f"Created {len(registry)} sensor handlers for {len(clients)} clients"
        )
        return registry

    def add(self, handler: SensorHandler) -> None:
        self.handlers.append(handler)

    def request_all(self) -> None:
        for handler in self.handlers:
            handler.request()

    def accumulating(self) -> list[SensorHandler]:
        return [h for h in self.handlers if h.accumulates]

    def display_clouds(self) -> dict[str, PointCloud]:
        return {h.name: h.get_display_cloud() for h in self.accumulating()}

    def reduce_all(self) -> dict[str, tuple[int, int]]:
        return {h.name: h.reduce_display_cloud() for h in self.accumulating()}

    def write_all(self, out_dir: str) -> str:
        for handler in self.accumulating():
            handler.write_to(out_dir)
        return Persister(out_dir).write(self.handlers)

    def close(self) -> None:
        for handler in self.handlers:
            handler.close()

    def __iter__(self) -> Iterator[SensorHandler]:
        return iter(self.handlers)

    def __len__(self) -> int:
        return len(self.handlers)
