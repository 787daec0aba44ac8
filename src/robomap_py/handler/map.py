import logging
from collections.abc import Mapping

from robomap_py.comms import RobotClient
from robomap_py.config import HostInfo
from robomap_py.errors import MalformedPacket
from robomap_py.handler import SensorHandler

logger = logging.getLogger(__name__)


class MapHandler(SensorHandler):
    """Relays map updates from one robot to every other connected client.

    Holds no cloud or path of its own.
    """

    accumulates = False

    def __init__(
        self, client: RobotClient, host_info: HostInfo, peers: list[RobotClient] = None
    ):
        super().__init__(client, host_info.map_data_name, host_info)
        self.peers: list[RobotClient] = list(peers) if peers is not None else []

    def _streams(self):
        return [(self.data_name, self.handle)]

    def handle(self, message: dict) -> int:
        if not isinstance(message, Mapping):
            self._report_malformed(
                MalformedPacket(f"Expected an object, got {type(message).__name__}")
            )
            return 0

        return self.forward_packets(message)

    def forward_packets(self, message: dict) -> int:
        """Sends ``message`` unchanged to each peer except our own client."""
        forwarded = 0
        for peer in self.peers:
            if peer is self.client:
                continue
            try:
                peer.send(message)
                forwarded += 1
            except Exception as e:
                self.anomalies["forward_failed"] += 1
                host = getattr(peer, "host", peer)
                logger.warning(f"{self.name}: could not forward to {host}: {e!r}")

        logger.debug(f"{self.name}: forwarded map update to {forwarded} clients")
        return forwarded

    def write_to(self, out_dir: str) -> None:
        logger.debug(f"{self.name}: relay has nothing to write")

    def reduce_display_cloud(self) -> tuple[int, int]:
        return 0, 0
