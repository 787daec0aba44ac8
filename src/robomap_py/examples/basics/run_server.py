import logging
import pathlib

from robomap_py.comms import RobotClient
from robomap_py.config import read_config_file
from robomap_py.registry import HandlerRegistry

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s"
)
logger = logging.getLogger("run_server")


if __name__ == "__main__":
    config_file_path = pathlib.Path(__file__).parent.resolve().joinpath("config.yaml")
    config = read_config_file(config_file_path)

    # One connection per robot
    clients = [RobotClient(h.name, h.url, h.port) for h in config.hosts]
    registry = HandlerRegistry.create_sensor_data_handlers(clients, config.hosts)
    registry.request_all()

    # Timers run on the first client's loop
    primary = clients[0]
    primary.create_timer(config.reduce_frequency, registry.reduce_all)
    if config.persist_frequency > 0:
        primary.create_timer(
            config.persist_frequency, lambda: registry.write_all(config.output_dir)
        )

    for client in clients[1:]:
        client.run_in_separate_thread()

    try:
        primary.run()
    finally:
        for client in clients[1:]:
            client.stop()
        registry.write_all(config.output_dir)
        registry.close()
        logger.info(f"Saved map to {config.output_dir}")
