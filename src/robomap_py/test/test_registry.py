import numpy as np
import open3d as o3d
import pytest
import yaml

from robomap_py.comms import RobotClient
from robomap_py.config import HostInfo, parse_host, read_config_file
from robomap_py.errors import ConfigError
from robomap_py.handler.laser import LaserHandler
from robomap_py.handler.map import MapHandler
from robomap_py.handler.stereo import StereoCamHandler
from robomap_py.registry import HandlerRegistry


@pytest.fixture
def clients():
    return [RobotClient("robot0"), RobotClient("robot1")]


@pytest.fixture
def hosts_info():
    return [
        HostInfo(name="robot0", sensors=["laser", "map"]),
        HostInfo(name="robot1", port=9001, sensors=["stereo", "map"], stat_filter_k=2),
    ]


@pytest.fixture
def registry(clients, hosts_info):
    return HandlerRegistry.create_sensor_data_handlers(clients, hosts_info)


def test_one_handler_per_sensor(registry: HandlerRegistry):
    kinds = [type(h) for h in registry]

    assert len(registry) == 4
    assert kinds == [LaserHandler, MapHandler, StereoCamHandler, MapHandler]
    assert sorted(registry.display_clouds()) == ["robot0:laser", "robot1:stereoPoints"]


def test_mismatched_lengths(clients, hosts_info):
    with pytest.raises(ValueError):
        HandlerRegistry.create_sensor_data_handlers(clients[:1], hosts_info)


def test_request_all_subscribes(registry: HandlerRegistry, clients):
    registry.request_all()

    assert sorted(clients[0].subscriptions()) == ["laser", "mapUpdate"]
    assert sorted(clients[1].subscriptions()) == ["mapUpdate", "stereoMeta", "stereoPoints"]


def test_dispatch_reaches_handler(registry: HandlerRegistry, clients):
    registry.request_all()

    clients[0].dispatch(
        {
            "type": "laser",
            "scan": {"ranges": [1.0, 2.0], "angle_min": 0, "angle_increment": 5, "timestamp": 1},
        }
    )

    assert len(registry.display_clouds()["robot0:laser"]) == 2


def test_map_update_reaches_other_robot(registry: HandlerRegistry, clients):
    registry.request_all()
    robot0_requests = clients[0].outbox.qsize()

    update = {"type": "mapUpdate", "cells": [[0, 0, 1]]}
    clients[0].dispatch(update)

    robot1_outbox = []
    while not clients[1].outbox.empty():
        robot1_outbox.append(clients[1].outbox.get_nowait())

    assert robot1_outbox[-1] is update
    assert clients[0].outbox.qsize() == robot0_requests


def test_robot_map_hooked_up(clients, hosts_info):
    robot_map = object()
    registry = HandlerRegistry.create_sensor_data_handlers(clients, hosts_info, robot_map)

    assert all(h.robot_map is robot_map for h in registry)


def test_reduce_all(registry: HandlerRegistry, clients):
    registry.request_all()
    for t in range(3):
        clients[0].dispatch(
            {
                "type": "laser",
                "scan": {"ranges": [1.0], "angle_min": 0, "angle_increment": 1, "timestamp": t},
            }
        )

    result = registry.reduce_all()

    assert result == {"robot0:laser": (3, 1), "robot1:stereoPoints": (0, 0)}


def test_write_all(registry: HandlerRegistry, clients, tmp_path):
    registry.request_all()
    clients[0].dispatch(
        {
            "type": "laser",
            "pose": {"x": 0.0, "y": 0.0, "heading": 0.0, "timestamp": 1},
            "scan": {"ranges": [1.0, 2.0], "angle_min": 0, "angle_increment": 90, "timestamp": 1},
        }
    )
    grid = [[x * 0.1, y * 0.1, 1.0] for x in range(3) for y in range(3)]
    clients[1].dispatch({"type": "stereoPoints", "timestamp": 4, "points": grid})
    clients[1].dispatch({"type": "stereoMeta", "timestamp": 4})

    cloud_path = registry.write_all(str(tmp_path))

    assert cloud_path == str(tmp_path / "combined_cloud.pcd")
    combined = o3d.io.read_point_cloud(cloud_path)
    assert np.asarray(combined.points).shape == (11, 3)
    assert (tmp_path / "robot0_laser_cloud.pcd").exists()
    assert (tmp_path / "robot1_stereoPoints_path.yaml").exists()

    with open(tmp_path / "combined_meta.yaml") as f:
        meta = yaml.safe_load(f)
    assert meta["total_points"] == 11
    assert meta["handlers"]["robot0:laser"]["poses"] == 1


def test_write_all_exports_reduced_clouds(registry: HandlerRegistry, clients, tmp_path):
    registry.request_all()
    for t in range(3):
        clients[0].dispatch(
            {
                "type": "laser",
                "scan": {"ranges": [1.0], "angle_min": 0, "angle_increment": 1, "timestamp": t},
            }
        )

    cloud_path = registry.write_all(str(tmp_path))

    assert np.asarray(o3d.io.read_point_cloud(cloud_path).points).shape == (1, 3)
    with open(tmp_path / "combined_meta.yaml") as f:
        assert yaml.safe_load(f)["total_points"] == 1
    assert len(registry.display_clouds()["robot0:laser"]) == 3


def test_close_cancels_subscriptions(registry: HandlerRegistry, clients):
    registry.request_all()
    subscriptions = [s for c in clients for s in c.subscriptions().values()]

    registry.close()

    assert all(not s.active for s in subscriptions)
    assert all(not c.subscriptions() for c in clients)


# Config


def test_read_config_file(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        """
output_dir: maps
reduce_frequency: 2
hosts:
  - name: robot0
    url: 10.0.0.2
    port: 7272
    sensors: [laser, map]
    voxel_leaf: [0.1, 0.1, 0.2]
    laser_color: "0x00AA00"
    transform:
      theta: 90
      dx: 1.5
      dy: -2
  - name: robot1
    sensors: [stereo]
"""
    )

    config = read_config_file(str(config_file))

    assert config.output_dir == "maps"
    assert config.reduce_frequency == 2.0
    assert config.persist_frequency == 0.0

    robot0, robot1 = config.hosts
    assert (robot0.url, robot0.port) == ("10.0.0.2", 7272)
    assert robot0.sensors == ["laser", "map"]
    assert robot0.voxel_leaf == [0.1, 0.1, 0.2]
    assert robot0.laser_color == 0x00AA00
    assert robot0.transform.frame_id == "robot0"
    assert robot0.transform.theta_degrees == pytest.approx(90.0)
    assert (robot0.transform.dx, robot0.transform.dy) == (1.5, -2.0)

    assert robot1.sensors == ["stereo"]
    assert np.isclose(robot1.transform.cos_theta, 1.0)


def test_unknown_sensor_kind():
    with pytest.raises(ConfigError):
        parse_host({"name": "robot0", "sensors": ["sonar"]})


def test_unknown_host_key():
    with pytest.raises(ConfigError):
        parse_host({"name": "robot0", "wheels": 4})


def test_bad_transform():
    with pytest.raises(ConfigError):
        parse_host({"name": "robot0", "transform": {"theta": "left"}})


@pytest.mark.parametrize("content", ["output_dir: maps\n", "- robot0\n", ""])
def test_missing_hosts(tmp_path, content):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(content)

    with pytest.raises(ConfigError):
        read_config_file(str(config_file))
