import copy
import pickle

import pytest

from robomap_py.data import PointCloud, TimestampedCloud
from robomap_py.history import RingBuffer


def test_ring_buffer_evicts_oldest():
    evicted = []
    buffer = RingBuffer(3, on_evict=evicted.append)

    for i in range(5):
        buffer.append(i)

    assert list(buffer) == [2, 3, 4]
    assert evicted == [0, 1]
    assert buffer.evicted == 2
    assert len(buffer) == 3
    assert buffer.latest() == 4
    assert buffer[0] == 2
    assert buffer[-1] == 4


def test_ring_buffer_partial():
    buffer = RingBuffer(4)
    assert buffer.latest() is None

    buffer.append("a")
    buffer.append("b")

    assert list(buffer) == ["a", "b"]
    with pytest.raises(IndexError):
        buffer[2]


def test_ring_buffer_clear_releases():
    released = []
    buffer = RingBuffer(2, on_evict=released.append)
    buffer.append(1)
    buffer.append(2)

    buffer.clear()

    assert released == [1, 2]
    assert len(buffer) == 0


def test_ring_buffer_capacity():
    with pytest.raises(ValueError):
        RingBuffer(0)


def test_timestamped_cloud_not_copyable():
    ts_cloud = TimestampedCloud(PointCloud([[1.0, 2.0, 3.0]]), 10)

    with pytest.raises(TypeError):
        copy.copy(ts_cloud)
    with pytest.raises(TypeError):
        copy.deepcopy(ts_cloud)
    with pytest.raises(TypeError):
        pickle.dumps(ts_cloud)


def test_evicted_cloud_is_released():
    buffer = RingBuffer(1, on_evict=lambda c: c.release())
    first = TimestampedCloud(PointCloud([[0.0, 0.0, 0.0]]), 1)
    second = TimestampedCloud(PointCloud([[1.0, 0.0, 0.0]]), 2)

    buffer.append(first)
    buffer.append(second)

    assert first.released
    assert len(first) == 0
    with pytest.raises(RuntimeError):
        first.cloud
    assert len(second.cloud) == 1


def test_point_cloud_is_read_only():
    cloud = PointCloud([[1.0, 2.0, 3.0]], [7])
    with pytest.raises(ValueError):
        cloud.xyz[0, 0] = 5.0
    with pytest.raises(ValueError):
        cloud.rgb[0] = 1
