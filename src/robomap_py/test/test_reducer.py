import numpy as np
import pytest

from robomap_py.data import Point, PointCloud
from robomap_py.errors import InvalidParameter
from robomap_py.reducer import calc_region_density, stats_filter, voxel_filter


@pytest.fixture
def random_cloud():
    rng = np.random.default_rng(42)
    xyz = rng.uniform(-5.0, 5.0, size=(500, 3))
    rgb = rng.integers(0, 0xFFFFFF, size=500)
    return PointCloud(xyz, rgb)


def test_voxel_never_grows(random_cloud: PointCloud):
    for leaf in (0.1, 0.5, 2.0, [0.2, 1.0, 3.0]):
        assert len(voxel_filter(random_cloud, leaf)) <= len(random_cloud)


def test_voxel_idempotent(random_cloud: PointCloud):
    once = voxel_filter(random_cloud, 0.75)
    twice = voxel_filter(once, 0.75)

    assert len(once) == len(twice)
    assert np.allclose(once.xyz, twice.xyz)
    assert np.array_equal(once.rgb, twice.rgb)


def test_voxel_centroid_of_merged_clouds():
    rng = np.random.default_rng(1)
    first = PointCloud(rng.uniform(0.0, 1.0, size=(100, 3)))
    second = PointCloud(rng.uniform(0.0, 1.0, size=(50, 3)))
    merged = PointCloud.concat(first, second)

    reduced = voxel_filter(merged, 5.0)

    assert len(merged) == 150
    assert len(reduced) == 1
    assert reduced.xyz[0] == pytest.approx(merged.xyz.mean(axis=0))


def test_voxel_keeps_first_color_and_order():
    cloud = PointCloud(
        [[0.1, 0.1, 0.1], [5.1, 0.1, 0.1], [0.2, 0.2, 0.2]],
        [0xAA0000, 0x00BB00, 0x0000CC],
    )
    reduced = voxel_filter(cloud, 1.0)

    assert len(reduced) == 2
    assert list(reduced.rgb) == [0xAA0000, 0x00BB00]
    assert reduced.xyz[0] == pytest.approx([0.15, 0.15, 0.15])


def test_voxel_invalid_leaf(random_cloud: PointCloud):
    with pytest.raises(InvalidParameter):
        voxel_filter(random_cloud, 0.0)
    with pytest.raises(InvalidParameter):
        voxel_filter(random_cloud, [1.0, -1.0, 1.0])
    with pytest.raises(InvalidParameter):
        voxel_filter(random_cloud, [1.0, 1.0])


def test_voxel_empty():
    assert len(voxel_filter(PointCloud.empty(), 1.0)) == 0


def test_stats_removes_outlier():
    grid = [[x * 0.1, y * 0.1, 0.0] for x in range(3) for y in range(3)]
    cloud = PointCloud(grid + [[10.0, 10.0, 10.0]])

    filtered = stats_filter(cloud, 2)

    assert len(filtered) == 9
    assert not np.any(np.all(filtered.xyz == [10.0, 10.0, 10.0], axis=1))


def test_stats_never_grows(random_cloud: PointCloud):
    for k in (1, 4, 16):
        assert len(stats_filter(random_cloud, k)) <= len(random_cloud)


def test_stats_invalid_k_leaves_input(random_cloud: PointCloud):
    before = random_cloud.xyz.copy()

    with pytest.raises(InvalidParameter):
        stats_filter(random_cloud, len(random_cloud))
    with pytest.raises(InvalidParameter):
        stats_filter(random_cloud, 0)

    assert len(random_cloud) == 500
    assert np.array_equal(random_cloud.xyz, before)


def test_region_density():
    corners = [[x, y, z] for x in (0.25, 0.75) for y in (0.25, 0.75) for z in (0.25, 0.75)]
    cloud = PointCloud(corners + [[3.0, 3.0, 3.0]])

    density = calc_region_density(cloud, Point(0.0, 0.0, 0.0), Point(1.0, 1.0, 1.0), 2)

    assert density == pytest.approx(1.0)
    assert calc_region_density(cloud, [0, 0, 0], [1, 1, 1], 1) == pytest.approx(8.0)


def test_region_density_invalid():
    cloud = PointCloud([[0.5, 0.5, 0.5]])
    with pytest.raises(InvalidParameter):
        calc_region_density(cloud, [0, 0, 0], [1, 1, 1], 0)
    with pytest.raises(InvalidParameter):
        calc_region_density(cloud, [0, 0, 0], [1, 0, 1], 2)
