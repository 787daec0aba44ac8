import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Mapping

import numpy as np

from robomap_py.errors import MalformedPacket


@dataclass(frozen=True)
class Point:
    x: float
    y: float
    z: float = 0.0
    rgb: int | None = None

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y) and math.isfinite(self.z)


@dataclass(frozen=True)
class RobotPose:
    position: Point
    heading: float  # degrees
    timestamp: int


class PointCloud:
    """Immutable set of points: an (N, 3) position array and packed 0xRRGGBB colors.

    Both arrays are made read-only on construction so a cloud handed to a
    reader can never change underneath it. Anything that "modifies" a cloud
    builds a new one.
    """

    __slots__ = ("xyz", "rgb")

    def __init__(self, xyz=None, rgb=None, default_rgb: int = 0):
        if xyz is None:
            xyz = np.empty((0, 3), dtype=np.float64)
        xyz = np.array(xyz, dtype=np.float64).reshape(-1, 3)

        if rgb is None:
            rgb = np.full(xyz.shape[0], default_rgb, dtype=np.uint32)
        else:
            rgb = np.array(rgb, dtype=np.uint32).reshape(-1)

        if rgb.shape[0] != xyz.shape[0]:
            raise ValueError(
                f"Color count {rgb.shape[0]} does not match point count {xyz.shape[0]}"
            )

        xyz.setflags(write=False)
        rgb.setflags(write=False)
        self.xyz = xyz
        self.rgb = rgb

    @classmethod
    def empty(cls) -> "PointCloud":
        return cls()

    @classmethod
    def concat(cls, *clouds: "PointCloud") -> "PointCloud":
        clouds = [c for c in clouds if len(c) > 0]
        if not clouds:
            return cls()
        if len(clouds) == 1:
            return clouds[0]

        return cls(
            np.concatenate([c.xyz for c in clouds], axis=0),
            np.concatenate([c.rgb for c in clouds], axis=0),
        )

    def __len__(self) -> int:
        return self.xyz.shape[0]

    def __repr__(self) -> str:
        return f"PointCloud({len(self)} points)"


class TimestampedCloud:
    """One packet's worth of transformed points.

    Cannot be copied or pickled: the single instance is owned by the handler
    that built it until it is evicted and released.
    """

    __slots__ = ("_cloud", "timestamp", "meta")

    def __init__(self, cloud: PointCloud, timestamp: int, meta: dict | None = None):
        self._cloud = cloud
        self.timestamp = timestamp
        self.meta = meta or {}

    @property
    def cloud(self) -> PointCloud:
        if self._cloud is None:
            raise RuntimeError(f"Cloud at timestamp {self.timestamp} was released")
        return self._cloud

    @property
    def released(self) -> bool:
        return self._cloud is None

    def release(self) -> None:
        self._cloud = None

    def __len__(self) -> int:
        return 0 if self._cloud is None else len(self._cloud)

    def __copy__(self):
        raise TypeError("TimestampedCloud cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("TimestampedCloud cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("TimestampedCloud cannot be pickled")


# Inbound packet payloads


@dataclass
class PoseSample:
    x: float
    y: float
    heading: float
    timestamp: int


@dataclass
class LaserScanPacket:
    timestamp: int
    ranges: list[float]
    angle_min: float  # degrees
    angle_increment: float  # degrees


@dataclass
class StereoPointsPacket:
    timestamp: int
    xyz: np.ndarray
    rgb: np.ndarray | None = None


@dataclass
class StereoMetaPacket:
    timestamp: int
    fields: dict = field(default_factory=dict)


def _require(message: Mapping[str, Any], key: str) -> Any:
    if not isinstance(message, Mapping):
        raise MalformedPacket(f"Expected an object, got {type(message).__name__}")
    if key not in message:
        raise MalformedPacket(f"Missing field '{key}'")
    return message[key]


def _number(value: Any, name: str) -> float:
    # bool is an int subclass, but never a valid reading
    if isinstance(value, bool) or not isinstance(value, Real):
        raise MalformedPacket(f"Field '{name}' is not a number: {value!r}")
    return float(value)


def _timestamp(value: Any) -> int:
    number = _number(value, "timestamp")
    if not math.isfinite(number) or number != int(number):
        raise MalformedPacket(f"Timestamp is not an integer: {value!r}")
    return int(number)


def _color(value: Any) -> int:
    number = _number(value, "rgb")
    if not math.isfinite(number) or number != int(number) or not 0 <= number <= 0xFFFFFFFF:
        raise MalformedPacket(f"Color is not a packed 32-bit value: {value!r}")
    return int(number)


def decode_pose(message: Mapping[str, Any]) -> PoseSample:
    return PoseSample(
        x=_number(_require(message, "x"), "x"),
        y=_number(_require(message, "y"), "y"),
        heading=_number(_require(message, "heading"), "heading"),
        timestamp=_timestamp(_require(message, "timestamp")),
    )


def decode_scan(message: Mapping[str, Any]) -> LaserScanPacket:
    ranges = _require(message, "ranges")
    if not isinstance(ranges, (list, tuple)):
        raise MalformedPacket("Field 'ranges' is not a list")

    return LaserScanPacket(
        timestamp=_timestamp(_require(message, "timestamp")),
        ranges=[_number(r, "ranges") for r in ranges],
        angle_min=_number(_require(message, "angle_min"), "angle_min"),
        angle_increment=_number(
            _require(message, "angle_increment"), "angle_increment"
        ),
    )


def decode_stereo_points(message: Mapping[str, Any]) -> StereoPointsPacket:
    timestamp = _timestamp(_require(message, "timestamp"))
    points = _require(message, "points")
    if not isinstance(points, (list, tuple)):
        raise MalformedPacket("Field 'points' is not a list")

    xyz = []
    rgb = []
    for p in points:
        if not isinstance(p, (list, tuple)) or len(p) not in (3, 4):
            raise MalformedPacket(f"Stereo point must have 3 or 4 fields: {p!r}")
        xyz.append([_number(v, "points") for v in p[:3]])
        if len(p) == 4:
            rgb.append(_color(p[3]))

    if rgb and len(rgb) != len(xyz):
        raise MalformedPacket("Either every stereo point carries a color or none does")

    return StereoPointsPacket(
        timestamp=timestamp,
        xyz=np.array(xyz, dtype=np.float64).reshape(-1, 3),
        rgb=np.array(rgb, dtype=np.uint32) if rgb else None,
    )


def decode_stereo_meta(message: Mapping[str, Any]) -> StereoMetaPacket:
    timestamp = _timestamp(_require(message, "timestamp"))
    fields = {k: v for k, v in message.items() if k not in ("timestamp", "type")}
    return StereoMetaPacket(timestamp=timestamp, fields=fields)
