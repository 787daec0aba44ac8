from robomap_py.data import Point


class PoseFilter:
    """Recursive estimator smoothing a stream of measured robot positions"""

    def __init__(self, *args, **kwargs):
        pass

    @property
    def initialized(self) -> bool:
        raise NotImplementedError

    def update(self, measured: Point) -> Point:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError
