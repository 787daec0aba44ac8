import logging

import numpy as np

from robomap_py.data import Point
from robomap_py.errors import FilterDivergence, InvalidParameter
from robomap_py.estimator import PoseFilter

logger = logging.getLogger(__name__)


class KalmanConfig:
    def __init__(
        self,
        process_noise: float = 1e-4,
        measurement_noise: float = 1e-1,
        initial_covariance: float = 1.0,
        max_covariance: float = 1e6,
    ):
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.initial_covariance = initial_covariance
        self.max_covariance = max_covariance


class KalmanPoseFilter(PoseFilter):
    """Constant-velocity Kalman filter over [x, y, vx, vy] with a unit time step.

    Only the position is observed; velocity is carried implicitly by the
    state. Noise covariances are fixed at construction.
    """

    # Transition
    F = np.array(
        [
            [1.0, 0.0, 1.0, 0.0],
            [0.0, 1.0, 0.0, 1.0],
            [0.0, 0.0, 1.0, 0.0],
            [0.0, 0.0, 0.0, 1.0],
        ]
    )
    # Measurement
    H = np.array(
        [
            [1.0, 0.0, 0.0, 0.0],
            [0.0, 1.0, 0.0, 0.0],
        ]
    )

    def __init__(self, config: KalmanConfig = None):
        self.config = config if config is not None else KalmanConfig()

        self.Q = np.eye(4) * self.config.process_noise
        self.R = np.eye(2) * self.config.measurement_noise

        self.x: np.ndarray = np.zeros((4, 1))
        self.P: np.ndarray = np.eye(4) * self.config.initial_covariance

        self._initialized = False
        self._diverged = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def diverged(self) -> bool:
        return self._diverged

    def reset(self) -> None:
        self.x = np.zeros((4, 1))
        self.P = np.eye(4) * self.config.initial_covariance
        self._initialized = False
        self._diverged = False

    def _seed(self, measured: Point) -> Point:
        self.x = np.array([measured.x, measured.y, 0.0, 0.0]).reshape(-1, 1)
        self.P = np.eye(4) * self.config.initial_covariance
        self._initialized = True
        logger.debug(f"Seeded pose filter at ({measured.x:.3f}, {measured.y:.3f})")

        return measured

    def update(self, measured: Point) -> Point:
        if not measured.is_finite():
            raise InvalidParameter(f"Cannot filter non-finite measurement {measured}")

        if self._diverged:
            raise FilterDivergence(float(np.trace(self.P)))

        if not self._initialized:
            return self._seed(measured)

        # Predict
        x_pred = self.F @ self.x
        P_pred = self.F @ self.P @ self.F.T + self.Q

        # Correct
        z = np.array([measured.x, measured.y]).reshape(-1, 1)
        S = self.H @ P_pred @ self.H.T + self.R
        K = P_pred @ self.H.T @ np.linalg.inv(S)

        self.x = x_pred + K @ (z - self.H @ x_pred)
        self.P = (np.eye(4) - K @ self.H) @ P_pred

        trace = float(np.trace(self.P))
        if (
            not np.all(np.isfinite(self.x))
            or not np.isfinite(trace)
            or trace > self.config.max_covariance
        ):
            self._diverged = True
            raise FilterDivergence(trace)

        return Point(
            float(self.x[0, 0]), float(self.x[1, 0]), measured.z, measured.rgb
        )
