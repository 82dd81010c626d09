r"""
Lens distortion models for the frame and linescan cameras.

All models work on normalized image coordinates :math:`(x, y) = (X_c/Z_c, Y_c/Z_c)`.  :meth:`~Distortion.distort`
maps ideal pinhole coordinates to distorted ones and :meth:`~Distortion.undistort` inverts it iteratively.  The
coefficient vector of every model is exposed through :attr:`~Distortion.coefficients` so that the parameter store can
scale it by per-coefficient multipliers.

================ ============= =========================================================================================
Name             Coefficients  Model
================ ============= =========================================================================================
``none``         0             identity
``fov``          1             :math:`r_d = \text{atan}(2r\tan(w/2))/w` (field of view model)
``fisheye``      4             :math:`\theta_d = \theta(1+k_1\theta^2+k_2\theta^4+k_3\theta^6+k_4\theta^8)` with
                               :math:`\theta = \text{atan}(r)`
``radtan``       4 or 5        Brown-Conrady radial/tangential: :math:`k_1, k_2, p_1, p_2[, k_3]`
================ ============= =========================================================================================
"""

from abc import ABCMeta, abstractmethod

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY


DISTORTION_TYPES = ("none", "fov", "fisheye", "radtan", "rpc")
"""
The distortion type names accepted in rig files.  ``rpc`` is stored but cannot be used for projection.
"""


class Distortion(metaclass=ABCMeta):
    """
    Base class for lens distortion models.
    """

    name: str = ""
    """
    The name of the model as used in rig files
    """

    def __init__(self, coefficients: ARRAY_LIKE = ()):
        self.coefficients = np.array(coefficients, dtype=np.float64).ravel()

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.coefficients.tolist()!r})'

    def __eq__(self, other) -> bool:
        return type(self) is type(other) and np.array_equal(self.coefficients, other.coefficients)

    @abstractmethod
    def distort(self, xy: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Apply the distortion to normalized image coordinate(s) given as a length 2 array or a 2xn array.
        """

    def undistort(self, xy: ARRAY_LIKE, max_iter: int = 50, tol: float = 1e-14) -> DOUBLE_ARRAY:
        """
        Invert :meth:`distort` using Newton iterations with a finite difference Jacobian.

        :param xy: The distorted normalized coordinate(s)
        :param max_iter: The maximum number of iterations
        :param tol: The convergence tolerance on the update
        :return: The undistorted normalized coordinate(s)
        """

        target = np.array(xy, dtype=np.float64)
        single = target.ndim == 1
        target = target.reshape(2, -1)

        guess = target.copy()
        step = 1e-7

        for _ in range(max_iter):

            err = self.distort(guess) - target

            dx = (self.distort(guess + [[step], [0]]) - self.distort(guess - [[step], [0]])) / (2 * step)
            dy = (self.distort(guess + [[0], [step]]) - self.distort(guess - [[0], [step]])) / (2 * step)

            det = dx[0] * dy[1] - dy[0] * dx[1]
            det = np.where(det == 0, 1.0, det)

            update = np.array([(dy[1] * err[0] - dy[0] * err[1]) / det,
                               (-dx[1] * err[0] + dx[0] * err[1]) / det])

            guess -= update

            if np.abs(update).max() < tol:
                break

        return guess.ravel() if single else guess

    def scaled(self, multipliers: ARRAY_LIKE) -> 'Distortion':
        """
        A new model of the same type with coefficients multiplied elementwise by ``multipliers``.
        """

        return type(self)(self.coefficients * np.asarray(multipliers, dtype=np.float64))


class NoDistortion(Distortion):
    """
    The identity distortion.
    """

    name = "none"

    def __init__(self, coefficients: ARRAY_LIKE = ()):
        super().__init__(coefficients)
        if self.coefficients.size:
            raise ValueError('The none distortion model takes no coefficients')

    def distort(self, xy: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return np.array(xy, dtype=np.float64)

    def undistort(self, xy: ARRAY_LIKE, max_iter: int = 50, tol: float = 1e-14) -> DOUBLE_ARRAY:
        return np.array(xy, dtype=np.float64)


class FovDistortion(Distortion):
    """
    The single parameter field of view model.
    """

    name = "fov"

    def __init__(self, coefficients: ARRAY_LIKE = (1.0,)):
        super().__init__(coefficients)
        if self.coefficients.size != 1:
            raise ValueError('The fov distortion model takes exactly 1 coefficient')

    def distort(self, xy: ARRAY_LIKE) -> DOUBLE_ARRAY:

        xy = np.asarray(xy, dtype=np.float64)
        w = self.coefficients[0]

        r = np.linalg.norm(xy, axis=0)
        safe_r = np.where(r < 1e-12, 1.0, r)

        factor = np.where(r < 1e-12, 2 * np.tan(w / 2) / w, np.arctan(2 * safe_r * np.tan(w / 2)) / (w * safe_r))

        return xy * factor


class FisheyeDistortion(Distortion):
    """
    The four parameter equidistant fisheye model.
    """

    name = "fisheye"

    def __init__(self, coefficients: ARRAY_LIKE = (0.0, 0.0, 0.0, 0.0)):
        super().__init__(coefficients)
        if self.coefficients.size != 4:
            raise ValueError('The fisheye distortion model takes exactly 4 coefficients')

    def distort(self, xy: ARRAY_LIKE) -> DOUBLE_ARRAY:

        xy = np.asarray(xy, dtype=np.float64)
        k1, k2, k3, k4 = self.coefficients

        r = np.linalg.norm(xy, axis=0)
        safe_r = np.where(r < 1e-12, 1.0, r)

        theta = np.arctan(r)
        theta2 = theta * theta
        theta_d = theta * (1 + theta2 * (k1 + theta2 * (k2 + theta2 * (k3 + theta2 * k4))))

        factor = np.where(r < 1e-12, 1.0, theta_d / safe_r)

        return xy * factor


class RadTanDistortion(Distortion):
    """
    The Brown-Conrady radial and tangential model with coefficients (k1, k2, p1, p2[, k3]).
    """

    name = "radtan"

    def __init__(self, coefficients: ARRAY_LIKE = (0.0, 0.0, 0.0, 0.0)):
        super().__init__(coefficients)
        if self.coefficients.size not in (4, 5):
            raise ValueError('The radtan distortion model takes 4 or 5 coefficients')

    def distort(self, xy: ARRAY_LIKE) -> DOUBLE_ARRAY:

        xy = np.asarray(xy, dtype=np.float64)
        k1, k2, p1, p2 = self.coefficients[:4]
        k3 = self.coefficients[4] if self.coefficients.size == 5 else 0.0

        x, y = xy[0], xy[1]
        r2 = x * x + y * y

        radial = 1 + r2 * (k1 + r2 * (k2 + r2 * k3))

        return np.array([x * radial + 2 * p1 * x * y + p2 * (r2 + 2 * x * x),
                         y * radial + p1 * (r2 + 2 * y * y) + 2 * p2 * x * y])


DISTORTION_CLASSES = (NoDistortion, FovDistortion, FisheyeDistortion, RadTanDistortion)


def make_distortion(name: str, coefficients: ARRAY_LIKE = ()) -> Distortion:
    """
    Build a distortion model from its rig file name and coefficients.

    :raises ValueError: for unknown names, for ``rpc`` which has no projection model here, and for coefficient
                        counts the model does not accept
    """

    for cls in DISTORTION_CLASSES:
        if cls.name == name:
            return cls(coefficients)

    raise ValueError(f'Cannot build a projection model for distortion type: {name}')
