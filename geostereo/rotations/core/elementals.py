
import numpy as np

from geostereo._typing import SCALAR_OR_ARRAY, ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.rotations.core._helpers import _check_vector_array_and_shape


__all__ = ["rot_x", "rot_y", "rot_z", "skew"]


def rot_x(theta: SCALAR_OR_ARRAY) -> DOUBLE_ARRAY:
    r"""
    This function performs a right handed rotation about the x axis by angle theta (radians).

    .. math::
        \mathbf{R}_x(\theta)=\left[\begin{array}{ccc} 1 & 0 & 0 \\
        0 & \text{cos}(\theta) & -\text{sin}(\theta) \\
        0 & \text{sin}(\theta) & \text{cos}(\theta) \end{array}\right]

    :param theta: The angle(s) to form the rotation matrix(ces) for
    :return: The rotation matrix(ces) corresponding to the rotation angle(s)
    """

    theta = np.atleast_1d(np.asarray(theta, dtype=np.float64)).flatten()
    ones = np.ones(theta.shape)
    zeros = np.zeros(theta.shape)
    ctheta = np.cos(theta)
    stheta = np.sin(theta)

    return np.vstack([ones, zeros, zeros, zeros, ctheta, -stheta, zeros, stheta, ctheta]).T.reshape(-1, 3, 3).squeeze()


def rot_y(theta: SCALAR_OR_ARRAY) -> DOUBLE_ARRAY:
    r"""
    This function performs a right handed rotation about the y axis by angle theta (radians).

    .. math::
        \mathbf{R}_y(\theta)=\left[\begin{array}{ccc} \text{cos}(\theta) & 0 & \text{sin}(\theta) \\
        0 & 1 & 0 \\
        -\text{sin}(\theta) & 0 & \text{cos}(\theta) \end{array}\right]

    :param theta: The angle(s) to form the rotation matrix(ces) for
    :return: The rotation matrix(ces) corresponding to the rotation angle(s)
    """

    theta = np.atleast_1d(np.asarray(theta, dtype=np.float64)).flatten()
    ones = np.ones(theta.shape)
    zeros = np.zeros(theta.shape)
    ctheta = np.cos(theta)
    stheta = np.sin(theta)

    return np.vstack([ctheta, zeros, stheta, zeros, ones, zeros, -stheta, zeros, ctheta]).T.reshape(-1, 3, 3).squeeze()


def rot_z(theta: SCALAR_OR_ARRAY) -> DOUBLE_ARRAY:
    r"""
    This function performs a right handed rotation about the z axis by angle theta (radians).

    .. math::
        \mathbf{R}_z(\theta)=\left[\begin{array}{ccc} \text{cos}(\theta) & -\text{sin}(\theta) & 0 \\
        \text{sin}(\theta) & \text{cos}(\theta) & 0 \\
        0 & 0 & 1 \end{array}\right]

    :param theta: The angle(s) to form the rotation matrix(ces) for
    :return: The rotation matrix(ces) corresponding to the rotation angle(s)
    """

    theta = np.atleast_1d(np.asarray(theta, dtype=np.float64)).flatten()
    ones = np.ones(theta.shape)
    zeros = np.zeros(theta.shape)
    ctheta = np.cos(theta)
    stheta = np.sin(theta)

    return np.vstack([ctheta, -stheta, zeros, stheta, ctheta, zeros, zeros, zeros, ones]).T.reshape(-1, 3, 3).squeeze()


def skew(vector: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    This function returns the skew symmetric cross product matrix of a vector, such that
    ``skew(a) @ b == np.cross(a, b)``.

    .. math::
        \left[\mathbf{a}\times\right] = \left[\begin{array}{ccc} 0 & -a_z & a_y \\
        a_z & 0 & -a_x \\
        -a_y & a_x & 0 \end{array}\right]

    If multiple vectors are given as columns of a 3xn array, the matrices are stacked down the first axis.

    :param vector: The vector(s) to form the skew symmetric matrix(ces) for
    :return: The skew symmetric matrix(ces)
    """

    vector = _check_vector_array_and_shape(vector)

    zeros = np.zeros(np.shape(vector[0]))

    return np.array([[zeros, -vector[2], vector[1]],
                     [vector[2], zeros, -vector[0]],
                     [-vector[1], vector[0], zeros]]).transpose(*range(2, vector.ndim + 1), 0, 1).squeeze()
