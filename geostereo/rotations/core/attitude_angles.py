r"""
Roll, pitch, and yaw decomposition of rotation matrices.

The decomposition assumes :math:`\mathbf{T}=\mathbf{R}_z(\text{yaw})\mathbf{R}_y(\text{pitch})\mathbf{R}_x(\text{roll})`
and works in degrees, which is the unit the trajectory regularizers are weighted in.
"""

import numpy as np

from geostereo._typing import ARRAY_LIKE, F_SCALAR_OR_ARRAY
from geostereo.rotations.core._helpers import _check_matrix_array_and_shape
from geostereo.rotations.core.elementals import rot_x, rot_y, rot_z


__all__ = ['rotmat_to_roll_pitch_yaw', 'roll_pitch_yaw_to_rotmat', 'wrap_half_turn']


def rotmat_to_roll_pitch_yaw(matrix: ARRAY_LIKE) -> tuple[float, float, float]:
    """
    Decompose a rotation matrix into roll, pitch, and yaw, in degrees.

    :param matrix: The 3x3 rotation matrix
    :return: (roll, pitch, yaw) in degrees
    """

    matrix = _check_matrix_array_and_shape(matrix)

    roll = np.arctan2(matrix[2, 1], matrix[2, 2])
    pitch = np.arctan2(-matrix[2, 0], np.sqrt(matrix[0, 0] ** 2 + matrix[1, 0] ** 2))
    yaw = np.arctan2(matrix[1, 0], matrix[0, 0])

    return float(np.degrees(roll)), float(np.degrees(pitch)), float(np.degrees(yaw))


def roll_pitch_yaw_to_rotmat(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """
    Inverse of :func:`rotmat_to_roll_pitch_yaw`.  Angles are in degrees.
    """

    return rot_z(np.radians(yaw)) @ rot_y(np.radians(pitch)) @ rot_x(np.radians(roll))


def wrap_half_turn(angle: F_SCALAR_OR_ARRAY) -> F_SCALAR_OR_ARRAY:
    """
    Bring an angle in degrees into [-90, 90] by removing the nearest multiple of 180.

    Angles that differ by 180 degrees describe the same line, so a sensor flipped end to end is not penalized.
    Halves round away from zero.
    """

    ratio = np.asarray(angle, dtype=np.float64) / 180.0
    nearest = np.trunc(ratio + np.copysign(0.5, ratio))

    result = angle - 180.0 * nearest

    if np.ndim(result) == 0:
        return float(result)

    return result
