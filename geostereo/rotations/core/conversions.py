# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.

"""
Core conversion routines for rotation representations

This module contains core routines for converting between quaternions (scalar last), rotation vectors, and rotation
matrices.  All routines are implemented purely on numpy arrays (or array like objects).
"""

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY

from geostereo.rotations.core._helpers import (_check_matrix_array_and_shape, _check_quaternion_array_and_shape,
                                               _check_vector_array_and_shape)
from geostereo.rotations.core.elementals import skew


__all__ = ['quaternion_to_rotvec', 'quaternion_to_rotmat',
           'rotvec_to_rotmat', 'rotvec_to_quaternion',
           'rotmat_to_quaternion', 'rotmat_to_rotvec']


def quaternion_to_rotvec(quaternion: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    This function converts a single rotation quaternion into a rotation vector.

    .. math::
        \theta = 2\text{atan2}(\left\|\mathbf{q}_v\right\|, q_s) \\
        \mathbf{v} = \theta\frac{\mathbf{q}_v}{\left\|\mathbf{q}_v\right\|}

    The two argument arctangent keeps the angle accurate for very small rotations.  The identity quaternion maps to
    the zero vector.

    :param quaternion: the rotation quaternion to be converted
    :return: The rotation vector corresponding to the input rotation quaternion
    """

    quaternion = _check_quaternion_array_and_shape(quaternion)

    # use the short rotation
    if quaternion[-1] < 0:
        quaternion = -quaternion

    vec_norm = np.linalg.norm(quaternion[:3])

    if vec_norm < 1e-300:
        return np.zeros(3)

    theta = 2 * np.arctan2(vec_norm, quaternion[-1])

    return theta * quaternion[:3] / vec_norm


def quaternion_to_rotmat(quaternion: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    This function converts an attitude quaternion into its equivalent rotation matrix.

    .. math::
        \mathbf{q}=\left[\begin{array}{c}\mathbf{q}_v \\ q_s\end{array}\right] \\
        \mathbf{T} = (q_s^2-\mathbf{q}_v^T\mathbf{q}_v)\mathbf{I}_{3\times 3}+2\mathbf{q}_v\mathbf{q}_v^T+2q_s
        \left[\mathbf{q}_v\times\right]

    Multiple quaternions may be given as columns of a 4xn array, in which case the matrices are stacked down the first
    axis.  The quaternion does not need to be of unit length; it is normalized first.

    :param quaternion: The rotation quaternion(s) to be converted to the rotation matrix(ces)
    :return: the rotation matrix(ces) corresponding to the input quaternion(s)
    """

    quaternion = _check_quaternion_array_and_shape(quaternion)
    quaternion = quaternion / np.linalg.norm(quaternion, axis=0, keepdims=True)

    qs = quaternion[-1].reshape(-1, 1, 1)
    qv = quaternion[:3].reshape(3, -1)

    return ((qs ** 2 - (qv * qv).sum(axis=0).reshape(-1, 1, 1)) * np.eye(3) + 2 * np.einsum('ij,jk->jik', qv, qv.T) +
            2 * qs * skew(qv)).squeeze()


def rotvec_to_rotmat(vector: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    This function converts a single rotation vector to a rotation matrix using Rodrigues' formula

    .. math::
        \mathbf{T} = \text{cos}(\theta)\mathbf{I}_{3\times 3}+\text{sin}(\theta)\left[\hat{\mathbf{x}}\times\right]+
        (1-\text{cos}(\theta))\hat{\mathbf{x}}\hat{\mathbf{x}}^T

    :param vector: The rotation vector to convert to a rotation matrix
    :return: The rotation matrix corresponding to the rotation vector
    """

    vector = _check_vector_array_and_shape(vector)

    theta = np.linalg.norm(vector)

    if theta == 0:
        return np.eye(3)

    unit = vector / theta

    ctheta = np.cos(theta)

    return ctheta * np.eye(3) + np.sin(theta) * skew(unit) + (1 - ctheta) * np.outer(unit, unit)


def rotvec_to_quaternion(rot_vec: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    This function converts a single rotation vector into a rotation quaternion.

    .. math::
        \mathbf{q} = \left[\begin{array}{c} \text{sin}(\frac{\theta}{2})\hat{\mathbf{x}} \\
        \text{cos}(\frac{\theta}{2})\end{array}\right]

    :param rot_vec: The rotation vector to convert to a rotation quaternion
    :return: the rotation quaternion corresponding to the input rotation vector
    """

    rot_vec = _check_vector_array_and_shape(rot_vec)

    theta = np.linalg.norm(rot_vec)

    if theta < 1e-15:
        return np.array([0, 0, 0, 1], dtype=np.float64)

    return np.hstack([np.sin(theta / 2) * rot_vec / theta, np.cos(theta / 2)])


def rotmat_to_quaternion(rotation_matrix: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    This function converts a rotation matrix into a rotation quaternion.

    .. math::
        q_s = \frac{1}{2}\sqrt{(\text{Tr}(\mathbf{T})+1)}\\
        \mathbf{q}_v = \frac{1}{2}\left[\begin{array}{c}\text{copysign}(\sqrt{1+t_{11}-t_{22}-t_{33}}, t_{32}-t_{23})\\
        \text{copysign}(\sqrt{1-t_{11}+t_{22}-t_{33}}, t_{13}-t_{31})\\
        \text{copysign}(\sqrt{1-t_{11}-t_{22}+t_{33}}, t_{21}-t_{12})\end{array}\right]

    Multiple matrices may be stacked down the first axis, in which case the quaternions are returned as columns.

    :param rotation_matrix: The rotation matrix to convert to a rotation quaternion
    :return: the rotation quaternion(s) corresponding to the input matrix(ces)
    """

    rotation_matrix = _check_matrix_array_and_shape(rotation_matrix)

    # the max(..., 0) guards against rounding errors
    q_scalar = 0.5 * np.sqrt(np.maximum(np.trace(rotation_matrix.T) + 1, 0))

    t_diag = np.diagonal(rotation_matrix.T).reshape((-1, 1, 3))

    temp_mat = np.array([[1, -1, -1],
                         [-1, 1, -1],
                         [-1, -1, 1]])

    q_vec = np.sqrt(np.maximum((temp_mat * t_diag).sum(axis=-1) + 1, 0)).squeeze() / 2.0

    rotation_skew = rotation_matrix - rotation_matrix.swapaxes(-2, -1)

    q_vec = np.copysign(q_vec.T, [-rotation_skew[..., 1, 2],
                                  rotation_skew[..., 0, 2],
                                  -rotation_skew[..., 0, 1]]).squeeze()

    if rotation_matrix.ndim == 2:
        return np.hstack([q_vec, q_scalar])

    return np.vstack([q_vec, q_scalar])


def rotmat_to_rotvec(matrix: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    This function converts a single rotation matrix to a rotation vector by way of a quaternion.

    :param matrix: The rotation matrix to convert
    :return: The rotation vector
    """

    return quaternion_to_rotvec(rotmat_to_quaternion(matrix))
