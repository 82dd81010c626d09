
import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY

from geostereo.rotations.core._helpers import _check_quaternion_array_and_shape

__all__ = ["quaternion_normalize", "quaternion_inverse", "quaternion_multiplication", "nlerp",
           "scalar_first_to_scalar_last", "scalar_last_to_scalar_first"]


def quaternion_normalize(quaternion: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Normalizes the quaternion(s) such that the scalar term is positive and the length is 1

    :param quaternion: the quaternion(s) to normalize (scalar last)
    :returns: The normalized quaternions
    :raises ValueError: if any quaternion has zero length
    """

    work_quaternion = _check_quaternion_array_and_shape(quaternion, return_copy=True)

    norms = np.linalg.norm(work_quaternion, axis=0, keepdims=True)
    if (norms == 0).any():
        raise ValueError('Cannot normalize a zero quaternion')

    signs = np.sign(work_quaternion[-1])

    if np.shape(signs):
        signs[signs == 0] = 1
    else:
        signs = signs if signs != 0 else 1

    work_quaternion *= signs / norms

    return work_quaternion


def quaternion_inverse(quaternion: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    This function provides the inverse of a rotation quaternion.

    The inverse is defined such that :math:`\mathbf{q}\otimes\mathbf{q}^{-1}=\mathbf{q}_I` where
    :math:`\mathbf{q}_I=[0, 0, 0, 1]^T` is the identity quaternion.  Mathematically this corresponds to negating the
    vector portion of the quaternion.

    :param quaternion: The rotation quaternion(s) to be inverted
    :return: the inverse quaternion(s)
    """

    quaternion = _check_quaternion_array_and_shape(quaternion, return_copy=True)

    quaternion[:3] *= -1

    return quaternion


def quaternion_multiplication(quaternion_1_in: ARRAY_LIKE,
                              quaternion_2_in: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    This function performs the hamiltonian quaternion multiplication operation.

    The multiplication is defined such that
    `q_from_A_to_C = quaternion_multiplication(q_from_B_to_C, q_from_A_to_B)`

    .. math::
        \mathbf{q}_1\otimes\mathbf{q}_2=\left[\begin{array}{c}q_{s1}\mathbf{q}_{v2} + q_{s2}\mathbf{q}_{v1} +
        \mathbf{q}_{v1}\times\mathbf{q}_{v2}\\
        q_{s1}q_{s2}-\mathbf{q}_{v1}^T\mathbf{q}_{v2}\end{array}\right]

    :param quaternion_1_in: The first quaternion to multiply
    :param quaternion_2_in: The second quaternion to multiply
    :return: The hamiltonian product of quaternion_1 and quaternion_2
    """

    quaternion_1 = _check_quaternion_array_and_shape(quaternion_1_in)
    quaternion_2 = _check_quaternion_array_and_shape(quaternion_2_in)

    qs1 = quaternion_1[-1]
    qv1 = quaternion_1[0:3]

    qs2 = quaternion_2[-1]
    qv2 = quaternion_2[0:3]

    return np.concatenate([qs1 * qv2 + qs2 * qv1 + np.cross(qv1, qv2, axis=0),
                           [qs1 * qs2 - (qv1 * qv2).sum(axis=0)]], axis=0)


def nlerp(quaternion0: ARRAY_LIKE, quaternion1: ARRAY_LIKE, time: float,
          time0: float = 0, time1: float = 1) -> DOUBLE_ARRAY:
    r"""
    This function performs normalized linear interpolation of rotation quaternions.

    .. math::
        \mathbf{q}=\frac{\mathbf{q}_0(1-p)+\mathbf{q}_1p}
        {\left\|\mathbf{q}_0(1-p)+\mathbf{q}_1p\right\|}

    :param quaternion0: The starting quaternion(s)
    :param quaternion1: The ending quaternion(s)
    :param time: The time to interpolate at, as a fractional percent or as a time between `time0` and `time1`
    :param time0: the time corresponding to the first quaternion
    :param time1: the time corresponding to the second quaternion
    :return: The interpolated quaternion(s)
    """

    dt = float((time - time0) / (time1 - time0))

    q0 = _check_quaternion_array_and_shape(quaternion0)
    q1 = _check_quaternion_array_and_shape(quaternion1)

    q = q0 * (1 - dt) + q1 * dt

    q /= np.linalg.norm(q, axis=0, keepdims=True)

    return q


def scalar_first_to_scalar_last(quaternion: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Reorders (w, x, y, z) quaternion(s) into the (x, y, z, w) order used by the rest of this package.
    """

    quaternion = _check_quaternion_array_and_shape(quaternion)

    return np.concatenate([quaternion[1:], quaternion[:1]], axis=0)


def scalar_last_to_scalar_first(quaternion: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Reorders (x, y, z, w) quaternion(s) into (w, x, y, z) order, as stored in camera records.
    """

    quaternion = _check_quaternion_array_and_shape(quaternion)

    return np.concatenate([quaternion[3:], quaternion[:3]], axis=0)
