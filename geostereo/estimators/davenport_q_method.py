import numpy as np

from geostereo.rotations import Rotation
from geostereo._typing import DOUBLE_ARRAY


class DavenportQMethod:
    r"""
    This class estimates the rotation that best aligns vectors from one frame with vectors in another frame using
    Davenport's Q-Method solution to Wahba's problem.

    The `target_frame_directions` are expressed in the frame you want to rotate to and the `base_frame_directions` in
    the frame you want to rotate from, both as 3xn arrays where each column of one is paired with the same column of
    the other.  The vectors do not need to be unit vectors; longer vectors are weighted more heavily, which makes this
    the rotation part of a least squares fit between two centered point sets.

    Optionally, a length n array of `weights` may be given to :meth:`estimate`.

    A description of the math behind the Davenport Q-Method solution can be found
    `here <https://math.stackexchange.com/a/2275087/202119>`_.
    """

    def __init__(self):

        self._attitude_prof_mat: DOUBLE_ARRAY | None = None
        """
        The attitude profile matrix.

        This is only set after a call to :meth:`estimate`.
        """

    @staticmethod
    def attitude_profile_matrix(base_frame_directions: DOUBLE_ARRAY,
                                target_frame_directions: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
        """
        Computes the attitude profile matrix (the sum of the outer products) for the provided vector sets
        """

        return np.einsum('ij,jk->jik', base_frame_directions, target_frame_directions.T).sum(axis=0)

    def estimate(self, target_frame_directions: DOUBLE_ARRAY, base_frame_directions: DOUBLE_ARRAY,
                 weights: DOUBLE_ARRAY | None = None) -> Rotation:
        """
        Solve for the rotation that best aligns ``base_frame_directions`` with ``target_frame_directions``.

        :param target_frame_directions: Matrix of target frame vectors (3xN)
        :param base_frame_directions: Matrix of base frame vectors (3xN)
        :param weights: Vector of weights for each pair (N,) or None
        :return: The rotation from the base frame to the target frame
        """

        target_frame_directions = np.asarray(target_frame_directions, dtype=np.float64).reshape(3, -1)
        base_frame_directions = np.asarray(base_frame_directions, dtype=np.float64).reshape(3, -1)

        if weights is not None:
            target_frame_directions = np.asarray(weights, dtype=np.float64).ravel() * target_frame_directions

        att_prof_mat = self.attitude_profile_matrix(base_frame_directions, target_frame_directions)
        self._attitude_prof_mat = att_prof_mat

        s_mat = att_prof_mat + att_prof_mat.T

        # retrieve the z vector from its skew matrix
        temp = att_prof_mat - att_prof_mat.T
        z = np.array([temp[1, 2], -temp[0, 2], temp[0, 1]])

        att_prof_trace = att_prof_mat.trace()

        davenport_mat = np.zeros((4, 4))
        davenport_mat[0:3, 0:3] = (s_mat - np.eye(3) * att_prof_trace)
        davenport_mat[3, 0:3] = z
        davenport_mat[0:3, 3] = z
        davenport_mat[3, 3] = att_prof_trace

        vals, vecs = np.linalg.eigh(davenport_mat)

        # the eigenvector of the largest eigenvalue is the solved quaternion
        return Rotation(vecs[:, np.argmax(vals)])
