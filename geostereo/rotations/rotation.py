import copy

import numpy as np

from geostereo.rotations.core.conversions import (rotmat_to_quaternion, quaternion_to_rotmat, quaternion_to_rotvec,
                                                  rotvec_to_quaternion)
from geostereo.rotations.core.quaternion_math import quaternion_inverse, quaternion_multiplication, quaternion_normalize
from geostereo.rotations.core.attitude_angles import rotmat_to_roll_pitch_yaw
from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY


class Rotation:
    """
    A class to represent and manipulate rotations.

    The constructor interprets its input by size: 4 values are a scalar-last quaternion, 3 values are a rotation vector
    and 9 values are a rotation matrix.  The :attr:`quaternion`, :attr:`matrix` and :attr:`vector` properties convert
    lazily and cache the result until the rotation is changed.

    Rotations compose with ``*`` so that ``rotation_a2c = rotation_b2c * rotation_a2b``::

        >>> from geostereo.rotations import Rotation
        >>> from numpy import pi
        >>> rotation_a2b = Rotation([pi, 0, 0])
        >>> rotation_b2c = Rotation([0, pi/2, 0])
        >>> rotation_a2c = rotation_b2c * rotation_a2b

    Stored quaternions are always of unit length with a non-negative scalar term.
    """

    def __init__(self, data: 'ARRAY_LIKE | Rotation | None' = None):
        """
        :param data: The rotation data to initialize the class with
        """

        self._quaternion = np.array([0, 0, 0, 1.0])
        self._matrix = None
        self._vector = None
        self._mupdate = True
        self._vupdate = True

        if data is None:
            data = [0, 0, 0, 1]

        self.interp_attitude(data)

    @property
    def quaternion(self) -> DOUBLE_ARRAY:
        """
        The scalar-last unit quaternion representation of the rotation.

        Setting this property normalizes the input.
        """

        return self._quaternion

    @quaternion.setter
    def quaternion(self, data: 'ARRAY_LIKE | Rotation'):

        if isinstance(data, Rotation):
            self._quaternion = data.quaternion.copy()

        else:
            data = np.asarray(data, dtype=np.float64).ravel()

            if data.size != 4:
                raise ValueError('The quaternion must be length 4')

            self._quaternion = quaternion_normalize(data)

        self._mupdate = True
        self._vupdate = True

    @property
    def matrix(self) -> DOUBLE_ARRAY:
        """
        The 3x3 rotation matrix representation of the rotation.
        """

        if self._mupdate:
            self._matrix = quaternion_to_rotmat(self._quaternion)
            self._mupdate = False

        return self._matrix

    @matrix.setter
    def matrix(self, val: ARRAY_LIKE):
        self.quaternion = rotmat_to_quaternion(val)

    @property
    def vector(self) -> DOUBLE_ARRAY:
        """
        The rotation vector representation of the rotation (angle times axis, radians).
        """

        if self._vupdate:
            self._vector = quaternion_to_rotvec(self._quaternion)
            self._vupdate = False

        return self._vector

    @vector.setter
    def vector(self, val: ARRAY_LIKE):
        self.quaternion = rotvec_to_quaternion(np.asarray(val, dtype=np.float64).ravel())

    @property
    def q_vector(self) -> DOUBLE_ARRAY:
        """
        The vector portion of the quaternion.  Read only.
        """
        return self._quaternion[:3]

    @property
    def q_scalar(self) -> float:
        """
        The scalar portion of the quaternion.  Read only.
        """
        return float(self._quaternion[-1])

    def inv(self) -> 'Rotation':
        """
        This method returns the inverse rotation as a new ``Rotation`` object.

        :return: The inverse rotation
        """

        return Rotation(quaternion_inverse(self.quaternion))

    def interp_attitude(self, data: 'ARRAY_LIKE | Rotation'):
        """
        This method interprets attitude data based on its size.

        :param data: The rotation data to be interpreted
        :raises ValueError: If the size of the input data is not 3, 4, or 9
        """

        if isinstance(data, Rotation):
            self.quaternion = data

        else:
            numpy_data = np.asarray(data, dtype=np.float64)

            if numpy_data.size == 4:
                self.quaternion = numpy_data

            elif numpy_data.size == 3:
                self.vector = numpy_data

            elif numpy_data.size == 9:
                self.matrix = numpy_data.reshape(3, 3)

            else:
                raise ValueError('The specified rotation data cannot be interpreted.')

    def __eq__(self, other) -> bool:

        if not isinstance(other, Rotation):
            try:
                other = Rotation(other)
            except ValueError:
                return False

        return bool((self._quaternion == other.quaternion).all())

    def __mul__(self, other: 'Rotation') -> 'Rotation':

        if isinstance(other, Rotation):
            return Rotation(quaternion_multiplication(self.quaternion, other.quaternion))

        return NotImplemented

    def __repr__(self) -> str:
        return 'Rotation({0!r})'.format(self.quaternion)

    def __str__(self) -> str:
        return str(self.quaternion)

    def copy(self) -> 'Rotation':
        """
        Returns a deep copy of self.
        """

        return copy.deepcopy(self)

    def as_roll_pitch_yaw(self) -> tuple[float, float, float]:
        """
        Returns the rotation as (roll, pitch, yaw) in degrees.  See :func:`.rotmat_to_roll_pitch_yaw`.
        """

        return rotmat_to_roll_pitch_yaw(self.matrix)
