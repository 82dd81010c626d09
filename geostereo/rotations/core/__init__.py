"""
This package contains the fundamental rotation math.  It has no dependencies on other rotation modules, so everything
here can be used as a building block for the :class:`.Rotation` class and the camera models.
"""

from geostereo.rotations.core.conversions import (quaternion_to_rotvec, quaternion_to_rotmat,
                                                  rotvec_to_rotmat, rotvec_to_quaternion,
                                                  rotmat_to_quaternion, rotmat_to_rotvec)

from geostereo.rotations.core.elementals import rot_x, rot_y, rot_z, skew

from geostereo.rotations.core.quaternion_math import (quaternion_normalize, quaternion_inverse,
                                                      quaternion_multiplication, nlerp,
                                                      scalar_first_to_scalar_last, scalar_last_to_scalar_first)

from geostereo.rotations.core.attitude_angles import (rotmat_to_roll_pitch_yaw, roll_pitch_yaw_to_rotmat,
                                                      wrap_half_turn)

__all__ = ['quaternion_to_rotvec', 'quaternion_to_rotmat',
           'rotvec_to_rotmat', 'rotvec_to_quaternion',
           'rotmat_to_quaternion', 'rotmat_to_rotvec',
           'rot_x', 'rot_y', 'rot_z', 'skew',
           'quaternion_normalize', 'quaternion_inverse', 'quaternion_multiplication', 'nlerp',
           'scalar_first_to_scalar_last', 'scalar_last_to_scalar_first',
           'rotmat_to_roll_pitch_yaw', 'roll_pitch_yaw_to_rotmat', 'wrap_half_turn']
