r"""
This package defines routines for converting between rotation representations as well as the :class:`.Rotation`
class, which is the primary way orientation is passed between the camera models.

=================  =====================================================================================================
Representation     Description
=================  =====================================================================================================
quaternion         A 4 element rotation quaternion of the form
                   :math:`\mathbf{q}=\left[\begin{array}{c} q_x \\ q_y \\ q_z \\ q_s\end{array}\right]=
                   \left[\begin{array}{c}\text{sin}(\frac{\theta}{2})\hat{\mathbf{x}}\\
                   \text{cos}(\frac{\theta}{2})\end{array}\right]`.
                   Camera records in the parameter store hold the scalar first instead; use
                   :func:`scalar_first_to_scalar_last` and :func:`scalar_last_to_scalar_first` at that boundary.
rotation vector    A 3 element rotation vector :math:`\mathbf{v}=\theta\hat{\mathbf{x}}`.
rotation matrix    A :math:`3\times 3` orthonormal matrix :math:`\mathbf{T}_B^A` such that
                   :math:`\mathbf{T}_B^A\mathbf{y}_A` rotates :math:`\mathbf{y}_A` from frame :math:`A` to :math:`B`.
=================  =====================================================================================================
"""

from geostereo.rotations.core import *
from geostereo.rotations.rotation import Rotation

__all__ = ['quaternion_to_rotvec', 'quaternion_to_rotmat',
           'rotvec_to_rotmat', 'rotvec_to_quaternion',
           'rotmat_to_quaternion', 'rotmat_to_rotvec',
           'rot_x', 'rot_y', 'rot_z', 'skew',
           'quaternion_normalize', 'quaternion_inverse', 'quaternion_multiplication', 'nlerp',
           'scalar_first_to_scalar_last', 'scalar_last_to_scalar_first',
           'rotmat_to_roll_pitch_yaw', 'roll_pitch_yaw_to_rotmat', 'wrap_half_turn',
           'Rotation']
