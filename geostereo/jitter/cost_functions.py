r"""
This module provides the residuals of the jitter solve.

Description
-----------

The reprojection residuals are callables that take their parameter blocks as positional arguments, as
:class:`.Problem` expects.  Each one copies the camera it was built with, overwrites the copy with the current
parameter values, projects the point, and returns the weighted difference from the observation.  The camera the
residual was built with is never modified, so several residuals may be evaluated at once.

If the projection fails for any reason the residual is :data:`BIG_PIXEL_VALUE` in each component.  This lets the
solver back away from states where the projection breaks down instead of stopping.

The regularizers keep the trajectory reasonable while the reprojection errors are minimized:

* :class:`RollYawRegularizer` penalizes the roll and yaw of the sensor relative to the frame defined by the direction
  of travel, or relative to the initial orientation.
* :class:`QuaternionNormRegularizer` keeps the trajectory quaternions near unit length.
"""

import logging

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import CSMFrameModel, CSMLinescanModel, from_csm_pixel, to_csm_pixel
from geostereo.geodesy import GeoReference
from geostereo.jitter.window import TimeWindow
from geostereo.rig_set import RigCamInfo, vec_to_affine
from geostereo.rotations import (quaternion_to_rotmat, rotmat_to_quaternion, rotmat_to_roll_pitch_yaw,
                                 wrap_half_turn)


_LOGGER: logging.Logger = logging.getLogger(__name__)


BIG_PIXEL_VALUE: float = 1000.0
"""
The residual reported when a projection fails
"""

DEFAULT_DESIRED_PRECISION: float = 1e-8
"""
The precision of the linescan ground to image search.  The search is not reliable with looser precisions
"""

SAT_SIM_DELTA: float = 0.1
"""
The step in projected coordinates used to carry directions to body-fixed coordinates
"""

ROTATION_XY: DOUBLE_ARRAY = np.array([[0.0, -1.0, 0.0],
                                      [1.0, 0.0, 0.0],
                                      [0.0, 0.0, 1.0]])
"""
The 90 degree in-camera rotation between the satellite frame and the camera frame
"""


def _failed() -> DOUBLE_ARRAY:
    return np.full(2, BIG_PIXEL_VALUE)


class LinescanReprojectionCost:
    """
    The reprojection residual of a point in a linescan camera.

    The parameter blocks are each quaternion of the quaternion window, then each position of the position window, then
    the point.
    """

    def __init__(self, observation: ARRAY_LIKE, weight: float, camera: CSMLinescanModel,
                 quaternion_window: TimeWindow, position_window: TimeWindow,
                 desired_precision: float = DEFAULT_DESIRED_PRECISION):

        self.observation = np.asarray(observation, dtype=np.float64)
        self.weight = weight
        self.camera = camera
        self.quaternion_window = quaternion_window
        self.position_window = position_window
        self.desired_precision = desired_precision

    @property
    def num_parameter_blocks(self) -> int:
        return len(self.quaternion_window) + len(self.position_window) + 1

    def __call__(self, *parameters: DOUBLE_ARRAY) -> DOUBLE_ARRAY:

        try:
            camera = self.camera.shallow_copy()

            num_quat = len(self.quaternion_window)
            num_pos = len(self.position_window)

            self.quaternion_window.write(camera.quaternions, parameters[:num_quat])
            self.position_window.write(camera.positions, parameters[num_quat:num_quat + num_pos])

            point = parameters[num_quat + num_pos]

            # start the search at the observation so only samples near it are visited
            image_coord = camera.ground_to_image(point, self.desired_precision,
                                                 initial_line=to_csm_pixel(self.observation)[0])

            return self.weight * (from_csm_pixel(image_coord) - self.observation)

        except Exception:
            return _failed()


class FrameReprojectionCost:
    """
    The reprojection residual of a point in a frame camera.

    The parameter blocks are the position, then the scalar-last quaternion, then the point.
    """

    def __init__(self, observation: ARRAY_LIKE, weight: float, camera: CSMFrameModel,
                 desired_precision: float = DEFAULT_DESIRED_PRECISION):

        self.observation = np.asarray(observation, dtype=np.float64)
        self.weight = weight
        self.camera = camera
        self.desired_precision = desired_precision

    def __call__(self, position: DOUBLE_ARRAY, quaternion: DOUBLE_ARRAY, point: DOUBLE_ARRAY) -> DOUBLE_ARRAY:

        try:
            camera = self.camera.shallow_copy()
            camera.parameters = np.concatenate([position, quaternion])

            image_coord = camera.ground_to_image(point, self.desired_precision)

            return self.weight * (from_csm_pixel(image_coord) - self.observation)

        except Exception:
            return _failed()


def linescan_to_curr_sensor_trans(ref_camera: CSMLinescanModel, time: float,
                                  ref_to_curr: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    The pose of a sensor on a rig at ``time`` given the trajectory of the linescan reference sensor.

    :param ref_camera: The reference linescan camera
    :param time: When to find the pose
    :param ref_to_curr: The 12 values of the affine transform from the reference sensor to the current sensor
    :return: The (x, y, z, qx, qy, qz, qw) pose of the current sensor in the world
    """

    ref_rotation = quaternion_to_rotmat(ref_camera.quaternion_at(time))
    ref_position = ref_camera.position_at(time)

    curr_to_ref = np.linalg.inv(vec_to_affine(ref_to_curr))

    rotation = ref_rotation @ curr_to_ref[:3, :3]
    position = ref_rotation @ curr_to_ref[:3, 3] + ref_position

    quaternion = rotmat_to_quaternion(rotation)

    return np.concatenate([position, quaternion / np.linalg.norm(quaternion)])


class RigLinescanFrameReprojectionCost:
    """
    The reprojection residual of a point in a frame sensor mounted on a rig whose reference sensor is a linescan
    camera.

    The parameter blocks are the reference quaternion window, the reference position window, the point, and the 12
    values of the affine transform from the reference sensor to the frame sensor.
    """

    def __init__(self, frame_pixel: ARRAY_LIKE, weight: float, rig_cam_info: RigCamInfo,
                 ref_camera: CSMLinescanModel, curr_camera: CSMFrameModel,
                 quaternion_window: TimeWindow, position_window: TimeWindow,
                 desired_precision: float = DEFAULT_DESIRED_PRECISION):

        if rig_cam_info.beg_pose_time != rig_cam_info.end_pose_time:
            raise ValueError("For a frame sensor beg and end pose time must be same.")

        self.frame_pixel = np.asarray(frame_pixel, dtype=np.float64)
        self.weight = weight
        self.rig_cam_info = rig_cam_info
        self.ref_camera = ref_camera
        self.curr_camera = curr_camera
        self.quaternion_window = quaternion_window
        self.position_window = position_window
        self.desired_precision = desired_precision

    def __call__(self, *parameters: DOUBLE_ARRAY) -> DOUBLE_ARRAY:

        try:
            ref_camera = self.ref_camera.shallow_copy()

            num_quat = len(self.quaternion_window)
            num_pos = len(self.position_window)

            self.quaternion_window.write(ref_camera.quaternions, parameters[:num_quat])
            self.position_window.write(ref_camera.positions, parameters[num_quat:num_quat + num_pos])

            point = parameters[num_quat + num_pos]
            ref_to_curr = parameters[num_quat + num_pos + 1]

            frame_camera = self.curr_camera.shallow_copy()
            frame_camera.parameters = linescan_to_curr_sensor_trans(ref_camera, self.rig_cam_info.beg_pose_time,
                                                                    ref_to_curr)

            image_coord = frame_camera.ground_to_image(point, self.desired_precision)

            return self.weight * (from_csm_pixel(image_coord) - self.frame_pixel)

        except Exception:
            return _failed()


def satellite_to_world(positions: ARRAY_LIKE, cur_pos: int, georef: GeoReference) -> DOUBLE_ARRAY:
    """
    The rotation from the satellite frame at ``positions[cur_pos]`` to the world.

    The satellite frame has x along the direction of travel, y horizontal and across it, and z down.  The direction of
    travel is found from the neighboring positions in projected coordinates.

    :raises ValueError: if there are fewer than 2 positions or ``cur_pos`` is out of range
    """

    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    num_pos = positions.shape[0]

    if cur_pos < 0 or cur_pos >= num_pos:
        raise ValueError(f"Expecting position index in range, got {cur_pos}.")

    beg_pos = max(0, cur_pos - 1)
    end_pos = min(num_pos - 1, cur_pos + 1)

    if beg_pos >= end_pos:
        raise ValueError("Expecting at least 2 camera positions.")

    beg_proj = georef.cartesian_to_projected(positions[beg_pos])
    cur_proj = georef.cartesian_to_projected(positions[cur_pos])
    end_proj = georef.cartesian_to_projected(positions[end_pos])

    proj_along = end_proj - beg_proj
    proj_along /= np.linalg.norm(proj_along)

    proj_across = np.cross(proj_along, [0.0, 0.0, 1.0])
    proj_across /= np.linalg.norm(proj_across)

    along = (georef.projected_to_cartesian(cur_proj + SAT_SIM_DELTA * proj_along) -
             georef.projected_to_cartesian(cur_proj - SAT_SIM_DELTA * proj_along))
    along /= np.linalg.norm(along)

    across = (georef.projected_to_cartesian(cur_proj + SAT_SIM_DELTA * proj_across) -
              georef.projected_to_cartesian(cur_proj - SAT_SIM_DELTA * proj_across))
    across -= (along @ across) * along
    across /= np.linalg.norm(across)

    down = np.cross(along, across)
    down /= np.linalg.norm(down)

    return np.column_stack([along, across, down])


class RollYawRegularizer:
    r"""
    Penalizes the roll and yaw of a linescan quaternion sample.

    The camera is assumed to be mounted as :math:`\mathbf{T}_{cam}^{world} = \mathbf{T}_{sat}^{world}
    \mathbf{T}_{rpy}\mathbf{T}_{xy}`, where :math:`\mathbf{T}_{xy}` is :data:`ROTATION_XY`.  The roll, pitch and yaw
    of :math:`\mathbf{T}_{rpy}` are found in degrees, each wrapped to [-90, 90] since angles 180 degrees apart describe
    the same mounting, and the residual is (roll*roll_weight, yaw*yaw_weight).

    With ``initial_camera_constraint`` the angles are instead those of the rotation from the current to the initial
    orientation of the sample.  The roll and pitch of the camera frame are the pitch and roll of the satellite frame,
    so the residual is (pitch*roll_weight, yaw*yaw_weight).

    The only parameter block is the quaternion sample.
    """

    def __init__(self, positions: ARRAY_LIKE, quaternions: ARRAY_LIKE, georef: GeoReference, cur_pos: int,
                 roll_weight: float, yaw_weight: float, initial_camera_constraint: bool = False):

        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        quaternions = np.asarray(quaternions, dtype=np.float64).reshape(-1, 4)

        if positions.shape[0] != quaternions.shape[0]:
            raise ValueError("Expecting the same number of positions and quaternions.")

        self.roll_weight = roll_weight
        self.yaw_weight = yaw_weight
        self.initial_camera_constraint = initial_camera_constraint

        self.sat_to_world = satellite_to_world(positions, cur_pos, georef)
        self.init_cam_to_world = quaternion_to_rotmat(quaternions[cur_pos])

    def __call__(self, quaternion: DOUBLE_ARRAY) -> DOUBLE_ARRAY:

        cam_to_world = quaternion_to_rotmat(quaternion)

        if self.initial_camera_constraint:
            cam_to_cam = np.linalg.inv(cam_to_world) @ self.init_cam_to_world

            roll, pitch, yaw = rotmat_to_roll_pitch_yaw(cam_to_cam)

            return np.array([wrap_half_turn(pitch) * self.roll_weight, wrap_half_turn(yaw) * self.yaw_weight])

        roll_pitch_yaw = np.linalg.inv(self.sat_to_world) @ cam_to_world @ np.linalg.inv(ROTATION_XY)

        roll, pitch, yaw = rotmat_to_roll_pitch_yaw(roll_pitch_yaw)

        return np.array([wrap_half_turn(roll) * self.roll_weight, wrap_half_turn(yaw) * self.yaw_weight])


class QuaternionNormRegularizer:
    """
    weight*(|q|^2 - 1) for a quaternion sample.
    """

    def __init__(self, weight: float):
        self.weight = weight

    def __call__(self, quaternion: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
        return np.array([self.weight * (quaternion @ quaternion - 1.0)])
