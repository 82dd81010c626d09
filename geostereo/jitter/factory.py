"""
This module adds the jitter residuals to a :class:`.Problem`.

The variables of the linescan residuals are the trajectory samples of the camera itself: each row of
:attr:`.CSMLinescanModel.quaternions` and :attr:`.CSMLinescanModel.positions` is a parameter block, so the solve
updates the camera in place.  Frame cameras keep their pose in a separate 7 element array owned by the caller, which
is copied back into the camera with :attr:`.CSMFrameModel.parameters` after the solve.
"""

import logging

from dataclasses import dataclass

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import CSMFrameModel, CSMLinescanModel, to_csm_pixel
from geostereo.estimators import Problem, ResidualBlock
from geostereo.geodesy import GeoReference
from geostereo.jitter.cost_functions import (DEFAULT_DESIRED_PRECISION, FrameReprojectionCost,
                                             LinescanReprojectionCost, QuaternionNormRegularizer,
                                             RigLinescanFrameReprojectionCost, RollYawRegularizer)
from geostereo.jitter.window import LINE_MARGIN, time_bounds, trajectory_windows
from geostereo.rig_set import NUM_AFFINE_PARAMS, RigCamInfo
from geostereo.utilities.mixin_classes import UserOptionConfigured
from geostereo.utilities.options import UserOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


@dataclass
class JitterOptions(UserOptions):

    max_init_reproj_error: float = 20.0
    """
    The largest reprojection error in pixels expected at the start of the solve.

    It sets how many lines around each observation are considered when choosing the trajectory samples the observation
    depends on.
    """

    robust_threshold: float | None = 0.5
    """
    The scale of the Cauchy loss wrapped around each reprojection residual.  Set to ``None`` for a plain squared loss
    """

    roll_weight: float = 0.0
    """
    The weight of the roll regularizer.  Roll and yaw regularizers are only added when one of the weights is nonzero
    """

    yaw_weight: float = 0.0
    """
    The weight of the yaw regularizer
    """

    initial_camera_constraint: bool = False
    """
    Measure roll and yaw relative to the initial orientation instead of the direction of travel
    """

    quat_norm_weight: float = 1.0
    """
    The weight of the quaternion norm regularizer
    """

    desired_precision: float = DEFAULT_DESIRED_PRECISION
    """
    The precision of the linescan ground to image search
    """


class JitterCostFactory(UserOptionConfigured[JitterOptions], JitterOptions):
    """
    Builds the residuals of the jitter solve and adds them to a problem.
    """

    def __init__(self, options: JitterOptions | None = None):
        """
        :param options: The options dataclass to configure the class with
        """

        super().__init__(JitterOptions, options=options)

    @property
    def line_extra(self) -> float:
        """
        The number of lines on each side of an observation the residual must be able to reach
        """

        return self.max_init_reproj_error + LINE_MARGIN

    def add_linescan_reprojection(self, problem: Problem, camera: CSMLinescanModel, observation: ARRAY_LIKE,
                                  point: DOUBLE_ARRAY, weight: float = 1.0) -> ResidualBlock:
        """
        Add the reprojection residual of ``point`` observed at ``observation`` in a linescan camera.

        :param problem: The problem to add to
        :param camera: The camera.  Its trajectory samples become parameter blocks
        :param observation: The (column, row) pixel
        :param point: A view holding the world point, shared by the residuals of the point
        :param weight: The weight of the residual
        :return: The added residual block
        :raises ValueError: if the observation does not fall inside the trajectory
        """

        time1, time2 = time_bounds(camera, observation, self.line_extra)

        quaternion_window, position_window = trajectory_windows(camera, time1, time2)

        cost = LinescanReprojectionCost(observation, weight, camera, quaternion_window, position_window,
                                        self.desired_precision)

        blocks = quaternion_window.blocks() + position_window.blocks() + [point]

        return problem.add_residual_block(cost, blocks, 2, self.robust_threshold)

    def add_frame_reprojection(self, problem: Problem, camera: CSMFrameModel, observation: ARRAY_LIKE,
                               frame_params: DOUBLE_ARRAY, point: DOUBLE_ARRAY, weight: float = 1.0) -> ResidualBlock:
        """
        Add the reprojection residual of ``point`` observed at ``observation`` in a frame camera.

        :param frame_params: A 7 element (x, y, z, qx, qy, qz, qw) array holding the pose being solved for
        """

        if frame_params.size != 7:
            raise ValueError(f"Frame camera parameters must have 7 values, not {frame_params.size}")

        cost = FrameReprojectionCost(observation, weight, camera, self.desired_precision)

        return problem.add_residual_block(cost, [frame_params[:3], frame_params[3:7], point], 2,
                                          self.robust_threshold)

    def add_rig_linescan_frame_reprojection(self, problem: Problem, rig_cam_info: RigCamInfo,
                                            frame_pixel: ARRAY_LIKE, ref_camera: CSMLinescanModel,
                                            curr_camera: CSMFrameModel, ref_to_curr: DOUBLE_ARRAY,
                                            point: DOUBLE_ARRAY, weight: float = 1.0) -> ResidualBlock:
        """
        Add the reprojection residual of ``point`` in a frame sensor on a rig with a linescan reference sensor.

        The window of reference samples covers the exposure time of the frame plus the time the reference sensor takes
        to expose :attr:`line_extra` lines, on each side.

        :param ref_to_curr: The 12 values of the affine transform from the reference sensor to the frame sensor
        :raises ValueError: if the frame has different start and end pose times
        """

        if rig_cam_info.beg_pose_time != rig_cam_info.end_pose_time:
            raise ValueError("For a frame sensor beg and end pose time must be same.")

        if ref_to_curr.size != NUM_AFFINE_PARAMS:
            raise ValueError(f"The rig transform must have {NUM_AFFINE_PARAMS} values, not {ref_to_curr.size}")

        frame_time = rig_cam_info.beg_pose_time

        delta = abs(ref_camera.get_image_time(to_csm_pixel((0.0, self.line_extra))) -
                    ref_camera.get_image_time(to_csm_pixel((0.0, 0.0))))

        quaternion_window, position_window = trajectory_windows(ref_camera, frame_time - delta, frame_time + delta)

        cost = RigLinescanFrameReprojectionCost(frame_pixel, weight, rig_cam_info, ref_camera, curr_camera,
                                                quaternion_window, position_window, self.desired_precision)

        blocks = quaternion_window.blocks() + position_window.blocks() + [point, ref_to_curr]

        return problem.add_residual_block(cost, blocks, 2, self.robust_threshold)

    def add_roll_yaw_constraint(self, problem: Problem, camera: CSMLinescanModel,
                                georef: GeoReference | None = None) -> list[ResidualBlock]:
        """
        Add a roll/yaw regularizer for every quaternion sample of a linescan camera.

        Nothing is added when both weights are zero.

        :param georef: The projection used to find the direction of travel.  Defaults to a local projection centered
                       below the middle of the trajectory
        :raises ValueError: if the camera has different numbers of position and quaternion samples
        """

        if self.roll_weight == 0 and self.yaw_weight == 0:
            return []

        if camera.num_positions != camera.num_quaternions:
            raise ValueError("The roll and yaw constraints need the same number of positions and quaternions.")

        if georef is None:
            georef = GeoReference.local_to(camera.positions[camera.num_positions // 2])

        blocks = []

        for cur_pos in range(camera.num_positions):

            cost = RollYawRegularizer(camera.positions, camera.quaternions, georef, cur_pos,
                                      self.roll_weight, self.yaw_weight, self.initial_camera_constraint)

            blocks.append(problem.add_residual_block(cost, [camera.quaternions[cur_pos]], 2))

        _LOGGER.info(f"Added {len(blocks)} roll/yaw constraints")

        return blocks

    def add_quaternion_norm_constraint(self, problem: Problem, camera: CSMLinescanModel) -> list[ResidualBlock]:
        """
        Add a quaternion norm regularizer for every quaternion sample of a linescan camera.
        """

        cost = QuaternionNormRegularizer(self.quat_norm_weight)

        return [problem.add_residual_block(cost, [quaternion], 1) for quaternion in camera.quaternions]


def normalize_quaternions(camera: CSMLinescanModel) -> None:
    """
    Rescale the quaternion samples of a camera to unit length in place, as is done after a solve.
    """

    camera.quaternions /= np.linalg.norm(camera.quaternions, axis=1, keepdims=True)
