# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
This module brings cameras into the coordinate system of ground control before bundle adjustment.

Description
-----------

Cameras built by structure from motion live in an arbitrary frame.  The routines here find the 3D similarity (rotation,
translation and uniform scale) that takes them to the frame of known camera positions or of ground control points
(GCPs), and apply it to the cameras and to the non-GCP points of the control network:

* :meth:`GroundAligner.align_to_camera_positions` fits the current camera centers to known centers.
* :meth:`GroundAligner.align_with_multi_gcps` triangulates GCPs seen in several images and fits them to their known
  positions.
* :meth:`GroundAligner.align_with_mono_gcps` works when each GCP is only seen in one image but at least two images
  see at least three GCPs each.  Each such camera is fit to its own GCPs with :meth:`GroundAligner.fit_camera_to_gcps`
  to get the scale of the world, proxy points are placed along the original rays at the right distance, a similarity
  is fit to them, and the similarity is refined by minimizing the reprojection error of every GCP.

:meth:`GroundAligner.check_gcp_dists` warns when the GCPs are suspiciously far from the rest of the points, which
usually means latitude and longitude were swapped in the GCP file.

Use
---

Create a :class:`GroundAligner`, optionally with :class:`GroundAlignmentOptions`, and call the alignment you need.
Each alignment modifies the cameras and the network in place and returns the 4x4 similarity it applied.
"""

import logging
import warnings

from dataclasses import dataclass
from typing import Sequence

import cv2
import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import CameraModel, PinholeModel
from geostereo.control_network import ControlNetwork, triangulate_control_point
from geostereo.estimators import LMAEstimator, LMAOptions
from geostereo.rotations import Rotation, rotmat_to_rotvec, rotvec_to_rotmat
from geostereo.similarity import (apply_similarity_to_points, apply_transform_to_camera, compose_similarity,
                                  decompose_similarity, find_3d_transform)
from geostereo.utilities.mixin_classes import UserOptionConfigured
from geostereo.utilities.options import UserOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


MIN_NUM_MATCHES: int = 3
"""
The minimum number of point pairs needed to fit a similarity
"""


@dataclass
class GroundAlignmentOptions(UserOptions):

    refine_mono_gcp: bool = True
    """
    Refine the similarity found from mono GCPs by minimizing the GCP reprojection errors
    """

    refine_camera: bool = True
    """
    Refine each individually fit camera by minimizing its GCP reprojection errors
    """

    residual_tolerance: float = 1e-24
    """
    The absolute and relative tolerance on the sum of squares for the refinements
    """

    state_tolerance: float = 1e-24
    """
    The absolute and relative tolerance on the update for the refinements
    """

    max_iterations: int = 2000
    """
    The iteration cap for the refinements
    """

    gcp_distance_warning: float = 100000.0
    """
    The distance in meters between the GCP and the other points above which a warning is issued
    """

    forced_triangulation_distance: float = -1.0
    """
    If positive, points that cannot be triangulated are placed this far along their first ray when checking the GCP
    distances
    """


def apply_rigid_transform(transform: ARRAY_LIKE, cameras: Sequence[CameraModel],
                          network: ControlNetwork | None = None) -> None:
    """
    Apply a similarity to every camera and to every non-GCP point of the network that has a position.

    GCPs already are in the target frame and are left alone.
    """

    for camera in cameras:
        apply_transform_to_camera(transform, camera)

    if network is None:
        return

    for point in network:

        if point.is_gcp or not point.has_position:
            continue

        point.position = apply_similarity_to_points(transform, point.position)


class GroundAligner(UserOptionConfigured[GroundAlignmentOptions], GroundAlignmentOptions):
    """
    Aligns cameras and control networks to ground coordinates.
    """

    def __init__(self, options: GroundAlignmentOptions | None = None):
        """
        :param options: The options dataclass to configure the class with
        """

        super().__init__(GroundAlignmentOptions, options=options)

    def _refinement_options(self) -> LMAOptions:
        return LMAOptions(max_iter=self.max_iterations,
                          residual_atol=self.residual_tolerance, residual_rtol=self.residual_tolerance,
                          state_atol=self.state_tolerance, state_rtol=self.state_tolerance)

    def check_gcp_dists(self, cameras: Sequence[CameraModel], network: ControlNetwork) -> float | None:
        """
        Warn if the mean of the GCPs is too far from the mean of the triangulated measurement points.

        Only points with a position and more than one measurement take part.

        :return: The distance between the means, or ``None`` if either kind of point is missing
        """

        gcps, others = [], []

        for point in network:

            if not point.has_position or len(point) <= 1:
                continue

            if point.is_gcp:
                gcps.append(point.position)
                continue

            position, error = triangulate_control_point(point, cameras, self.forced_triangulation_distance)

            if error < 0 or not np.any(position != 0):
                continue

            others.append(position)

        if not gcps or not others:
            return None

        distance = float(np.linalg.norm(np.mean(others, axis=0) - np.mean(gcps, axis=0)))

        if distance > self.gcp_distance_warning:
            warnings.warn(f"GCPs are over {self.gcp_distance_warning / 1000:g} km from the other points. "
                          f"Are your lat/lon GCP coordinates swapped?")

        return distance

    def align_to_camera_positions(self, cameras: Sequence[CameraModel], positions: ARRAY_LIKE,
                                  network: ControlNetwork | None = None) -> DOUBLE_ARRAY:
        """
        Fit the camera centers to known positions and apply the fit.

        :param cameras: The cameras to move
        :param positions: An nx3 array with the known center of each camera.  All zero rows are unknown
        :param network: Non-GCP points of the network are moved with the cameras
        :return: The applied similarity
        :raises ValueError: if there are fewer than 3 known positions
        """

        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)

        if positions.shape[0] != len(cameras):
            raise ValueError(f'Got {positions.shape[0]} camera positions for {len(cameras)} cameras')

        known = np.any(positions != 0, axis=1)

        _LOGGER.info(f'Number of camera position matches found: {known.sum()}')

        if known.sum() < MIN_NUM_MATCHES:
            raise ValueError(f"At least {MIN_NUM_MATCHES} camera position matches are required to initialize "
                             f"sensor models!")

        current = np.array([camera.camera_center((0, 0)) for camera, good in zip(cameras, known) if good])

        transform = find_3d_transform(current.T, positions[known].T)

        _LOGGER.info(f'Transform computed from camera positions:\n{transform}')

        apply_rigid_transform(transform, cameras, network)

        return transform

    def align_with_multi_gcps(self, cameras: Sequence[CameraModel], network: ControlNetwork) -> DOUBLE_ARRAY:
        """
        Fit triangulated GCPs to their known positions and apply the fit.

        A GCP is used if it triangulates to a nonzero position with a positive error and has a known position.  With
        a single camera the triangulation error is not required to be positive.

        :return: The applied similarity
        :raises ValueError: if fewer than 3 GCPs are usable
        """

        triangulated, targets = [], []
        num_gcp = 0

        for index, point in enumerate(network):

            if not point.is_gcp:
                continue

            num_gcp += 1

            position, error = triangulate_control_point(point, cameras)

            if np.any(position != 0) and point.has_position and (error > 0 or len(cameras) == 1):
                triangulated.append(position)
                targets.append(point.position)
            else:
                _LOGGER.info(f'Discarding GCP {index}')

        if len(triangulated) < MIN_NUM_MATCHES:
            raise ValueError(f"Not enough valid GCPs for similarity initialization ({len(triangulated)} of {num_gcp} "
                             f"usable, {MIN_NUM_MATCHES} needed).")

        transform = find_3d_transform(np.array(triangulated).T, np.array(targets).T)

        _LOGGER.info(f'Applying transform based on {len(triangulated)} GCPs:\n{transform}')

        apply_rigid_transform(transform, cameras, network)

        return transform

    def fit_camera_to_gcps(self, camera: PinholeModel, xyz: ARRAY_LIKE, pixels: ARRAY_LIKE) -> PinholeModel:
        """
        Find the pose of a pinhole camera from at least 3 GCPs it observes.

        The intrinsics of ``camera`` are kept.  The initial pose comes from OpenCV's SQPnP solver, and is refined by
        minimizing the reprojection error if :attr:`refine_camera` is set.

        :param camera: The camera supplying the intrinsics.  It is not modified
        :param xyz: nx3 GCP positions
        :param pixels: nx2 (column, row) GCP pixels
        :return: A new camera with the fit pose
        :raises ValueError: if the camera is not a pinhole camera, there are fewer than 3 GCPs, or the fit fails
        """

        if not isinstance(camera, PinholeModel):
            raise ValueError('A pinhole camera is expected to fit to GCPs')

        xyz = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)

        if xyz.shape[0] < MIN_NUM_MATCHES or xyz.shape[0] != pixels.shape[0]:
            raise ValueError(f'Need at least {MIN_NUM_MATCHES} GCPs with one pixel each to fit a camera')

        # work near the origin so the solver is not fed planet sized coordinates
        origin = xyz.mean(axis=0)

        ideal = camera.distortion.undistort(((pixels - camera.optical_center) / camera.focal_length).T).T
        ideal = ideal * camera.focal_length + camera.optical_center

        intrinsic_matrix = np.array([[camera.focal_length, 0, camera.optical_center[0]],
                                     [0, camera.focal_length, camera.optical_center[1]],
                                     [0, 0, 1]])

        success, rvec, tvec = cv2.solvePnP(np.ascontiguousarray(xyz - origin), np.ascontiguousarray(ideal),
                                           intrinsic_matrix, None, flags=cv2.SOLVEPNP_SQPNP)

        if not success:
            raise ValueError('Could not fit the camera to the GCPs')

        world_to_camera = cv2.Rodrigues(rvec)[0]

        out = camera.copy()
        out.rotation = Rotation(world_to_camera.T)
        out.center = origin - world_to_camera.T @ tvec.ravel()

        if not self.refine_camera:
            return out

        def residuals(state: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
            trial = out.copy()
            trial.center = state[:3]
            trial.rotation = Rotation(state[3:])
            return np.concatenate([trial.point_to_pixel(point) - pixel for point, pixel in zip(xyz, pixels)])

        estimator = LMAEstimator(residuals, options=self._refinement_options())

        state = estimator.estimate(np.concatenate([out.center, rotmat_to_rotvec(out.rotation.matrix)]))

        out.center = state[:3]
        out.rotation = Rotation(state[3:])

        return out

    def align_with_mono_gcps(self, cameras: Sequence[CameraModel], network: ControlNetwork) -> DOUBLE_ARRAY:
        """
        Align pinhole cameras using GCPs that may each be seen in only one image.

        At least two cameras must see at least 3 GCPs each.

        :return: The applied similarity
        :raises ValueError: if a camera is not a pinhole camera, a measurement refers to a missing camera, or fewer
                            than two cameras see 3 GCPs
        """

        num_cams = len(cameras)

        for camera in cameras:
            if not isinstance(camera, PinholeModel):
                raise ValueError('A pinhole camera is expected for alignment with GCPs')

        xyz: list[list[DOUBLE_ARRAY]] = [[] for _ in range(num_cams)]
        pix: list[list[DOUBLE_ARRAY]] = [[] for _ in range(num_cams)]

        for point in network:

            if not point.is_gcp:
                continue

            for measure in point:

                if not 0 <= measure.image_id < num_cams:
                    raise ValueError(f'Control network camera index {measure.image_id} is out of range')

                xyz[measure.image_id].append(point.position)
                pix[measure.image_id].append(measure.pixel)

        good = [len(points) >= MIN_NUM_MATCHES for points in xyz]

        fit_cameras = [self.fit_camera_to_gcps(camera, xyz[index], pix[index]) if good[index] else camera
                       for index, camera in enumerate(cameras)]

        world_scale = find_median_scale_change(cameras, fit_cameras, good)

        _LOGGER.info(f'Initial guess scale to apply when converting to world coordinates using GCP: {world_scale}')

        proxies, targets = [], []

        for index, camera in enumerate(cameras):

            if not good[index]:
                continue

            center = camera.camera_center()
            fit_center = fit_cameras[index].camera_center()

            for point, pixel in zip(xyz[index], pix[index]):
                length = np.linalg.norm(fit_center - point) / world_scale
                proxies.append(center + length * camera.pixel_to_vector(pixel))
                targets.append(point)

        transform = find_3d_transform(np.array(proxies).T, np.array(targets).T)

        if self.refine_mono_gcp:
            transform = self._refine_similarity(transform, cameras, xyz, pix, good)

        rotation, translation, scale = decompose_similarity(transform)

        _LOGGER.info(f'Applying transform based on GCP:\nRotation: {rotation}\nTranslation: {translation}\n'
                     f'Scale: {scale}')

        apply_rigid_transform(transform, cameras, network)

        return transform

    def _refine_similarity(self, transform: DOUBLE_ARRAY, cameras: Sequence[CameraModel],
                           xyz: list[list[DOUBLE_ARRAY]], pix: list[list[DOUBLE_ARRAY]],
                           good: list[bool]) -> DOUBLE_ARRAY:

        rotation, translation, scale = decompose_similarity(transform)

        # translation, axis-angle and scale
        initial = np.concatenate([translation, rotmat_to_rotvec(rotation), [scale]])

        def residuals(state: DOUBLE_ARRAY) -> DOUBLE_ARRAY:

            trial = vector_to_transform(state)

            out = []
            for index, camera in enumerate(cameras):
                if not good[index]:
                    continue
                moved = camera.copy()
                apply_transform_to_camera(trial, moved)
                out.extend(moved.point_to_pixel(point) - pixel for point, pixel in zip(xyz[index], pix[index]))

            return np.concatenate(out)

        estimator = LMAEstimator(residuals, options=self._refinement_options())

        return vector_to_transform(estimator.estimate(initial))


def vector_to_transform(vector: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Turn a (translation, axis-angle, scale) 7-vector into a 4x4 similarity.
    """

    vector = np.asarray(vector, dtype=np.float64)

    return compose_similarity(rotvec_to_rotmat(vector[3:6]), vector[:3], float(vector[6]))


def find_median_scale_change(original: Sequence[CameraModel], fit: Sequence[CameraModel],
                             good: Sequence[bool]) -> float:
    """
    The median over pairs of good cameras of the ratio of their center distance after and before fitting.

    :raises ValueError: if fewer than two cameras are good
    """

    scales = []

    for first in range(len(original)):

        if not good[first]:
            continue

        for second in range(first + 1, len(original)):

            if not good[second]:
                continue

            before = np.linalg.norm(original[first].camera_center() - original[second].camera_center())
            after = np.linalg.norm(fit[first].camera_center() - fit[second].camera_center())

            scales.append(after / before)

    if not scales:
        raise ValueError("Could not find two images with at least 3 GCP each.")

    # the upper median, matching the middle element of the sorted list
    return float(np.sort(scales)[len(scales) // 2])
