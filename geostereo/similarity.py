# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
This module applies 3D similarity transforms to cameras, either to live camera objects or to the records of a
:class:`.ParameterStore`.

A similarity is given as a 4x4 matrix

.. math::
    \mathbf{M} = \left[\begin{array}{cc} s\mathbf{R} & \mathbf{t} \\ \mathbf{0}^T & 1\end{array}\right]

which maps a world point :math:`\mathbf{x}` to :math:`s\mathbf{R}\mathbf{x}+\mathbf{t}`.  The scale is recovered as
:math:`s=\det(s\mathbf{R})^{1/3}`.

Every camera variant moves the same way under a similarity: its centers map like points and its orientation is
premultiplied by :math:`\mathbf{R}`.  CSM cameras cannot absorb a scale and reject any transform whose scale differs
from 1 by more than :data:`.CSM_SCALE_TOLERANCE`.

There are two paths for each variant, which give the same cameras:

* :func:`apply_transform_to_camera` transforms a live camera object in place.
* :func:`apply_transform_to_store` composes the transform into the extrinsics records of a store.  Pinhole and optical
  bar cameras are transformed and then packed again.  CSM and adjusted cameras compose the transform with the
  adjustment held in the record.
"""

import logging

from typing import Callable, Sequence

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_adjustment import CameraAdjustment
from geostereo.camera_models import CameraModel, CameraType, check_csm_scale
from geostereo.estimators import DavenportQMethod
from geostereo.parameter_store import ParameterStore
from geostereo.rotations import Rotation


_LOGGER: logging.Logger = logging.getLogger(__name__)


def decompose_similarity(transform: ARRAY_LIKE) -> tuple[DOUBLE_ARRAY, DOUBLE_ARRAY, float]:
    """
    Split a 4x4 similarity into its rotation, translation and scale.

    :raises ValueError: if the linear part is not a proper (positive determinant) similarity
    """

    transform = np.asarray(transform, dtype=np.float64)

    if transform.shape != (4, 4):
        raise ValueError(f'A similarity transform must be 4x4, not {transform.shape}')

    linear = transform[:3, :3]

    determinant = np.linalg.det(linear)

    if determinant <= 0:
        raise ValueError(f'The transform has a non-positive determinant ({determinant}) and is not a similarity')

    scale = float(np.cbrt(determinant))

    return linear / scale, transform[:3, 3].copy(), scale


def compose_similarity(rotation: ARRAY_LIKE | Rotation, translation: ARRAY_LIKE, scale: float = 1.0) -> DOUBLE_ARRAY:
    """
    Build a 4x4 similarity matrix.
    """

    if isinstance(rotation, Rotation):
        rotation = rotation.matrix

    transform = np.eye(4)
    transform[:3, :3] = scale * np.asarray(rotation, dtype=np.float64)
    transform[:3, 3] = np.asarray(translation, dtype=np.float64)

    return transform


def apply_similarity_to_points(transform: ARRAY_LIKE, points: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Map points (a length 3 array or 3xn array) through a similarity.
    """

    transform = np.asarray(transform, dtype=np.float64)
    points = np.asarray(points, dtype=np.float64)

    if points.ndim == 1:
        return transform[:3, :3] @ points + transform[:3, 3]

    return transform[:3, :3] @ points + transform[:3, 3:]


def find_3d_transform(source_points: ARRAY_LIKE, target_points: ARRAY_LIKE) -> DOUBLE_ARRAY:
    r"""
    The similarity that best maps ``source_points`` onto ``target_points`` in the least squares sense.

    Both point sets are centered on their centroids.  The rotation is the Davenport Q-method solution for the
    centered sets, the scale is

    .. math::
        s = \frac{\sum_i \mathbf{y}_i^T\mathbf{R}\mathbf{x}_i}{\sum_i\mathbf{x}_i^T\mathbf{x}_i}

    and the translation maps the source centroid onto the target centroid.

    :param source_points: 3xn points to transform
    :param target_points: 3xn points to transform onto
    :return: The 4x4 similarity
    :raises ValueError: if the sets differ in size, have fewer than 3 points, or the source points all coincide
    """

    source_points = np.asarray(source_points, dtype=np.float64).reshape(3, -1)
    target_points = np.asarray(target_points, dtype=np.float64).reshape(3, -1)

    if source_points.shape != target_points.shape:
        raise ValueError(f'The point sets must be the same size ({source_points.shape[1]} vs '
                         f'{target_points.shape[1]})')

    if source_points.shape[1] < 3:
        raise ValueError('At least 3 points are needed to find a 3D transform')

    source_center = source_points.mean(axis=1, keepdims=True)
    target_center = target_points.mean(axis=1, keepdims=True)

    source_centered = source_points - source_center
    target_centered = target_points - target_center

    source_ss = float((source_centered * source_centered).sum())

    if source_ss == 0:
        raise ValueError('The source points all coincide')

    rotation = DavenportQMethod().estimate(target_centered, source_centered).matrix

    scale = float((target_centered * (rotation @ source_centered)).sum()) / source_ss

    translation = target_center.ravel() - scale * rotation @ source_center.ravel()

    return compose_similarity(rotation, translation, scale)


def apply_transform_to_camera(transform: ARRAY_LIKE, camera: CameraModel) -> None:
    """
    Apply a similarity to a live camera object in place.

    :raises ValueError: for CSM cameras if the transform has a scale
    """

    rotation, translation, scale = decompose_similarity(transform)

    camera.apply_transform(rotation, translation, scale)


def _store_transform_pinhole(store: ParameterStore, i: int, camera: CameraModel, rotation: DOUBLE_ARRAY,
                             translation: DOUBLE_ARRAY, scale: float):
    camera.apply_transform(rotation, translation, scale)
    store.pack(camera, i)


def _store_transform_csm(store: ParameterStore, i: int, camera: CameraModel, rotation: DOUBLE_ARRAY,
                         translation: DOUBLE_ARRAY, scale: float):

    check_csm_scale(scale)

    record = store.get_camera_ptr(i)
    adjustment = CameraAdjustment.from_record(record)

    adjustment.position = rotation @ adjustment.position + translation
    adjustment.rotation = Rotation(rotation) * adjustment.rotation

    adjustment.pack_to_array(record)


def _store_transform_adjusted(store: ParameterStore, i: int, camera: CameraModel, rotation: DOUBLE_ARRAY,
                              translation: DOUBLE_ARRAY, scale: float):

    record = store.get_camera_ptr(i)
    adjustment = CameraAdjustment.from_record(record)

    pivot = camera.pivot

    adjustment.position = scale * rotation @ (pivot + adjustment.position) + translation - pivot
    adjustment.rotation = Rotation(rotation) * adjustment.rotation

    adjustment.pack_to_array(record)
    store.set_camera_scale(i, scale * store.camera_scale(i))


STORE_TRANSFORMS: dict[CameraType, Callable[[ParameterStore, int, CameraModel, DOUBLE_ARRAY, DOUBLE_ARRAY, float],
                                            None]] = {
    CameraType.PINHOLE: _store_transform_pinhole,
    CameraType.OPTICAL_BAR: _store_transform_pinhole,
    CameraType.CSM_FRAME: _store_transform_csm,
    CameraType.CSM_LINESCAN: _store_transform_csm,
    CameraType.ADJUSTED: _store_transform_adjusted,
}
"""
How a similarity is composed into the store for each camera variant
"""


def apply_transform_to_store(transform: ARRAY_LIKE, store: ParameterStore, cameras: Sequence[CameraModel]) -> None:
    """
    Compose a similarity into the extrinsics records of ``store``.

    ``cameras[i]`` must be the camera packed into slot ``i``.  Pinhole and optical bar cameras are transformed in
    place and packed again, which resets their intrinsics multipliers.  The records of CSM and adjusted cameras are
    updated and the camera objects are left alone; rebuild them with :meth:`.ParameterStore.transformed`.

    :raises ValueError: if the number of cameras does not match the store or a CSM camera gets a scaled transform
    """

    if len(cameras) != store.num_cameras():
        raise ValueError(f'Expected {store.num_cameras()} cameras, got {len(cameras)}')

    rotation, translation, scale = decompose_similarity(transform)

    for index, camera in enumerate(cameras):
        STORE_TRANSFORMS[camera.camera_type](store, index, camera, rotation, translation, scale)
