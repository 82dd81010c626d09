# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This module provides the :class:`ParameterStore`, the packed storage of everything a bundle adjustment or jitter solve
optimizes.

Description
-----------

All of the solver state lives in a single contiguous float64 buffer laid out as::

    [points (3 M) | camera records (7 N) | centers (2 per block) | foci (1 per block) | distortions (k per block)]

Each piece is handed to the solver as a numpy view into that buffer, so updates the solver makes to a view are seen by
every other consumer of the store and the addresses never change for the lifetime of the store.

The camera records hold the extrinsics as described in :mod:`.camera_adjustment`.  The intrinsics are stored as
multipliers of the nominal values held in the camera objects; packing a camera resets them to 1 and the effective
intrinsic is always the nominal value times the multiplier.

Intrinsics may be shared.  When an :class:`.IntrinsicsSharing` is given, cameras that share an intrinsic point at the
same block of the buffer (either one block for every camera or one block per sensor).

Use
---

Pack each camera with :meth:`ParameterStore.pack` (or one of the variant specific ``pack_*`` methods), hand the views
to the solver, and rebuild the adjusted cameras with :meth:`ParameterStore.transformed`.
"""

import logging

from typing import Callable

import numpy as np

from geostereo._typing import DOUBLE_ARRAY, ARRAY_LIKE
from geostereo.camera_adjustment import CameraAdjustment, RECORD_SIZE, apply_adjustment
from geostereo.camera_models import (CameraModel, CameraType, PinholeModel, OpticalBarModel, CSMFrameModel,
                                     CSMLinescanModel, AdjustedCameraModel)
from geostereo.intrinsics_policy import IntrinsicsSharing


_LOGGER: logging.Logger = logging.getLogger(__name__)


POINT_SIZE: int = 3
"""
The number of values in a world point
"""

CENTER_SIZE: int = 2
"""
The number of values in an optical center multiplier block
"""

FOCUS_SIZE: int = 1
"""
The number of values in a focal length multiplier block
"""


class ParameterStore:
    """
    Packed, stably addressed storage for camera records, intrinsics multipliers and world points.

    :param num_points: The number of world points
    :param num_cameras: The number of cameras
    :param distortion_sizes: The number of distortion (or, for optical bar cameras, speed/motion/scan time) values for
                             each camera
    :param sharing: How the intrinsics are shared between cameras.  If ``None`` every camera gets its own blocks
    """

    def __init__(self, num_points: int, num_cameras: int, distortion_sizes: ARRAY_LIKE,
                 sharing: IntrinsicsSharing | None = None):

        distortion_sizes = [int(size) for size in distortion_sizes]

        if len(distortion_sizes) != num_cameras:
            raise ValueError(f'Expected {num_cameras} distortion sizes, got {len(distortion_sizes)}')

        self._num_points = int(num_points)
        self._num_cameras = int(num_cameras)

        self._center_block = self._block_map(sharing, 'center_shared')
        self._focus_block = self._block_map(sharing, 'focus_shared')
        self._distortion_block = self._block_map(sharing, 'distortion_shared')

        # all cameras pointing at the same distortion block must agree on its size
        block_sizes: dict[int, int] = {}
        for cam, block in enumerate(self._distortion_block):
            if block_sizes.setdefault(block, distortion_sizes[cam]) != distortion_sizes[cam]:
                raise ValueError(f'Camera {cam} has {distortion_sizes[cam]} distortion values but shares them with '
                                 f'a camera that has {block_sizes[block]}')

        num_center_blocks = max(self._center_block, default=-1) + 1
        num_focus_blocks = max(self._focus_block, default=-1) + 1
        num_distortion_blocks = max(self._distortion_block, default=-1) + 1

        self._points_offset = 0
        self._cameras_offset = self._points_offset + POINT_SIZE * self._num_points
        self._centers_offset = self._cameras_offset + RECORD_SIZE * self._num_cameras
        self._focus_offset = self._centers_offset + CENTER_SIZE * num_center_blocks
        self._distortion_offset = self._focus_offset + FOCUS_SIZE * num_focus_blocks

        self._distortion_block_offsets = []
        offset = self._distortion_offset
        for block in range(num_distortion_blocks):
            self._distortion_block_offsets.append(offset)
            offset += block_sizes.get(block, 0)

        self._distortion_block_sizes = [block_sizes.get(block, 0) for block in range(num_distortion_blocks)]

        self.buffer: DOUBLE_ARRAY = np.zeros(offset, dtype=np.float64)
        """
        The contiguous storage behind every view handed out by this store.

        Never rebind this attribute; the solver holds views into it.
        """

        # identity quaternions and unit multipliers until something is packed
        self.buffer[self._centers_offset:] = 1.0
        for cam in range(self._num_cameras):
            CameraAdjustment().pack_to_array(self.get_camera_ptr(cam))

        self._outliers = np.zeros(self._num_points, dtype=bool)

        self._camera_scales = np.ones(self._num_cameras, dtype=np.float64)

        _LOGGER.debug(f'Parameter store with {self._num_points} points, {self._num_cameras} cameras, '
                      f'{num_center_blocks}/{num_focus_blocks}/{num_distortion_blocks} center/focus/distortion blocks')

    def _block_map(self, sharing: IntrinsicsSharing | None, shared_attribute: str) -> list[int]:

        if sharing is None:
            return list(range(self._num_cameras))

        if sharing.share_intrinsics_per_sensor:
            if len(sharing.cam2sensor) != self._num_cameras:
                raise ValueError(f'The camera to sensor map has {len(sharing.cam2sensor)} entries but there are '
                                 f'{self._num_cameras} cameras')
            return [int(sensor) for sensor in sharing.cam2sensor]

        if getattr(sharing, shared_attribute):
            return [0] * self._num_cameras

        return list(range(self._num_cameras))

    def num_cameras(self) -> int:
        return self._num_cameras

    def num_points(self) -> int:
        return self._num_points

    def get_point_ptr(self, j: int) -> DOUBLE_ARRAY:
        """
        The (3,) view of world point ``j``.
        """

        self._check_point(j)
        start = self._points_offset + POINT_SIZE * j
        return self.buffer[start:start + POINT_SIZE]

    def get_camera_ptr(self, i: int) -> DOUBLE_ARRAY:
        """
        The (7,) view of the extrinsics record of camera ``i``.
        """

        self._check_camera(i)
        start = self._cameras_offset + RECORD_SIZE * i
        return self.buffer[start:start + RECORD_SIZE]

    def get_intrinsic_center_ptr(self, i: int) -> DOUBLE_ARRAY:
        """
        The (2,) view of the optical center multipliers used by camera ``i``.
        """

        self._check_camera(i)
        start = self._centers_offset + CENTER_SIZE * self._center_block[i]
        return self.buffer[start:start + CENTER_SIZE]

    def get_intrinsic_focus_ptr(self, i: int) -> DOUBLE_ARRAY:
        """
        The (1,) view of the focal length multiplier used by camera ``i``.
        """

        self._check_camera(i)
        start = self._focus_offset + FOCUS_SIZE * self._focus_block[i]
        return self.buffer[start:start + FOCUS_SIZE]

    def get_intrinsic_distortion_ptr(self, i: int) -> DOUBLE_ARRAY:
        """
        The (k,) view of the distortion multipliers used by camera ``i``.  ``k`` may be 0.
        """

        self._check_camera(i)
        block = self._distortion_block[i]
        start = self._distortion_block_offsets[block]
        return self.buffer[start:start + self._distortion_block_sizes[block]]

    def camera_scale(self, i: int) -> float:
        """
        The scale of the adjustment of camera ``i``.  This is only meaningful for adjusted cameras and is never
        optimized.
        """

        self._check_camera(i)
        return float(self._camera_scales[i])

    def set_camera_scale(self, i: int, scale: float):
        self._check_camera(i)
        self._camera_scales[i] = scale

    def point_outlier(self, j: int) -> bool:
        self._check_point(j)
        return bool(self._outliers[j])

    def set_point_outlier(self, j: int) -> None:
        """
        Flag point ``j`` as an outlier.  Flags are never cleared.
        """

        self._check_point(j)
        self._outliers[j] = True

    def num_outliers(self) -> int:
        return int(self._outliers.sum())

    def _check_camera(self, i: int):
        if not 0 <= i < self._num_cameras:
            raise IndexError(f'Camera index {i} is out of range for {self._num_cameras} cameras')

    def _check_point(self, j: int):
        if not 0 <= j < self._num_points:
            raise IndexError(f'Point index {j} is out of range for {self._num_points} points')

    def _reset_intrinsics(self, i: int, num_distortion: int):

        distortion = self.get_intrinsic_distortion_ptr(i)

        if distortion.size != num_distortion:
            raise ValueError(f'Camera {i} has {num_distortion} distortion values but the store has room for '
                             f'{distortion.size}')

        self.get_intrinsic_center_ptr(i)[:] = 1.0
        self.get_intrinsic_focus_ptr(i)[:] = 1.0
        distortion[:] = 1.0

    def pack_pinhole(self, camera: PinholeModel, i: int) -> None:
        """
        Store the center and orientation of a pinhole camera in record ``i`` and reset its intrinsics multipliers.
        """

        CameraAdjustment.copy_from_pinhole(camera).pack_to_array(self.get_camera_ptr(i))
        self._reset_intrinsics(i, camera.distortion_parameters.size)

    def pack_optical_bar(self, camera: OpticalBarModel, i: int) -> None:
        """
        Store the center and orientation of an optical bar camera in record ``i`` and reset its intrinsics
        multipliers.  The speed, motion compensation and scan time take the place of the distortion multipliers.
        """

        CameraAdjustment.copy_from_optical_bar(camera).pack_to_array(self.get_camera_ptr(i))
        self._reset_intrinsics(i, camera.distortion_parameters.size)

    def pack_csm(self, camera: CSMFrameModel | CSMLinescanModel, i: int) -> None:
        """
        Store an identity adjustment for a CSM camera in record ``i`` and reset its intrinsics multipliers.
        """

        CameraAdjustment.copy_from_csm(camera).pack_to_array(self.get_camera_ptr(i))
        self._reset_intrinsics(i, camera.distortion_parameters.size)

    def pack_adjusted(self, camera: AdjustedCameraModel, i: int) -> None:
        """
        Store the translation, rotation and scale of an adjusted camera.  Adjusted cameras carry no intrinsics in the
        store.
        """

        CameraAdjustment.copy_from_adjusted_camera(camera).pack_to_array(self.get_camera_ptr(i))
        self.set_camera_scale(i, camera.scale)
        self._reset_intrinsics(i, self.get_intrinsic_distortion_ptr(i).size)

    def pack(self, camera: CameraModel, i: int) -> None:
        """
        Pack any supported camera into slot ``i``.
        """

        PACKERS[camera.camera_type](self, camera, i)

    def _scaled_intrinsics(self, i: int, camera: PinholeModel | CSMFrameModel | CSMLinescanModel):

        camera.focal_length *= float(self.get_intrinsic_focus_ptr(i)[0])
        camera.optical_center = camera.optical_center * self.get_intrinsic_center_ptr(i)
        camera.distortion = camera.distortion.scaled(self.get_intrinsic_distortion_ptr(i))

    def transformed_pinhole(self, i: int, camera: PinholeModel) -> PinholeModel:
        """
        A new pinhole camera built from record ``i`` and its multipliers.  ``camera`` supplies the nominal intrinsics
        and is not modified.
        """

        out = camera.copy()

        apply_adjustment(CameraAdjustment.from_record(self.get_camera_ptr(i)), out)
        self._scaled_intrinsics(i, out)

        return out

    def transformed_optical_bar(self, i: int, camera: OpticalBarModel) -> OpticalBarModel:
        """
        A new optical bar camera built from record ``i`` and its multipliers.  ``camera`` is not modified.
        """

        out = camera.copy()

        apply_adjustment(CameraAdjustment.from_record(self.get_camera_ptr(i)), out)

        out.focal_length *= float(self.get_intrinsic_focus_ptr(i)[0])
        out.optical_center = out.optical_center * self.get_intrinsic_center_ptr(i)
        out.distortion_parameters = camera.distortion_parameters * self.get_intrinsic_distortion_ptr(i)

        return out

    def transformed_csm(self, i: int, camera: CSMFrameModel | CSMLinescanModel) -> CSMFrameModel | CSMLinescanModel:
        """
        A new CSM camera with the adjustment in record ``i`` applied to its trajectory and its intrinsics scaled by
        the multipliers.  ``camera`` is not modified.
        """

        out = camera.copy()

        apply_adjustment(CameraAdjustment.from_record(self.get_camera_ptr(i)), out)
        self._scaled_intrinsics(i, out)

        return out

    def transformed_adjusted(self, i: int, camera: AdjustedCameraModel) -> AdjustedCameraModel:
        """
        A new adjusted camera with the translation and rotation from record ``i`` and the stored scale.
        """

        out = camera.copy()

        apply_adjustment(CameraAdjustment.from_record(self.get_camera_ptr(i)), out)
        out.scale = self.camera_scale(i)

        return out

    def transformed(self, i: int, camera: CameraModel) -> CameraModel:
        """
        Rebuild any supported camera from slot ``i``.
        """

        return UNPACKERS[camera.camera_type](self, i, camera)


PACKERS: dict[CameraType, Callable[[ParameterStore, CameraModel, int], None]] = {
    CameraType.PINHOLE: ParameterStore.pack_pinhole,
    CameraType.OPTICAL_BAR: ParameterStore.pack_optical_bar,
    CameraType.CSM_FRAME: ParameterStore.pack_csm,
    CameraType.CSM_LINESCAN: ParameterStore.pack_csm,
    CameraType.ADJUSTED: ParameterStore.pack_adjusted,
}
"""
The pack method for each camera variant
"""

UNPACKERS: dict[CameraType, Callable[[ParameterStore, int, CameraModel], CameraModel]] = {
    CameraType.PINHOLE: ParameterStore.transformed_pinhole,
    CameraType.OPTICAL_BAR: ParameterStore.transformed_optical_bar,
    CameraType.CSM_FRAME: ParameterStore.transformed_csm,
    CameraType.CSM_LINESCAN: ParameterStore.transformed_csm,
    CameraType.ADJUSTED: ParameterStore.transformed_adjusted,
}
"""
The unpack method for each camera variant
"""


def distortion_size(camera: CameraModel) -> int:
    """
    The number of distortion multipliers a camera needs in the store.
    """

    if camera.camera_type is CameraType.ADJUSTED:
        return 0

    return int(np.asarray(camera.distortion_parameters).size)


def store_from_cameras(cameras: list[CameraModel], num_points: int = 0,
                       sharing: IntrinsicsSharing | None = None) -> ParameterStore:
    """
    Build a store sized for ``cameras`` and pack each camera into it.
    """

    store = ParameterStore(num_points, len(cameras), [distortion_size(camera) for camera in cameras], sharing=sharing)

    for index, camera in enumerate(cameras):
        store.pack(camera, index)

    return store
