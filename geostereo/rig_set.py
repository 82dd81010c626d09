# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
This module provides the :class:`RigSet`, a set of rigs of rigidly mounted sensors, and its text file format.

Description
-----------

Each rig has a reference sensor, which is always listed first, and any number of other sensors.  Every sensor has its
own intrinsics, an affine transform taking points from the reference sensor frame to its own frame (the identity for
the reference sensor), a depth-to-image affine transform, and a timestamp offset from the reference sensor (zero for
the reference sensor).

The file format is line oriented.  Anything after a ``#`` is a comment and blank lines are ignored.  Each sensor is
a block of ``key: values`` lines in a fixed order, and a ``ref_sensor_name:`` line before a block starts a new rig::

    ref_sensor_name: nav_cam
    sensor_name: nav_cam
    focal_length: 608.8
    optical_center: 632.5 504.6
    distortion_coeffs: 0.99
    distortion_type: fov
    image_size: 1280 960
    distorted_crop_size: 1200 900
    undistorted_image_size: 1500 1200
    ref_to_sensor_transform: 1 0 0 0 1 0 0 0 1 0 0 0
    depth_to_image_transform: 1 0 0 0 1 0 0 0 1 0 0 0
    ref_to_sensor_timestamp_offset: 0

Affine transforms are written as the 9 values of the linear part in row major order followed by the 3 values of the
translation.

Use
---

Read a file with :func:`read_rig_config` and write one with :func:`write_rig_config`.  :meth:`RigSet.validate` is
called on every read.
"""

import logging

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY, PATH
from geostereo.camera_models import Distortion, make_distortion


_LOGGER: logging.Logger = logging.getLogger(__name__)


NUM_AFFINE_PARAMS: int = 12
"""
The number of values describing an affine transform
"""


def vec_to_affine(values: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Form a 4x4 affine matrix from the 9 row major linear values and 3 translation values.

    :raises ValueError: if there are not 12 values
    """

    values = np.asarray(values, dtype=np.float64).ravel()

    if values.size != NUM_AFFINE_PARAMS:
        raise ValueError("An affine transform must have 12 parameters.")

    affine = np.eye(4)
    affine[:3, :3] = values[:9].reshape(3, 3)
    affine[:3, 3] = values[9:]

    return affine


def affine_to_vec(affine: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    The inverse of :func:`vec_to_affine`.
    """

    affine = np.asarray(affine, dtype=np.float64)

    return np.concatenate([affine[:3, :3].ravel(), affine[:3, 3]])


@dataclass
class CameraParameters:
    """
    The intrinsics of one sensor on a rig.
    """

    image_size: DOUBLE_ARRAY
    focal_length: float
    optical_center: DOUBLE_ARRAY
    distortion: DOUBLE_ARRAY
    distortion_type: str = "none"

    distorted_crop_size: DOUBLE_ARRAY = field(default_factory=lambda: np.zeros(2, dtype=np.int64))
    """
    The region around the image center where the distortion model is valid
    """

    undistorted_size: DOUBLE_ARRAY = field(default_factory=lambda: np.zeros(2, dtype=np.int64))

    def __post_init__(self):
        self.image_size = np.asarray(self.image_size, dtype=np.int64)
        self.optical_center = np.asarray(self.optical_center, dtype=np.float64)
        self.distortion = np.asarray(self.distortion, dtype=np.float64).ravel()
        self.distorted_crop_size = np.asarray(self.distorted_crop_size, dtype=np.int64)
        self.undistorted_size = np.asarray(self.undistorted_size, dtype=np.int64)

    def distortion_model(self) -> Distortion:
        """
        The lens distortion model of the sensor.

        :raises ValueError: for ``rpc`` distortion, which has no projection model
        """

        return make_distortion(self.distortion_type, self.distortion)


@dataclass
class RigCamInfo:
    """
    Where an image sits on a rig.
    """

    sensor_id: int
    """
    The index of the sensor in :attr:`RigSet.cam_names`
    """

    beg_pose_time: float
    """
    The time of the first pose of the image
    """

    end_pose_time: float
    """
    The time of the last pose of the image.  This equals :attr:`beg_pose_time` for frame sensors
    """

    ref_cam_index: int = -1
    """
    The index of the camera of the reference sensor the image is tied to
    """


@dataclass
class RigSet:
    """
    A set of rigs.

    The sensors of all rigs are listed in :attr:`cam_names`, and the per sensor lists are parallel to it.
    """

    cam_set: list[list[str]] = field(default_factory=list)
    """
    The sensor names of each rig, reference sensor first
    """

    cam_names: list[str] = field(default_factory=list)
    cam_params: list[CameraParameters] = field(default_factory=list)
    ref_to_cam_trans: list[DOUBLE_ARRAY] = field(default_factory=list)
    depth_to_image: list[DOUBLE_ARRAY] = field(default_factory=list)
    ref_to_cam_timestamp_offsets: list[float] = field(default_factory=list)

    def is_ref_sensor(self, cam_name: str) -> bool:
        """
        Whether the sensor is the reference sensor of its rig.
        """

        return any(rig[0] == cam_name for rig in self.cam_set if rig)

    def rig_id(self, cam_id: int) -> int:
        """
        The index of the rig holding the sensor with index ``cam_id``.

        :raises IndexError: if ``cam_id`` is out of range
        :raises ValueError: if the sensor is not in any rig
        """

        if cam_id < 0 or cam_id >= len(self.cam_names):
            raise IndexError(f"Out of bounds sensor id: {cam_id}")

        cam_name = self.cam_names[cam_id]

        for rig_index, rig in enumerate(self.cam_set):
            if cam_name in rig:
                return rig_index

        raise ValueError(f"Could not look up in the rig the sensor: {cam_name}")

    def ref_sensor(self, cam_id: int) -> str:
        """
        The name of the reference sensor of the rig holding the sensor with index ``cam_id``.
        """

        return self.cam_set[self.rig_id(cam_id)][0]

    def sensor_index(self, sensor_name: str) -> int:
        """
        The index of the named sensor in :attr:`cam_names`.

        :raises ValueError: if there is no such sensor
        """

        try:
            return self.cam_names.index(sensor_name)
        except ValueError:
            raise ValueError(f"Could not find sensor in rig. Offending sensor: {sensor_name}.") from None

    def validate(self):
        """
        Check that the rig set is consistent.

        :raises ValueError: if there are no rigs, a rig has no sensors, a sensor name is repeated, the per sensor
                            lists differ in length, or a reference sensor has a nonzero timestamp offset
        """

        if not self.cam_set:
            raise ValueError("Found an empty set of rigs.")

        if any(not rig for rig in self.cam_set):
            raise ValueError("Found a rig with no sensors.")

        all_cams = [name for rig in self.cam_set for name in rig]

        if len(all_cams) != len(set(all_cams)) or len(all_cams) != len(self.cam_names):
            raise ValueError("Found a duplicate sensor name in the rig set.")

        num_cams = len(all_cams)

        for name, values in [("ref-to-sensor transforms", self.ref_to_cam_trans),
                             ("depth-to-image transforms", self.depth_to_image),
                             ("ref-to-sensor timestamp offsets", self.ref_to_cam_timestamp_offsets),
                             ("camera models", self.cam_params)]:
            if len(values) != num_cams:
                raise ValueError(f"Number of sensors is not equal to number of {name}.")

        for name, offset in zip(self.cam_names, self.ref_to_cam_timestamp_offsets):
            if self.is_ref_sensor(name) and offset != 0:
                raise ValueError(f"The timestamp offsets for the reference sensors must be always 0. "
                                 f"Offending sensor: {name}.")

    def sub_rig(self, rig_id: int) -> 'RigSet':
        """
        A rig set holding only the rig with index ``rig_id``.

        :raises IndexError: if ``rig_id`` is out of range
        """

        if rig_id < 0 or rig_id >= len(self.cam_set):
            raise IndexError(f"Out of range in rig set: {rig_id}")

        out = RigSet(cam_set=[list(self.cam_set[rig_id])])

        for sensor_name in self.cam_set[rig_id]:
            index = self.sensor_index(sensor_name)

            out.cam_names.append(self.cam_names[index])
            out.ref_to_cam_trans.append(self.ref_to_cam_trans[index].copy())
            out.depth_to_image.append(self.depth_to_image[index].copy())
            out.ref_to_cam_timestamp_offsets.append(self.ref_to_cam_timestamp_offsets[index])
            out.cam_params.append(self.cam_params[index])

        out.validate()

        return out


class _ConfigLines:
    """
    Walks the meaningful lines of a rig file, allowing a line to be put back.
    """

    def __init__(self, text: str):
        self._lines: list[list[str]] = []

        for line in text.splitlines():
            tokens = line.split('#', 1)[0].replace(',', ' ').split()
            if tokens:
                self._lines.append(tokens)

        self._position = 0

    def __iter__(self) -> Iterator[list[str]]:
        return self

    def __next__(self) -> list[str]:
        if self._position >= len(self._lines):
            raise StopIteration
        self._position += 1
        return self._lines[self._position - 1]

    def peek_tag(self) -> Optional[str]:
        if self._position >= len(self._lines):
            return None
        return self._lines[self._position][0]

    def read_strings(self, tag: str, desired_num_vals: int = -1) -> list[str]:
        """
        The values of the next line, which must start with ``tag``.

        :raises ValueError: if the next line has a different tag or the wrong number of values
        """

        tokens = next(self, None)

        if tokens is None or tokens[0] != tag:
            raise ValueError(f"Could not read value for: {tag}")

        values = tokens[1:]

        if desired_num_vals >= 0 and len(values) != desired_num_vals:
            raise ValueError(f"Read an incorrect number of values for: {tag}")

        return values

    def read_values(self, tag: str, desired_num_vals: int = -1) -> DOUBLE_ARRAY:
        strings = self.read_strings(tag, desired_num_vals)

        try:
            return np.array([float(value) for value in strings], dtype=np.float64)
        except ValueError:
            raise ValueError(f"Could not read value for: {tag}") from None


def _check_distortion(num_coeffs: int, distortion_type: str) -> str:
    """
    Check the distortion type against the number of coefficients, returning the type to use.
    """

    if num_coeffs not in (0, 1, 4) and num_coeffs < 5:
        raise ValueError("Expecting 0, 1, 4, 5, or more distortion coefficients.")

    if num_coeffs == 0 and distortion_type != "none":
        raise ValueError("When there are no distortion coefficients, distortion type must be: none")

    # a single fisheye coefficient is the old name of the fov model
    if num_coeffs == 1 and distortion_type == "fisheye":
        distortion_type = "fov"

    if num_coeffs == 1 and distortion_type != "fov":
        raise ValueError("When there is 1 distortion coefficient, distortion type must be: fov")

    if num_coeffs == 4 and distortion_type not in ("fisheye", "radtan"):
        raise ValueError("When there are 4 distortion coefficients, distortion type must be: fisheye or radtan")

    if num_coeffs == 5 and distortion_type != "radtan":
        raise ValueError("When there are 5 distortion coefficient, distortion type must be: radtan")

    if num_coeffs > 5 and distortion_type != "rpc":
        raise ValueError("When there are more than 5 distortion coefficients, distortion type must be: rpc")

    if distortion_type not in ("none", "fov", "fisheye", "radtan", "rpc"):
        raise ValueError(f"Unknown distortion type: {distortion_type}")

    return distortion_type


def parse_rig_config(text: str, have_rig_transforms: bool = True) -> RigSet:
    """
    Parse the contents of a rig file.

    :param text: The file contents
    :param have_rig_transforms: Require the transforms between the sensors to be meaningful.  When set, an all zero
                                transform is rejected and the reference sensors must have the identity transform
    :return: The validated rig set
    :raises ValueError: if the contents are malformed or inconsistent
    """

    rig = RigSet()
    lines = _ConfigLines(text)

    while lines.peek_tag() is not None:

        if lines.peek_tag() == "ref_sensor_name:":
            lines.read_strings("ref_sensor_name:", 1)
            rig.cam_set.append([])

        sensor_name = lines.read_strings("sensor_name:", 1)[0]

        if not rig.cam_set:
            raise ValueError(f"Sensor {sensor_name} is not preceded by a ref_sensor_name: line")

        rig.cam_set[-1].append(sensor_name)
        rig.cam_names.append(sensor_name)

        focal_length = float(lines.read_values("focal_length:", 1)[0])
        optical_center = lines.read_values("optical_center:", 2)

        distortion = lines.read_values("distortion_coeffs:")
        distortion_type = _check_distortion(distortion.size, lines.read_strings("distortion_type:", 1)[0])

        image_size = lines.read_values("image_size:", 2)
        distorted_crop_size = lines.read_values("distorted_crop_size:", 2)
        undistorted_size = lines.read_values("undistorted_image_size:", 2)

        rig.cam_params.append(CameraParameters(image_size.astype(np.int64), focal_length, optical_center, distortion,
                                               distortion_type, distorted_crop_size.astype(np.int64),
                                               undistorted_size.astype(np.int64)))

        ref_to_sensor = vec_to_affine(lines.read_values("ref_to_sensor_transform:", NUM_AFFINE_PARAMS))

        if have_rig_transforms and not ref_to_sensor.any():
            raise ValueError("Failed to read valid transforms between the sensors on the rig")

        rig.ref_to_cam_trans.append(ref_to_sensor)
        rig.depth_to_image.append(vec_to_affine(lines.read_values("depth_to_image_transform:", NUM_AFFINE_PARAMS)))
        rig.ref_to_cam_timestamp_offsets.append(float(lines.read_values("ref_to_sensor_timestamp_offset:", 1)[0]))

    if have_rig_transforms:
        for name, transform in zip(rig.cam_names, rig.ref_to_cam_trans):
            if rig.is_ref_sensor(name) and not np.array_equal(transform, np.eye(4)):
                raise ValueError(f"The transform from the reference sensor to itself must be the identity. "
                                 f"Offending sensor: {name}.")

    rig.validate()

    return rig


def read_rig_config(file: PATH, have_rig_transforms: bool = True) -> RigSet:
    """
    Read a rig file.  See :func:`parse_rig_config`.

    :raises OSError: if the file cannot be read
    """

    _LOGGER.info(f"Reading: {file}")

    return parse_rig_config(Path(file).read_text(), have_rig_transforms)


def _format(values) -> str:
    return " ".join(repr(float(value)) for value in np.ravel(values))


def write_rig_config(file: PATH, rig: RigSet):
    """
    Write a rig set in the format :func:`read_rig_config` reads.
    """

    _LOGGER.info(f"Writing: {file}")

    out = []

    for sensors in rig.cam_set:

        out.append(f"ref_sensor_name: {sensors[0]}\n")

        for name in sensors:

            index = rig.sensor_index(name)
            params = rig.cam_params[index]

            out.append(f"sensor_name: {name}")
            out.append(f"focal_length: {params.focal_length!r}")
            out.append(f"optical_center: {_format(params.optical_center)}")
            out.append(f"distortion_coeffs: {_format(params.distortion)}".rstrip())
            out.append(f"distortion_type: {params.distortion_type}")
            out.append("image_size: {} {}".format(*params.image_size))
            out.append("distorted_crop_size: {} {}".format(*params.distorted_crop_size))
            out.append("undistorted_image_size: {} {}".format(*params.undistorted_size))
            out.append(f"ref_to_sensor_transform: {_format(affine_to_vec(rig.ref_to_cam_trans[index]))}")
            out.append(f"depth_to_image_transform: {_format(affine_to_vec(rig.depth_to_image[index]))}")
            out.append(f"ref_to_sensor_timestamp_offset: {rig.ref_to_cam_timestamp_offsets[index]!r}\n")

    Path(file).write_text("\n".join(out))
