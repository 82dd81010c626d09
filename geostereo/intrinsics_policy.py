"""
This module decides which camera intrinsics are optimized and which are shared between cameras.

Description
-----------

Two settings are parsed here: which intrinsics to float and which to share.  Both use the vocabulary
``focal_length``, ``optical_center``, ``other_intrinsics`` (or its alias ``distortion``), ``all`` and ``none``.  The
characters ``\\ : ; ,`` and whitespace all separate tokens.

When the cameras come from several sensors (see :func:`read_image_cam_lists`) the intrinsics are shared per sensor and
the float setting may be given per sensor using 1 based sensor ids::

    "1:focal_length,optical_center 2:all 3:none"

Otherwise the float setting applies to every camera.  The result of parsing is an :class:`IntrinsicsSharing`, which
the :class:`.ParameterStore` uses to assign intrinsics blocks.
"""

import logging

from dataclasses import dataclass, field
from pathlib import Path

from geostereo._typing import PATH
from geostereo.utilities.options import UserOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


SEPARATORS: str = "\\:;, \t\r\n"
"""
The characters that are equivalent to a space in the intrinsics settings
"""

ALL_INTRINSICS: str = "focal_length optical_center other_intrinsics"


@dataclass
class IntrinsicsOptions(UserOptions):
    """
    The user settings that control intrinsics optimization.
    """

    solve_intrinsics: bool = False
    """
    Whether any intrinsics are optimized
    """

    intrinsics_to_float: str = ""
    """
    Which intrinsics to float.  Empty or ``all`` floats everything.
    """

    intrinsics_to_share: str | None = None
    """
    Which intrinsics to share between all cameras.  ``None`` means not specified, which shares everything.  An empty
    string shares nothing.
    """

    intrinsics_limits: str = ""
    """
    Whitespace separated min/max pairs bounding the intrinsics multipliers
    """


@dataclass
class IntrinsicsSharing:
    """
    Which intrinsics are floated and shared, per sensor.
    """

    center_shared: bool = True
    focus_shared: bool = True
    distortion_shared: bool = True

    float_center: list[bool] = field(default_factory=lambda: [False])
    float_focus: list[bool] = field(default_factory=lambda: [False])
    float_distortion: list[bool] = field(default_factory=lambda: [False])

    share_intrinsics_per_sensor: bool = False
    """
    When true, each intrinsic is shared by the cameras of a sensor and never across sensors
    """

    num_sensors: int = 0

    cam2sensor: list[int] = field(default_factory=list)
    """
    The sensor index of each camera when sharing per sensor
    """

    def sensor_of(self, cam: int) -> int:
        """
        The index into the float vectors for camera ``cam``.
        """

        if self.share_intrinsics_per_sensor:
            return self.cam2sensor[cam]
        return 0

    def float_optical_center(self, cam: int) -> bool:
        return self.float_center[self.sensor_of(cam)]

    def float_focal_length(self, cam: int) -> bool:
        return self.float_focus[self.sensor_of(cam)]

    def float_distortion_params(self, cam: int) -> bool:
        return self.float_distortion[self.sensor_of(cam)]


def replace_separators_with_space(text: str) -> str:
    for sep in SEPARATORS:
        text = text.replace(sep, ' ')
    return text


def is_non_negative_integer(text: str) -> bool:
    return bool(text) and text.isascii() and text.isdigit()


def _apply_token(token: str, sensor: int, float_center: list[bool], float_focus: list[bool],
                 float_distortion: list[bool]):

    if token == "optical_center":
        float_center[sensor] = True
    elif token == "focal_length":
        float_focus[sensor] = True
    elif token in ("other_intrinsics", "distortion"):
        float_distortion[sensor] = True
    elif token == "all":
        float_center[sensor] = True
        float_focus[sensor] = True
        float_distortion[sensor] = True
    elif token != "none":
        raise ValueError(f"Found unknown option when parsing which sensor intrinsics to float: {token}.")


def fine_grained_parse(share_intrinsics_per_sensor: bool, num_sensors: int,
                       options: list[str]) -> tuple[list[bool], list[bool], list[bool]]:
    """
    Parse per sensor float settings such as ``["1", "focal_length", "2", "all"]``.

    :param share_intrinsics_per_sensor: Must be true
    :param num_sensors: The number of sensors
    :param options: The tokens
    :return: The float flags for the optical center, focal length and distortion of each sensor
    :raises ValueError: if sharing is not per sensor, a sensor id is out of bounds or repeated, or a token is unknown
    """

    if not share_intrinsics_per_sensor:
        raise ValueError("Per sensor intrinsics settings are only for when intrinsics are optimized per sensor.")
    if num_sensors <= 0:
        raise ValueError("Expecting a positive number of sensors.")
    if not options:
        raise ValueError("Expecting at least one option.")
    if not is_non_negative_integer(options[0]):
        raise ValueError("Expecting an integer as the first option.")

    size = max(num_sensors, 1)
    float_center, float_focus, float_distortion = [False] * size, [False] * size, [False] * size

    seen = set()
    sensor = int(options[0]) - 1

    for token in options:

        if is_non_negative_integer(token):
            sensor = int(token) - 1

            if not 0 <= sensor < num_sensors:
                raise ValueError(f"Sensor id {token} is out of bounds.")

            if sensor in seen:
                raise ValueError(f"Sensor id {token} is repeated.")

            seen.add(sensor)
            continue

        _apply_token(token, sensor, float_center, float_focus, float_distortion)

    return float_center, float_focus, float_distortion


def coarse_grained_parse(num_sensors: int, options: list[str]) -> tuple[list[bool], list[bool], list[bool]]:
    """
    Parse float settings that apply to every sensor, such as ``["focal_length", "optical_center"]``.

    :return: The float flags for the optical center, focal length and distortion, one entry per sensor (at least one)
    :raises ValueError: if a token is unknown or the settings start with an integer
    """

    if num_sensors < 0:
        raise ValueError("Cameras were not parsed correctly.")

    if options and is_non_negative_integer(options[0]):
        raise ValueError("When parsing intrinsics to float, expecting a string, not an integer. Check your inputs.")

    float_center, float_focus, float_distortion = [False], [False], [False]

    for token in options:
        _apply_token(token, 0, float_center, float_focus, float_distortion)

    size = max(num_sensors, 1)

    return float_center * size, float_focus * size, float_distortion * size


def load_intrinsics_options(options: IntrinsicsOptions, sharing: IntrinsicsSharing | None = None) -> IntrinsicsSharing:
    """
    Turn the user settings into float and share flags.

    The sensor layout (:attr:`~IntrinsicsSharing.share_intrinsics_per_sensor`, :attr:`~IntrinsicsSharing.num_sensors`
    and :attr:`~IntrinsicsSharing.cam2sensor`) is taken from ``sharing`` if given, typically as filled in by
    :func:`read_image_cam_lists`.

    :param options: The user settings
    :param sharing: The sharing to update in place
    :return: The updated (or a new) sharing
    :raises ValueError: if float or share settings are given without ``solve_intrinsics`` or cannot be parsed
    """

    if sharing is None:
        sharing = IntrinsicsSharing()

    sharing.center_shared = sharing.focus_shared = sharing.distortion_shared = True
    sharing.float_center, sharing.float_focus, sharing.float_distortion = [False], [False], [False]

    shared_is_specified = options.intrinsics_to_share is not None

    if (options.intrinsics_to_float or options.intrinsics_to_share) and not options.solve_intrinsics:
        raise ValueError("To be able to specify only certain intrinsics, solve_intrinsics must be on.")

    if not options.solve_intrinsics:
        return sharing

    to_float = options.intrinsics_to_float.lower()
    if to_float in ("", "all"):
        to_float = ALL_INTRINSICS
    elif to_float == "none":
        to_float = ""

    to_share = ALL_INTRINSICS
    if shared_is_specified:
        to_share = options.intrinsics_to_share.lower()
        if to_share == "all":
            to_share = ALL_INTRINSICS
        elif to_share == "none":
            to_share = ""

    if sharing.share_intrinsics_per_sensor and shared_is_specified:
        _LOGGER.info("When sharing intrinsics per sensor the intrinsics to share setting is ignored. The intrinsics "
                     "are always shared for a sensor and never across sensors.")

    float_tokens = replace_separators_with_space(to_float).split()

    if float_tokens and is_non_negative_integer(float_tokens[0]):
        flags = fine_grained_parse(sharing.share_intrinsics_per_sensor, sharing.num_sensors, float_tokens)
    else:
        flags = coarse_grained_parse(sharing.num_sensors, float_tokens)

    sharing.float_center, sharing.float_focus, sharing.float_distortion = (list(flag) for flag in flags)

    if shared_is_specified and not sharing.share_intrinsics_per_sensor:

        sharing.center_shared = sharing.focus_shared = sharing.distortion_shared = False

        for token in replace_separators_with_space(to_share).split():
            if token == "focal_length":
                sharing.focus_shared = True
            elif token == "optical_center":
                sharing.center_shared = True
            elif token in ("other_intrinsics", "distortion"):
                sharing.distortion_shared = True
            else:
                raise ValueError(f"Found unknown intrinsic to share: {token}.")

    mode = "per sensor" if sharing.share_intrinsics_per_sensor else "across sensors"
    _LOGGER.info(f"Floated (per sensor): optical center {sharing.float_center}, focal length {sharing.float_focus}, "
                 f"distortion {sharing.float_distortion}")
    _LOGGER.info(f"Shared ({mode}): optical center {sharing.center_shared}, focal length {sharing.focus_shared}, "
                 f"distortion {sharing.distortion_shared}")

    return sharing


def parse_intrinsics_limits(text: str) -> list[float]:
    """
    Parse whitespace separated min/max pairs.

    :raises ValueError: if a pair has min after max or a value is unpaired
    """

    limits = [float(value) for value in text.split()]

    for low, high in zip(limits[0::2], limits[1::2]):
        if high < low:
            raise ValueError("Intrinsic limit pairs must be min before max.")

    if len(limits) % 2 != 0:
        raise ValueError("Intrinsic limits must always be provided in min max pairs.")

    return limits


def read_list(file: PATH) -> list[str]:
    """
    Read the whitespace separated entries of a list file.

    :raises ValueError: if the file has no entries
    """

    entries = Path(file).read_text().split()

    if not entries:
        raise ValueError(f"Empty list file: {file}")

    return entries


def read_image_cam_lists(image_list: str, camera_list: str,
                         sharing: IntrinsicsSharing) -> list[str]:
    """
    Read image and camera lists.

    Each of ``image_list`` and ``camera_list`` is either one list file or several comma separated list files, one per
    sensor.  In the second case ``sharing`` is switched to per sensor sharing and its camera to sensor map is filled.

    :param image_list: The image list file(s)
    :param camera_list: The camera list file(s).  May be empty when the images carry their cameras
    :param sharing: Updated in place with the sensor layout
    :return: The images followed by the cameras
    :raises ValueError: if the numbers of images and cameras disagree
    """

    sharing.share_intrinsics_per_sensor = False
    sharing.cam2sensor = []
    sharing.num_sensors = 0

    if "," not in image_list and "," not in camera_list:

        images = read_list(image_list)

        if not camera_list:
            _LOGGER.info("An image list was provided but not a camera list.")
            return images

        cameras = read_list(camera_list)

        if len(images) != len(cameras):
            raise ValueError(f"Expecting the same number of images and cameras in {image_list} and {camera_list}.")

        return images + cameras

    _LOGGER.info("Multiple image lists and camera lists were passed in. Solving for intrinsics per sensor.")

    sharing.share_intrinsics_per_sensor = True

    image_lists = image_list.split(",")
    camera_lists = camera_list.split(",")

    if len(image_lists) != len(camera_lists):
        raise ValueError("Expecting the same number of image and camera lists. They must be separated by commas.")

    images, cameras = [], []

    for sensor, (local_image_list, local_camera_list) in enumerate(zip(image_lists, camera_lists)):

        local_images = read_list(local_image_list)
        local_cameras = read_list(local_camera_list)

        if len(local_images) != len(local_cameras):
            raise ValueError(f"Expecting the same positive number of images and cameras in lists: "
                             f"'{local_image_list}' and '{local_camera_list}'.")

        images.extend(local_images)
        cameras.extend(local_cameras)
        sharing.cam2sensor.extend([sensor] * len(local_cameras))

    sharing.num_sensors = len(image_lists)
    _LOGGER.info(f"Number of sensors: {sharing.num_sensors}")

    return images + cameras


def distortion_sanity_check(num_dist_params: list[int], sharing: IntrinsicsSharing,
                            intrinsics_limits: list[float]) -> None:
    """
    Check that cameras sharing distortion have the same number of distortion values.

    :raises ValueError: if shared distortion sizes disagree, or limits are given for cameras with different sizes
    """

    same_size = all(size == num_dist_params[0] for size in num_dist_params)

    if not sharing.share_intrinsics_per_sensor and sharing.distortion_shared and not same_size:
        raise ValueError("When sharing distortion parameters, they must have the same size.")

    if sharing.share_intrinsics_per_sensor:

        sizes = [set() for _ in range(sharing.num_sensors)]

        for cam, size in enumerate(num_dist_params):
            sizes[sharing.cam2sensor[cam]].add(size)

        for sensor, found in enumerate(sizes):
            if len(found) != 1:
                raise ValueError(f"When sharing distortion parameters per sensor, they must have the same size for "
                                 f"all cameras of sensor {sensor + 1}.")

    if intrinsics_limits and not same_size:
        raise ValueError("When using intrinsics limits, all cameras must have the same number of distortion "
                         "coefficients.")
