from unittest import TestCase

import tempfile

from pathlib import Path

import numpy as np

from geostereo.camera_models import FovDistortion, RadTanDistortion, NoDistortion
from geostereo.rig_set import (RigSet, parse_rig_config, read_rig_config, write_rig_config, vec_to_affine,
                               affine_to_vec, NUM_AFFINE_PARAMS)


IDENTITY = "1 0 0 0 1 0 0 0 1 0 0 0"

RIG_TEXT = f"""# two rigs
ref_sensor_name: nav_cam

sensor_name: nav_cam
focal_length: 608.8
optical_center: 632.5 538.9
distortion_coeffs: 0.998
distortion_type: fisheye
image_size: 1280 960
distorted_crop_size: 1200 900
undistorted_image_size: 1500 1200
ref_to_sensor_transform: {IDENTITY}
depth_to_image_transform: {IDENTITY}
ref_to_sensor_timestamp_offset: 0

sensor_name: haz_cam
focal_length: 206.2
optical_center: 112.0, 81.3
distortion_coeffs: -0.25 0.07 0.001 -0.002
distortion_type: radtan
image_size: 224 171
distorted_crop_size: 224 171
undistorted_image_size: 250 200
ref_to_sensor_transform: 0 -1 0 1 0 0 0 0 1 0.1 -0.02 0.03  # rotated and offset
depth_to_image_transform: 0.95 0 0 0 0.95 0 0 0 0.95 0.01 0 0
ref_to_sensor_timestamp_offset: -0.05

ref_sensor_name: sci_cam
sensor_name: sci_cam
focal_length: 1200
optical_center: 800 600
distortion_coeffs:
distortion_type: none
image_size: 1600 1200
distorted_crop_size: 1600 1200
undistorted_image_size: 1600 1200
ref_to_sensor_transform: {IDENTITY}
depth_to_image_transform: {IDENTITY}
ref_to_sensor_timestamp_offset: 0
"""


def replace_line(text, key, value):

    lines = text.splitlines()

    for index, line in enumerate(lines):
        if line.startswith(key):
            lines[index] = f"{key} {value}"
            break

    return "\n".join(lines)


class TestAffine(TestCase):

    def test_row_major(self):

        affine = vec_to_affine(np.arange(NUM_AFFINE_PARAMS))

        np.testing.assert_array_equal(affine[:3, :3], [[0, 1, 2], [3, 4, 5], [6, 7, 8]])
        np.testing.assert_array_equal(affine[:3, 3], [9, 10, 11])
        np.testing.assert_array_equal(affine[3], [0, 0, 0, 1])

        np.testing.assert_array_equal(affine_to_vec(affine), np.arange(NUM_AFFINE_PARAMS))

        with self.assertRaises(ValueError):
            vec_to_affine(np.arange(9))


class TestParse(TestCase):

    def test_parse(self):

        rig = parse_rig_config(RIG_TEXT)

        self.assertEqual(rig.cam_set, [["nav_cam", "haz_cam"], ["sci_cam"]])
        self.assertEqual(rig.cam_names, ["nav_cam", "haz_cam", "sci_cam"])

        nav, haz, sci = rig.cam_params

        # a single fisheye coefficient is read as fov
        self.assertEqual(nav.distortion_type, "fov")
        self.assertIsInstance(nav.distortion_model(), FovDistortion)
        self.assertIsInstance(haz.distortion_model(), RadTanDistortion)
        self.assertIsInstance(sci.distortion_model(), NoDistortion)

        self.assertEqual(nav.focal_length, 608.8)
        np.testing.assert_array_equal(haz.optical_center, [112.0, 81.3])
        np.testing.assert_array_equal(haz.distortion, [-0.25, 0.07, 0.001, -0.002])
        np.testing.assert_array_equal(sci.distortion, [])
        np.testing.assert_array_equal(nav.image_size, [1280, 960])
        np.testing.assert_array_equal(nav.distorted_crop_size, [1200, 900])
        np.testing.assert_array_equal(nav.undistorted_size, [1500, 1200])

        np.testing.assert_array_equal(rig.ref_to_cam_trans[0], np.eye(4))
        np.testing.assert_array_equal(rig.ref_to_cam_trans[1][:3, 3], [0.1, -0.02, 0.03])
        np.testing.assert_array_equal(rig.depth_to_image[1][:3, :3], 0.95 * np.eye(3))

        self.assertEqual(rig.ref_to_cam_timestamp_offsets, [0, -0.05, 0])

    def test_helpers(self):

        rig = parse_rig_config(RIG_TEXT)

        self.assertTrue(rig.is_ref_sensor("nav_cam"))
        self.assertTrue(rig.is_ref_sensor("sci_cam"))
        self.assertFalse(rig.is_ref_sensor("haz_cam"))

        self.assertEqual(rig.rig_id(1), 0)
        self.assertEqual(rig.rig_id(2), 1)
        self.assertEqual(rig.ref_sensor(1), "nav_cam")
        self.assertEqual(rig.sensor_index("sci_cam"), 2)

        with self.assertRaises(IndexError):
            rig.rig_id(3)

        with self.assertRaises(ValueError):
            rig.sensor_index("mast_cam")

        sub = rig.sub_rig(0)

        self.assertEqual(sub.cam_names, ["nav_cam", "haz_cam"])
        self.assertEqual(sub.ref_to_cam_timestamp_offsets, [0, -0.05])
        np.testing.assert_array_equal(sub.ref_to_cam_trans[1], rig.ref_to_cam_trans[1])

        with self.assertRaises(IndexError):
            rig.sub_rig(2)

    def test_distortion_checks(self):

        bad = [
            ("distortion_coeffs:", "0.1 0.2"),
            ("distortion_coeffs:", "0.1 0.2 0.3 0.4 0.5"),
            ("distortion_type:", "rpc"),
            ("distortion_type:", "pinhole"),
        ]

        for key, value in bad:
            with self.subTest(key=key, value=value):
                with self.assertRaises(ValueError):
                    parse_rig_config(replace_line(RIG_TEXT, key, value))

        # no coefficients needs the none type
        text = RIG_TEXT.replace("distortion_coeffs:\ndistortion_type: none", "distortion_coeffs:\ndistortion_type: fov")

        with self.assertRaises(ValueError):
            parse_rig_config(text)

    def test_structure_errors(self):

        with self.subTest("missing ref_sensor_name"):
            with self.assertRaises(ValueError):
                parse_rig_config(RIG_TEXT.replace("ref_sensor_name: nav_cam", ""))

        with self.subTest("keys out of order"):
            text = RIG_TEXT.replace("focal_length: 608.8\noptical_center: 632.5 538.9",
                                    "optical_center: 632.5 538.9\nfocal_length: 608.8")
            with self.assertRaises(ValueError):
                parse_rig_config(text)

        with self.subTest("wrong number of values"):
            with self.assertRaises(ValueError):
                parse_rig_config(replace_line(RIG_TEXT, "image_size:", "1280"))

        with self.subTest("not a number"):
            with self.assertRaises(ValueError):
                parse_rig_config(replace_line(RIG_TEXT, "focal_length:", "long"))

        with self.subTest("duplicate sensor"):
            with self.assertRaises(ValueError):
                parse_rig_config(RIG_TEXT.replace("sensor_name: haz_cam", "sensor_name: sci_cam"))

        with self.subTest("reference offset"):
            with self.assertRaises(ValueError):
                parse_rig_config(replace_line(RIG_TEXT, "ref_to_sensor_timestamp_offset:", "0.5"))

    def test_transform_checks(self):

        zero = " ".join(["0"] * 12)

        text = RIG_TEXT.replace("0 -1 0 1 0 0 0 0 1 0.1 -0.02 0.03", zero)

        with self.assertRaises(ValueError):
            parse_rig_config(text)

        # without meaningful transforms anything goes
        self.assertEqual(len(parse_rig_config(text, have_rig_transforms=False).cam_names), 3)

        text = replace_line(RIG_TEXT, "ref_to_sensor_transform:", "1 0 0 0 1 0 0 0 1 0 0 1")

        with self.assertRaises(ValueError):
            parse_rig_config(text)

    def test_validate(self):

        with self.assertRaises(ValueError):
            RigSet().validate()

        rig = parse_rig_config(RIG_TEXT)
        rig.depth_to_image.pop()

        with self.assertRaises(ValueError):
            rig.validate()


class TestReadWrite(TestCase):

    def test_round_trip(self):

        rig = parse_rig_config(RIG_TEXT)

        with tempfile.TemporaryDirectory() as directory:

            file = Path(directory) / "rig_config.txt"

            write_rig_config(file, rig)

            back = read_rig_config(file)

        self.assertEqual(back.cam_set, rig.cam_set)
        self.assertEqual(back.cam_names, rig.cam_names)
        self.assertEqual(back.ref_to_cam_timestamp_offsets, rig.ref_to_cam_timestamp_offsets)

        for ours, theirs in zip(rig.cam_params, back.cam_params):
            self.assertEqual(ours.focal_length, theirs.focal_length)
            self.assertEqual(ours.distortion_type, theirs.distortion_type)
            np.testing.assert_array_equal(ours.optical_center, theirs.optical_center)
            np.testing.assert_array_equal(ours.distortion, theirs.distortion)
            np.testing.assert_array_equal(ours.image_size, theirs.image_size)
            np.testing.assert_array_equal(ours.undistorted_size, theirs.undistorted_size)

        for ours, theirs in zip(rig.ref_to_cam_trans + rig.depth_to_image, back.ref_to_cam_trans + back.depth_to_image):
            np.testing.assert_array_equal(ours, theirs)

    def test_missing_file(self):

        with self.assertRaises(OSError):
            read_rig_config("/nonexistent/rig_config.txt")
