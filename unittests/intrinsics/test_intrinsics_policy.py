from unittest import TestCase

import tempfile

from pathlib import Path

from geostereo.intrinsics_policy import (IntrinsicsOptions, IntrinsicsSharing, load_intrinsics_options,
                                         fine_grained_parse, coarse_grained_parse, parse_intrinsics_limits,
                                         read_image_cam_lists, read_list, distortion_sanity_check,
                                         replace_separators_with_space)


def per_sensor(num_sensors, cam2sensor=None):

    return IntrinsicsSharing(share_intrinsics_per_sensor=True, num_sensors=num_sensors,
                             cam2sensor=cam2sensor if cam2sensor is not None else list(range(num_sensors)))


class TestParsing(TestCase):

    def test_separators(self):

        self.assertEqual(replace_separators_with_space("1:all;2,none\\3\tfocal_length").split(),
                         ["1", "all", "2", "none", "3", "focal_length"])

    def test_fine_grained(self):

        options = IntrinsicsOptions(solve_intrinsics=True,
                                    intrinsics_to_float="1:focal_length,optical_center 2:all 3:none")

        sharing = load_intrinsics_options(options, per_sensor(3))

        self.assertEqual(sharing.float_center, [True, True, False])
        self.assertEqual(sharing.float_focus, [True, True, False])
        self.assertEqual(sharing.float_distortion, [False, True, False])

        self.assertTrue(sharing.float_focal_length(1))
        self.assertFalse(sharing.float_distortion_params(2))

    def test_fine_grained_skipped_sensor(self):

        center, focus, distortion = fine_grained_parse(True, 3, ["3", "distortion"])

        self.assertEqual(center, [False, False, False])
        self.assertEqual(distortion, [False, False, True])

    def test_fine_grained_errors(self):

        bad = [
            (False, 2, ["1", "all"]),
            (True, 2, ["1", "all", "1", "none"]),
            (True, 2, ["3", "all"]),
            (True, 2, ["0", "all"]),
            (True, 2, ["1", "lens"]),
            (True, 0, ["1", "all"]),
            (True, 2, []),
        ]

        for share_per_sensor, num_sensors, tokens in bad:
            with self.subTest(tokens=tokens, num_sensors=num_sensors):
                with self.assertRaises(ValueError):
                    fine_grained_parse(share_per_sensor, num_sensors, tokens)

    def test_coarse_grained(self):

        options = IntrinsicsOptions(solve_intrinsics=True, intrinsics_to_float="focal_length")

        sharing = load_intrinsics_options(options, per_sensor(4))

        self.assertEqual(sharing.float_focus, [True] * 4)
        self.assertEqual(sharing.float_center, [False] * 4)
        self.assertEqual(sharing.float_distortion, [False] * 4)

        center, focus, distortion = coarse_grained_parse(0, ["optical_center", "other_intrinsics"])

        self.assertEqual((center, focus, distortion), ([True], [False], [True]))

        with self.assertRaises(ValueError):
            coarse_grained_parse(2, ["2", "all"])

        with self.assertRaises(ValueError):
            coarse_grained_parse(1, ["everything"])

    def test_float_defaults(self):

        for text in ["", "all", "ALL"]:
            with self.subTest(text=text):
                sharing = load_intrinsics_options(IntrinsicsOptions(solve_intrinsics=True, intrinsics_to_float=text))

                self.assertEqual((sharing.float_center, sharing.float_focus, sharing.float_distortion),
                                 ([True], [True], [True]))

        sharing = load_intrinsics_options(IntrinsicsOptions(solve_intrinsics=True, intrinsics_to_float="none"))

        self.assertEqual((sharing.float_center, sharing.float_focus, sharing.float_distortion),
                         ([False], [False], [False]))

    def test_not_solving(self):

        sharing = load_intrinsics_options(IntrinsicsOptions())

        self.assertEqual(sharing.float_focus, [False])
        self.assertTrue(sharing.focus_shared)

        with self.assertRaises(ValueError):
            load_intrinsics_options(IntrinsicsOptions(intrinsics_to_float="focal_length"))

        with self.assertRaises(ValueError):
            load_intrinsics_options(IntrinsicsOptions(intrinsics_to_share="focal_length"))

    def test_sharing(self):

        options = IntrinsicsOptions(solve_intrinsics=True, intrinsics_to_share="focal_length distortion")

        sharing = load_intrinsics_options(options)

        self.assertTrue(sharing.focus_shared)
        self.assertTrue(sharing.distortion_shared)
        self.assertFalse(sharing.center_shared)

        sharing = load_intrinsics_options(IntrinsicsOptions(solve_intrinsics=True, intrinsics_to_share=""))

        self.assertFalse(sharing.focus_shared or sharing.center_shared or sharing.distortion_shared)

        with self.assertRaises(ValueError):
            load_intrinsics_options(IntrinsicsOptions(solve_intrinsics=True, intrinsics_to_share="lens"))

    def test_sharing_ignored_per_sensor(self):

        options = IntrinsicsOptions(solve_intrinsics=True, intrinsics_to_share="none")

        with self.assertLogs('geostereo.intrinsics_policy', level='INFO') as logs:
            sharing = load_intrinsics_options(options, per_sensor(2))

        self.assertTrue(sharing.focus_shared and sharing.center_shared and sharing.distortion_shared)
        self.assertTrue(any('ignored' in message for message in logs.output))

    def test_limits(self):

        self.assertEqual(parse_intrinsics_limits("0.9 1.1  0.8 1.2"), [0.9, 1.1, 0.8, 1.2])
        self.assertEqual(parse_intrinsics_limits(""), [])

        with self.assertRaises(ValueError):
            parse_intrinsics_limits("1.1 0.9")

        with self.assertRaises(ValueError):
            parse_intrinsics_limits("0.9 1.1 0.8")

        with self.assertRaises(ValueError):
            parse_intrinsics_limits("0.9 high")


class TestImageCameraLists(TestCase):

    def setUp(self):

        self.directory = tempfile.TemporaryDirectory()
        self.addCleanup(self.directory.cleanup)

        root = Path(self.directory.name)

        self.files = {}
        for name, entries in [("left_images.txt", "a.tif b.tif\nc.tif"),
                              ("left_cameras.txt", "a.tsai\nb.tsai\nc.tsai\n"),
                              ("right_images.txt", "d.tif"),
                              ("right_cameras.txt", "d.tsai"),
                              ("empty.txt", "\n")]:
            path = root / name
            path.write_text(entries)
            self.files[name] = str(path)

    def test_single_lists(self):

        sharing = IntrinsicsSharing()

        entries = read_image_cam_lists(self.files["left_images.txt"], self.files["left_cameras.txt"], sharing)

        self.assertEqual(entries, ["a.tif", "b.tif", "c.tif", "a.tsai", "b.tsai", "c.tsai"])
        self.assertFalse(sharing.share_intrinsics_per_sensor)
        self.assertEqual(sharing.num_sensors, 0)

        self.assertEqual(read_image_cam_lists(self.files["left_images.txt"], "", sharing),
                         ["a.tif", "b.tif", "c.tif"])

        with self.assertRaises(ValueError):
            read_image_cam_lists(self.files["left_images.txt"], self.files["right_cameras.txt"], sharing)

    def test_per_sensor_lists(self):

        sharing = IntrinsicsSharing()

        entries = read_image_cam_lists(f"{self.files['left_images.txt']},{self.files['right_images.txt']}",
                                       f"{self.files['left_cameras.txt']},{self.files['right_cameras.txt']}",
                                       sharing)

        self.assertEqual(entries, ["a.tif", "b.tif", "c.tif", "d.tif", "a.tsai", "b.tsai", "c.tsai", "d.tsai"])
        self.assertTrue(sharing.share_intrinsics_per_sensor)
        self.assertEqual(sharing.num_sensors, 2)
        self.assertEqual(sharing.cam2sensor, [0, 0, 0, 1])

        with self.assertRaises(ValueError):
            read_image_cam_lists(f"{self.files['left_images.txt']},{self.files['right_images.txt']}",
                                 self.files['left_cameras.txt'], sharing)

        with self.assertRaises(ValueError):
            read_image_cam_lists(f"{self.files['left_images.txt']},{self.files['right_images.txt']}",
                                 f"{self.files['right_cameras.txt']},{self.files['left_cameras.txt']}", sharing)

    def test_empty_list(self):

        with self.assertRaises(ValueError):
            read_list(self.files["empty.txt"])


class TestDistortionSanity(TestCase):

    def test_shared(self):

        distortion_sanity_check([4, 4, 4], IntrinsicsSharing(), [])

        with self.assertRaises(ValueError):
            distortion_sanity_check([4, 1], IntrinsicsSharing(), [])

        distortion_sanity_check([4, 1], IntrinsicsSharing(distortion_shared=False), [])

    def test_per_sensor(self):

        sharing = per_sensor(2, [0, 0, 1])

        distortion_sanity_check([4, 4, 1], sharing, [])

        with self.assertRaises(ValueError):
            distortion_sanity_check([4, 1, 1], sharing, [])

    def test_limits_need_same_size(self):

        with self.assertRaises(ValueError):
            distortion_sanity_check([4, 1], IntrinsicsSharing(distortion_shared=False), [0.9, 1.1])
