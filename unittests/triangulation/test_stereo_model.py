from unittest import TestCase

import numpy as np

from geostereo.camera_models import PinholeModel
from geostereo.triangulation import StereoModel, robust_1_minus_cos

import geostereo.rotations as at


def make_camera(x, y=0.0, height=1000.0):

    return PinholeModel(center=[x, y, height], rotation=at.rot_x(np.pi), focal_length=1000,
                        optical_center=[500, 500], image_size=[1000, 1000])


class TestStereoModel(TestCase):

    def setUp(self):

        self.cameras = [make_camera(-50), make_camera(50), make_camera(0, 80)]

        self.point = np.array([12.0, -7.0, 3.0])

        self.pixels = [camera.point_to_pixel(self.point) for camera in self.cameras]

    def test_pair(self):

        model = StereoModel(self.cameras[:2])

        point, error = model(self.pixels[:2])

        np.testing.assert_allclose(point, self.point, atol=1e-8)
        np.testing.assert_allclose(error, np.zeros(3), atol=1e-8)

    def test_skew_rays(self):

        model = StereoModel(self.cameras[:2])

        # move the right ray one pixel up, which at about 1000 m is about a meter
        pixels = [self.pixels[0], self.pixels[1] + [0, 1]]

        point, error = model(pixels)

        left_ray = self.cameras[0].pixel_to_vector(pixels[0])
        right_ray = self.cameras[1].pixel_to_vector(pixels[1])

        # the error joins the rays and is perpendicular to both
        self.assertAlmostEqual(error @ left_ray, 0, places=9)
        self.assertAlmostEqual(error @ right_ray, 0, places=9)
        self.assertGreater(np.linalg.norm(error), 0.9)
        self.assertLess(np.linalg.norm(error), 1.1)

    def test_many_rays(self):

        model = StereoModel(self.cameras)

        point, error = model(self.pixels)

        np.testing.assert_allclose(point, self.point, atol=1e-8)
        self.assertAlmostEqual(error[0], 0, places=8)
        np.testing.assert_array_equal(error[1:], [0, 0])

        pixels = [self.pixels[0], self.pixels[1], self.pixels[2] + [3, 0]]

        point, error = model(pixels)

        distances = []
        for camera, pixel in zip(self.cameras, pixels):
            center = camera.camera_center(pixel)
            ray = camera.pixel_to_vector(pixel)
            offset = point - center
            distances.append(np.linalg.norm(offset - (offset @ ray) * ray))

        self.assertAlmostEqual(error[0], 2 * np.mean(distances), places=9)

    def test_nan_pixels_are_skipped(self):

        model = StereoModel(self.cameras)

        point, _ = model([self.pixels[0], np.array([np.nan, np.nan]), self.pixels[2]])

        np.testing.assert_allclose(point, self.point, atol=1e-8)

        point, error = model([self.pixels[0], np.array([np.nan, np.nan]), np.array([np.nan, 3.0])])

        np.testing.assert_array_equal(point, np.zeros(3))
        np.testing.assert_array_equal(error, np.zeros(3))

    def test_angle_tolerance(self):

        # 100 m apart at 1000 m is a little under 6 degrees
        wide = StereoModel(self.cameras[:2], angle_tolerance=robust_1_minus_cos(np.deg2rad(5)))
        narrow = StereoModel(self.cameras[:2], angle_tolerance=robust_1_minus_cos(np.deg2rad(7)))

        self.assertTrue(wide(self.pixels[:2])[0].any())
        np.testing.assert_array_equal(narrow(self.pixels[:2])[0], np.zeros(3))

    def test_parallel_rays(self):

        model = StereoModel([make_camera(0), make_camera(10)])

        point, error = model([[500, 500], [500, 500]])

        np.testing.assert_array_equal(point, np.zeros(3))
        np.testing.assert_array_equal(error, np.zeros(3))

    def test_least_squares(self):

        model = StereoModel(self.cameras, least_squares=True)

        point, _ = model(self.pixels)

        np.testing.assert_allclose(point, self.point, atol=1e-8)

    def test_wrong_number_of_pixels(self):

        with self.assertRaises(ValueError):
            StereoModel(self.cameras)(self.pixels[:2])

    def test_robust_1_minus_cos(self):

        self.assertAlmostEqual(robust_1_minus_cos(0.1), 1 - np.cos(0.1), places=15)
        self.assertGreater(robust_1_minus_cos(1e-9), 0)
