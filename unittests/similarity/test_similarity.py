from unittest import TestCase

import numpy as np

from geostereo.camera_models import (PinholeModel, OpticalBarModel, CSMFrameModel, CSMLinescanModel,
                                     AdjustedCameraModel, RadTanDistortion, CameraType)
from geostereo.parameter_store import store_from_cameras
from geostereo.similarity import (decompose_similarity, compose_similarity, apply_similarity_to_points,
                                  find_3d_transform, apply_transform_to_camera, apply_transform_to_store)

import geostereo.rotations as at


NADIR_ALONG_X = np.array([[0, 1, 0], [1, 0, 0], [0, 0, -1]], dtype=np.float64)


def make_cameras(with_csm=True):

    cameras = [
        PinholeModel(center=[10, -20, 1000], rotation=at.rot_x(np.pi), focal_length=1500,
                     optical_center=[512, 384], distortion=RadTanDistortion([0.02, -0.001, 1e-4, -2e-4]),
                     image_size=[1024, 768]),
        OpticalBarModel(center=[0, 50, 2e4], rotation=at.rot_x(np.pi), focal_length=3000,
                        optical_center=[1500, 800], image_size=[3000, 1600], speed=500,
                        motion_compensation=0.8, scan_time=0.3, nominal_distance=2e4),
        AdjustedCameraModel(PinholeModel(center=[5, 5, 900], rotation=at.rot_x(np.pi), focal_length=800,
                                         optical_center=[300, 200], image_size=[600, 400]),
                            translation=[1, 2, 3], rotation=[0.01, -0.02, 0.03], pivot=[5, 5, 900], scale=1.2),
    ]

    if with_csm:

        times = -0.5 + 0.1 * np.arange(20)

        cameras.extend([
            CSMFrameModel(position=[-30, 40, 800], quaternion=at.rotmat_to_quaternion(at.rot_x(np.pi)),
                          focal_length=900, optical_center=[320, 240], image_size=[640, 480]),
            CSMLinescanModel(positions=np.column_stack([7000 * times, np.zeros(20), np.full(20, 5e5)]),
                             t0_ephem=-0.5, dt_ephem=0.1,
                             quaternions=np.tile(at.rotmat_to_quaternion(NADIR_ALONG_X), (40, 1)),
                             t0_quat=-0.5, dt_quat=0.05, line_period=0.001, focal_length=1000,
                             optical_center=[25, 0], image_size=[50, 100])
        ])

    return cameras


def grid_points(camera, distance):
    """
    World points seen on a 4x4 grid of pixels spanning the image.
    """

    image_size = camera.underlying.image_size if camera.camera_type is CameraType.ADJUSTED else camera.image_size

    fractions = np.linspace(0.1, 0.9, 4)

    return [camera.camera_center([col, row]) + distance * camera.pixel_to_vector([col, row])
            for col in fractions * image_size[0] for row in fractions * image_size[1]]


DISTANCES = [900, 1.5e4, 800, 700, 4.9e5]


class TestSimilarityMath(TestCase):

    def test_compose_decompose(self):

        rotation = at.rotvec_to_rotmat([0.3, -0.1, 0.2])

        transform = compose_similarity(rotation, [1, 2, 3], 2.5)

        back_rotation, back_translation, back_scale = decompose_similarity(transform)

        np.testing.assert_allclose(back_rotation, rotation, atol=1e-14)
        np.testing.assert_array_equal(back_translation, [1, 2, 3])
        self.assertAlmostEqual(back_scale, 2.5)

        np.testing.assert_allclose(compose_similarity(at.Rotation(rotation), [0, 0, 0])[:3, :3], rotation)

        with self.assertRaises(ValueError):
            decompose_similarity(np.diag([1, 1, -1, 1]))

        with self.assertRaises(ValueError):
            decompose_similarity(np.eye(3))

    def test_apply_similarity_to_points(self):

        transform = compose_similarity(at.rot_z(np.pi / 2), [1, 0, 0], 2)

        np.testing.assert_allclose(apply_similarity_to_points(transform, [1, 0, 0]), [1, 2, 0], atol=1e-15)
        np.testing.assert_allclose(apply_similarity_to_points(transform, [[1, 0], [0, 1], [0, 0]]),
                                   [[1, -1], [2, 0], [0, 0]], atol=1e-15)

    def test_find_3d_transform(self):

        rng = np.random.default_rng(5)

        source = rng.normal(size=(3, 10)) * 100

        truth = compose_similarity(at.rotvec_to_rotmat([0.5, -0.3, 1.1]), [1000, -200, 50], 0.7)

        target = apply_similarity_to_points(truth, source)

        np.testing.assert_allclose(find_3d_transform(source, target), truth, atol=1e-9)

        with self.assertRaises(ValueError):
            find_3d_transform(source[:, :2], target[:, :2])

        with self.assertRaises(ValueError):
            find_3d_transform(source, target[:, :5])

        with self.assertRaises(ValueError):
            find_3d_transform(np.ones((3, 4)), target[:, :4])


class TestTransformCameras(TestCase):

    def setUp(self):

        self.first = compose_similarity(at.rotvec_to_rotmat([0.01, 0.02, -0.015]), [10, -5, 2], 1.0)
        self.second = compose_similarity(at.rotvec_to_rotmat([-0.02, 0.005, 0.01]), [-3, 7, 1], 1.0)

        self.scaled_first = compose_similarity(at.rotvec_to_rotmat([0.01, 0.02, -0.015]), [10, -5, 2], 1.3)
        self.scaled_second = compose_similarity(at.rotvec_to_rotmat([-0.02, 0.005, 0.01]), [-3, 7, 1], 0.8)

    def check_same_projection(self, camera, other, points):

        for point in points:
            np.testing.assert_allclose(other.point_to_pixel(point), camera.point_to_pixel(point), rtol=0, atol=1e-8)

    def check_compositional(self, cameras, first, second):

        for camera, distance in zip(cameras, DISTANCES):

            with self.subTest(camera=type(camera).__name__):

                points = apply_similarity_to_points(second @ first,
                                                    np.array(grid_points(camera, distance)).T).T

                twice = camera.copy()
                apply_transform_to_camera(first, twice)
                apply_transform_to_camera(second, twice)

                once = camera.copy()
                apply_transform_to_camera(second @ first, once)

                self.check_same_projection(once, twice, points)

    def test_compositional(self):

        self.check_compositional(make_cameras(), self.first, self.second)

    def test_compositional_with_scale(self):

        self.check_compositional(make_cameras(with_csm=False), self.scaled_first, self.scaled_second)

    def test_transform_keeps_pixels(self):

        for camera, distance in zip(make_cameras(with_csm=False), DISTANCES):

            with self.subTest(camera=type(camera).__name__):

                points = np.array(grid_points(camera, distance)).T
                pixels = [camera.point_to_pixel(point) for point in points.T]

                apply_transform_to_camera(self.scaled_first, camera)

                moved = apply_similarity_to_points(self.scaled_first, points)

                for point, pixel in zip(moved.T, pixels):
                    np.testing.assert_allclose(camera.point_to_pixel(point), pixel, rtol=0, atol=1e-8)

    def test_store_path_matches_camera_path(self):

        for transform, with_csm in [(self.first, True), (self.scaled_first, False)]:

            cameras = make_cameras(with_csm)

            live = [camera.copy() for camera in cameras]
            for camera in live:
                apply_transform_to_camera(transform, camera)

            packed = [camera.copy() for camera in cameras]
            store = store_from_cameras(packed)

            apply_transform_to_store(transform, store, packed)

            for index, (camera, distance) in enumerate(zip(live, DISTANCES)):

                with self.subTest(camera=type(camera).__name__, scaled=not with_csm):

                    rebuilt = store.transformed(index, packed[index])

                    self.check_same_projection(camera, rebuilt, grid_points(camera, distance))

    def test_csm_rejects_scale(self):

        linescan = make_cameras()[-1]

        with self.assertRaises(ValueError):
            apply_transform_to_camera(self.scaled_first, linescan)

        store = store_from_cameras([linescan])

        with self.assertRaises(ValueError):
            apply_transform_to_store(self.scaled_first, store, [linescan])

        with self.assertRaises(ValueError):
            apply_transform_to_store(self.first, store, [linescan, linescan])
