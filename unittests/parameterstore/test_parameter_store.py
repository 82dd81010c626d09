from unittest import TestCase

import numpy as np

from geostereo.camera_models import (PinholeModel, OpticalBarModel, CSMFrameModel, CSMLinescanModel,
                                     AdjustedCameraModel, RadTanDistortion, FovDistortion)
from geostereo.intrinsics_policy import IntrinsicsSharing
from geostereo.parameter_store import ParameterStore, store_from_cameras, distortion_size
from geostereo.camera_adjustment import CameraAdjustment, adjustment_from_camera, apply_adjustment

import geostereo.rotations as at


NADIR_ALONG_X = np.array([[0, 1, 0], [1, 0, 0], [0, 0, -1]], dtype=np.float64)


def make_cameras():

    pinhole = PinholeModel(center=[10, -20, 1000], rotation=at.rot_x(np.pi) @ at.rot_z(0.2), focal_length=1500,
                           optical_center=[512, 384], distortion=RadTanDistortion([0.02, -0.001, 1e-4, -2e-4]),
                           image_size=[1024, 768])

    optical_bar = OpticalBarModel(center=[0, 50, 2e4], rotation=at.rot_x(np.pi), focal_length=3000,
                                  optical_center=[1500, 800], image_size=[3000, 1600], speed=500,
                                  motion_compensation=0.8, scan_time=0.3, nominal_distance=2e4)

    frame = CSMFrameModel(position=[-30, 40, 800], quaternion=at.rotmat_to_quaternion(at.rot_x(np.pi)),
                          focal_length=900, optical_center=[320, 240], distortion=FovDistortion([0.9]),
                          image_size=[640, 480])

    times = -0.5 + 0.1 * np.arange(20)
    linescan = CSMLinescanModel(positions=np.column_stack([7000 * times, np.zeros(20), np.full(20, 5e5)]),
                                t0_ephem=-0.5, dt_ephem=0.1,
                                quaternions=np.tile(at.rotmat_to_quaternion(NADIR_ALONG_X), (40, 1)),
                                t0_quat=-0.5, dt_quat=0.05, line_period=0.001, focal_length=1000,
                                optical_center=[25, 0], image_size=[50, 100])

    adjusted = AdjustedCameraModel(pinhole.copy(), translation=[1, 2, 3], rotation=[0.01, -0.02, 0.03],
                                   pivot=[10, -20, 1000], scale=1.2)

    return [pinhole, optical_bar, frame, linescan, adjusted]


def points_along_rays(camera, distance, pixels):

    return [camera.camera_center(pixel) + distance * camera.pixel_to_vector(pixel) for pixel in pixels]


class TestParameterStore(TestCase):

    def test_layout(self):

        store = ParameterStore(4, 2, [4, 1])

        self.assertEqual(store.num_points(), 4)
        self.assertEqual(store.num_cameras(), 2)

        # 12 point values, 14 record values, 2x2 centers, 2x1 foci, 4+1 distortions
        self.assertEqual(store.buffer.size, 12 + 14 + 4 + 2 + 5)

        for view in [store.get_point_ptr(3), store.get_camera_ptr(1), store.get_intrinsic_center_ptr(1),
                     store.get_intrinsic_focus_ptr(0), store.get_intrinsic_distortion_ptr(0)]:
            self.assertTrue(np.shares_memory(view, store.buffer))

        self.assertEqual(store.get_intrinsic_distortion_ptr(0).size, 4)
        self.assertEqual(store.get_intrinsic_distortion_ptr(1).size, 1)

        # records start as identities and multipliers as 1
        np.testing.assert_array_equal(store.get_camera_ptr(0), [0, 0, 0, 1, 0, 0, 0])
        np.testing.assert_array_equal(store.get_intrinsic_center_ptr(1), [1, 1])

    def test_views_are_stable(self):

        store = ParameterStore(2, 1, [0])

        point = store.get_point_ptr(1)
        address = point.__array_interface__['data'][0]

        point[:] = [1, 2, 3]

        np.testing.assert_array_equal(store.get_point_ptr(1), [1, 2, 3])
        self.assertEqual(store.get_point_ptr(1).__array_interface__['data'][0], address)

    def test_index_errors(self):

        store = ParameterStore(1, 1, [0])

        with self.assertRaises(IndexError):
            store.get_camera_ptr(1)

        with self.assertRaises(IndexError):
            store.get_point_ptr(-1)

        with self.assertRaises(ValueError):
            ParameterStore(1, 2, [0])

    def test_outliers(self):

        store = ParameterStore(3, 1, [0])

        self.assertFalse(store.point_outlier(1))

        store.set_point_outlier(1)
        store.set_point_outlier(1)

        self.assertTrue(store.point_outlier(1))
        self.assertEqual(store.num_outliers(), 1)

    def test_shared_intrinsics(self):

        sharing = IntrinsicsSharing(center_shared=True, focus_shared=False, distortion_shared=True)

        store = ParameterStore(0, 3, [4, 4, 4], sharing=sharing)

        self.assertTrue(np.shares_memory(store.get_intrinsic_center_ptr(0), store.get_intrinsic_center_ptr(2)))
        self.assertFalse(np.shares_memory(store.get_intrinsic_focus_ptr(0), store.get_intrinsic_focus_ptr(2)))

        with self.assertRaises(ValueError):
            ParameterStore(0, 2, [4, 1], sharing=sharing)

    def test_per_sensor_intrinsics(self):

        sharing = IntrinsicsSharing(share_intrinsics_per_sensor=True, num_sensors=2, cam2sensor=[0, 1, 0])

        store = ParameterStore(0, 3, [1, 4, 1], sharing=sharing)

        self.assertTrue(np.shares_memory(store.get_intrinsic_focus_ptr(0), store.get_intrinsic_focus_ptr(2)))
        self.assertFalse(np.shares_memory(store.get_intrinsic_focus_ptr(0), store.get_intrinsic_focus_ptr(1)))

        with self.assertRaises(ValueError):
            ParameterStore(0, 2, [1, 1], sharing=sharing)

    def test_unit_multipliers_are_identity(self):

        cameras = make_cameras()

        store = store_from_cameras(cameras)

        pixel_sets = [
            [[100, 100], [512, 384], [900, 700]],
            [[200, 300], [1500, 800], [2800, 1400]],
            [[10, 20], [320, 240], [600, 400]],
            [[5, 10], [25, 50], [45, 90]],
            [[100, 100], [512, 384], [900, 700]],
        ]
        distances = [900, 1.5e4, 700, 4.9e5, 900]

        for index, (camera, pixels, distance) in enumerate(zip(cameras, pixel_sets, distances)):

            with self.subTest(camera=type(camera).__name__):

                rebuilt = store.transformed(index, camera)

                self.assertIsNot(rebuilt, camera)

                for point in points_along_rays(camera, distance, pixels):
                    np.testing.assert_allclose(rebuilt.point_to_pixel(point), camera.point_to_pixel(point),
                                               rtol=0, atol=1e-9)

    def test_multipliers_scale_intrinsics(self):

        pinhole = make_cameras()[0]

        store = store_from_cameras([pinhole])

        store.get_intrinsic_focus_ptr(0)[:] = 2.0
        store.get_intrinsic_center_ptr(0)[:] = [1.5, 0.5]
        store.get_intrinsic_distortion_ptr(0)[:] = [0, 1, 1, 1]

        rebuilt = store.transformed(0, pinhole)

        self.assertEqual(rebuilt.focal_length, 3000)
        np.testing.assert_array_equal(rebuilt.optical_center, [768, 192])
        np.testing.assert_array_equal(rebuilt.distortion_parameters, [0, -0.001, 1e-4, -2e-4])

        # the nominal values stay with the camera
        self.assertEqual(pinhole.focal_length, 1500)

        store.pack(pinhole, 0)

        self.assertEqual(store.get_intrinsic_focus_ptr(0)[0], 1.0)

    def test_distortion_size(self):

        sizes = [distortion_size(camera) for camera in make_cameras()]

        self.assertEqual(sizes, [4, 3, 1, 0, 0])


class TestCameraAdjustment(TestCase):

    def test_record(self):

        adjustment = CameraAdjustment([1, 2, 3], [0, 0, np.sin(0.25), np.cos(0.25)])

        record = adjustment.to_record()

        np.testing.assert_allclose(record, [1, 2, 3, np.cos(0.25), 0, 0, np.sin(0.25)])

        back = CameraAdjustment.from_record(record)

        np.testing.assert_allclose(back.rotation.quaternion, adjustment.rotation.quaternion)

        with self.assertRaises(ValueError):
            CameraAdjustment.from_record([1, 2, 3])

    def test_dispatch(self):

        pinhole, _, frame, _, adjusted = make_cameras()

        np.testing.assert_array_equal(adjustment_from_camera(pinhole).position, pinhole.center)
        np.testing.assert_array_equal(adjustment_from_camera(frame).position, [0, 0, 0])
        np.testing.assert_array_equal(adjustment_from_camera(adjusted).position, [1, 2, 3])

        apply_adjustment(CameraAdjustment([5, 6, 7]), adjusted)

        np.testing.assert_array_equal(adjusted.translation, [5, 6, 7])
        self.assertEqual(adjusted.rotation, at.Rotation())

        apply_adjustment(CameraAdjustment([5, 6, 7]), frame)

        np.testing.assert_array_equal(frame.position, [-25, 46, 807])
