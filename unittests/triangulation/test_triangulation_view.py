from unittest import TestCase

import tempfile
import warnings

from pathlib import Path

import numpy as np

from rasterio.transform import Affine

from geostereo.camera_models import PinholeModel
from geostereo.dem import DEM
from geostereo.geodesy import WGS84
from geostereo.triangulation import (BBox, DisparityMap, IdentityTransform, MapProjectTransform, PointCloud,
                                     StereoModel, StereoTriangulator, TriangulationOptions, TriangulationView,
                                     UniverseRadiusFilter, point_and_error_norm, read_point, read_point_cloud,
                                     find_point_cloud_center, find_approx_points_median)

import geostereo.rotations as at


# camera x east, camera y south, boresight down at lon 0, lat 0
LOOK_DOWN_AT_EQUATOR = np.array([[0, 0, -1], [1, 0, 0], [0, -1, 0]], dtype=np.float64)


def make_dem():
    """
    A 21x21 DEM at 0.001 degree spacing centered on lon 0, lat 0, sloping up to the east.
    """

    cols = np.arange(21)
    heights = 20 + 0.5 * np.tile(cols, (21, 1))

    return DEM(heights, Affine(0.001, 0, -0.0105, 0, -0.001, 0.0105))


def make_orbital_camera(east):

    return PinholeModel(center=[WGS84.semi_major_axis + 5000, east, 0], rotation=LOOK_DOWN_AT_EQUATOR,
                        focal_length=1000, optical_center=[500, 500], image_size=[1000, 1000])


MAP_TRANSFORM = Affine(0.00005, 0, -0.0008, 0, -0.00005, 0.0008)
"""
A 32x32 map projected image grid centered on lon 0, lat 0
"""


def make_nadir_camera(x, y=0.0, height=1000.0):

    return PinholeModel(center=[x, y, height], rotation=at.rot_x(np.pi), focal_length=1000,
                        optical_center=[4, 4], image_size=[8, 8])


def flat_ground_disparity(size=8, shift=-100.0):
    """
    The disparity between nadir cameras 100 m apart at 1000 m over flat ground at zero height.
    """

    values = np.zeros((size, size, 2))
    values[..., 0] = shift

    return DisparityMap(values)


class SlopedCloud:
    """
    A fake cloud whose pixel (col, row) holds the point (col, row, 100 + 0.1 col + 0.2 row).
    """

    def __init__(self, cols=1024, rows=1024):
        self.cols = cols
        self.rows = rows
        self.boxes = []

    def rasterize(self, bbox):

        self.boxes.append(bbox)

        rows, cols = np.mgrid[bbox.min_row:bbox.max_row, bbox.min_col:bbox.max_col].astype(np.float64)

        out = np.zeros((bbox.height, bbox.width, 6))
        out[..., 0] = cols
        out[..., 1] = rows
        out[..., 2] = 100 + 0.1 * cols + 0.2 * rows

        return out


class TestMapProjectedView(TestCase):

    def setUp(self):

        self.dem = make_dem()
        self.cameras = [make_orbital_camera(-1000), make_orbital_camera(1000)]

    def make_view(self, shift):

        values = np.zeros((32, 32, 2))
        values[..., 0] = shift

        transforms = [MapProjectTransform(camera, self.dem, MAP_TRANSFORM) for camera in self.cameras]

        return TriangulationView([DisparityMap(values)], transforms, StereoModel(self.cameras), is_map_projected=True)

    def test_zero_disparity_lands_on_dem(self):

        view = self.make_view(0.0)

        for col, row in [(0, 0), (16, 16), (31, 5)]:

            with self.subTest(col=col, row=row):

                result = view.pixel(col, row)

                expected = self.dem.xyz_at_map(*(MAP_TRANSFORM * (col + 0.5, row + 0.5)))

                np.testing.assert_allclose(result[:3], expected, atol=1e-4)
                self.assertLess(np.linalg.norm(result[3:]), 1e-4)

    def test_tiles_match_single_tile(self):

        view = self.make_view(1.0)

        single = PointCloud(view, tile_size=256, num_threads=1).rasterize_all()
        tiled = PointCloud(view, tile_size=8, num_threads=4).rasterize_all()

        self.assertEqual(single.shape, (32, 32, 6))
        self.assertTrue(single[..., :3].any(axis=2).all())

        np.testing.assert_allclose(tiled[..., :3], single[..., :3], rtol=0, atol=1e-9)

        # the primed windows give what the full DEM gives
        np.testing.assert_allclose(single[5, 7, :3], view.pixel(7, 5)[:3], rtol=0, atol=1e-9)

    def test_repeated_rasterization_is_identical(self):

        view = self.make_view(1.0)

        bbox = BBox(4, 4, 20, 12)

        np.testing.assert_array_equal(view.rasterize(bbox), view.rasterize(bbox))

    def test_prerasterize_copies_transforms(self):

        view = self.make_view(1.0)

        clipped = view.prerasterize(BBox(0, 0, 8, 8))

        self.assertIsNot(clipped.transforms[0], view.transforms[0])
        self.assertIsNotNone(clipped.transforms[0]._window)
        self.assertIsNone(view.transforms[0]._window)
        self.assertEqual(clipped.disparities[0].bbox, BBox(0, 0, 8, 8))


class TestTriangulationView(TestCase):

    def setUp(self):

        self.cameras = [make_nadir_camera(-50), make_nadir_camera(50)]

        self.view = TriangulationView([flat_ground_disparity()], [IdentityTransform(), IdentityTransform()],
                                      StereoModel(self.cameras))

    def test_flat_ground(self):

        result = self.view.rasterize(BBox(0, 0, 8, 8))

        np.testing.assert_allclose(result[..., 2], np.zeros((8, 8)), atol=1e-9)

        # pixel (col, row) of the left camera sees (col - 4 - 50, 4 - row)
        np.testing.assert_allclose(result[2, 6, :2], [-48, 2], atol=1e-9)

    def test_invalid_disparity(self):

        values = np.zeros((8, 8, 2))
        values[..., 0] = -100
        values[3, 3] = np.nan

        view = TriangulationView([DisparityMap(values)], [IdentityTransform(), IdentityTransform()],
                                 StereoModel(self.cameras))

        np.testing.assert_array_equal(view.pixel(3, 3), np.zeros(6))
        self.assertTrue(view.pixel(3, 4).any())

    def test_checks(self):

        with self.assertRaises(ValueError):
            TriangulationView([], [IdentityTransform()], StereoModel(self.cameras))

        with self.assertRaises(ValueError):
            TriangulationView([flat_ground_disparity()], [IdentityTransform()], StereoModel(self.cameras))

        with self.assertRaises(ValueError):
            TriangulationView([flat_ground_disparity(8), flat_ground_disparity(6)], [IdentityTransform()] * 3,
                              StereoModel(self.cameras + [make_nadir_camera(0)]))


class TestUniverseRadiusFilter(TestCase):

    def test_far_point_is_zeroed(self):

        center = np.array([10.0, -20.0, 1000.0])

        universe = UniverseRadiusFilter(center, 1, 10)

        far = np.concatenate([center + [0, 0, -100], [0.1, 0.2, 0.3]])
        inside = np.concatenate([center + [3, 4, 0], [0.1, 0.2, 0.3]])
        near = np.concatenate([center + [0.5, 0, 0], [0.1, 0.2, 0.3]])

        np.testing.assert_array_equal(universe(far), np.zeros(6))
        np.testing.assert_array_equal(universe(inside), inside)
        np.testing.assert_array_equal(universe(near), np.zeros(6))
        np.testing.assert_array_equal(universe(np.zeros(6)), np.zeros(6))

        self.assertEqual(universe.num_total, 3)
        self.assertEqual(universe.num_rejected, 2)
        self.assertIn('rejected 2 of 3', str(universe))

    def test_zero_radii_turn_off(self):

        universe = UniverseRadiusFilter([0, 0, 0], 0, 0)

        tile = np.ones((2, 2, 6)) * 1e7

        np.testing.assert_array_equal(universe.filter_tile(tile), tile)

    def test_camera_centered(self):

        cameras = [make_nadir_camera(-50), make_nadir_camera(50)]

        options = TriangulationOptions(universe_center="camera", near_universe_radius=1, far_universe_radius=10,
                                       num_threads=1)

        cloud = StereoTriangulator(options).build([flat_ground_disparity()], [IdentityTransform()] * 2, cameras)

        # every point is about 1000 m from the left camera
        np.testing.assert_array_equal(cloud.rasterize_all(), np.zeros((8, 8, 6)))

    def test_universe_center_choices(self):

        cameras = [make_nadir_camera(-50), make_nadir_camera(50)]

        self.assertEqual(StereoTriangulator().universe_filter(cameras).far_radius, 0)

        zero = StereoTriangulator(TriangulationOptions(universe_center="zero", far_universe_radius=5))
        np.testing.assert_array_equal(zero.universe_filter(cameras).center, [0, 0, 0])

        camera = StereoTriangulator(TriangulationOptions(universe_center="camera"))
        np.testing.assert_array_equal(camera.universe_filter(cameras).center, [-50, 0, 1000])

        with self.assertRaises(ValueError):
            StereoTriangulator(TriangulationOptions(universe_center="moon")).universe_filter(cameras)

        with self.assertRaises(ValueError):
            StereoTriangulator(TriangulationOptions(universe_center="camera",
                                                    stereo_session="rpc")).universe_filter(cameras)


class TestCloudCenter(TestCase):

    def test_sloped_cloud(self):

        cloud = SlopedCloud()

        center = find_point_cloud_center(205, cloud)

        centroid = np.array([511.5, 511.5, 100 + 0.3 * 511.5])

        self.assertLess(np.linalg.norm(center - centroid), 1.0)

        # the middle tile has plenty of points
        self.assertEqual(cloud.boxes, [BBox(410, 410, 615, 615)])

    def test_sparse_cloud(self):

        cloud = SlopedCloud(cols=5, rows=5)

        with self.assertLogs('geostereo.triangulation.point_cloud_center', level='WARNING'):
            center = find_point_cloud_center(2, cloud)

        np.testing.assert_allclose(center, [2, 2, 100.6], rtol=1e-9)

    def test_crop_box(self):

        cloud = SlopedCloud(cols=64, rows=64)

        center = find_point_cloud_center(16, cloud, crop_box=BBox(0, 0, 16, 64))

        self.assertLess(center[0], 16)

    def test_median(self):

        median = find_approx_points_median([[1, 1, 1], [2, 2, 2], [3, 3, 3], [4, 4, 4]])

        np.testing.assert_allclose(median, [3, 3, 3], rtol=1e-9)
        self.assertFalse((median == 3).all())

        np.testing.assert_array_equal(find_approx_points_median(np.zeros((0, 3))), np.zeros(3))

        # repeatable
        np.testing.assert_array_equal(find_approx_points_median([[1, 2, 3]]), find_approx_points_median([[1, 2, 3]]))


class TestStereoTriangulator(TestCase):

    def setUp(self):

        self.cameras = [make_nadir_camera(-50), make_nadir_camera(50)]
        self.directory = tempfile.TemporaryDirectory()
        self.addCleanup(self.directory.cleanup)
        self.prefix = Path(self.directory.name) / 'run'

    def test_point_and_error_norm(self):

        np.testing.assert_array_equal(point_and_error_norm([[1, 2, 3, 3, 4, 0]]), [[1, 2, 3, 5]])

    def test_triangulate(self):

        triangulator = StereoTriangulator(TriangulationOptions(tile_size=4, num_threads=1))

        file = triangulator.triangulate(self.prefix, [flat_ground_disparity()], [IdentityTransform()] * 2,
                                        self.cameras)

        self.assertEqual(file, Path(f'{self.prefix}-PC.tif'))

        center = read_point(f'{self.prefix}-PC-center.txt')

        self.assertIsNotNone(center)

        cloud = read_point_cloud(file, center)

        self.assertEqual(cloud.shape, (8, 8, 4))
        np.testing.assert_allclose(cloud[..., 2], np.zeros((8, 8)), atol=1e-3)
        np.testing.assert_allclose(cloud[2, 6, :2], [-48, 2], atol=1e-3)
        np.testing.assert_allclose(cloud[..., 3], np.zeros((8, 8)), atol=1e-6)

    def test_center_file_is_reused(self):

        (Path(f'{self.prefix}-PC-center.txt')).write_text('1 2 3\n')

        triangulator = StereoTriangulator(TriangulationOptions(num_threads=1))

        cloud = triangulator.build([flat_ground_disparity()], [IdentityTransform()] * 2, self.cameras)

        np.testing.assert_array_equal(triangulator.cloud_center(cloud, f'{self.prefix}-PC-center.txt'), [1, 2, 3])

        # a crop finds its own center
        cropped = triangulator.cloud_center(cloud, f'{self.prefix}-PC-center.txt', BBox(0, 0, 4, 4))

        self.assertFalse(np.array_equal(cropped, [1, 2, 3]))

    def test_double_precision(self):

        triangulator = StereoTriangulator(TriangulationOptions(save_double_precision=True, compute_error_vector=True,
                                                               num_threads=1))

        file = triangulator.triangulate(self.prefix, [flat_ground_disparity()], [IdentityTransform()] * 2,
                                        self.cameras)

        self.assertFalse(Path(f'{self.prefix}-PC-center.txt').exists())

        cloud = read_point_cloud(file)

        self.assertEqual(cloud.shape, (8, 8, 6))
        np.testing.assert_allclose(cloud[2, 6, :3], [-48, 2, 0], atol=1e-9)

    def test_error_vector_warning(self):

        cameras = self.cameras + [make_nadir_camera(0, 50)]

        values = np.zeros((8, 8, 2))
        values[..., 0] = -50
        values[..., 1] = 50

        triangulator = StereoTriangulator(TriangulationOptions(compute_error_vector=True, num_threads=1))

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            triangulator.triangulate(self.prefix, [flat_ground_disparity(), DisparityMap(values)],
                                     [IdentityTransform()] * 3, cameras)

        self.assertTrue(any('error vector' in str(warning.message) for warning in caught))

    def test_camera_count(self):

        with self.assertRaises(ValueError):
            StereoTriangulator().build([flat_ground_disparity()], [IdentityTransform()] * 2, self.cameras[:1])
