from unittest import TestCase

import numpy as np

from rasterio.transform import Affine

from geostereo.camera_models import PinholeModel
from geostereo.dem import DEM
from geostereo.dem_intersection import DEMIntersectionOptions, camera_pixel_to_dem_xyz, intersect_ray_with_dem
from geostereo.geodesy import WGS84


A = WGS84.semi_major_axis


def sloped_dem(nodata_block=None):

    heights = 20 + 0.5 * np.tile(np.arange(21, dtype=np.float64), (21, 1))

    if nodata_block is not None:
        heights[nodata_block] = -9999

    return DEM(heights, Affine(0.001, 0, -0.0105, 0, -0.001, 0.0105), nodata=-9999)


class TestIntersectRay(TestCase):

    def test_vertical(self):

        point = intersect_ray_with_dem(sloped_dem(), [A + 5000, 0, 0], [-1, 0, 0])

        np.testing.assert_allclose(point, [A + 25, 0, 0], atol=1e-3)

    def test_oblique(self):

        dem = sloped_dem()

        origin = np.array([A + 5000, -800, 300])
        direction = np.array([-5000, 900, -250])

        point = intersect_ray_with_dem(dem, origin, direction)

        self.assertIsNotNone(point)
        self.assertLess(abs(dem.height_above_dem(point)), 1e-3)

        # still on the ray
        offset = point - origin
        np.testing.assert_allclose(np.cross(offset, direction) / np.linalg.norm(direction), np.zeros(3), atol=1e-6)

    def test_hole(self):

        dem = sloped_dem((slice(7, 14), slice(7, 14)))

        options = DEMIntersectionOptions(max_attempts=2)

        self.assertIsNone(intersect_ray_with_dem(dem, [A + 5000, 0, 0], [-1, 0, 0], options))

    def test_miss(self):

        self.assertIsNone(intersect_ray_with_dem(sloped_dem(), [A + 5000, 0, 0], [0, 1, 0]))
        self.assertIsNone(intersect_ray_with_dem(sloped_dem(), [A + 5000, 0, 0], [1, 0, 0]))

    def test_off_the_dem(self):

        # the ray meets the datum far from the DEM
        self.assertIsNone(intersect_ray_with_dem(sloped_dem(), [A + 5000, 0, 20000], [-1, 0, 0],
                                                 DEMIntersectionOptions(max_attempts=1)))


class TestCameraPixel(TestCase):

    def test_pixel(self):

        dem = sloped_dem()

        rotation = np.array([[0, 0, -1], [1, 0, 0], [0, -1, 0]], dtype=np.float64)

        camera = PinholeModel(center=[A + 5000, 1000, 0], rotation=rotation, focal_length=1000,
                              optical_center=[500, 500], image_size=[1000, 1000])

        pixel = np.array([310.25, 520.5])

        point = camera_pixel_to_dem_xyz(camera, pixel, dem)

        self.assertIsNotNone(point)
        self.assertLess(abs(dem.height_above_dem(point)), 1e-3)

        np.testing.assert_allclose(camera.point_to_pixel(point), pixel, atol=1e-6)
