from unittest import TestCase

import tempfile

from pathlib import Path

import numpy as np
import rasterio

from geostereo.triangulation import (DisparityMap, read_match_file, read_point, read_point_cloud, write_match_file,
                                     write_point, write_point_cloud)
from geostereo.triangulation.io import INTEREST_POINT_DTYPE


class TestIO(TestCase):

    def setUp(self):

        self.directory = tempfile.TemporaryDirectory()
        self.addCleanup(self.directory.cleanup)
        self.root = Path(self.directory.name)

    def test_point(self):

        point = np.array([6378137.123456789, -0.1, 1e-7])

        write_point(self.root / 'center.txt', point)

        np.testing.assert_array_equal(read_point(self.root / 'center.txt'), point)

        self.assertIsNone(read_point(self.root / 'missing.txt'))

        (self.root / 'garbage.txt').write_text('1 two 3\n')
        self.assertIsNone(read_point(self.root / 'garbage.txt'))

        (self.root / 'short.txt').write_text('1 2\n')
        self.assertIsNone(read_point(self.root / 'short.txt'))

    def test_match_file(self):

        left = np.array([[1.25, 2.5], [10.75, 0.125]])
        right = np.array([[3.75, 4.125], [-1.5, 7.0]])

        file = self.root / 'pair.match'

        write_match_file(file, left, right)

        self.assertEqual(file.stat().st_size, 16 + 4 * INTEREST_POINT_DTYPE.itemsize)

        back_left, back_right = read_match_file(file)

        np.testing.assert_array_equal(back_left, left)
        np.testing.assert_array_equal(back_right, right)

        with self.assertRaises(ValueError):
            write_match_file(file, left, right[:1])

    def test_empty_match_file(self):

        write_match_file(self.root / 'empty.match', np.zeros((0, 2)), np.zeros((0, 2)))

        left, right = read_match_file(self.root / 'empty.match')

        self.assertEqual(left.shape, (0, 2))
        self.assertEqual(right.shape, (0, 2))

    def test_float_cloud(self):

        center = np.array([6378000.0, 1000.0, -2000.0])

        cloud = np.zeros((2, 3, 4))
        cloud[0, 0] = [6378010.5, 1001.25, -1990.0, 0.5]
        cloud[1, 2] = [6377990.0, 999.0, -2010.75, 0.25]

        file = self.root / 'run-PC.tif'

        write_point_cloud(file, cloud, center)

        with rasterio.open(file) as src:
            self.assertEqual(src.count, 4)
            self.assertEqual(src.dtypes[0], 'float32')
            np.testing.assert_array_equal(src.read(1)[0, 0], 10.5)

        back = read_point_cloud(file, center)

        np.testing.assert_array_equal(back, cloud)

    def test_double_cloud(self):

        cloud = np.zeros((2, 2, 6))
        cloud[1, 1] = [6378137.123456789, 1.0, 2.0, 0.1, 0.2, 0.3]

        file = self.root / 'run-PC.tif'

        write_point_cloud(file, cloud, center=[1, 2, 3], double_precision=True)

        np.testing.assert_array_equal(read_point_cloud(file), cloud)

        with self.assertRaises(ValueError):
            write_point_cloud(file, np.zeros((2, 2)))

    def test_disparity_file(self):

        values = np.arange(24, dtype=np.float64).reshape(3, 4, 2)
        valid = np.ones((3, 4), dtype=bool)
        valid[1, 2] = False

        file = self.root / 'run-F.tif'

        DisparityMap(values, valid).to_file(file)

        back = DisparityMap.from_file(file)

        np.testing.assert_array_equal(back.valid, valid)
        np.testing.assert_array_equal(back.values[valid], values[valid])
        np.testing.assert_array_equal(back.values[1, 2], [0, 0])
        self.assertIsNone(back(2, 1))
