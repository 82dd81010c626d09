"""
This package triangulates matched pixels into 3D points.

:class:`.StereoModel` intersects the rays of one set of matched pixels.  :class:`.TriangulationView` applies it to
every pixel of a set of dense disparities to build a point cloud, and :class:`.StereoTriangulator` writes the cloud.
The rest of the package provides the image transforms undoing the alignment of the images, the cloud center, and
the match files and unaligned disparities that can be derived from a disparity.
"""

from geostereo.triangulation.raster import BBox, DisparityMap, tile_boxes
from geostereo.triangulation.stereo_model import StereoModel, robust_1_minus_cos
from geostereo.triangulation.image_transforms import (HomographyTransform, IdentityTransform, ImageTransform,
                                                      MapProjectTransform)
from geostereo.triangulation.io import (read_match_file, read_point, read_point_cloud, write_match_file, write_point,
                                        write_point_cloud)
from geostereo.triangulation.point_cloud_center import find_approx_points_median, find_point_cloud_center
from geostereo.triangulation.triangulation_view import (PointCloud, StereoTriangulator, TriangulationOptions,
                                                        TriangulationView, UniverseRadiusFilter,
                                                        point_and_error_norm)
from geostereo.triangulation.disparity_matches import (DisparityMatcher, DisparityMatchOptions,
                                                       compute_matches_from_disp, unalign_disparity)


__all__ = ['BBox', 'DisparityMap', 'tile_boxes', 'StereoModel', 'robust_1_minus_cos', 'HomographyTransform',
           'IdentityTransform', 'ImageTransform', 'MapProjectTransform', 'read_match_file', 'read_point',
           'read_point_cloud', 'write_match_file', 'write_point', 'write_point_cloud', 'find_approx_points_median',
           'find_point_cloud_center', 'PointCloud', 'StereoTriangulator', 'TriangulationOptions',
           'TriangulationView', 'UniverseRadiusFilter', 'point_and_error_norm', 'DisparityMatcher',
           'DisparityMatchOptions', 'compute_matches_from_disp', 'unalign_disparity']
