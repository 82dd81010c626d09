# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This module provides the datum and map projection helpers used by the trajectory regularizers, the DEM intersection and
the ground alignment routines.

Coordinate conversions are delegated to :mod:`pyproj`.  A :class:`Datum` is a biaxial ellipsoid (WGS84 by default, but
any planetary body can be described by its radii) and a :class:`GeoReference` pairs a datum with a projected
coordinate system so that body-fixed Cartesian points can be moved to and from map coordinates with a height.

All Cartesian coordinates are body-fixed (ECEF for Earth) in meters.  Geodetic coordinates are ordered
(longitude, latitude, height) with angles in degrees, the ``always_xy`` convention of :mod:`pyproj`.
"""

from dataclasses import dataclass, field

import numpy as np
from pyproj import CRS, Transformer

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY


@dataclass(frozen=True)
class Datum:
    """
    A biaxial ellipsoid describing the reference surface of a body.
    """

    name: str = "WGS_1984"
    """
    A human readable name for the datum
    """

    semi_major_axis: float = 6378137.0
    """
    The equatorial radius in meters
    """

    semi_minor_axis: float = 6356752.314245
    """
    The polar radius in meters
    """

    _transformers: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    @property
    def geographic_crs(self) -> CRS:
        """
        The 3D geographic coordinate system of this datum
        """

        return CRS.from_proj4(f"+proj=longlat +a={self.semi_major_axis!r} +b={self.semi_minor_axis!r} +no_defs +type=crs")

    @property
    def geocentric_crs(self) -> CRS:
        """
        The body fixed Cartesian coordinate system of this datum
        """

        return CRS.from_proj4(f"+proj=geocent +a={self.semi_major_axis!r} +b={self.semi_minor_axis!r} +units=m "
                              f"+no_defs +type=crs")

    def _transformer(self, key: str) -> Transformer:

        transformer = self._transformers.get(key)

        if transformer is None:
            if key == "to_cartesian":
                transformer = Transformer.from_crs(self.geographic_crs, self.geocentric_crs, always_xy=True)
            else:
                transformer = Transformer.from_crs(self.geocentric_crs, self.geographic_crs, always_xy=True)
            self._transformers[key] = transformer

        return transformer

    def geodetic_to_cartesian(self, lon_lat_height: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Convert (lon, lat, height) (degrees, degrees, meters) to body-fixed Cartesian coordinates.

        :param lon_lat_height: A length 3 array or a 3xn array
        :return: The Cartesian coordinates with the same shape as the input
        """

        llh = np.asarray(lon_lat_height, dtype=np.float64)

        x, y, z = self._transformer("to_cartesian").transform(llh[0], llh[1], llh[2])

        return np.array([x, y, z], dtype=np.float64)

    def cartesian_to_geodetic(self, xyz: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Convert body-fixed Cartesian coordinates into (lon, lat, height) (degrees, degrees, meters).

        :param xyz: A length 3 array or a 3xn array
        :return: The geodetic coordinates with the same shape as the input
        """

        xyz = np.asarray(xyz, dtype=np.float64)

        lon, lat, height = self._transformer("to_geodetic").transform(xyz[0], xyz[1], xyz[2])

        return np.array([lon, lat, height], dtype=np.float64)

    def intersect_ray(self, origin: ARRAY_LIKE, direction: ARRAY_LIKE, height: float = 0.0) -> DOUBLE_ARRAY | None:
        r"""
        Intersect a ray with the ellipsoid inflated by ``height``.

        The ray :math:`\mathbf{o}+t\mathbf{d}` is scaled into a unit sphere and the nearest positive root is returned.

        :param origin: The start of the ray
        :param direction: The direction of the ray (need not be unit length)
        :param height: The height above the ellipsoid to intersect at
        :return: The intersection point or ``None`` if the ray misses
        """

        radii = np.array([self.semi_major_axis + height,
                          self.semi_major_axis + height,
                          self.semi_minor_axis + height])

        origin = np.asarray(origin, dtype=np.float64)
        direction = np.asarray(direction, dtype=np.float64)

        o_scaled = origin / radii
        d_scaled = direction / radii

        a = d_scaled @ d_scaled
        b = 2 * (o_scaled @ d_scaled)
        c = o_scaled @ o_scaled - 1

        disc = b * b - 4 * a * c

        if disc < 0 or a == 0:
            return None

        sqrt_disc = np.sqrt(disc)
        roots = sorted([(-b - sqrt_disc) / (2 * a), (-b + sqrt_disc) / (2 * a)])

        for t in roots:
            if t >= 0:
                return origin + t * direction

        return None

    def radius(self) -> float:
        """
        The equatorial radius, used as a length scale for the planet.
        """

        return self.semi_major_axis


WGS84 = Datum()
"""
The WGS84 datum
"""


class GeoReference:
    """
    A datum paired with a projected coordinate system.

    Projected points are (easting, northing, height above the datum).  When no projection is given a local
    stereographic projection centered on ``(center_lon, center_lat)`` is used, which is well behaved for the short
    trajectories the regularizers work with.
    """

    def __init__(self, datum: Datum = WGS84, projection: CRS | str | None = None,
                 center_lon: float = 0.0, center_lat: float = 0.0):
        """
        :param datum: The datum the heights are measured from
        :param projection: The projected coordinate system (anything :meth:`pyproj.CRS.from_user_input` accepts)
        :param center_lon: The longitude the default stereographic projection is centered on in degrees
        :param center_lat: The latitude the default stereographic projection is centered on in degrees
        """

        self.datum = datum

        if projection is None:
            projection = CRS.from_proj4(f"+proj=stere +lat_0={center_lat!r} +lon_0={center_lon!r} +k=1 +x_0=0 +y_0=0 "
                                        f"+a={datum.semi_major_axis!r} +b={datum.semi_minor_axis!r} +units=m "
                                        f"+no_defs +type=crs")

        self.projection = CRS.from_user_input(projection)

        self._to_projected = Transformer.from_crs(datum.geocentric_crs, self.projection, always_xy=True)
        self._to_cartesian = Transformer.from_crs(self.projection, datum.geocentric_crs, always_xy=True)

    @classmethod
    def local_to(cls, xyz: ARRAY_LIKE, datum: Datum = WGS84) -> 'GeoReference':
        """
        Build a georeference with a stereographic projection centered below a body-fixed point.
        """

        lon, lat, _ = datum.cartesian_to_geodetic(xyz)

        return cls(datum, center_lon=float(lon), center_lat=float(lat))

    def cartesian_to_projected(self, xyz: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Convert body-fixed Cartesian point(s) to (easting, northing, height).
        """

        xyz = np.asarray(xyz, dtype=np.float64)

        x, y, h = self._to_projected.transform(xyz[0], xyz[1], xyz[2])

        return np.array([x, y, h], dtype=np.float64)

    def projected_to_cartesian(self, proj_pt: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Convert (easting, northing, height) point(s) back to body-fixed Cartesian coordinates.
        """

        proj_pt = np.asarray(proj_pt, dtype=np.float64)

        x, y, z = self._to_cartesian.transform(proj_pt[0], proj_pt[1], proj_pt[2])

        return np.array([x, y, z], dtype=np.float64)
