r"""
This module provides the :class:`AdjustedCameraModel`, which wraps any other camera model with a similarity applied
about a pivot point.

The adjustment moves the wrapped camera by

.. math::
    f(\mathbf{x}) = s\mathbf{R}(\mathbf{x}-\mathbf{p}) + \mathbf{p} + \mathbf{t}

so the adjusted camera center is :math:`f(\mathbf{C})`, adjusted rays are rotated by :math:`\mathbf{R}`, and a world
point is projected by mapping it back through :math:`f^{-1}` before handing it to the wrapped camera.
"""

import numpy as np

# lxml parsing of unverified files is a security risk, see the warnings in camera_model.load
import lxml.etree as etree  # nosec

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models.camera_model import CameraModel, CameraType, model_from_elem, _eval_namespace
from geostereo.camera_models.pinhole import PinholeModel
from geostereo.rotations import Rotation


class AdjustedCameraModel(CameraModel):
    """
    A camera model with a rotation, translation and scale applied on top of an underlying camera.
    """

    camera_type = CameraType.ADJUSTED

    def __init__(self, underlying: CameraModel | None = None, translation: ARRAY_LIKE = (0, 0, 0),
                 rotation: ARRAY_LIKE | Rotation | None = None, pivot: ARRAY_LIKE = (0, 0, 0), scale: float = 1.0):
        """
        :param underlying: The camera being adjusted.  A default :class:`.PinholeModel` is used if ``None``
        :param translation: The translation of the adjustment
        :param rotation: The rotation of the adjustment
        :param pivot: The point the rotation and scale are applied about
        :param scale: The scale of the adjustment
        """

        super().__init__()

        self.underlying = underlying if underlying is not None else PinholeModel()
        self.translation = np.array(translation, dtype=np.float64)
        self.rotation = Rotation(rotation)
        self.pivot = np.array(pivot, dtype=np.float64)
        self.scale = float(scale)

        self.important_attributes.extend(['translation', 'rotation', 'pivot', 'scale'])

    def __eq__(self, other) -> bool:
        return super().__eq__(other) and self.underlying == other.underlying

    def adjust_point(self, point: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Apply the adjustment to a point in the frame of the underlying camera.
        """

        point = np.asarray(point, dtype=np.float64)

        return self.scale * self.rotation.matrix @ (point - self.pivot) + self.pivot + self.translation

    def unadjust_point(self, point: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        The inverse of :meth:`adjust_point`.
        """

        point = np.asarray(point, dtype=np.float64)

        return self.rotation.matrix.T @ (point - self.pivot - self.translation) / self.scale + self.pivot

    def camera_center(self, pixel: ARRAY_LIKE = (0, 0)) -> DOUBLE_ARRAY:
        return self.adjust_point(self.underlying.camera_center(pixel))

    def pixel_to_vector(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return self.rotation.matrix @ self.underlying.pixel_to_vector(pixel)

    def point_to_pixel(self, point: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return self.underlying.point_to_pixel(self.unadjust_point(point))

    def apply_transform(self, rotation: ARRAY_LIKE, translation: ARRAY_LIKE, scale: float = 1.0) -> None:

        rotation = np.asarray(rotation, dtype=np.float64)
        translation = np.asarray(translation, dtype=np.float64)

        self.translation = scale * rotation @ (self.pivot + self.translation) + translation - self.pivot
        self.rotation = Rotation(rotation @ self.rotation.matrix)
        self.scale = scale * self.scale

    def to_elem(self, elem: etree._Element) -> etree._Element:

        super().to_elem(elem)

        node = elem.find('underlying')

        if node is not None:
            elem.remove(node)

        node = etree.SubElement(elem, 'underlying', attrib={"module": type(self.underlying).__module__,
                                                            "type": type(self.underlying).__name__})

        self.underlying.to_elem(node)

        return elem

    @classmethod
    def from_elem(cls, elem: etree._Element) -> 'AdjustedCameraModel':

        node = elem.find('underlying')

        if node is None:
            raise LookupError('The adjusted camera is missing its underlying camera')

        inst = cls(model_from_elem(node))

        namespace = _eval_namespace()

        for prop in inst.important_attributes:

            value = elem.find(prop)

            if value is None:
                raise LookupError(f'The adjusted camera is missing {prop}')

            # eval of unverified files is a security risk; see the warning in camera_model.load
            setattr(inst, prop, eval(value.text, namespace))  # nosec

        return inst
