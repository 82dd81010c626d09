# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
This module provides the abstract base class (abc) shared by all geostereo camera models, the :class:`CameraType` tag
used to dispatch on the sensor variant, and the functions :func:`save` and :func:`load` which write/read camera models
to disk in a human and machine readable xml format.

Use
___

Every camera model maps between body-fixed world coordinates and pixel locations.  Pixels are (column, row) with the
center of the upper left pixel at (0, 0).  The following must be implemented by a concrete model:

================================================= ======================================================================
Method/Attribute                                  Use
================================================= ======================================================================
:attr:`~CameraModel.camera_type`                  The :class:`CameraType` tag of the variant
:meth:`~CameraModel.camera_center`                The center of projection that observed a given pixel
:meth:`~CameraModel.pixel_to_vector`              The unit world direction of the ray through a pixel
:meth:`~CameraModel.point_to_pixel`               The pixel a world point projects to.  Raises :class:`ProjectionError`
                                                  when the point cannot be imaged.
:meth:`~CameraModel.apply_transform`              Applies a similarity (rotation, translation, scale) in place
================================================= ======================================================================

Models that expose intrinsics provide :attr:`focal_length`, :attr:`optical_center` and
:attr:`distortion_parameters`.  Models that are not saved through :attr:`~CameraModel.important_attributes` should
override :meth:`~CameraModel.to_elem` and :meth:`~CameraModel.from_elem`.
"""

import copy

import sys

import os

import warnings

from abc import ABCMeta, abstractmethod

from enum import Enum

from importlib import import_module

from typing import Any, Optional

import numpy as np

# lxml parsing of unverified files is a security risk, see the warnings in save/load
import lxml.etree as etree  # nosec

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY, PATH


class CameraType(Enum):
    """
    The sensor variants understood by the parameter store, the transform applier and the cost factory.
    """

    PINHOLE = "pinhole"
    OPTICAL_BAR = "optical_bar"
    CSM_FRAME = "csm_frame"
    CSM_LINESCAN = "csm_linescan"
    ADJUSTED = "adjusted"


class ProjectionError(ValueError):
    """
    Raised when a world point cannot be projected into a camera (behind the sensor, outside the valid time range or a
    non-converging inverse).
    """


def _eval_namespace() -> dict[str, Any]:
    """
    The names available when reading attribute values back from an xml file.
    """

    from geostereo.rotations import Rotation
    from geostereo.camera_models import distortion

    namespace: dict[str, Any] = {"array": np.array, "np": np, "Rotation": Rotation}
    namespace.update({cls.__name__: cls for cls in distortion.DISTORTION_CLASSES})

    return namespace


class CameraModel(metaclass=ABCMeta):
    """
    This is the abstract base class for all camera models in geostereo.

    It provides equality checking, copying and xml serialization through the :attr:`important_attributes` list, which
    every subclass extends with the attributes needed to completely reconstruct the model.
    """

    camera_type: CameraType
    """
    The variant tag of this model
    """

    def __init__(self):

        self.important_attributes: list[str] = []
        """
        The attributes that define this camera model.

        These are used to check equality and to save/load the model to/from file.
        """

    def __eq__(self, other) -> bool:
        """
        Camera models are equal if they are the same class and all of their :attr:`important_attributes` are equal.
        """

        if not isinstance(other, self.__class__):
            return False

        for var in self.important_attributes:

            mine = getattr(self, var)
            theirs = getattr(other, var)

            if isinstance(mine, np.ndarray) or isinstance(theirs, np.ndarray):
                if not np.array_equal(mine, theirs):
                    return False

            elif mine != theirs:
                return False

        return True

    @abstractmethod
    def camera_center(self, pixel: ARRAY_LIKE = (0, 0)) -> DOUBLE_ARRAY:
        """
        The center of projection that imaged ``pixel`` in the world frame.

        :param pixel: The (column, row) pixel location
        :return: The length 3 camera center
        """

    @abstractmethod
    def pixel_to_vector(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        The unit direction of the ray through ``pixel`` in the world frame.

        :param pixel: The (column, row) pixel location
        :return: The length 3 unit vector
        """

    @abstractmethod
    def point_to_pixel(self, point: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Project a world point into the image.

        :param point: The length 3 world point
        :return: The (column, row) pixel location
        :raises ProjectionError: if the point cannot be imaged by the camera
        """

    @abstractmethod
    def apply_transform(self, rotation: ARRAY_LIKE, translation: ARRAY_LIKE, scale: float = 1.0) -> None:
        """
        Apply the similarity :math:`\\mathbf{x}'=s\\mathbf{R}\\mathbf{x}+\\mathbf{t}` to the camera in place.

        :param rotation: The 3x3 rotation matrix
        :param translation: The length 3 translation
        :param scale: The uniform scale
        """

    def copy(self) -> 'CameraModel':
        """
        Returns a deep copy of this object, breaking all references with ``self``.
        """

        return copy.deepcopy(self)

    def to_elem(self, elem: etree._Element) -> etree._Element:
        """
        Stores this camera model in an :class:`lxml.etree.SubElement` object.

        Each attribute in :attr:`important_attributes` is written as a sub-element containing its repr.  Arrays are
        printed in full with enough digits to read back bit-identically.

        :param elem: The element to store this camera model in
        :return: The element for this model
        """

        with np.printoptions(threshold=sys.maxsize, floatmode='unique'):

            for name in self.important_attributes:

                val = getattr(self, name)

                node = elem.find(name)

                if node is None:
                    node = etree.SubElement(elem, name)

                node.text = ' '.join(repr(val).split())

        return elem

    @classmethod
    def from_elem(cls, elem: etree._Element) -> 'CameraModel':
        """
        Construct a new instance of `cls` from an element written by :meth:`to_elem`.

        Attributes missing from the element keep their default values and a warning is issued.

        :param elem: The element containing the attribute information
        :return: The new instance
        """

        inst = cls()

        namespace = _eval_namespace()

        for prop in inst.important_attributes:

            node = elem.find(prop)

            if node is None:
                warnings.warn(f'missing value for {prop}')
                continue

            # eval of unverified files is a security risk; see the warning in load
            setattr(inst, prop, eval(node.text, namespace))  # nosec

        return inst


def save(file: PATH, name: str, model: CameraModel, group: Optional[str] = None):
    """
    This function is used to save a camera model to an xml file.

    The root element is called `CameraModels`.  Each model is stored under ``name`` (optionally inside ``group``) with
    the module and class it was an instance of, so that :func:`load` can rebuild it.  If a model of the same name and
    group already exists in the file it is overwritten.

    .. warning::
        Loading xml files evaluates their content.  Do not pass untrusted/unverified files to :func:`load`.

    :param file: The path of the file to store the camera model in
    :param name: The name to use to store the camera model
    :param model: The camera model to store
    :param group: An optional group to store the camera model into
    """

    if os.path.isfile(file):
        tree = etree.parse(str(file))  # nosec
        root = tree.getroot()

    else:
        root = etree.Element('CameraModels')
        tree = etree.ElementTree(root)

    if group is not None:

        group_elem = root.find(group)

        if group_elem is None:
            group_elem = etree.SubElement(root, group)

    else:
        group_elem = root

    model_elem = group_elem.find(name)

    if model_elem is not None:
        group_elem.remove(model_elem)

    model_elem = etree.SubElement(group_elem, name, attrib={"module": type(model).__module__,
                                                            "type": type(model).__name__})

    model.to_elem(model_elem)

    with open(file, 'wb') as out:
        out.write(etree.tostring(tree, pretty_print=True))


def load(file: PATH, name: str, group: Optional[str] = None) -> CameraModel:
    """
    This function is used to retrieve a camera model from an xml file written by :func:`save`.

    .. warning::
        There is a security risk when loading xml files (the attribute values are evaluated and the module the model
        is defined in is imported).  Do not pass untrusted/unverified files to this function.

    :param file: The path to the xml file to retrieve the camera models from
    :param name: The name of the camera model to retrieve from the file
    :param group: The group that contains the camera model in the file
    :return: The camera model retrieved from the file
    :raises LookupError: when the camera model can't be found in the file
    """

    tree = etree.parse(str(file))  # nosec

    root = tree.getroot()

    if group is not None:
        path = group + '/' + name

    else:
        path = './/' + name

    elem = root.find(path)

    if elem is None:
        raise LookupError(f'The camera model {name} could not be found in {file}')

    return model_from_elem(elem)


def model_from_elem(elem: etree._Element) -> CameraModel:
    """
    Rebuild a camera model from an element carrying ``module`` and ``type`` attributes.
    """

    mod = import_module(elem.get('module'))

    cls = getattr(mod, elem.get('type'))

    return cls.from_elem(elem)
