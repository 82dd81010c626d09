from dataclasses import dataclass, fields

from typing import Dict, Any

from abc import ABCMeta


@dataclass
class UserOptions(metaclass=ABCMeta):
    """
    Base dataclass for the keyword settings of a configurable class.

    Each configurable class in geostereo takes one of these explicitly at construction instead of reading a
    process-wide settings object.  The fields of the dataclass become attributes of the configured instance when
    :meth:`apply_options` is called.

    Options classes are named ``<ClassName>Options``, so :class:`.TriangulationOptions` configures
    :class:`.StereoTriangulator`.

        >>> @dataclass
        ... class TileOptions(UserOptions):
        ...     tile_size: int = 256
        >>> class Tiler:
        ...     def __init__(self, options=None):
        ...         (options or TileOptions()).apply_options(self)
        >>> Tiler().tile_size
        256
    """

    def override_options(self):
        """
        Hook run before the fields are read so that one option can force the value of another.
        """
        pass

    def apply_options(self, target: object) -> None:
        """
        Copy every field onto ``target`` as an attribute.

        :param target: the configured instance
        """
        target.__dict__.update(self.options_dict)

    @property
    def options_dict(self) -> Dict[str, Any]:
        """
        The declared fields and their current values, after :meth:`override_options` has run.
        """

        self.override_options()
        return {field.name: getattr(self, field.name) for field in fields(self)}
