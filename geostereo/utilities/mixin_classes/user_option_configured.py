"""
This module provides the :class:`UserOptionConfigured` mixin class that enables classes to be
configured using :class:`.UserOptions`-derived classes while keeping the ability to reset
to the configuration they were built with.

Example:
    Basic usage of the UserOptionConfigured mixin::

        from dataclasses import dataclass

        from geostereo.utilities.options import UserOptions
        from geostereo.utilities.mixin_classes import UserOptionConfigured

        @dataclass
        class SolverOptions(UserOptions):
            max_iter: int = 100
            robust_threshold: float = 0.5

        class Solver(UserOptionConfigured[SolverOptions], SolverOptions):
            def __init__(self, options: SolverOptions | None = None):
                super().__init__(SolverOptions, options=options)

        solver = Solver()
        solver.max_iter = 5
        solver.reset_settings()  # max_iter is 100 again

.. Note::
    The :class:`UserOptionConfigured` class should come first in the inheritance order so that its ``__init__`` runs
    before the dataclass initializer of the options type.
"""

import copy

from typing import Generic, TypeVar

from geostereo.utilities.options import UserOptions


OptionsT = TypeVar("OptionsT", bound=UserOptions)
"""
Type variable bound to UserOptions
"""


class UserOptionConfigured(Generic[OptionsT]):
    """
    Mixin class providing UserOptions-based configuration with reset capability.

    Subclass it with the :class:`.UserOptions` subclass as the type parameter and pass the options type to
    ``super().__init__``.  If no options instance is given the defaults of the options type are used.
    """

    def __init__(self, options_type: type[OptionsT], *args, options: OptionsT | None = None, **kwargs) -> None:
        """
        :param options_type: The type of the :class:`.UserOptions` to use
        :param options: An optional instance of `options_type` preconfigured.
        """

        super().__init__(*args, **kwargs)

        if options is None:
            options = options_type()

        options.apply_options(self)

        self._original_options: OptionsT = copy.deepcopy(options)
        """
        The original configuration for this class
        """

    def reset_settings(self) -> None:
        """
        Resets the class to the state it was originally initialized with.
        """

        copy.deepcopy(self._original_options).apply_options(self)

    @property
    def original_options(self) -> OptionsT:
        """
        The options used during initialization.
        """
        return self._original_options
