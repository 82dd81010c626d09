"""
This package provides the configuration utilities used throughout geostereo.
"""

from geostereo.utilities.options import UserOptions
from geostereo.utilities.mixin_classes import UserOptionConfigured

__all__ = ["UserOptions", "UserOptionConfigured"]
