"""
This package contains helpful mixin classes shared throughout geostereo.
"""

from geostereo.utilities.mixin_classes.user_option_configured import UserOptionConfigured

__all__ = ["UserOptionConfigured"]
