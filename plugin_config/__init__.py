"""
Plugin configuration manager.

Holds the single authoritative configuration of the access-tracking plugin
and keeps it valid, versioned, backed up and observable.
"""

from .config import *
from .config import __all__ as _config_all
from .core import *
from .core import __all__ as _core_all

__version__ = "1.1.0"

__all__ = list(_config_all) + list(_core_all)
