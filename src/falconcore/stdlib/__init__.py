"""Host built-ins for FalconCore programs"""

from .builtin_functions import BuiltinRegistry, get_builtin_functions
