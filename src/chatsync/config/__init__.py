from .loader import get_bool_env, get_float_env, get_int_env, get_str_env
from .settings import Settings

__all__ = ["Settings", "get_bool_env", "get_float_env", "get_int_env", "get_str_env"]
