"""
Runtime device handling
"""

from rwkvinfer.runtime.device import DTYPE_MAP, resolve_device, resolve_dtype

__all__ = [
    "DTYPE_MAP",
    "resolve_device",
    "resolve_dtype",
]
