"""
RWKV7 WKV Operators Module

- wkv7_step: single-token WKV memory update and readout
"""

from rwkvinfer.models.rwkv7.operators.wkv_cpu import wkv7_step

__all__ = [
    "wkv7_step",
]
