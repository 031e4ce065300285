"""
RWKV7 model implementation
"""

from rwkvinfer.models.rwkv7.model import (
    RWKV7Block,
    RWKV7ChannelMix,
    RWKV7Model,
    RWKV7TimeMix,
)
from rwkvinfer.models.rwkv7.state import LayerState, RWKV7State

__all__ = [
    "RWKV7Model",
    "RWKV7Block",
    "RWKV7TimeMix",
    "RWKV7ChannelMix",
    "RWKV7State",
    "LayerState",
]
