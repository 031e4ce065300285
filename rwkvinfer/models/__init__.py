"""
RWKV model implementations
"""

from rwkvinfer.models.configuration import RWKVConfig, default_lora_dims
from rwkvinfer.models.rwkv7 import RWKV7Model, RWKV7State, LayerState
from rwkvinfer.models.auto_model import AutoModel
from rwkvinfer.models.weights import (
    expected_weight_shapes,
    load_checkpoint,
    save_checkpoint,
    validate_weights,
)

__all__ = [
    "RWKVConfig",
    "default_lora_dims",
    "RWKV7Model",
    "RWKV7State",
    "LayerState",
    "AutoModel",
    "expected_weight_shapes",
    "load_checkpoint",
    "save_checkpoint",
    "validate_weights",
]
