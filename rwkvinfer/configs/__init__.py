"""
RWKV7 Model Configuration Presets

Provides named model configs and loading functionality.
"""

from .model_loader import (
    ModelConfig,
    load_model_config,
    list_available_models,
    format_model_info,
    print_model_info,
)

__all__ = [
    'ModelConfig',
    'load_model_config',
    'list_available_models',
    'format_model_info',
    'print_model_info',
]
