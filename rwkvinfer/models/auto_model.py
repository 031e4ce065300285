"""
AutoModel - Automatic RWKV model loading
Inspired by Transformers AutoModel design
"""

import os
from typing import Optional, Union

import torch

from rwkvinfer.models.configuration import RWKVConfig
from rwkvinfer.models.weights import load_checkpoint, save_checkpoint


MODEL_MAPPING = {
    "rwkv7": "RWKV7Model",
}


class AutoModel:
    """
    AutoModel - select and load the RWKV model class named by ``model_type``.

    Usage:
        # Load from directory (config.json + model.pth / model.safetensors)
        model = AutoModel.from_pretrained("path/to/model")

        # Load a bare RWKV-LM checkpoint, config inferred from the weights
        model = AutoModel.from_pretrained("rwkv7-g1-0.1b.pth", device="cuda", dtype="fp16")
    """

    @staticmethod
    def _get_model_class(model_type: str):
        if model_type not in MODEL_MAPPING:
            raise ValueError(
                f"Unsupported model type: {model_type}\n"
                f"Supported model types: {list(MODEL_MAPPING.keys())}"
            )

        from rwkvinfer.models.rwkv7 import RWKV7Model
        return RWKV7Model

    @classmethod
    def from_config(
        cls,
        config: RWKVConfig,
        device: Optional[Union[str, torch.device]] = "cpu",
        dtype: Optional[Union[str, torch.dtype]] = None,
    ):
        """Create a model from config without loading weights."""
        model_class = cls._get_model_class(config.model_type)
        return model_class(config, device=device, dtype=dtype)

    @classmethod
    def from_pretrained(
        cls,
        model_path: str,
        config: Optional[RWKVConfig] = None,
        device: Optional[Union[str, torch.device]] = "cpu",
        dtype: Optional[Union[str, torch.dtype]] = None,
        verbose: bool = False,
    ):
        """
        Load model from path (directory or weight file).

        Args:
            model_path: Model path, can be:
                - Directory: contains weights and optionally config.json
                - File: .pth / .safetensors weight file (config.json looked up
                  in the same directory)
            config: Explicit config; otherwise config.json, otherwise inferred
                    from the weight shapes
            device: Device ("cpu", "cuda", "cuda:0", etc.)
            dtype: Data type ("fp32", "fp16", "bf16" or torch.dtype)
            verbose: Print loading progress

        Returns:
            Model with loaded, validated weights

        Raises:
            FileNotFoundError: no weight file found
            InvalidConfig / MissingWeightKey / ShapeMismatch / DeviceError
        """
        if os.path.isdir(model_path):
            config_dir = model_path
        elif os.path.isfile(model_path):
            config_dir = os.path.dirname(model_path) or "."
        else:
            raise FileNotFoundError(
                f"Path does not exist: {model_path}\n"
                f"model_path should be a model directory or weight file (.pth / .safetensors)"
            )

        state_dict = load_checkpoint(model_path)

        if config is None:
            if os.path.exists(os.path.join(config_dir, "config.json")):
                config = RWKVConfig.from_pretrained(config_dir)
                source = os.path.join(config_dir, "config.json")
            else:
                config = RWKVConfig.from_state_dict(state_dict)
                source = "inferred from checkpoint"
            if verbose:
                print(f"[OK] Config: {source}")

        model = cls.from_config(config, device=device, dtype=dtype)
        model.load_weights(state_dict)

        if verbose:
            print(f"[OK] Model loaded: {config.n_layer} layers, {config.n_embd} dim, "
                  f"{config.vocab_size} vocab, {model.dtype} on {model.device}")

        return model

    @classmethod
    def save_pretrained(
        cls,
        model,
        save_directory: str,
        save_format: str = "safetensors",
        verbose: bool = False,
    ):
        """
        Save config.json and weights (``model.safetensors`` or ``model.pth``).
        """
        if save_format not in ("safetensors", "pth"):
            raise ValueError(f"save_format must be 'safetensors' or 'pth', got {save_format!r}")
        os.makedirs(save_directory, exist_ok=True)

        model.config.save_pretrained(save_directory)
        weight_file = os.path.join(save_directory, f"model.{save_format}")
        save_checkpoint(model.state_dict(), weight_file)

        if verbose:
            print(f"[OK] Model saved to: {save_directory}")
