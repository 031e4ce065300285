"""
RWKV-7 weight archive loading and validation.

Archives use the RWKV-LM key layout (``emb.weight``, ``blocks.{i}.att.*``,
``blocks.{i}.ffn.*``, ``ln_out.*``, ``head.weight``). Every key and shape is
checked against the config before anything is copied into a model.
"""

import os
import warnings
from collections import OrderedDict
from typing import Dict, Mapping, Tuple

import torch

from rwkvinfer.errors import MissingWeightKey, ShapeMismatch
from rwkvinfer.models.configuration import RWKVConfig

WEIGHT_FILENAMES = ("model.safetensors", "model.pth", "pytorch_model.pth")

_TIME_MIX_VECTORS = ("x_r", "x_w", "x_k", "x_v", "x_a", "x_g", "w0", "a0", "k_k", "k_a")


def expected_weight_shapes(config: RWKVConfig) -> "OrderedDict[str, Tuple[int, ...]]":
    """Full key -> shape schema implied by ``config``."""
    C = config.n_embd
    V = config.vocab_size
    F = config.dim_ffn
    H, N = config.n_head, config.head_size

    shapes: "OrderedDict[str, Tuple[int, ...]]" = OrderedDict()
    shapes["emb.weight"] = (V, C)
    shapes["blocks.0.ln0.weight"] = (C,)
    shapes["blocks.0.ln0.bias"] = (C,)

    for i in range(config.n_layer):
        blk = f"blocks.{i}."
        att = blk + "att."
        ffn = blk + "ffn."
        for ln in ("ln1", "ln2"):
            shapes[f"{blk}{ln}.weight"] = (C,)
            shapes[f"{blk}{ln}.bias"] = (C,)

        for name in _TIME_MIX_VECTORS:
            shapes[att + name] = (C,)
        shapes[att + "w1"] = (C, config.dim_att_lora)
        shapes[att + "w2"] = (config.dim_att_lora, C)
        shapes[att + "a1"] = (C, config.dim_aaa_lora)
        shapes[att + "a2"] = (config.dim_aaa_lora, C)
        if i > 0:
            shapes[att + "v0"] = (C,)
            shapes[att + "v1"] = (C, config.dim_mv_lora)
            shapes[att + "v2"] = (config.dim_mv_lora, C)
        shapes[att + "g1"] = (C, config.dim_gate_lora)
        shapes[att + "g2"] = (config.dim_gate_lora, C)
        shapes[att + "r_k"] = (H, N)
        for proj in ("receptance", "key", "value", "output"):
            shapes[f"{att}{proj}.weight"] = (C, C)
        shapes[att + "ln_x.weight"] = (C,)
        shapes[att + "ln_x.bias"] = (C,)

        shapes[ffn + "x_k"] = (C,)
        shapes[ffn + "key.weight"] = (F, C)
        shapes[ffn + "value.weight"] = (C, F)
        if config.ffn_receptance:
            shapes[ffn + "x_r"] = (C,)
            shapes[ffn + "receptance.weight"] = (C, C)

    shapes["ln_out.weight"] = (C,)
    shapes["ln_out.bias"] = (C,)
    shapes["head.weight"] = (V, C)
    return shapes


def _squeezed(shape) -> Tuple[int, ...]:
    return tuple(int(d) for d in shape if d != 1)


def validate_weights(
    config: RWKVConfig,
    weights: Mapping[str, torch.Tensor],
    warn_unused: bool = True,
) -> Dict[str, torch.Tensor]:
    """
    Check an archive against ``config`` and return tensors reshaped to schema.

    Shapes are compared with singleton dimensions removed, so RWKV-LM's
    ``(1, 1, C)`` mixing vectors match the ``(C,)`` schema.

    Raises:
        MissingWeightKey: one or more required keys are absent
        ShapeMismatch: a tensor's shape disagrees with the config
    """
    shapes = expected_weight_shapes(config)

    missing = [key for key in shapes if key not in weights]
    if missing:
        raise MissingWeightKey(missing)

    normalized: Dict[str, torch.Tensor] = {}
    for key, shape in shapes.items():
        tensor = weights[key]
        if not isinstance(tensor, torch.Tensor):
            raise TypeError(f"Weight '{key}' is {type(tensor).__name__}, expected torch.Tensor")
        if _squeezed(tensor.shape) != _squeezed(shape):
            raise ShapeMismatch(key, shape, tensor.shape)
        normalized[key] = tensor.reshape(shape)

    unused = [key for key in weights if key not in shapes]
    if unused and warn_unused:
        # layer-0 v0/v1/v2 exist in official checkpoints but are never read
        warnings.warn(
            f"Ignoring {len(unused)} unused weight(s): {sorted(unused)[:5]}"
        )
    return normalized


def load_checkpoint(path: str) -> Dict[str, torch.Tensor]:
    """
    Read a named-tensor archive into CPU memory.

    Args:
        path: ``.safetensors`` / ``.pth`` file, or a directory containing one
              of ``model.safetensors``, ``model.pth``, ``pytorch_model.pth``
    """
    if os.path.isdir(path):
        for filename in WEIGHT_FILENAMES:
            candidate = os.path.join(path, filename)
            if os.path.exists(candidate):
                path = candidate
                break
        else:
            raise FileNotFoundError(
                f"Weight file not found in {path}. Supported filenames: {list(WEIGHT_FILENAMES)}"
            )
    if not os.path.exists(path):
        raise FileNotFoundError(f"Weight file not found: {path}")

    if path.endswith(".safetensors"):
        from safetensors.torch import load_file
        state_dict = load_file(path, device="cpu")
    else:
        state_dict = torch.load(path, map_location="cpu", weights_only=True)

    if isinstance(state_dict, dict) and "model" in state_dict and isinstance(state_dict["model"], dict):
        state_dict = state_dict["model"]
    if not isinstance(state_dict, dict):
        raise TypeError(f"{path} does not contain a tensor dictionary")
    return state_dict


def save_checkpoint(weights: Mapping[str, torch.Tensor], path: str):
    """Write an archive; the format follows the file extension."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tensors = {k: v.detach().contiguous().cpu() for k, v in weights.items()}
    if path.endswith(".safetensors"):
        from safetensors.torch import save_file
        save_file(tensors, path)
    else:
        torch.save(tensors, path)
