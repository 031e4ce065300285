"""
RWKV7 low-rank projections.

Each input-dependent modulation in the time-mix is a fixed down-projection
[C, D] / up-projection [D, C] pair followed by a nonlinearity. They are
plain functions of (input, factor pair, bias) rather than modules.
"""

import math

import torch

# exp(-0.5): upper bound of the per-channel log-decay magnitude
DECAY_SCALE = math.exp(-0.5)


def lora(x: torch.Tensor, down: torch.Tensor, up: torch.Tensor) -> torch.Tensor:
    return (x @ down) @ up


def decay(x_w: torch.Tensor, w0: torch.Tensor, w1: torch.Tensor, w2: torch.Tensor) -> torch.Tensor:
    """
    Per-channel decay in (exp(-exp(-0.5)), 1), computed in float32.

    Equivalent to ``exp(-exp(-softplus(-(w0 + lora)) - 0.5))`` used by the
    training kernels.
    """
    w = torch.tanh(x_w @ w1) @ w2
    return torch.exp(-DECAY_SCALE * torch.sigmoid((w0 + w).float()))


def in_context_learning_rate(x_a: torch.Tensor, a0: torch.Tensor, a1: torch.Tensor, a2: torch.Tensor) -> torch.Tensor:
    return torch.sigmoid(a0 + lora(x_a, a1, a2))


def value_residual_gate(x_v: torch.Tensor, v0: torch.Tensor, v1: torch.Tensor, v2: torch.Tensor) -> torch.Tensor:
    """Blend factor between this layer's value and layer 0's value."""
    return torch.sigmoid(v0 + lora(x_v, v1, v2))


def output_gate(x_g: torch.Tensor, g1: torch.Tensor, g2: torch.Tensor) -> torch.Tensor:
    return torch.sigmoid(x_g @ g1) @ g2
