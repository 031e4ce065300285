"""
Shared fixtures: a tiny random RWKV-7 checkpoint and a byte-level vocabulary.
"""

import pytest
import torch

from rwkvinfer.models import RWKVConfig, RWKV7Model, expected_weight_shapes

# Multi-byte and special entries appended after the 256 single bytes
EXTRA_VOCAB = [
    "\n\n",
    "he",
    "hello",
    " world",
    "é",
    "<|endoftext|>",
    b"\xe4\xbd",
]


def make_config(**overrides) -> RWKVConfig:
    kwargs = dict(
        n_layer=3,
        n_embd=32,
        vocab_size=300,
        head_size=8,
        dim_ffn=64,
        dim_att_lora=8,
        dim_aaa_lora=8,
        dim_mv_lora=4,
        dim_gate_lora=12,
    )
    kwargs.update(overrides)
    return RWKVConfig(**kwargs)


def make_weights(config: RWKVConfig, seed: int = 0, rwkv_lm_layout: bool = True):
    """
    Random weights for ``config``.

    With ``rwkv_lm_layout`` the per-channel vectors are stored as (1, 1, C),
    the way RWKV-LM checkpoints keep them.
    """
    gen = torch.Generator().manual_seed(seed)
    weights = {}
    for key, shape in expected_weight_shapes(config).items():
        name = key.rsplit(".", 1)[-1]
        if key.endswith(("ln0.weight", "ln1.weight", "ln2.weight", "ln_out.weight", "ln_x.weight")):
            t = 1.0 + 0.1 * torch.randn(shape, generator=gen)
        elif name.startswith("x_"):
            t = torch.rand(shape, generator=gen)
        elif name == "k_a":
            t = 1.0 + 0.1 * torch.randn(shape, generator=gen)
        elif len(shape) == 2 and shape[0] == shape[1]:
            t = torch.randn(shape, generator=gen) / shape[1] ** 0.5
        elif len(shape) == 2:
            t = 0.5 * torch.randn(shape, generator=gen) / min(shape) ** 0.5
        else:
            t = 0.5 * torch.randn(shape, generator=gen)
        if rwkv_lm_layout and len(shape) == 1 and not key.endswith((".weight", ".bias")):
            t = t.view(1, 1, -1)
        weights[key] = t
    return weights


def write_vocab(path, extras=EXTRA_VOCAB):
    """Write an RWKV-format vocabulary: ids 1..256 are single bytes."""
    lines = []
    idx = 1
    for b in range(256):
        x = bytes([b])
        lines.append(f"{idx} {x!r} {len(x)}")
        idx += 1
    for x in extras:
        n = len(x.encode("utf-8")) if isinstance(x, str) else len(x)
        lines.append(f"{idx} {x!r} {n}")
        idx += 1
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def tiny_config():
    return make_config()


@pytest.fixture
def tiny_weights(tiny_config):
    return make_weights(tiny_config, seed=0)


@pytest.fixture
def tiny_model(tiny_config, tiny_weights):
    model = RWKV7Model(tiny_config)
    model.load_weights(tiny_weights)
    return model


@pytest.fixture
def vocab_file(tmp_path):
    return write_vocab(tmp_path / "vocab.txt")
