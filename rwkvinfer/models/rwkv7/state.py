"""
RWKV7 recurrent state.

One fixed-size slot per layer, owned by exactly one session:

- att_x_prev: previous token's time-mix input  [C]
- att_kv:     WKV memory matrix per head        [H, N, N] (float32)
- ffn_x_prev: previous token's channel-mix input [C]
"""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Union

import torch

from rwkvinfer.models.configuration import RWKVConfig

SLOT_NAMES = ("att_x_prev", "att_kv", "ffn_x_prev")


@dataclass(eq=False)
class LayerState:
    """State slot of a single layer."""
    att_x_prev: torch.Tensor
    att_kv: torch.Tensor
    ffn_x_prev: torch.Tensor

    def zero_(self) -> "LayerState":
        self.att_x_prev.zero_()
        self.att_kv.zero_()
        self.ffn_x_prev.zero_()
        return self

    def tensors(self) -> Dict[str, torch.Tensor]:
        return {name: getattr(self, name) for name in SLOT_NAMES}


class RWKV7State:
    """
    Per-session recurrent memory: an arena of ``n_layer`` LayerState slots.

    Created zero-filled; mutated in place by ``RWKV7Model.forward`` once per
    token per layer; re-zeroed by ``reset()`` without reallocating.
    """

    def __init__(
        self,
        config: RWKVConfig,
        device: Optional[Union[str, torch.device]] = None,
        dtype: torch.dtype = torch.float32,
    ):
        self.config = config
        C, H, N = config.n_embd, config.n_head, config.head_size
        self.layers: List[LayerState] = [
            LayerState(
                att_x_prev=torch.zeros(C, dtype=dtype, device=device),
                att_kv=torch.zeros(H, N, N, dtype=torch.float32, device=device),
                ffn_x_prev=torch.zeros(C, dtype=dtype, device=device),
            )
            for _ in range(config.n_layer)
        ]

    @classmethod
    def new(cls, config: RWKVConfig, device=None, dtype: torch.dtype = torch.float32) -> "RWKV7State":
        return cls(config, device=device, dtype=dtype)

    def __len__(self) -> int:
        return len(self.layers)

    def __getitem__(self, layer_id: int) -> LayerState:
        return self.layers[layer_id]

    def __iter__(self) -> Iterator[LayerState]:
        return iter(self.layers)

    @property
    def device(self) -> torch.device:
        return self.layers[0].att_kv.device

    def reset(self) -> "RWKV7State":
        """Re-zero every slot in place."""
        for layer in self.layers:
            layer.zero_()
        return self

    def clone(self) -> "RWKV7State":
        """Deep copy, for snapshots or branching a prompt."""
        other = RWKV7State.__new__(RWKV7State)
        other.config = self.config
        other.layers = [
            LayerState(**{k: v.clone() for k, v in layer.tensors().items()})
            for layer in self.layers
        ]
        return other

    def equal(self, other: "RWKV7State") -> bool:
        """Bit-exact comparison of every slot."""
        if len(self) != len(other):
            return False
        for a, b in zip(self.layers, other.layers):
            for name in SLOT_NAMES:
                if not torch.equal(getattr(a, name), getattr(b, name)):
                    return False
        return True

    def state_dict(self) -> Dict[str, torch.Tensor]:
        """Flat ``{"{layer}.{slot}": tensor}`` mapping (CPU copies)."""
        out = {}
        for i, layer in enumerate(self.layers):
            for name, tensor in layer.tensors().items():
                out[f"{i}.{name}"] = tensor.detach().cpu().clone()
        return out

    def load_state_dict(self, state_dict: Dict[str, torch.Tensor]):
        """Copy a ``state_dict()`` snapshot back into the existing slots."""
        for i, layer in enumerate(self.layers):
            for name, tensor in layer.tensors().items():
                key = f"{i}.{name}"
                if key not in state_dict:
                    raise KeyError(f"State snapshot missing '{key}'")
                src = state_dict[key]
                if src.shape != tensor.shape:
                    raise ValueError(f"State slot '{key}' has shape {tuple(src.shape)}, "
                                     f"expected {tuple(tensor.shape)}")
                tensor.copy_(src)

    def __repr__(self) -> str:
        return (f"RWKV7State(n_layer={len(self)}, n_embd={self.config.n_embd}, "
                f"n_head={self.config.n_head}, head_size={self.config.head_size}, "
                f"device={self.device})")
