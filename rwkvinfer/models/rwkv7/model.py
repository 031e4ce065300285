"""
RWKV7 Model Definition (recurrent, one token per step)
"""
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import torch
import torch.nn as nn
from torch.nn import functional as F

from rwkvinfer.errors import OutOfVocabulary, ShapeMismatch
from rwkvinfer.models.configuration import RWKVConfig
from rwkvinfer.models.rwkv7 import lora
from rwkvinfer.models.rwkv7.operators import wkv7_step
from rwkvinfer.models.rwkv7.state import LayerState, RWKV7State
from rwkvinfer.models.weights import validate_weights
from rwkvinfer.runtime.device import resolve_device, resolve_dtype


def _cast_prev(prev: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
    return prev.to(x.dtype) if prev.dtype != x.dtype else prev


class RWKV7TimeMix(nn.Module):
    """RWKV7 Time Mix layer (attention replacement)."""

    def __init__(self, config: RWKVConfig, layer_id: int):
        super().__init__()
        self.config = config
        self.layer_id = layer_id
        self.head_size = config.head_size
        self.n_head = config.n_head

        C = config.n_embd
        H = self.n_head
        N = self.head_size

        # token-shift mixing coefficients
        self.x_r = nn.Parameter(torch.zeros(C))
        self.x_w = nn.Parameter(torch.zeros(C))
        self.x_k = nn.Parameter(torch.zeros(C))
        self.x_v = nn.Parameter(torch.zeros(C))
        self.x_a = nn.Parameter(torch.zeros(C))
        self.x_g = nn.Parameter(torch.zeros(C))

        self.w0 = nn.Parameter(torch.zeros(C))
        self.w1 = nn.Parameter(torch.zeros(C, config.dim_att_lora))
        self.w2 = nn.Parameter(torch.zeros(config.dim_att_lora, C))

        self.a0 = nn.Parameter(torch.zeros(C))
        self.a1 = nn.Parameter(torch.zeros(C, config.dim_aaa_lora))
        self.a2 = nn.Parameter(torch.zeros(config.dim_aaa_lora, C))

        if layer_id > 0:
            self.v0 = nn.Parameter(torch.zeros(C))
            self.v1 = nn.Parameter(torch.zeros(C, config.dim_mv_lora))
            self.v2 = nn.Parameter(torch.zeros(config.dim_mv_lora, C))

        self.g1 = nn.Parameter(torch.zeros(C, config.dim_gate_lora))
        self.g2 = nn.Parameter(torch.zeros(config.dim_gate_lora, C))

        self.k_k = nn.Parameter(torch.zeros(C))
        self.k_a = nn.Parameter(torch.zeros(C))
        self.r_k = nn.Parameter(torch.zeros(H, N))

        self.receptance = nn.Linear(C, C, bias=False)
        self.key = nn.Linear(C, C, bias=False)
        self.value = nn.Linear(C, C, bias=False)
        self.output = nn.Linear(C, C, bias=False)
        self.ln_x = nn.GroupNorm(H, C, eps=config.group_norm_eps)

    def forward(self, x, v_first, x_prev, att_kv):
        """
        One time-mix step. Does not modify ``x_prev`` or ``att_kv``.

        Args:
            x: Input after ln1 [C]
            v_first: Layer 0's value [C] (None when called for layer 0)
            x_prev: Previous token's input [C] (zeros on the first token)
            att_kv: WKV memory [H, N, N]

        Returns:
            y: Output [C]
            v_first: Layer 0's value
            new_x_prev: ``x``, the next step's ``x_prev``
            new_att_kv: Updated WKV memory [H, N, N]
        """
        C = x.shape[-1]
        H = self.n_head
        N = self.head_size

        xx = _cast_prev(x_prev, x) - x
        xr = x + xx * self.x_r
        xw = x + xx * self.x_w
        xk = x + xx * self.x_k
        xv = x + xx * self.x_v
        xa = x + xx * self.x_a
        xg = x + xx * self.x_g

        r = self.receptance(xr)
        w = lora.decay(xw, self.w0, self.w1, self.w2)
        k = self.key(xk)
        v = self.value(xv)

        if self.layer_id == 0:
            v_first = v
        else:
            v = v + (v_first - v) * lora.value_residual_gate(xv, self.v0, self.v1, self.v2)

        a = lora.in_context_learning_rate(xa, self.a0, self.a1, self.a2)
        g = lora.output_gate(xg, self.g1, self.g2)

        kk = F.normalize((k * self.k_k).view(H, N), dim=-1, p=2.0).view(C)
        k = k * (1 + (a - 1) * self.k_a)

        y, new_att_kv = wkv7_step(att_kv, r, w, k, v, -kk, kk * a, head_size=N)
        y = y.to(x.dtype)

        y = F.group_norm(y.view(1, C), num_groups=H, weight=self.ln_x.weight,
                         bias=self.ln_x.bias, eps=self.ln_x.eps).view(C)
        y = y + ((r.view(H, N) * k.view(H, N) * self.r_k).sum(dim=-1, keepdim=True) *
                 v.view(H, N)).view(C)
        y = self.output(y * g)

        return y, v_first, x, new_att_kv


class RWKV7ChannelMix(nn.Module):
    """RWKV7 Channel Mix layer (feed-forward network)."""

    def __init__(self, config: RWKVConfig, layer_id: int):
        super().__init__()
        self.config = config
        self.layer_id = layer_id

        C = config.n_embd
        self.x_k = nn.Parameter(torch.zeros(C))
        self.key = nn.Linear(C, config.dim_ffn, bias=False)
        self.value = nn.Linear(config.dim_ffn, C, bias=False)

        self.use_receptance = config.ffn_receptance
        if self.use_receptance:
            self.x_r = nn.Parameter(torch.zeros(C))
            self.receptance = nn.Linear(C, C, bias=False)

    def forward(self, x, x_prev):
        """
        Args:
            x: Input after ln2 [C]
            x_prev: Previous token's input [C]

        Returns:
            y: Output [C]
            new_x_prev: ``x``, the next step's ``x_prev``
        """
        xx = _cast_prev(x_prev, x) - x
        k = x + xx * self.x_k
        k = torch.relu(self.key(k)) ** 2
        y = self.value(k)
        if self.use_receptance:
            y = torch.sigmoid(self.receptance(x + xx * self.x_r)) * y
        return y, x


class RWKV7Block(nn.Module):
    """RWKV7 Block."""

    def __init__(self, config: RWKVConfig, layer_id: int):
        super().__init__()
        self.config = config
        self.layer_id = layer_id

        C = config.n_embd
        eps = config.layer_norm_eps
        if layer_id == 0:
            self.ln0 = nn.LayerNorm(C, eps=eps)
        self.ln1 = nn.LayerNorm(C, eps=eps)
        self.ln2 = nn.LayerNorm(C, eps=eps)

        self.att = RWKV7TimeMix(config, layer_id)
        self.ffn = RWKV7ChannelMix(config, layer_id)

    def forward(self, x, v_first, layer_state: LayerState):
        """
        One block step against this layer's state slot.

        The slot is only read; the updated slot values are returned so the
        caller can commit every layer at once.

        Returns:
            x: Output [C]
            v_first: Layer 0's value
            new_layer_state: LayerState holding the would-be slot contents
        """
        if self.layer_id == 0:
            x = self.ln0(x)

        x_att, v_first, new_att_x, new_att_kv = self.att(
            self.ln1(x), v_first, layer_state.att_x_prev, layer_state.att_kv
        )
        x = x + x_att

        x_ffn, new_ffn_x = self.ffn(self.ln2(x), layer_state.ffn_x_prev)
        x = x + x_ffn

        new_layer_state = LayerState(
            att_x_prev=new_att_x,
            att_kv=new_att_kv,
            ffn_x_prev=new_ffn_x,
        )
        return x, v_first, new_layer_state


class RWKV7Model(nn.Module):
    """
    RWKV7 language model, evaluated one token at a time.

    ``forward(token_id, state)`` is a pure function of the token and the
    state before the call, apart from the in-place update of ``state``.
    Weights are frozen; any number of sessions may share one model as long
    as each owns its RWKV7State.
    """

    def __init__(
        self,
        config: RWKVConfig,
        device: Optional[Union[str, torch.device]] = "cpu",
        dtype: Optional[Union[str, torch.dtype]] = None,
    ):
        super().__init__()
        self.config = config

        self.emb = nn.Embedding(config.vocab_size, config.n_embd)
        self.blocks = nn.ModuleList([RWKV7Block(config, i) for i in range(config.n_layer)])
        self.ln_out = nn.LayerNorm(config.n_embd, eps=config.layer_norm_eps)
        self.head = nn.Linear(config.n_embd, config.vocab_size, bias=False)

        self.to(device=resolve_device(device), dtype=resolve_dtype(dtype))
        self.requires_grad_(False)
        self.eval()
        self._weights_loaded = False

    @property
    def device(self) -> torch.device:
        return self.emb.weight.device

    @property
    def dtype(self) -> torch.dtype:
        return self.emb.weight.dtype

    @property
    def weights_loaded(self) -> bool:
        return self._weights_loaded

    def init_state(self) -> RWKV7State:
        """Fresh zero-filled state on the model's device."""
        return RWKV7State(self.config, device=self.device)

    def _check_token(self, token_id) -> int:
        if isinstance(token_id, torch.Tensor):
            if token_id.numel() != 1:
                raise ValueError(f"forward takes a single token id, got shape {tuple(token_id.shape)}")
            token_id = token_id.item()
        token_id = int(token_id)
        if not 0 <= token_id < self.config.vocab_size:
            raise OutOfVocabulary(token_id, self.config.vocab_size)
        return token_id

    def _check_state(self, state: RWKV7State):
        if len(state) != self.config.n_layer:
            raise ValueError(f"State has {len(state)} layers, model has {self.config.n_layer}")
        if state.device != self.device:
            raise ValueError(f"State lives on {state.device}, model on {self.device}")
        C, H, N = self.config.n_embd, self.config.n_head, self.config.head_size
        expected = {"att_x_prev": (C,), "att_kv": (H, N, N), "ffn_x_prev": (C,)}
        for i, layer in enumerate(state):
            for name, tensor in layer.tensors().items():
                if tuple(tensor.shape) != expected[name]:
                    raise ShapeMismatch(f"state[{i}].{name}", expected[name], tensor.shape)

    @torch.no_grad()
    def forward(self, token_id: int, state: RWKV7State) -> torch.Tensor:
        """
        Process one token and advance ``state`` in place.

        Args:
            token_id: Token id in [0, vocab_size)
            state: Session state, mutated exactly once per layer

        Returns:
            logits: [vocab_size] (float32)

        Raises:
            OutOfVocabulary: token id out of range; ``state`` is left untouched
        """
        token_id = self._check_token(token_id)
        self._check_state(state)

        x = self.emb.weight[token_id]
        v_first = None
        new_layers: List[LayerState] = []
        for i, block in enumerate(self.blocks):
            x, v_first, new_layer_state = block(x, v_first, state[i])
            new_layers.append(new_layer_state)

        x = self.ln_out(x)
        logits = self.head(x).float()

        for slot, new in zip(state, new_layers):
            slot.att_x_prev.copy_(new.att_x_prev)
            slot.att_kv.copy_(new.att_kv)
            slot.ffn_x_prev.copy_(new.ffn_x_prev)

        return logits

    @torch.no_grad()
    def forward_sequence(
        self,
        token_ids: Sequence[int],
        state: Optional[RWKV7State] = None,
        full_output: bool = False,
    ) -> Tuple[torch.Tensor, RWKV7State]:
        """
        Feed a token sequence (prefill).

        All ids are validated before the first step, so an out-of-vocabulary
        id anywhere leaves ``state`` untouched.

        Args:
            token_ids: Token ids (list, tuple or 1-D tensor)
            state: Session state; a fresh one is created if None
            full_output: Return logits for every position instead of the last

        Returns:
            logits: [vocab_size] or [T, vocab_size]
            state: The advanced state
        """
        if hasattr(token_ids, "tolist"):
            token_ids = token_ids.tolist()
        token_ids = [self._check_token(t) for t in token_ids]
        if not token_ids:
            raise ValueError("forward_sequence needs at least one token")

        if state is None:
            state = self.init_state()

        outputs = []
        for token_id in token_ids:
            logits = self.forward(token_id, state)
            if full_output:
                outputs.append(logits)

        if full_output:
            return torch.stack(outputs), state
        return logits, state

    @torch.no_grad()
    def load_weights(self, weights: Mapping[str, torch.Tensor], warn_unused: bool = True):
        """
        Validate an archive against the config and copy it into the model.

        Raises:
            MissingWeightKey: required tensor absent
            ShapeMismatch: tensor shape inconsistent with the config
        """
        normalized = validate_weights(self.config, weights, warn_unused=warn_unused)
        for name, param in self.named_parameters():
            param.copy_(normalized[name].to(dtype=param.dtype))
        self._weights_loaded = True
        return self
