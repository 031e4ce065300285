"""
RWKV Model Configuration
Inspired by Transformers design, supports loading and saving config from config.json
"""

import json
import math
import os
import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

from rwkvinfer.errors import InvalidConfig


def _round_rank(x: float) -> int:
    return max(32, int(round(x / 32) * 32))


def default_lora_dims(n_embd: int) -> Dict[str, int]:
    """
    LoRA ranks used by the official RWKV-7 checkpoints for a given width.

    >>> default_lora_dims(768)
    {'dim_att_lora': 64, 'dim_aaa_lora': 64, 'dim_mv_lora': 32, 'dim_gate_lora': 128}
    """
    C = n_embd
    return {
        "dim_att_lora": _round_rank(1.8 * math.sqrt(C)),
        "dim_aaa_lora": _round_rank(1.8 * math.sqrt(C)),
        "dim_mv_lora": _round_rank(1.3 * math.sqrt(C)),
        "dim_gate_lora": _round_rank(0.6 * C ** 0.8),
    }


_DIMENSION_FIELDS = (
    "n_layer", "n_embd", "vocab_size", "head_size", "dim_ffn",
    "dim_att_lora", "dim_aaa_lora", "dim_mv_lora", "dim_gate_lora",
)


@dataclass(frozen=True)
class RWKVConfig:
    """
    RWKV-7 model configuration (immutable).

    Every tensor in the model and every slot of the recurrent state is sized
    from this record, never from the weights themselves.

    Args:
        model_type: Model type, only "rwkv7" is supported
        n_layer: Number of blocks
        n_embd: Embedding width C
        vocab_size: Vocabulary size V
        head_size: Head size N (``n_head = n_embd // head_size``)
        dim_ffn: Channel-mix hidden width (default 4 * n_embd)
        dim_att_lora: Decay LoRA rank
        dim_aaa_lora: In-context learning rate LoRA rank (default = dim_att_lora)
        dim_mv_lora: Value residual LoRA rank
        dim_gate_lora: Output gate LoRA rank
        ffn_receptance: Whether channel-mix carries a receptance gate
        layer_norm_eps: LayerNorm epsilon
        head_size_divisor: GroupNorm epsilon is ``1e-5 * head_size_divisor ** 2``
        bos_token_id / eos_token_id / pad_token_id: Special token ids
    """

    model_type: str = "rwkv7"
    architectures: List[str] = field(default_factory=lambda: ["RWKV7Model"])

    n_layer: int = 12
    n_embd: int = 768
    vocab_size: int = 65536
    head_size: int = 64
    dim_ffn: Optional[int] = None

    dim_att_lora: Optional[int] = None
    dim_aaa_lora: Optional[int] = None
    dim_mv_lora: Optional[int] = None
    dim_gate_lora: Optional[int] = None

    ffn_receptance: bool = False
    layer_norm_eps: float = 1e-5
    head_size_divisor: int = 8

    bos_token_id: Optional[int] = None
    eos_token_id: Optional[int] = 261  # RWKV default: 261 corresponds to '\n\n'
    pad_token_id: Optional[int] = 0

    _extra_config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.model_type != "rwkv7":
            raise InvalidConfig(f"Unsupported model_type: {self.model_type!r}")

        for name in ("n_layer", "n_embd", "vocab_size", "head_size"):
            self._check_positive(name, getattr(self, name))
        if self.n_embd % self.head_size != 0:
            raise InvalidConfig(
                f"n_embd ({self.n_embd}) must be divisible by head_size ({self.head_size})"
            )

        # frozen dataclass: derived fields go through object.__setattr__
        derived = default_lora_dims(self.n_embd)
        if self.dim_att_lora is not None and self.dim_aaa_lora is None:
            derived["dim_aaa_lora"] = self.dim_att_lora
        derived["dim_ffn"] = self.n_embd * 4
        for name, value in derived.items():
            if getattr(self, name) is None:
                object.__setattr__(self, name, value)

        for name in _DIMENSION_FIELDS:
            self._check_positive(name, getattr(self, name))
        if self.layer_norm_eps <= 0:
            raise InvalidConfig(f"layer_norm_eps must be positive, got {self.layer_norm_eps}")
        self._check_positive("head_size_divisor", self.head_size_divisor)

    def __hash__(self):
        # list/dict fields are left out; equal configs still hash equal
        return hash(tuple(
            getattr(self, f.name) for f in fields(self)
            if f.name not in ("architectures", "_extra_config")
        ))

    @staticmethod
    def _check_positive(name: str, value: Any):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidConfig(f"{name} must be an integer, got {value!r}")
        if value <= 0:
            raise InvalidConfig(f"{name} must be positive, got {value}")

    @property
    def n_head(self) -> int:
        return self.n_embd // self.head_size

    @property
    def head_size_a(self) -> int:
        """Alias used by RWKV-LM training configs."""
        return self.head_size

    @property
    def group_norm_eps(self) -> float:
        return 1e-5 * self.head_size_divisor ** 2

    @classmethod
    def from_dict(cls, config_dict: Mapping[str, Any]) -> "RWKVConfig":
        """
        Create config object from dictionary.

        Unknown keys are kept in ``_extra_config`` and written back by
        ``to_dict``. ``head_size_a`` is accepted as an alias of ``head_size``.
        """
        known_fields = {f.name for f in fields(cls) if f.name != "_extra_config"}
        init_kwargs = {}
        extra_config = {}

        for key, value in config_dict.items():
            if key == "head_size_a" and "head_size" not in config_dict:
                key = "head_size"
            if key in known_fields:
                init_kwargs[key] = value
            else:
                extra_config[key] = value

        if extra_config:
            init_kwargs["_extra_config"] = extra_config

        return cls(**init_kwargs)

    @classmethod
    def from_json_file(cls, json_file: str) -> "RWKVConfig":
        with open(json_file, "r", encoding="utf-8") as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    @classmethod
    def from_pretrained(cls, pretrained_model_name_or_path: str) -> "RWKVConfig":
        """
        Load config from a model directory containing config.json.
        """
        if os.path.isdir(pretrained_model_name_or_path):
            config_file = os.path.join(pretrained_model_name_or_path, "config.json")
            if not os.path.exists(config_file):
                raise FileNotFoundError(
                    f"Config file not found: {config_file}\n"
                    f"Please ensure the model directory contains config.json"
                )
            return cls.from_json_file(config_file)

        raise NotImplementedError(f"Remote loading not yet supported: {pretrained_model_name_or_path}")

    @classmethod
    def from_state_dict(cls, state_dict: Mapping[str, Any], **overrides) -> "RWKVConfig":
        """
        Infer the architecture from a weight archive (RWKV-LM key layout).

        Args:
            state_dict: Mapping of weight name to tensor
            **overrides: Fields that take precedence over inferred values

        Raises:
            InvalidConfig: if the archive does not look like an RWKV-7 model
        """
        emb = state_dict.get("emb.weight")
        if emb is None or emb.ndim != 2:
            raise InvalidConfig("Cannot infer config: 'emb.weight' missing or not 2-D")
        vocab_size, n_embd = (int(d) for d in emb.shape)

        layer_ids = set()
        for key in state_dict:
            m = re.match(r"blocks\.(\d+)\.", key)
            if m:
                layer_ids.add(int(m.group(1)))
        if not layer_ids:
            raise InvalidConfig("Cannot infer config: no 'blocks.N.' weights found")

        def _dim(key: str, axis: int) -> Optional[int]:
            tensor = state_dict.get(key)
            if tensor is None or tensor.ndim < 2:
                return None
            return int(tensor.shape[axis])

        inferred: Dict[str, Any] = {
            "vocab_size": vocab_size,
            "n_embd": n_embd,
            "n_layer": max(layer_ids) + 1,
            "dim_ffn": _dim("blocks.0.ffn.key.weight", 0),
            "dim_att_lora": _dim("blocks.0.att.w1", 1),
            "dim_aaa_lora": _dim("blocks.0.att.a1", 1),
            "dim_mv_lora": _dim("blocks.1.att.v1", 1) or _dim("blocks.0.att.v1", 1),
            "dim_gate_lora": _dim("blocks.0.att.g1", 1),
            "ffn_receptance": "blocks.0.ffn.receptance.weight" in state_dict,
        }
        r_k = state_dict.get("blocks.0.att.r_k")
        if r_k is not None and r_k.ndim == 2:
            inferred["head_size"] = int(r_k.shape[1])

        inferred = {k: v for k, v in inferred.items() if v is not None}
        inferred.update(overrides)
        return cls.from_dict(inferred)

    def to_dict(self) -> Dict[str, Any]:
        config_dict = {}
        for key, value in asdict(self).items():
            if key == "_extra_config":
                config_dict.update(value)
            elif value is not None:
                config_dict[key] = value
        return config_dict

    def to_json_file(self, json_file: str, **kwargs):
        json_kwargs = {
            "indent": 2,
            "ensure_ascii": False,
        }
        json_kwargs.update(kwargs)

        directory = os.path.dirname(json_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(json_file, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, **json_kwargs)

    def save_pretrained(self, save_directory: str):
        os.makedirs(save_directory, exist_ok=True)
        self.to_json_file(os.path.join(save_directory, "config.json"))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__} {json.dumps(self.to_dict(), indent=2, ensure_ascii=False)}"
