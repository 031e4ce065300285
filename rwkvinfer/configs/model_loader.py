"""
Model Configuration Loader

Supports multiple configuration methods:
1. Short config name: "0.1b" -> "rwkv7-0.1b.json"
2. Full config name: "rwkv7-0.1b" -> "rwkv7-0.1b.json"
3. Config file path: "/path/to/config.json"
"""
import json
import os
from typing import Any, Dict, Optional

from rwkvinfer.models.configuration import RWKVConfig

BUILTIN_CONFIG_DIR = os.path.join(os.path.dirname(__file__), "models")


class ModelConfig:
    """Named model preset (nested JSON document)."""

    def __init__(self, config_dict: Dict[str, Any], config_source: str = ""):
        self.config_dict = config_dict
        self.config_source = config_source

        self.architecture_version = config_dict.get("architecture_version", "rwkv7")
        self.model_name = config_dict.get("model_name", "Unknown")
        self.description = config_dict.get("description", "")

        # Model file path (optional)
        self.model_file = config_dict.get("model_file", None)

        arch = config_dict.get("architecture", {})
        self.n_layer = arch.get("n_layer", 12)
        self.n_embd = arch.get("n_embd", 768)
        self.vocab_size = arch.get("vocab_size", 65536)
        self.head_size = arch.get("head_size", arch.get("head_size_a", 64))
        self.dim_ffn = arch.get("dim_ffn", None)

        # LORA dimensions, None means "derive from n_embd"
        lora = config_dict.get("lora_dims", {})
        self.dim_att_lora = lora.get("dim_att_lora", None)
        self.dim_aaa_lora = lora.get("dim_aaa_lora", None)
        self.dim_mv_lora = lora.get("dim_mv_lora", None)
        self.dim_gate_lora = lora.get("dim_gate_lora", None)

    @property
    def model_path(self) -> Optional[str]:
        """Model file path, None if the preset does not name one."""
        return self.model_file

    def to_rwkv_config(self, **overrides) -> RWKVConfig:
        """Build the validated runtime config."""
        config_dict = {
            "n_layer": self.n_layer,
            "n_embd": self.n_embd,
            "vocab_size": self.vocab_size,
            "head_size": self.head_size,
            "dim_ffn": self.dim_ffn,
            "dim_att_lora": self.dim_att_lora,
            "dim_aaa_lora": self.dim_aaa_lora,
            "dim_mv_lora": self.dim_mv_lora,
            "dim_gate_lora": self.dim_gate_lora,
        }
        config_dict.update(overrides)
        return RWKVConfig.from_dict(config_dict)

    def __repr__(self):
        return (f"ModelConfig({self.model_name}, "
                f"arch={self.architecture_version}, "
                f"n_layer={self.n_layer}, n_embd={self.n_embd})")


def list_available_models(config_dir: Optional[str] = None) -> Dict[str, str]:
    """
    List all available model configs

    Returns:
        Dict with key=model name (short and full), value=config file path
    """
    if config_dir is None:
        config_dir = BUILTIN_CONFIG_DIR

    models = {}
    if not os.path.exists(config_dir):
        return models

    for filename in sorted(os.listdir(config_dir)):
        if not filename.endswith(".json"):
            continue
        base_name = filename[:-len(".json")]
        path = os.path.join(config_dir, filename)
        models[base_name] = path
        # "rwkv7-0.1b" is also reachable as "0.1b"
        if "-" in base_name:
            _, short_name = base_name.split("-", 1)
            models[short_name] = path

    return models


def load_model_config(config_identifier: str,
                      config_dir: Optional[str] = None,
                      default_arch: str = "rwkv7") -> ModelConfig:
    """
    Load model config (supports multiple methods)

    Args:
        config_identifier: Config identifier, supports three formats:
            1. Short name: "0.1b", "1.5b" -> auto-finds "{default_arch}-{size}.json"
            2. Full name: "rwkv7-0.1b" -> finds "rwkv7-0.1b.json"
            3. File path: "/path/to/config.json" or "./custom.json"
        config_dir: Config file directory, defaults to rwkvinfer/configs/models
        default_arch: Default architecture version when using short name

    Returns:
        ModelConfig object

    Examples:
        >>> config = load_model_config("0.1b")
        >>> config = load_model_config("/path/to/my_config.json")
    """
    if config_dir is None:
        config_dir = BUILTIN_CONFIG_DIR

    if os.sep in config_identifier or "/" in config_identifier or config_identifier.endswith(".json"):
        config_file = os.path.abspath(config_identifier)
        config_source = f"file:{config_file}"
        if not os.path.exists(config_file):
            raise FileNotFoundError(f"Config file not found: {config_file}")
    else:
        available = list_available_models(config_dir)
        full_name = f"{default_arch}-{config_identifier}"
        if config_identifier in available:
            config_file = available[config_identifier]
        elif full_name in available:
            config_file = available[full_name]
        else:
            raise FileNotFoundError(
                f"Config not found: '{config_identifier}'\n"
                f"Available configs: {sorted(set(available.keys()))}\n"
                f"Or provide full config file path"
            )
        config_source = f"builtin:{os.path.basename(config_file)[:-len('.json')]}"

    with open(config_file, "r", encoding="utf-8") as f:
        config_dict = json.load(f)

    return ModelConfig(config_dict, config_source=config_source)


def format_model_info(config: ModelConfig) -> str:
    """Human-readable summary of a preset."""
    rwkv_config = config.to_rwkv_config()
    lines = [
        "=" * 60,
        f"Model Config: {config.model_name}",
        "=" * 60,
        f"Architecture version: {config.architecture_version}",
        f"Config source: {config.config_source}",
        f"Description: {config.description}",
        f"Model file: {config.model_file or '(not specified)'}",
        "",
        "Architecture params:",
        f"  n_layer: {rwkv_config.n_layer}",
        f"  n_embd: {rwkv_config.n_embd}",
        f"  vocab_size: {rwkv_config.vocab_size}",
        f"  head_size: {rwkv_config.head_size}",
        f"  n_head: {rwkv_config.n_head}",
        f"  dim_ffn: {rwkv_config.dim_ffn}",
        "",
        "LORA dimensions:",
        f"  dim_att_lora: {rwkv_config.dim_att_lora}",
        f"  dim_aaa_lora: {rwkv_config.dim_aaa_lora}",
        f"  dim_mv_lora: {rwkv_config.dim_mv_lora}",
        f"  dim_gate_lora: {rwkv_config.dim_gate_lora}",
        "=" * 60,
    ]
    return "\n".join(lines)


def print_model_info(config: ModelConfig):
    print(format_model_info(config))
