"""
Inference pipeline for RWKV models
"""

import warnings
from typing import List, Optional, Sequence, Union

import torch

from rwkvinfer.data.tokenizers import get_tokenizer
from rwkvinfer.inference.session import InferenceSession
from rwkvinfer.inference.verification import stable_softmax
from rwkvinfer.models.configuration import RWKVConfig
from rwkvinfer.models.rwkv7 import RWKV7Model
from rwkvinfer.models.weights import load_checkpoint
from rwkvinfer.runtime.device import resolve_device, resolve_dtype


class InferencePipeline:
    """RWKV7 inference pipeline: tokenizer + model + sessions."""

    def __init__(
        self,
        model_path: Optional[str] = None,
        model_config: Optional[str] = None,
        device: str = "cpu",
        precision: str = "fp32",
        vocab_path: Optional[str] = None,
        eos_token: Optional[Union[str, int]] = None,
        verbose: bool = True,
    ):
        """
        Initialize inference pipeline

        Args:
            model_path: Weight file or directory (optional if model_config names one)
            model_config: Preset name ("0.1b", "rwkv7-1.5b") or config file path;
                          if None the architecture is inferred from the checkpoint
            device: Device (cpu/cuda/cuda:N)
            precision: Precision (fp32/fp16/bf16)
            vocab_path: Vocabulary file (falls back to RWKV_VOCAB_PATH)
            eos_token: EOS token passed to the tokenizer
            verbose: Print loading progress
        """
        self.device = resolve_device(device)
        dtype = resolve_dtype(precision)
        if self.device.type == "cpu" and dtype != torch.float32:
            warnings.warn(f"precision={precision!r} is slow or unsupported on CPU, using fp32")
            dtype = torch.float32
        self.verbose = verbose

        config: Optional[RWKVConfig] = None
        if model_config:
            from rwkvinfer.configs.model_loader import load_model_config
            config_obj = load_model_config(model_config)

            # Priority: explicit model_path > config file model_file
            if not model_path:
                if not config_obj.model_path:
                    raise ValueError(
                        "No model_file specified in config and no model_path provided"
                    )
                model_path = config_obj.model_path

            config = config_obj.to_rwkv_config()
            self._log(f"[OK] Using model config: {config_obj.model_name} ({config_obj.architecture_version})")
            self._log(f"[OK] Config source: {config_obj.config_source}")
        elif not model_path:
            raise ValueError("Must provide model_path or model_config")

        self.tokenizer = get_tokenizer(vocab_path, eos_token=eos_token)

        self._log(f"Loading model checkpoint: {model_path}")
        checkpoint = load_checkpoint(model_path)
        if config is None:
            self._log("[WARN] Not using config system, inferring model params from checkpoint")
            config = RWKVConfig.from_state_dict(checkpoint)

        if self.tokenizer.vocab_size > config.vocab_size:
            raise ValueError(
                f"Tokenizer vocabulary ({self.tokenizer.vocab_size}) is larger than "
                f"the model vocabulary ({config.vocab_size})"
            )

        self.config = config
        self.model = RWKV7Model(config, device=self.device, dtype=dtype)
        self.model.load_weights(checkpoint)
        del checkpoint

        self._log(f"[OK] Model loaded: {config.n_layer} layers, {config.n_embd} dim, "
                  f"{config.vocab_size} vocab ({dtype})")

    @classmethod
    def from_components(cls, model: RWKV7Model, tokenizer) -> "InferencePipeline":
        """Wrap an already loaded model and tokenizer."""
        pipeline = cls.__new__(cls)
        pipeline.device = model.device
        pipeline.verbose = False
        pipeline.tokenizer = tokenizer
        pipeline.config = model.config
        pipeline.model = model
        return pipeline

    def _log(self, msg: str):
        if self.verbose:
            print(msg)

    def encode(self, text: str) -> List[int]:
        """Encode text to token ids"""
        return self.tokenizer.encode(text)

    def decode(self, tokens: Sequence[int]) -> str:
        """Decode token ids to text"""
        return self.tokenizer.decode(tokens)

    def new_session(self) -> InferenceSession:
        """A fresh session with its own zeroed state."""
        return InferenceSession(self.model)

    def prompt_logits(self, prompt: Union[str, Sequence[int]], full_output: bool = False) -> torch.Tensor:
        """
        Run a prompt through a fresh state.

        Args:
            prompt: Text or token ids
            full_output: Return logits for every position

        Returns:
            [vocab_size] or [T, vocab_size] logits (float32)
        """
        tokens = self.encode(prompt) if isinstance(prompt, str) else list(prompt)
        logits, _ = self.model.forward_sequence(tokens, full_output=full_output)
        return logits

    def next_token_probs(self, prompt: Union[str, Sequence[int]]) -> torch.Tensor:
        """Next-token distribution after ``prompt`` (softmax in float64)."""
        return stable_softmax(self.prompt_logits(prompt))
