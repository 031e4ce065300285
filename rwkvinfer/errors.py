"""
Exceptions raised by rwkvinfer.

Load-time errors (InvalidConfig, ShapeMismatch, MissingWeightKey, DeviceError,
VocabularyError) abort model/tokenizer construction. Per-step errors
(OutOfVocabulary) abort only the current forward call and leave the
recurrent state untouched.
"""

from typing import Iterable, Sequence


class RWKVError(Exception):
    """Base for all rwkvinfer errors."""


class InvalidConfig(RWKVError, ValueError):
    """Raised when hyperparameters are non-positive or inconsistent."""


class ShapeMismatch(RWKVError):
    """Raised when a weight tensor does not have the shape the config implies."""

    def __init__(self, key: str, expected: Sequence[int], actual: Sequence[int]):
        self.key = key
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(
            f"Weight '{key}' has shape {self.actual}, expected {self.expected}"
        )


class MissingWeightKey(RWKVError, KeyError):
    """Raised when required tensors are absent from a weight archive."""

    def __init__(self, keys: Iterable[str]):
        self.keys = sorted(keys)
        preview = ", ".join(self.keys[:5])
        if len(self.keys) > 5:
            preview += f", ... ({len(self.keys)} total)"
        super().__init__(f"Missing weight keys: {preview}")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


class OutOfVocabulary(RWKVError, IndexError):
    """Raised when a token id falls outside [0, vocab_size)."""

    def __init__(self, token_id: int, vocab_size: int):
        self.token_id = token_id
        self.vocab_size = vocab_size
        super().__init__(f"Token id {token_id} out of vocabulary (vocab_size={vocab_size})")


class UnknownTokenId(OutOfVocabulary):
    """Raised when the tokenizer is asked to decode an id it does not know."""


class DeviceError(RWKVError, RuntimeError):
    """Raised when the requested compute device cannot be used."""


class VocabularyError(RWKVError, ValueError):
    """Raised when a vocabulary file is malformed or incomplete."""


class SessionClosed(RWKVError, RuntimeError):
    """Raised when a terminated inference session is used."""
