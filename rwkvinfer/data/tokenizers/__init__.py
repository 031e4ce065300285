"""
Tokenizers for RWKV models
"""

import os
from typing import Optional, Union

from rwkvinfer.data.tokenizers.rwkv_tokenizer import TRIE, TRIE_TOKENIZER

__all__ = [
    "TRIE",
    "TRIE_TOKENIZER",
    "get_tokenizer",
]

VOCAB_ENV_VAR = "RWKV_VOCAB_PATH"


def get_tokenizer(
    vocab_path: Optional[str] = None,
    eos_token: Optional[Union[str, int]] = None,
) -> TRIE_TOKENIZER:
    """
    Get RWKV tokenizer instance.

    Args:
        vocab_path: Path to a vocabulary file (e.g. rwkv_vocab_v20230424.txt).
                    Falls back to the RWKV_VOCAB_PATH environment variable.
        eos_token: EOS token, default is double newline.
                   Can be a string or token ID (int).

    Returns:
        TRIE_TOKENIZER instance

    Raises:
        FileNotFoundError: If no vocabulary file can be found
    """
    if vocab_path is None:
        vocab_path = os.environ.get(VOCAB_ENV_VAR)
    if not vocab_path:
        raise FileNotFoundError(
            f"No vocabulary file given. Pass vocab_path or set {VOCAB_ENV_VAR}."
        )
    if not os.path.exists(vocab_path):
        raise FileNotFoundError(f"Vocabulary file not found: {vocab_path}")

    return TRIE_TOKENIZER(vocab_path, eos_token=eos_token)
