"""
Data utilities (tokenizers)
"""

from rwkvinfer.data.tokenizers import TRIE_TOKENIZER, get_tokenizer

__all__ = [
    "TRIE_TOKENIZER",
    "get_tokenizer",
]
