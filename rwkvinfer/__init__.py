"""
rwkvinfer: Recurrent inference runtime for RWKV-7 models

- RWKV7Model: one token in, one state update, one logit vector out
- RWKV7State: per-session recurrent memory (WKV matrices + token-shift vectors)
- TRIE_TOKENIZER: byte-level RWKV vocabulary tokenizer
- InferencePipeline / InferenceSession: loading and session lifecycle
- compare_logits: distribution distances for checking against a reference
"""

__version__ = "0.1.0"
__author__ = "rwkvinfer Contributors"
__license__ = "Apache-2.0"

from rwkvinfer.errors import (
    RWKVError,
    InvalidConfig,
    ShapeMismatch,
    MissingWeightKey,
    OutOfVocabulary,
    UnknownTokenId,
    DeviceError,
    VocabularyError,
    SessionClosed,
)

from rwkvinfer.models import (
    RWKVConfig,
    RWKV7Model,
    RWKV7State,
    AutoModel,
    load_checkpoint,
    validate_weights,
)

from rwkvinfer.data.tokenizers import TRIE_TOKENIZER, get_tokenizer

from rwkvinfer.inference import (
    InferencePipeline,
    InferenceSession,
    SessionStatus,
    compare_logits,
    stable_softmax,
)

from rwkvinfer.configs import load_model_config, list_available_models

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Errors
    "RWKVError",
    "InvalidConfig",
    "ShapeMismatch",
    "MissingWeightKey",
    "OutOfVocabulary",
    "UnknownTokenId",
    "DeviceError",
    "VocabularyError",
    "SessionClosed",
    # Models
    "RWKVConfig",
    "RWKV7Model",
    "RWKV7State",
    "AutoModel",
    "load_checkpoint",
    "validate_weights",
    # Tokenizers
    "TRIE_TOKENIZER",
    "get_tokenizer",
    # Inference
    "InferencePipeline",
    "InferenceSession",
    "SessionStatus",
    "compare_logits",
    "stable_softmax",
    # Configs
    "load_model_config",
    "list_available_models",
]
