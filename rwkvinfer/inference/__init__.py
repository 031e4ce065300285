"""
Inference utilities for RWKV models
"""

from rwkvinfer.inference.session import InferenceSession, SessionStatus
from rwkvinfer.inference.pipeline import InferencePipeline
from rwkvinfer.inference.verification import (
    DistributionComparison,
    compare_logits,
    log_probabilities,
    stable_softmax,
)

__all__ = [
    "InferencePipeline",
    "InferenceSession",
    "SessionStatus",
    "DistributionComparison",
    "compare_logits",
    "log_probabilities",
    "stable_softmax",
]
