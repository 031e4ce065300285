"""
Distribution comparison helpers for checking logits against a reference.

Softmax is evaluated in float64 and cast back, so tiny logit differences
are not swamped by rounding in half-precision runs.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Union

import numpy as np
import torch

ArrayLike = Union[torch.Tensor, np.ndarray]


def _as_tensor(x: ArrayLike) -> torch.Tensor:
    if isinstance(x, np.ndarray):
        return torch.from_numpy(x)
    return x.detach().cpu()


def stable_softmax(logits: ArrayLike, dim: int = -1) -> torch.Tensor:
    """Softmax computed in float64 with max subtraction, cast back to the input dtype."""
    t = _as_tensor(logits)
    out_dtype = t.dtype if t.is_floating_point() else torch.float32
    x = t.to(torch.float64)
    x = x - x.max(dim=dim, keepdim=True).values
    probs = torch.exp(x)
    probs = probs / probs.sum(dim=dim, keepdim=True)
    return probs.to(out_dtype)


def log_probabilities(logits: ArrayLike, dim: int = -1) -> torch.Tensor:
    """float64 log-softmax."""
    return torch.log_softmax(_as_tensor(logits).to(torch.float64), dim=dim)


@dataclass
class DistributionComparison:
    """
    Distances between a candidate and a reference next-token distribution.

    Attributes:
        l1 / l2 / linf: Norms of the probability difference
        kl_divergence: KL(reference || candidate), in nats
        topk_agreement: |top-k(candidate) ∩ top-k(reference)| / k
        argmax_match: Whether both put the most mass on the same token
    """
    l1: float
    l2: float
    linf: float
    kl_divergence: float
    topk_agreement: float
    argmax_match: bool

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def compare_logits(logits: ArrayLike, reference: ArrayLike, top_k: int = 5) -> DistributionComparison:
    """
    Compare two 1-D logit vectors of the same vocabulary.

    Args:
        logits: Candidate logits [V]
        reference: Reference logits [V]
        top_k: k for the top-k agreement metric

    Returns:
        DistributionComparison
    """
    cand = _as_tensor(logits).to(torch.float64).flatten()
    ref = _as_tensor(reference).to(torch.float64).flatten()
    if cand.shape != ref.shape:
        raise ValueError(f"Shape mismatch: {tuple(cand.shape)} vs {tuple(ref.shape)}")
    if top_k <= 0:
        raise ValueError(f"top_k must be positive, got {top_k}")

    log_p = torch.log_softmax(ref, dim=-1)
    log_q = torch.log_softmax(cand, dim=-1)
    p = log_p.exp()
    q = log_q.exp()
    diff = q - p

    k = min(top_k, cand.numel())
    top_c = set(torch.topk(cand, k).indices.tolist())
    top_r = set(torch.topk(ref, k).indices.tolist())

    return DistributionComparison(
        l1=diff.abs().sum().item(),
        l2=diff.norm(p=2).item(),
        linf=diff.abs().max().item(),
        kl_divergence=(p * (log_p - log_q)).sum().item(),
        topk_agreement=len(top_c & top_r) / k,
        argmax_match=bool(cand.argmax().item() == ref.argmax().item()),
    )
