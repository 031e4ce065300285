"""
Generation session: one model, one exclusive RWKV7State.

Lifecycle::

    UNINITIALIZED --start()--> READY --step()--> STEPPING --step()--> ...
          READY/STEPPING --reset()--> READY
          any --close()--> TERMINATED
"""

from enum import Enum, auto
from typing import List, Optional, Sequence

import torch

from rwkvinfer.errors import SessionClosed
from rwkvinfer.models.rwkv7 import RWKV7Model, RWKV7State


class SessionStatus(Enum):
    """Session status"""
    UNINITIALIZED = auto()  # No state allocated yet
    READY = auto()          # State zeroed, no token consumed
    STEPPING = auto()       # At least one token consumed
    TERMINATED = auto()     # Disposed


class InferenceSession:
    """
    Drives ``RWKV7Model.forward`` for one token stream.

    Sessions never share state; create one per concurrent stream. The model
    (weights and config) may be shared freely.
    """

    def __init__(self, model: RWKV7Model, lazy: bool = False):
        self.model = model
        self.state: Optional[RWKV7State] = None
        self.status = SessionStatus.UNINITIALIZED
        self.tokens: List[int] = []
        self.last_logits: Optional[torch.Tensor] = None
        if not lazy:
            self.start()

    def _check_open(self):
        if self.status is SessionStatus.TERMINATED:
            raise SessionClosed("Session has been closed")

    def start(self) -> "InferenceSession":
        """Allocate a zero state (UNINITIALIZED -> READY)."""
        self._check_open()
        if self.state is None:
            self.state = self.model.init_state()
            self.status = SessionStatus.READY
        return self

    def step(self, token_id: int) -> torch.Tensor:
        """
        Consume one token; return the next-token logits.

        On OutOfVocabulary the state and status are left as they were.
        """
        self._check_open()
        if self.status is SessionStatus.UNINITIALIZED:
            self.start()
        logits = self.model(token_id, self.state)
        self.tokens.append(int(token_id))
        self.last_logits = logits
        self.status = SessionStatus.STEPPING
        return logits

    def feed(self, token_ids: Sequence[int]) -> torch.Tensor:
        """Consume a token sequence; return the logits after the last token."""
        self._check_open()
        if self.status is SessionStatus.UNINITIALIZED:
            self.start()
        if hasattr(token_ids, "tolist"):
            token_ids = token_ids.tolist()
        token_ids = list(token_ids)
        logits, _ = self.model.forward_sequence(token_ids, self.state)
        self.tokens.extend(int(t) for t in token_ids)
        self.last_logits = logits
        self.status = SessionStatus.STEPPING
        return logits

    def reset(self) -> "InferenceSession":
        """Re-zero the state for a fresh prompt (-> READY)."""
        self._check_open()
        if self.state is None:
            return self.start()
        self.state.reset()
        self.tokens = []
        self.last_logits = None
        self.status = SessionStatus.READY
        return self

    def snapshot(self) -> RWKV7State:
        """Copy of the current state."""
        self._check_open()
        if self.state is None:
            self.start()
        return self.state.clone()

    def close(self):
        """Release the state (-> TERMINATED). Idempotent."""
        self.state = None
        self.last_logits = None
        self.status = SessionStatus.TERMINATED

    @property
    def closed(self) -> bool:
        return self.status is SessionStatus.TERMINATED

    def __enter__(self) -> "InferenceSession":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        return f"InferenceSession(status={self.status.name}, tokens={len(self.tokens)})"
