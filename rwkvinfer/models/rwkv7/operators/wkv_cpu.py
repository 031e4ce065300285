"""
RWKV7 WKV recurrence, one token at a time (device agnostic torch ops).
"""

import torch


def wkv7_step(state, r, w, k, v, a, b, head_size: int = 64):
    """
    Advance the per-head WKV memory by one token and read it out.

    Args:
        state: WKV memory [H, N, N] (float32), value rows x key columns
        r: receptance [C]
        w: decay in (0, 1) [C]
        k: key [C]
        v: value [C]
        a: removal direction [C] (``-kk``)
        b: replacement direction [C] (``kk * iclr``)
        head_size: N

    Returns:
        y: output [C] (float32)
        new_state: updated memory [H, N, N] (float32); ``state`` is not modified

    The update is, per head and in this order::

        S' = S * diag(w) + (S @ a) b^T + v k^T
        y  = S' @ r
    """
    C = r.shape[-1]
    H = C // head_size
    N = head_size

    r = r.float().view(H, N, 1)
    w = w.float().view(H, 1, N)
    k = k.float().view(H, 1, N)
    v = v.float().view(H, N, 1)
    a = a.float().view(H, N, 1)
    b = b.float().view(H, 1, N)
    state = state.float()

    new_state = state * w + (state @ a) @ b + v @ k
    y = (new_state @ r).view(C)
    return y, new_state
