"""
Independent float64 numpy implementation of one RWKV-7 step.

Written against the RWKV-LM numpy reference (johanwind), operating on a
plain dict of arrays; shares no code with rwkvinfer.models.
"""

import numpy as np


def layer_norm(x, w, b, eps=1e-5):
    return (x - x.mean()) / np.sqrt(x.var() + eps) * w + b


def group_norm(x, w, b, eps=64e-5):
    # x: [H, N]
    mean = x.mean(axis=1, keepdims=True)
    var = x.var(axis=1, keepdims=True)
    return ((x - mean) / np.sqrt(var + eps)).flatten() * w + b


def sigmoid(x):
    return 1.0 / (1.0 + np.exp(-x))


def to_numpy(weights):
    return {k: v.detach().double().numpy().squeeze() for k, v in weights.items()}


def time_mixing(p, prefix, layer_id, x, v_first, last_x, S, H, N):
    g = lambda name: p[prefix + name]
    xr, xw, xk, xv, xa, xg = [x + g(m) * (last_x - x) for m in ("x_r", "x_w", "x_k", "x_v", "x_a", "x_g")]

    r = g("receptance.weight") @ xr
    w = np.exp(-sigmoid(np.tanh(xw @ g("w1")) @ g("w2") + g("w0")) / np.e ** 0.5)
    k = g("key.weight") @ xk
    v = g("value.weight") @ xv
    if layer_id == 0:
        v_first = v
    else:
        v = v + (v_first - v) * sigmoid(xv @ g("v1") @ g("v2") + g("v0"))
    a = sigmoid(xa @ g("a1") @ g("a2") + g("a0"))
    gate = sigmoid(xg @ g("g1")) @ g("g2")
    kk = k * g("k_k")
    k = k + k * (a - 1) * g("k_a")

    r, w, k, v, kk, a = [t.reshape(H, N, 1) for t in (r, w, k, v, kk, a)]
    r_k = g("r_k").reshape(H, N, 1)
    kk = kk / np.maximum(np.linalg.norm(kk, axis=1, keepdims=True), 1e-12)

    S = S * np.swapaxes(w, 1, 2) - S @ kk * np.swapaxes(kk * a, 1, 2) + v * np.swapaxes(k, 1, 2)
    y = S @ r

    y = group_norm(y.reshape(H, N), g("ln_x.weight"), g("ln_x.bias"))
    y = y + ((r * k * r_k).sum(axis=1, keepdims=True) * v).flatten()
    return g("output.weight") @ (y * gate), v_first, x, S


def channel_mixing(p, prefix, x, last_x):
    k = p[prefix + "key.weight"] @ (x + p[prefix + "x_k"] * (last_x - x))
    return p[prefix + "value.weight"] @ np.maximum(k, 0) ** 2, x


def run(weights, config, tokens):
    """Feed ``tokens`` from a zero state and return the logits after each token."""
    p = to_numpy(weights)
    L, C = config.n_layer, config.n_embd
    H, N = config.n_head, config.head_size
    shift = np.zeros((L, 2, C))
    wkv = np.zeros((L, H, N, N))

    all_logits = []
    for token in tokens:
        x = p["emb.weight"][token]
        x = layer_norm(x, p["blocks.0.ln0.weight"], p["blocks.0.ln0.bias"])
        v_first = None
        for i in range(L):
            blk = f"blocks.{i}."
            xx = layer_norm(x, p[blk + "ln1.weight"], p[blk + "ln1.bias"])
            dx, v_first, shift[i, 0], wkv[i] = time_mixing(
                p, blk + "att.", i, xx, v_first, shift[i, 0], wkv[i], H, N
            )
            x = x + dx
            xx = layer_norm(x, p[blk + "ln2.weight"], p[blk + "ln2.bias"])
            dx, shift[i, 1] = channel_mixing(p, blk + "ffn.", xx, shift[i, 1])
            x = x + dx
        x = layer_norm(x, p["ln_out.weight"], p["ln_out.bias"])
        all_logits.append(p["head.weight"] @ x)
    return np.stack(all_logits)
