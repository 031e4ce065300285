"""
Device and precision handles.

The compute device is always passed explicitly into model construction;
nothing here changes torch's process-wide defaults.
"""

from typing import Optional, Union

import torch

from rwkvinfer.errors import DeviceError

DTYPE_MAP = {
    "float32": torch.float32,
    "fp32": torch.float32,
    "float16": torch.float16,
    "fp16": torch.float16,
    "bfloat16": torch.bfloat16,
    "bf16": torch.bfloat16,
}


def resolve_device(device: Optional[Union[str, torch.device]] = "cpu") -> torch.device:
    """
    Turn a device string or handle into a usable ``torch.device``.

    Raises:
        DeviceError: unknown device string, CUDA requested but unavailable,
                     or CUDA index out of range
    """
    if device is None:
        device = "cpu"
    try:
        dev = device if isinstance(device, torch.device) else torch.device(device)
    except (RuntimeError, TypeError) as e:
        raise DeviceError(f"Invalid device specification {device!r}: {e}") from e

    if dev.type == "cpu":
        return dev
    if dev.type == "cuda":
        if not torch.cuda.is_available():
            raise DeviceError(f"Device {dev} requested but CUDA is not available")
        count = torch.cuda.device_count()
        if dev.index is not None and dev.index >= count:
            raise DeviceError(f"Device {dev} requested but only {count} CUDA device(s) present")
        return dev
    if dev.type == "mps":
        mps = getattr(torch.backends, "mps", None)
        if mps is None or not mps.is_available():
            raise DeviceError(f"Device {dev} requested but MPS is not available")
        return dev
    raise DeviceError(f"Unsupported device type: {dev.type}")


def resolve_dtype(dtype: Optional[Union[str, torch.dtype]] = None) -> torch.dtype:
    """Map "fp32" / "fp16" / "bf16" (or a torch.dtype) to a floating dtype."""
    if dtype is None:
        return torch.float32
    if isinstance(dtype, torch.dtype):
        if not dtype.is_floating_point:
            raise ValueError(f"Model dtype must be floating point, got {dtype}")
        return dtype
    try:
        return DTYPE_MAP[dtype.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown precision {dtype!r}, expected one of {sorted(DTYPE_MAP)}"
        ) from None
