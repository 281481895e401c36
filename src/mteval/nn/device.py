from __future__ import annotations

import torch


def default_device() -> torch.device:
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


def resolve_device(name: str | torch.device | None = "auto") -> torch.device:
    """Map a device selector ("auto", "cpu", "cuda", "cuda:1", ...) to a torch.device."""

    if isinstance(name, torch.device):
        device = name
    elif name is None or str(name).strip().lower() in ("", "auto"):
        return default_device()
    else:
        try:
            device = torch.device(str(name).strip().lower())
        except RuntimeError as e:
            raise ValueError(f"unknown device selector: {name!r}") from e

    if device.type == "cuda":
        if not torch.cuda.is_available():
            raise ValueError(f"device {device} requested but CUDA is not available")
        if device.index is not None and device.index >= torch.cuda.device_count():
            raise ValueError(f"device {device} out of range (found {torch.cuda.device_count()} GPUs)")
    return device
