from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import torch


@dataclass(frozen=True)
class Batch:
    features: torch.Tensor  # (D,1,N) float32
    labels: torch.Tensor  # (C,1,N) float32 one-hot

    @property
    def num_samples(self) -> int:
        return int(self.features.shape[-1])


def make_batch(
    rng: np.random.Generator,
    *,
    input_dim: int,
    num_classes: int,
    num_samples: int,
) -> Batch:
    """Random batch: features ~ U[0, 1), one uniformly drawn class per sample."""

    if num_samples < 1:
        raise ValueError("num_samples must be >= 1")

    x = rng.random((input_dim, 1, num_samples), dtype=np.float32)

    classes = rng.integers(0, num_classes, size=num_samples)
    y = np.zeros((num_classes, 1, num_samples), dtype=np.float32)
    y[classes, 0, np.arange(num_samples)] = 1.0

    return Batch(features=torch.from_numpy(x), labels=torch.from_numpy(y))
