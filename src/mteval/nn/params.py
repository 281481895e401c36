from __future__ import annotations

import threading
from typing import Iterator

import torch
import torch.nn as nn

from ..schemas import NetworkShape


class ShapeMismatchError(ValueError):
    """A tensor does not have the shape its slot was declared with."""


class FrozenParameterError(RuntimeError):
    """Raised when a published (frozen) ParameterStore is asked to change."""


def uniform_parameter(
    shape: tuple[int, ...],
    low: float,
    high: float,
    *,
    generator: torch.Generator,
    device: torch.device,
) -> nn.Parameter:
    data = torch.empty(shape, dtype=torch.float32, device=device)
    data.uniform_(low, high, generator=generator)
    return nn.Parameter(data)


def constant_parameter(shape: tuple[int, ...], value: float, *, device: torch.device) -> nn.Parameter:
    return nn.Parameter(torch.full(shape, float(value), dtype=torch.float32, device=device))


class ParameterStore:
    """Weights and biases of a fully connected classifier, allocated once.

    Layout for H hidden layers (column-vector convention, y = W @ x + b):

      - ``input.weight``    (hidden_dim, input_dim), ``input.bias`` (hidden_dim,)
      - ``hidden.{i}.weight`` (hidden_dim, hidden_dim), ``hidden.{i}.bias`` for i < H-1
      - ``output.weight``   (num_classes, hidden_dim), no output bias

    Graphs built from a store hold the very same ``nn.Parameter`` objects.
    Once ``freeze()`` has been called the store may be read from any number
    of threads; ``update`` is refused from then on.
    """

    def __init__(
        self,
        shape: NetworkShape,
        *,
        layers: list[tuple[nn.Parameter, nn.Parameter]],
        output_weight: nn.Parameter,
    ):
        if len(layers) != shape.num_hidden_layers:
            raise ValueError(
                f"expected {shape.num_hidden_layers} (weight, bias) pairs, got {len(layers)}"
            )
        self.shape = shape

        self._params: dict[str, nn.Parameter] = {}
        for i, (w, b) in enumerate(layers):
            prefix = "input" if i == 0 else f"hidden.{i - 1}"
            self._params[f"{prefix}.weight"] = w
            self._params[f"{prefix}.bias"] = b
        self._params["output.weight"] = output_weight

        self._frozen = False
        self._lock = threading.Lock()

    @classmethod
    def allocate(
        cls,
        shape: NetworkShape,
        *,
        device: torch.device | str = "cpu",
        seed: int = 1,
        weight_range: float = 0.5,
        bias_range: float | None = None,
        output_range: float | None = None,
    ) -> "ParameterStore":
        """Allocate fresh parameters on ``device``.

        Weights are drawn from U(-weight_range, weight_range) with a private
        generator seeded from ``seed``. Biases are zero unless ``bias_range``
        is given. The output projection uses ``output_range`` (defaults to
        ``weight_range``).
        """

        device = torch.device(device)
        gen = torch.Generator(device=device)
        gen.manual_seed(int(seed))
        out_r = weight_range if output_range is None else output_range

        layers: list[tuple[nn.Parameter, nn.Parameter]] = []
        in_dim = shape.input_dim
        for _ in range(shape.num_hidden_layers):
            w = uniform_parameter((shape.hidden_dim, in_dim), -weight_range, weight_range, generator=gen, device=device)
            if bias_range is None:
                b = constant_parameter((shape.hidden_dim,), 0.0, device=device)
            else:
                b = uniform_parameter((shape.hidden_dim,), -bias_range, bias_range, generator=gen, device=device)
            layers.append((w, b))
            in_dim = shape.hidden_dim

        output_weight = uniform_parameter((shape.num_classes, shape.hidden_dim), -out_r, out_r, generator=gen, device=device)
        return cls(shape, layers=layers, output_weight=output_weight)

    def __len__(self) -> int:
        return len(self._params)

    def __getitem__(self, name: str) -> nn.Parameter:
        return self._params[name]

    def named_parameters(self) -> Iterator[tuple[str, nn.Parameter]]:
        yield from self._params.items()

    def layers(self) -> list[tuple[nn.Parameter, nn.Parameter]]:
        """(weight, bias) per hidden layer, input layer first."""
        out = [(self._params["input.weight"], self._params["input.bias"])]
        for i in range(self.shape.num_hidden_layers - 1):
            out.append((self._params[f"hidden.{i}.weight"], self._params[f"hidden.{i}.bias"]))
        return out

    @property
    def output_weight(self) -> nn.Parameter:
        return self._params["output.weight"]

    @property
    def device(self) -> torch.device:
        return self.output_weight.device

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "ParameterStore":
        """Mark the store as published to readers. Idempotent."""
        with self._lock:
            for p in self._params.values():
                p.requires_grad_(False)
            self._frozen = True
        return self

    def update(self, name: str, value: torch.Tensor) -> None:
        """Overwrite one parameter in place, keeping its identity."""
        with self._lock:
            if self._frozen:
                raise FrozenParameterError(f"cannot update {name!r}: store is frozen")
            p = self._params[name]
            value = torch.as_tensor(value)
            if tuple(value.shape) != tuple(p.shape):
                raise ShapeMismatchError(
                    f"{name}: expected shape {tuple(p.shape)}, got {tuple(value.shape)}"
                )
            with torch.no_grad():
                p.copy_(value.to(device=p.device, dtype=p.dtype))
