from __future__ import annotations

from typing import Callable, Iterable, Mapping

import numpy as np
import torch

from ..schemas import IterationResult
from .data import make_batch
from .model import ClassifierGraph, InputVariable, OutputVariable
from .params import ShapeMismatchError


def _bind(var: InputVariable, value: torch.Tensor | np.ndarray, n: int | None) -> torch.Tensor:
    t = torch.as_tensor(value)
    if t.dim() != 3 or t.shape[0] != var.dim or t.shape[1] != 1 or t.shape[2] < 1:
        raise ShapeMismatchError(
            f"{var.name}: expected Value of shape ({var.dim}, 1, N), got {tuple(t.shape)}"
        )
    if n is not None and t.shape[2] != n:
        raise ShapeMismatchError(f"{var.name}: batch size {t.shape[2]} does not match {n}")
    return t


@torch.no_grad()
def forward(
    graph: ClassifierGraph,
    arguments: Mapping[InputVariable, torch.Tensor | np.ndarray],
    outputs: Iterable[OutputVariable] | None = None,
    *,
    device: torch.device | str | None = None,
) -> dict[OutputVariable, torch.Tensor]:
    """Run one forward pass of ``graph``.

    arguments: Value per input variable; features (D,1,N), labels (C,1,N).
    outputs: which outputs to return (default: all three).

    Returns a new mapping: loss (N,), error (N,), classifier output (C,1,N).
    Shape problems raise ShapeMismatchError before any compute is issued.
    """

    features, labels = graph.arguments()

    unknown = [v.name for v in arguments if v is not features and v is not labels]
    if unknown:
        raise ShapeMismatchError(f"values bound to variables not in {graph.name}: {unknown}")
    missing = [v.name for v in (features, labels) if v not in arguments]
    if missing:
        raise ShapeMismatchError(f"no Value bound for {missing}")

    x = _bind(features, arguments[features], None)
    y = _bind(labels, arguments[labels], int(x.shape[2]))

    graph_outputs = graph.outputs()
    requested = graph_outputs if outputs is None else tuple(outputs)
    for o in requested:
        if not any(o is g for g in graph_outputs):
            raise ValueError(f"{o.name!r} is not an output of {graph.name}")

    if device is None:
        device = graph.store.device
    device = torch.device(device)

    n = int(x.shape[2])
    x2 = x.to(device=device, dtype=features.dtype).reshape(features.dim, n)
    y2 = y.to(device=device, dtype=labels.dtype).reshape(labels.dim, n)

    loss, error, z = graph(x2, y2)

    values = {graph.loss: loss, graph.error: error, graph.classifier_output: z.unsqueeze(1)}
    return {o: values[o] for o in requested}


def evaluate_iterations(
    graph: ClassifierGraph,
    *,
    iterations: int,
    num_samples: int,
    rng: np.random.Generator,
    device: torch.device | str | None = None,
    on_result: Callable[[IterationResult], None] | None = None,
) -> list[IterationResult]:
    """Evaluate ``graph`` on ``iterations`` fresh random batches."""

    shape = graph.shape
    results: list[IterationResult] = []
    for t in range(iterations):
        batch = make_batch(
            rng,
            input_dim=shape.input_dim,
            num_classes=shape.num_classes,
            num_samples=num_samples,
        )
        out = forward(
            graph,
            {graph.features: batch.features, graph.labels: batch.labels},
            (graph.loss, graph.error),
            device=device,
        )
        res = IterationResult(
            iteration=t,
            num_samples=batch.num_samples,
            loss_mean=float(out[graph.loss].mean().item()),
            error_mean=float(out[graph.error].mean().item()),
        )
        results.append(res)
        if on_result is not None:
            on_result(res)
    return results
