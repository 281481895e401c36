from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..schemas import NetworkShape
from .params import ParameterStore

Nonlinearity = Callable[[torch.Tensor], torch.Tensor]


class GraphStructureError(RuntimeError):
    """A built graph does not expose the expected parameters/arguments/outputs."""


@dataclass(frozen=True, eq=False)
class InputVariable:
    """Placeholder for an external input; fulfilled by a Value at evaluation time.

    ``shape`` is the per-sample shape. Variables compare by identity.
    """

    name: str
    shape: tuple[int, ...]
    dtype: torch.dtype = torch.float32

    @property
    def dim(self) -> int:
        return int(self.shape[0])


@dataclass(frozen=True, eq=False)
class OutputVariable:
    name: str
    shape: tuple[int, ...] = field(default=())


def input_variable(dim: int, name: str) -> InputVariable:
    return InputVariable(name=name, shape=(int(dim),))


def fully_connected_layer(
    x: torch.Tensor,
    weight: torch.Tensor,
    bias: torch.Tensor,
    nonlinearity: Nonlinearity,
) -> torch.Tensor:
    """x: (in, N) -> nonlinearity(W @ x + b): (out, N)"""
    return nonlinearity(weight @ x + bias[:, None])


class ClassifierGraph(nn.Module):
    """Feed-forward classifier with loss and error heads, over a ParameterStore.

    The graph registers the store's Parameter objects directly, so any number
    of graphs (and their clones) evaluate against one allocation.
    """

    def __init__(
        self,
        store: ParameterStore,
        *,
        features: InputVariable,
        labels: InputVariable,
        nonlinearity: Nonlinearity = torch.sigmoid,
        name: str = "ClassifierModel",
    ):
        super().__init__()
        if len(features.shape) != 1:
            raise ValueError(f"features must have rank 1, got shape {features.shape}")
        if store.shape.num_hidden_layers < 1:
            raise ValueError("at least one hidden layer is required")

        self.store = store
        self.name = name
        self.features = features
        self.labels = labels
        self.nonlinearity = nonlinearity

        self._layers = store.layers()
        for i, (w, b) in enumerate(self._layers):
            self.register_parameter(f"layer{i}_weight", w)
            self.register_parameter(f"layer{i}_bias", b)
        self.register_parameter("output_weight", store.output_weight)

        self.loss = OutputVariable("LossFunction")
        self.error = OutputVariable("ClassificationError")
        self.classifier_output = OutputVariable("classifierOutput", (store.shape.num_classes,))

    @property
    def shape(self) -> NetworkShape:
        return self.store.shape

    def arguments(self) -> tuple[InputVariable, InputVariable]:
        return (self.features, self.labels)

    def outputs(self) -> tuple[OutputVariable, OutputVariable, OutputVariable]:
        return (self.loss, self.error, self.classifier_output)

    def classify(self, x: torch.Tensor) -> torch.Tensor:
        h = x
        for w, b in self._layers:
            h = fully_connected_layer(h, w, b, self.nonlinearity)
        return self.output_weight @ h

    def forward(self, x: torch.Tensor, labels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """x: (D,N), labels: (C,N) -> (loss (N,), error (N,), logits (C,N))"""
        z = self.classify(x)
        loss = F.cross_entropy(z.T, labels.T, reduction="none")
        error = (z.argmax(dim=0) != labels.argmax(dim=0)).to(z.dtype)
        return loss, error, z

    def clone(self) -> "ClassifierGraph":
        """Same structure and inputs, same Parameter objects, fresh output handles."""
        return ClassifierGraph(
            self.store,
            features=self.features,
            labels=self.labels,
            nonlinearity=self.nonlinearity,
            name=self.name,
        )


def check_structure(graph: ClassifierGraph, num_hidden_layers: int) -> None:
    n_params = len(list(graph.parameters()))
    if n_params != 2 * num_hidden_layers + 1:
        raise GraphStructureError(
            f"{graph.name}: expected {2 * num_hidden_layers + 1} parameters, found {n_params}"
        )
    if len(graph.arguments()) != 2:
        raise GraphStructureError(f"{graph.name}: expected 2 arguments, found {len(graph.arguments())}")
    if len(graph.outputs()) != 3:
        raise GraphStructureError(f"{graph.name}: expected 3 outputs, found {len(graph.outputs())}")


def build_shared_classifier(
    store: ParameterStore,
    *,
    features: InputVariable | None = None,
    labels: InputVariable | None = None,
    nonlinearity: Nonlinearity = torch.sigmoid,
) -> ClassifierGraph:
    """Build a classifier graph that reuses every parameter of ``store``."""

    shape = store.shape
    if features is None:
        features = input_variable(shape.input_dim, "Features")
    if labels is None:
        labels = input_variable(shape.num_classes, "Labels")

    graph = ClassifierGraph(store, features=features, labels=labels, nonlinearity=nonlinearity)
    check_structure(graph, shape.num_hidden_layers)
    return graph


def build_private_classifier(
    shape: NetworkShape,
    *,
    device: torch.device | str = "cpu",
    seed: int = 1,
    nonlinearity: Nonlinearity = torch.sigmoid,
) -> ClassifierGraph:
    """Build a classifier graph over its own freshly initialized parameters.

    Hidden weights and biases ~ U(-0.05, 0.05), output projection ~ U(-0.5, 0.5).
    """

    store = ParameterStore.allocate(
        shape,
        device=device,
        seed=seed,
        weight_range=0.05,
        bias_range=0.05,
        output_range=0.5,
    )
    return build_shared_classifier(store, nonlinearity=nonlinearity)
