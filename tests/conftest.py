from __future__ import annotations

import pytest
import torch

from mteval.nn.params import ParameterStore
from mteval.nn.threads import EvalConfig
from mteval.schemas import NetworkShape


@pytest.fixture
def shape() -> NetworkShape:
    return NetworkShape(input_dim=7, num_classes=5, num_hidden_layers=3, hidden_dim=6)


@pytest.fixture
def store(shape: NetworkShape) -> ParameterStore:
    return ParameterStore.allocate(shape, device=torch.device("cpu"), seed=1)


@pytest.fixture
def small_cfg(shape: NetworkShape) -> EvalConfig:
    return EvalConfig(
        input_dim=shape.input_dim,
        num_classes=shape.num_classes,
        num_hidden_layers=shape.num_hidden_layers,
        hidden_dim=shape.hidden_dim,
    )
