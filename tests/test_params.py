from __future__ import annotations

import pytest
import torch

from mteval.nn.params import FrozenParameterError, ParameterStore, ShapeMismatchError
from mteval.schemas import NetworkShape


def test_allocate_layout(store, shape):
    names = [n for n, _ in store.named_parameters()]
    assert names == [
        "input.weight",
        "input.bias",
        "hidden.0.weight",
        "hidden.0.bias",
        "hidden.1.weight",
        "hidden.1.bias",
        "output.weight",
    ]
    assert len(store) == shape.num_parameters == 7

    assert tuple(store["input.weight"].shape) == (6, 7)
    assert tuple(store["hidden.1.weight"].shape) == (6, 6)
    assert tuple(store.output_weight.shape) == (5, 6)


def test_allocate_ranges_and_zero_bias(store):
    for name, p in store.named_parameters():
        if name.endswith(".bias"):
            assert torch.count_nonzero(p).item() == 0
        else:
            assert float(p.abs().max()) <= 0.5


def test_allocate_is_deterministic_per_seed(shape):
    a = ParameterStore.allocate(shape, seed=3)
    b = ParameterStore.allocate(shape, seed=3)
    c = ParameterStore.allocate(shape, seed=4)
    assert torch.equal(a.output_weight, b.output_weight)
    assert not torch.equal(a.output_weight, c.output_weight)


def test_layers_chain_order(store):
    layers = store.layers()
    assert len(layers) == 3
    assert layers[0][0] is store["input.weight"]
    assert layers[2][1] is store["hidden.1.bias"]


def test_update_keeps_identity(store):
    p = store["input.bias"]
    store.update("input.bias", torch.ones(6))
    assert store["input.bias"] is p
    assert torch.equal(p.detach(), torch.ones(6))


def test_update_rejects_wrong_shape(store):
    with pytest.raises(ShapeMismatchError):
        store.update("input.bias", torch.ones(7))


def test_update_unknown_name(store):
    with pytest.raises(KeyError):
        store.update("output.bias", torch.ones(5))


def test_freeze_blocks_updates(store):
    assert not store.frozen
    store.freeze()
    assert store.frozen
    assert all(not p.requires_grad for _, p in store.named_parameters())
    with pytest.raises(FrozenParameterError):
        store.update("input.bias", torch.zeros(6))
    # idempotent
    store.freeze()
    assert store.frozen


def test_layer_count_must_match_shape(shape):
    other = ParameterStore.allocate(shape)
    with pytest.raises(ValueError):
        ParameterStore(shape, layers=other.layers()[:2], output_weight=other.output_weight)


def test_shape_requires_hidden_layer():
    with pytest.raises(ValueError):
        NetworkShape(input_dim=3, num_classes=2, num_hidden_layers=0, hidden_dim=4)
