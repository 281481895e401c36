from __future__ import annotations

import threading
import time
from dataclasses import replace

import pytest
import torch

from mteval.metrics import read_metrics
from mteval.nn.model import build_private_classifier, build_shared_classifier
from mteval.nn.params import ParameterStore
from mteval.nn.threads import (
    EvalConfig,
    WorkerTimeoutError,
    eval_multi_threads_with_clone,
    eval_multi_threads_with_new_network,
    run_threads,
)


def test_new_network_runs_every_thread(small_cfg):
    lines: list[str] = []
    reports = eval_multi_threads_with_new_network("cpu", 4, small_cfg, echo=lines.append)

    assert [r.thread for r in reports] == [0, 1, 2, 3]
    assert all(len(r.iterations) == 4 for r in reports)
    assert sum(len(r.iterations) for r in reports) == 16
    assert lines == [f"thread {i} joined." for i in range(4)]


def test_new_network_threads_share_one_store(small_cfg, store):
    reports = eval_multi_threads_with_new_network("cpu", 3, small_cfg, echo=lambda _: None, store=store)

    assert store.frozen
    expected = tuple(id(p) for _, p in store.named_parameters())
    assert all(r.parameter_ids == expected for r in reports)


def test_threads_reseed_independently(small_cfg):
    reports = eval_multi_threads_with_new_network("cpu", 2, small_cfg, echo=lambda _: None)
    # same seed per thread, same shared parameters: identical sequences
    a = [it.loss_mean for it in reports[0].iterations]
    b = [it.loss_mean for it in reports[1].iterations]
    assert a == pytest.approx(b)


def test_join_lines_follow_thread_completion(small_cfg):
    joined_at: dict[int, float] = {}

    def echo(msg: str) -> None:
        th = int(msg.split()[1])
        joined_at[th] = time.perf_counter()

    reports = eval_multi_threads_with_new_network("cpu", 4, small_cfg, echo=echo)
    for r in reports:
        assert joined_at[r.thread] >= r.finished_at
    # the driver returns only after the last join line
    assert max(joined_at.values()) >= max(r.finished_at for r in reports)


def test_clone_strategy(small_cfg):
    lines: list[str] = []
    reports = eval_multi_threads_with_clone("cpu", 3, small_cfg, echo=lines.append)

    assert len(reports) == 3
    assert len({r.parameter_ids for r in reports}) == 1
    assert len(reports[0].parameter_ids) == 2 * small_cfg.num_hidden_layers + 1
    assert lines == ["thread 0 joined.", "thread 1 joined.", "thread 2 joined."]


def test_thread_count_must_be_positive(small_cfg):
    with pytest.raises(ValueError):
        eval_multi_threads_with_new_network("cpu", 0, small_cfg, echo=lambda _: None)


def test_worker_failure_is_reraised_after_join(small_cfg, store):
    lines: list[str] = []

    def make_graph(th: int):
        if th == 1:
            raise RuntimeError("boom in worker 1")
        return build_shared_classifier(store)

    with pytest.raises(RuntimeError, match="boom in worker 1"):
        run_threads(
            make_graph,
            thread_count=3,
            cfg=small_cfg,
            device=torch.device("cpu"),
            strategy="test",
            echo=lines.append,
        )
    assert len(lines) == 3


def test_join_timeout_waits_on_every_thread(small_cfg, store):
    release = threading.Event()
    lines: list[str] = []

    def make_graph(th: int):
        if th == 0:
            release.wait(5.0)
        return build_shared_classifier(store)

    cfg = replace(small_cfg, join_timeout=1.0)
    try:
        with pytest.raises(WorkerTimeoutError, match=r"threads \[0\]"):
            run_threads(
                make_graph,
                thread_count=3,
                cfg=cfg,
                device=torch.device("cpu"),
                strategy="test",
                echo=lines.append,
            )
    finally:
        release.set()
    # the threads that finished are still joined and reported
    assert lines == ["thread 1 joined.", "thread 2 joined."]


def test_metrics_written_per_iteration(small_cfg, tmp_path):
    path = tmp_path / "metrics.jsonl"
    cfg = replace(small_cfg, iterations=2, metrics_path=str(path))
    eval_multi_threads_with_new_network("cpu", 2, cfg, echo=lambda _: None)

    rows = read_metrics(path)
    assert len(rows) == 2 * 2 * 2
    assert {r.strategy for r in rows} == {"new_network"}
    assert {(r.thread, r.iteration) for r in rows} == {(0, 0), (0, 1), (1, 0), (1, 1)}
    assert {r.name for r in rows} == {"loss_mean", "error_mean"}


def test_default_config_matches_reference_scenario():
    cfg = EvalConfig()
    assert (cfg.input_dim, cfg.num_classes, cfg.num_hidden_layers, cfg.hidden_dim) == (937, 9304, 6, 2048)
    assert (cfg.iterations, cfg.num_samples) == (4, 3)
    assert cfg.shape.num_parameters == 13


@pytest.mark.slow
def test_reference_scenario_full_size():
    lines: list[str] = []
    reports = eval_multi_threads_with_new_network("cpu", 4, EvalConfig(), echo=lines.append)
    assert sum(len(r.iterations) for r in reports) == 16
    assert len(lines) == 4


def _snapshot(store):
    return {n: p.detach().clone() for n, p in store.named_parameters()}


def test_new_network_leaves_shared_parameters_untouched(small_cfg, store):
    before = _snapshot(store)
    eval_multi_threads_with_new_network("cpu", 4, small_cfg, echo=lambda _: None, store=store)

    after = _snapshot(store)
    assert before.keys() == after.keys()
    assert all(torch.equal(before[n], after[n]) for n in before)


def test_clone_leaves_shared_parameters_untouched(small_cfg):
    base = build_private_classifier(small_cfg.shape, seed=small_cfg.param_seed)
    before = _snapshot(base.store)
    reports = eval_multi_threads_with_clone("cpu", 4, small_cfg, echo=lambda _: None, base=base)

    assert base.store.frozen
    assert all(r.parameter_ids == tuple(id(p) for p in base.parameters()) for r in reports)
    after = _snapshot(base.store)
    assert all(torch.equal(before[n], after[n]) for n in before)


def test_store_on_other_device_is_rejected(small_cfg, store):
    lines: list[str] = []
    with pytest.raises(ValueError, match="parameters live on cpu"):
        eval_multi_threads_with_new_network("meta", 2, small_cfg, echo=lines.append, store=store)
    assert lines == []
    assert not store.frozen


def test_clone_base_on_other_device_is_rejected(small_cfg):
    base = build_private_classifier(small_cfg.shape)
    with pytest.raises(ValueError, match="parameters live on cpu"):
        eval_multi_threads_with_clone("meta", 2, small_cfg, echo=lambda _: None, base=base)
