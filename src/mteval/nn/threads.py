from __future__ import annotations

import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import numpy as np
import torch
from tqdm import tqdm

from ..metrics import write_metric
from ..schemas import IterationResult, NetworkShape, ThreadReport
from .device import resolve_device
from .eval import evaluate_iterations
from .model import ClassifierGraph, build_private_classifier, build_shared_classifier
from .params import ParameterStore


class WorkerTimeoutError(RuntimeError):
    """A worker thread did not finish within the configured join timeout."""


@dataclass(frozen=True)
class EvalConfig:
    input_dim: int = 937
    num_classes: int = 9304
    num_hidden_layers: int = 6
    hidden_dim: int = 2048

    # Per-thread workload
    iterations: int = 4
    num_samples: int = 3

    # Each worker seeds its own generator with this value
    seed: int = 2
    # Parameter initialization seed
    param_seed: int = 1

    # None joins without a bound
    join_timeout: float | None = None
    progress: bool = False

    # Optional JSONL sink for per-iteration loss/error
    metrics_path: str | None = None

    @property
    def shape(self) -> NetworkShape:
        return NetworkShape(
            input_dim=self.input_dim,
            num_classes=self.num_classes,
            num_hidden_layers=self.num_hidden_layers,
            hidden_dim=self.hidden_dim,
        )


def _stderr_echo(msg: str) -> None:
    tqdm.write(msg, file=sys.stderr)
    sys.stderr.flush()


class _Worker:
    def __init__(
        self,
        index: int,
        make_graph: Callable[[int], ClassifierGraph],
        cfg: EvalConfig,
        device: torch.device,
        strategy: str,
    ):
        self.index = index
        self.make_graph = make_graph
        self.cfg = cfg
        self.device = device
        self.strategy = strategy
        self.report: ThreadReport | None = None
        self.error: Exception | None = None

    def _record(self, res: IterationResult) -> None:
        if self.cfg.metrics_path is None:
            return
        for name, value in (("loss_mean", res.loss_mean), ("error_mean", res.error_mean)):
            write_metric(
                path=Path(self.cfg.metrics_path),
                strategy=self.strategy,
                thread=self.index,
                iteration=res.iteration,
                name=name,
                value=value,
            )

    def __call__(self) -> None:
        t0 = time.perf_counter()
        try:
            graph = self.make_graph(self.index)
            rng = np.random.default_rng(self.cfg.seed)
            results = evaluate_iterations(
                graph,
                iterations=self.cfg.iterations,
                num_samples=self.cfg.num_samples,
                rng=rng,
                device=self.device,
                on_result=self._record,
            )
            self.report = ThreadReport(
                thread=self.index,
                parameter_ids=tuple(id(p) for p in graph.parameters()),
                iterations=results,
                elapsed_s=time.perf_counter() - t0,
                finished_at=time.perf_counter(),
            )
        except Exception as e:
            # re-raised by the driver after join
            self.error = e


def run_threads(
    make_graph: Callable[[int], ClassifierGraph],
    *,
    thread_count: int,
    cfg: EvalConfig,
    device: torch.device,
    strategy: str,
    echo: Callable[[str], None] | None = None,
) -> list[ThreadReport]:
    """Start one thread per worker, join them all in launch order.

    ``make_graph(i)`` is called inside worker ``i`` to obtain its graph.
    Each join waits at most ``cfg.join_timeout`` seconds. Every thread is
    joined (or waited on) before anything is raised: threads still alive
    after their wait raise one WorkerTimeoutError naming all of them,
    otherwise the first worker failure is re-raised.
    """

    if thread_count < 1:
        raise ValueError("thread_count must be >= 1")
    echo = _stderr_echo if echo is None else echo

    workers = [_Worker(th, make_graph, cfg, device, strategy) for th in range(thread_count)]
    threads = [
        threading.Thread(target=w, name=f"mteval-{strategy}-{w.index}", daemon=True)
        for w in workers
    ]
    for t in threads:
        t.start()

    stuck: list[int] = []
    for th, t in enumerate(tqdm(threads, desc="Joining", disable=not cfg.progress)):
        t.join(cfg.join_timeout)
        if t.is_alive():
            stuck.append(th)
            continue
        echo(f"thread {th} joined.")

    if stuck:
        raise WorkerTimeoutError(f"threads {stuck} still running after {cfg.join_timeout}s")

    for w in workers:
        if w.error is not None:
            raise w.error

    return [w.report for w in workers if w.report is not None]


def _check_same_device(params_device: torch.device, device: torch.device) -> None:
    if params_device.type != device.type or (
        device.index is not None and params_device.index is not None and params_device.index != device.index
    ):
        raise ValueError(f"parameters live on {params_device} but evaluation was requested on {device}")


def eval_multi_threads_with_new_network(
    device: torch.device | str,
    thread_count: int,
    cfg: EvalConfig = EvalConfig(),
    *,
    echo: Callable[[str], None] | None = None,
    store: ParameterStore | None = None,
) -> list[ThreadReport]:
    """Every thread builds its own graph over one frozen, shared ParameterStore."""

    device = resolve_device(device)
    if store is None:
        store = ParameterStore.allocate(cfg.shape, device=device, seed=cfg.param_seed)
    _check_same_device(store.device, device)
    store.freeze()

    def make_graph(_th: int) -> ClassifierGraph:
        return build_shared_classifier(store)

    return run_threads(
        make_graph,
        thread_count=thread_count,
        cfg=cfg,
        device=device,
        strategy="new_network",
        echo=echo,
    )


def eval_multi_threads_with_clone(
    device: torch.device | str,
    thread_count: int,
    cfg: EvalConfig = EvalConfig(),
    *,
    echo: Callable[[str], None] | None = None,
    base: ClassifierGraph | None = None,
) -> list[ThreadReport]:
    """Build one private-parameter graph (or use ``base``), then evaluate a share-clone per thread."""

    device = resolve_device(device)
    if base is None:
        base = build_private_classifier(cfg.shape, device=device, seed=cfg.param_seed)
    _check_same_device(base.store.device, device)
    base.store.freeze()

    def make_graph(_th: int) -> ClassifierGraph:
        return base.clone()

    return run_threads(
        make_graph,
        thread_count=thread_count,
        cfg=cfg,
        device=device,
        strategy="clone",
        echo=echo,
    )
