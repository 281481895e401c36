from __future__ import annotations

from dataclasses import asdict
from pathlib import Path

import pandas as pd
import typer

from .metrics import read_metrics
from .nn.device import resolve_device
from .nn.threads import EvalConfig, eval_multi_threads_with_clone, eval_multi_threads_with_new_network
from .schemas import ThreadReport

app = typer.Typer(no_args_is_help=True)


@app.callback()
def _root() -> None:
    """Evaluate a feed-forward classifier from many threads over one shared parameter set."""
    return


def _make_config(
    *,
    input_dim: int,
    num_classes: int,
    hidden_layers: int,
    hidden_dim: int,
    iterations: int,
    samples: int,
    seed: int,
    param_seed: int,
    join_timeout: float,
    progress: bool,
    out_metrics: Path | None,
) -> EvalConfig:
    return EvalConfig(
        input_dim=int(input_dim),
        num_classes=int(num_classes),
        num_hidden_layers=int(hidden_layers),
        hidden_dim=int(hidden_dim),
        iterations=int(iterations),
        num_samples=int(samples),
        seed=int(seed),
        param_seed=int(param_seed),
        join_timeout=(None if float(join_timeout) <= 0 else float(join_timeout)),
        progress=bool(progress),
        metrics_path=(None if out_metrics is None else str(out_metrics)),
    )


def _write_summary(path: Path, reports: list[ThreadReport], strategy: str) -> None:
    rows = [
        {
            "strategy": strategy,
            "thread": r.thread,
            "iterations": len(r.iterations),
            "samples": sum(it.num_samples for it in r.iterations),
            "loss_mean": r.loss_mean,
            "error_mean": r.error_mean,
            "elapsed_s": r.elapsed_s,
        }
        for r in reports
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows).to_csv(path, index=False)
    typer.echo(f"Wrote {len(rows)} rows -> {path}")


def _device_or_bad_parameter(device: str):
    try:
        return resolve_device(device)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--device")


@app.command("eval-new-network")
def eval_new_network(
    device: str = typer.Option("auto", help="Compute device: auto, cpu, cuda, cuda:N"),
    threads: int = typer.Option(4, help="Number of evaluation threads"),
    input_dim: int = typer.Option(937, help="Feature dimension D"),
    num_classes: int = typer.Option(9304, help="Output class count C"),
    hidden_layers: int = typer.Option(6, help="Number of hidden layers H"),
    hidden_dim: int = typer.Option(2048, help="Hidden layer width"),
    iterations: int = typer.Option(4, help="Forward passes per thread"),
    samples: int = typer.Option(3, help="Batch size per forward pass"),
    seed: int = typer.Option(2, help="Per-thread batch generator seed"),
    param_seed: int = typer.Option(1, help="Parameter initialization seed"),
    join_timeout: float = typer.Option(0.0, help="Seconds to wait for each thread (<=0 waits forever)"),
    progress: bool = typer.Option(False, help="Show a progress bar while joining"),
    out_metrics: Path | None = typer.Option(None, help="Optional: per-iteration metrics JSONL"),
    out_summary: Path | None = typer.Option(None, help="Optional: per-thread summary CSV"),
) -> None:
    """Each thread builds its own graph over one shared, frozen parameter store."""

    dev = _device_or_bad_parameter(device)
    cfg = _make_config(
        input_dim=input_dim,
        num_classes=num_classes,
        hidden_layers=hidden_layers,
        hidden_dim=hidden_dim,
        iterations=iterations,
        samples=samples,
        seed=seed,
        param_seed=param_seed,
        join_timeout=join_timeout,
        progress=progress,
        out_metrics=out_metrics,
    )
    reports = eval_multi_threads_with_new_network(dev, threads, cfg)
    typer.echo(f"Evaluated {sum(len(r.iterations) for r in reports)} batches on {dev} across {len(reports)} threads")

    if out_summary is not None:
        _write_summary(out_summary, reports, "new_network")


@app.command("eval-clone")
def eval_clone(
    device: str = typer.Option("auto", help="Compute device: auto, cpu, cuda, cuda:N"),
    threads: int = typer.Option(4, help="Number of evaluation threads"),
    input_dim: int = typer.Option(937, help="Feature dimension D"),
    num_classes: int = typer.Option(9304, help="Output class count C"),
    hidden_layers: int = typer.Option(6, help="Number of hidden layers H"),
    hidden_dim: int = typer.Option(2048, help="Hidden layer width"),
    iterations: int = typer.Option(4, help="Forward passes per thread"),
    samples: int = typer.Option(3, help="Batch size per forward pass"),
    seed: int = typer.Option(2, help="Per-thread batch generator seed"),
    param_seed: int = typer.Option(1, help="Parameter initialization seed"),
    join_timeout: float = typer.Option(0.0, help="Seconds to wait for each thread (<=0 waits forever)"),
    progress: bool = typer.Option(False, help="Show a progress bar while joining"),
    out_metrics: Path | None = typer.Option(None, help="Optional: per-iteration metrics JSONL"),
    out_summary: Path | None = typer.Option(None, help="Optional: per-thread summary CSV"),
) -> None:
    """Build one graph, then evaluate a parameter-sharing clone of it in each thread."""

    dev = _device_or_bad_parameter(device)
    cfg = _make_config(
        input_dim=input_dim,
        num_classes=num_classes,
        hidden_layers=hidden_layers,
        hidden_dim=hidden_dim,
        iterations=iterations,
        samples=samples,
        seed=seed,
        param_seed=param_seed,
        join_timeout=join_timeout,
        progress=progress,
        out_metrics=out_metrics,
    )
    reports = eval_multi_threads_with_clone(dev, threads, cfg)
    typer.echo(f"Evaluated {sum(len(r.iterations) for r in reports)} batches on {dev} across {len(reports)} threads")

    if out_summary is not None:
        _write_summary(out_summary, reports, "clone")


@app.command("summarize-metrics")
def summarize_metrics(
    metrics: Path = typer.Option(..., help="Metrics JSONL written by --out-metrics"),
    out: Path | None = typer.Option(None, help="Optional: write the summary table as CSV"),
) -> None:
    """Average each metric per strategy and thread over all iterations."""

    rows = read_metrics(metrics)
    if not rows:
        raise typer.BadParameter(f"no metric rows in {metrics}", param_hint="--metrics")

    df = pd.DataFrame([asdict(r) for r in rows])
    summary = (
        df.pivot_table(index=["strategy", "thread"], columns="name", values="value", aggfunc="mean")
        .reset_index()
        .rename_axis(columns=None)
    )
    typer.echo(summary.to_string(index=False))

    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        summary.to_csv(out, index=False)
        typer.echo(f"Wrote {len(summary)} rows -> {out}")


@app.command("version")
def version() -> None:
    from . import __version__

    typer.echo(__version__)


if __name__ == "__main__":
    app()
