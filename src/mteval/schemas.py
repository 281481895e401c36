from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class NetworkShape:
    input_dim: int
    num_classes: int
    num_hidden_layers: int
    hidden_dim: int

    def __post_init__(self) -> None:
        if self.num_hidden_layers < 1:
            raise ValueError("num_hidden_layers must be >= 1")
        if min(self.input_dim, self.num_classes, self.hidden_dim) < 1:
            raise ValueError("input_dim, num_classes and hidden_dim must be positive")

    @property
    def num_parameters(self) -> int:
        # one weight+bias pair per hidden layer, plus the output projection weight
        return 2 * self.num_hidden_layers + 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IterationResult:
    iteration: int
    num_samples: int
    loss_mean: float
    error_mean: float


@dataclass(frozen=True)
class ThreadReport:
    thread: int
    parameter_ids: tuple[int, ...]
    iterations: list[IterationResult]
    elapsed_s: float
    finished_at: float = 0.0  # time.perf_counter() when the worker returned

    @property
    def loss_mean(self) -> float:
        return float(sum(r.loss_mean for r in self.iterations) / max(1, len(self.iterations)))

    @property
    def error_mean(self) -> float:
        return float(sum(r.error_mean for r in self.iterations) / max(1, len(self.iterations)))

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["parameter_ids"] = list(self.parameter_ids)
        d["iterations"] = [asdict(r) for r in self.iterations]
        return d
