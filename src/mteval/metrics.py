from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class MetricRow:
    strategy: str
    thread: int
    iteration: int
    name: str
    value: float


# Serializes appends from concurrent workers into the same file.
_WRITE_LOCK = threading.Lock()


def read_metrics(path: str | Path) -> list[MetricRow]:
    rows: list[MetricRow] = []
    p = Path(path)
    if not p.exists():
        return rows
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            d = json.loads(line)
            rows.append(
                MetricRow(
                    strategy=str(d.get("strategy", "?")),
                    thread=int(d.get("thread", 0)),
                    iteration=int(d.get("iteration", 0)),
                    name=str(d["name"]),
                    value=float(d["value"]),
                )
            )
    return rows


def write_metric(
    *,
    path: Path,
    strategy: str,
    thread: int,
    iteration: int,
    name: str,
    value: float,
) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    row = {
        "strategy": strategy,
        "thread": int(thread),
        "iteration": int(iteration),
        "name": name,
        "value": float(value),
    }
    with _WRITE_LOCK, path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(row, ensure_ascii=False) + "\n")
