from __future__ import annotations

from mteval.metrics import read_metrics, write_metric


def test_read_missing_file(tmp_path):
    assert read_metrics(tmp_path / "nope.jsonl") == []


def test_write_then_read_appends(tmp_path):
    path = tmp_path / "sub" / "metrics.jsonl"
    write_metric(path=path, strategy="clone", thread=1, iteration=0, name="loss_mean", value=2.5)
    write_metric(path=path, strategy="clone", thread=1, iteration=1, name="loss_mean", value=2.0)

    rows = read_metrics(path)
    assert [(r.iteration, r.value) for r in rows] == [(0, 2.5), (1, 2.0)]
    assert rows[0].strategy == "clone" and rows[0].thread == 1
