# tests/test_report.py
from __future__ import annotations

import gzip
import json

import pandas as pd

from migration_runner.core.errors import asset_download_error, cannot_reach_server_error
from migration_runner.core.session import EntityGroup
from migration_runner.report import (
    ERROR_COLUMNS,
    entity_counts_frame,
    errors_frame,
    save_error_report,
)


def test_errors_frame_has_fixed_columns_first():
    df = errors_frame([cannot_reach_server_error(), {"code": "X", "meta": {"row": 1}}])

    assert list(df.columns[:len(ERROR_COLUMNS)]) == ERROR_COLUMNS
    assert "meta" in df.columns
    assert len(df) == 2


def test_errors_frame_empty():
    df = errors_frame([])
    assert df.empty
    assert list(df.columns) == ERROR_COLUMNS


def test_entity_counts_frame():
    groups = [EntityGroup.from_dict({
        "id": "products", "target": "catalog", "targetId": "c1",
        "entities": [{"entityName": "product", "entityCount": 3},
                     {"entityName": "category", "entityCount": 2}],
    })]

    df = entity_counts_frame(groups)

    assert df["entity"].tolist() == ["product", "category"]
    assert df["count"].sum() == 5


def test_save_error_report_csv(tmp_path):
    path = tmp_path / "reports" / "errors.csv"

    written = save_error_report([asset_download_error("http://old/a.jpg")], path)

    assert written == path
    df = pd.read_csv(path)
    assert df.loc[0, "path"] == "http://old/a.jpg"
    assert df.loc[0, "trace"] == "[]"


def test_save_error_report_mixed_code_types_does_not_raise(tmp_path):
    # built-in descriptors carry string codes, server ones may carry ints
    errors = [cannot_reach_server_error(), {"code": 500, "status": 500, "detail": "x"}]
    path = tmp_path / "errors.parquet"

    written = save_error_report(errors, path)

    assert written in (path, path.with_suffix(".json.gz"))
    if written.suffix == ".gz":
        with gzip.open(written, "rt", encoding="utf-8") as f:
            rows = [json.loads(line) for line in f]
        assert [r["code"] for r in rows] == ["0", 500]
    else:
        assert len(pd.read_parquet(written)) == 2


def test_save_error_report_falls_back_when_parquet_fails(tmp_path, monkeypatch):
    def broken_to_parquet(self, *args, **kwargs):
        raise ValueError("Conversion failed for column code")

    monkeypatch.setattr(pd.DataFrame, "to_parquet", broken_to_parquet)
    path = tmp_path / "errors.parquet"

    written = save_error_report([asset_download_error("http://old/b.jpg")], path)

    assert written == tmp_path / "errors.json.gz"
    with gzip.open(written, "rt", encoding="utf-8") as f:
        rows = [json.loads(line) for line in f]
    assert rows[0]["path"] == "http://old/b.jpg"
