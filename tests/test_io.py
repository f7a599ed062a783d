from __future__ import annotations

from pathlib import Path

import pytest

from airi.utils.io import append_record, atomic_write_json, iter_records, read_json


def test_atomic_write_roundtrip(tmp_path: Path):
    path = tmp_path / "table.json"
    atomic_write_json(path, {"a": 1})
    atomic_write_json(path, {"a": 2})
    assert read_json(path) == {"a": 2}
    assert [p.name for p in tmp_path.iterdir()] == ["table.json"]


def test_failed_atomic_write_leaves_no_temp_file(tmp_path: Path):
    path = tmp_path / "table.json"
    atomic_write_json(path, {"a": 1})
    with pytest.raises(OSError):
        atomic_write_json(path, {"bad": object()})
    # The previous contents survive and nothing is left behind
    assert read_json(path) == {"a": 1}
    assert [p.name for p in tmp_path.iterdir()] == ["table.json"]


def test_records_stream_in_order_and_skip_torn_lines(tmp_path: Path):
    path = tmp_path / "log.jsonl"
    assert list(iter_records(path)) == []
    append_record(path, {"n": 1})
    with path.open("a", encoding="utf-8") as f:
        f.write('{"n": \n')
    append_record(path, {"n": 2})
    assert [r["n"] for r in iter_records(path)] == [1, 2]


def test_unserializable_record_is_not_written(tmp_path: Path):
    path = tmp_path / "log.jsonl"
    with pytest.raises(ValueError):
        append_record(path, {"bad": object()})
    assert not path.exists()
