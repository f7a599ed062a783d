"""File helpers for the disk store: atomic JSON tables and an append-only JSONL log."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterator, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_dir(p: PathLike) -> Path:
    p = Path(p)
    p.mkdir(parents=True, exist_ok=True)
    return p


def append_record(path: PathLike, record: Dict[str, Any]) -> None:
    """Append one record as a JSON line and fsync it before returning.

    Raises ValueError if the record is not JSON-serializable (nothing is
    written) and OSError if the write fails.
    """
    try:
        line = json.dumps(record, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Record is not JSON-serializable: {e}") from e

    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")
        f.flush()
        os.fsync(f.fileno())


def iter_records(path: PathLike) -> Iterator[Dict[str, Any]]:
    """Yield the records of a JSONL log lazily, oldest first.

    A missing file yields nothing. Lines that are not valid JSON (e.g. a write
    torn by a crash) are logged and skipped.
    """
    p = Path(path)
    if not p.exists():
        return
    with open(p, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping corrupt line %d in %s: %s", line_no, p, e)


def read_json(path: PathLike, default: Any = None) -> Any:
    """Load a JSON document, returning ``default`` when the file is absent."""
    p = Path(path)
    if not p.exists():
        return default
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def atomic_write_json(path: PathLike, data: Any) -> None:
    """Write through a temp file + replace so readers never see half a file.

    On failure the temp file is removed and OSError is raised.
    """
    p = Path(path)
    ensure_dir(p.parent)
    fd, tmp_name = tempfile.mkstemp(dir=str(p.parent), prefix=f".{p.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            json.dump(data, tmp, ensure_ascii=False, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, p)
    except (OSError, TypeError, ValueError) as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise OSError(f"Atomic write failed for {p}: {e}") from e
