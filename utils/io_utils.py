"""Helpers for reading and writing pipeline artifacts."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, IO


def read_json_file(path: str) -> Any:
    """Load JSON content from disk."""

    target = Path(path)
    if not target.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")

    with target.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def write_json(path: Path, payload: Any) -> None:
    """Persist JSON atomically so readers never observe a half-written file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
            handle.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def append_jsonl(handle: IO[str], entry: Any) -> None:
    """Append one JSON document per line and flush immediately."""

    handle.write(json.dumps(entry, ensure_ascii=False) + "\n")
    handle.flush()
