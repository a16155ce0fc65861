"""Durable file writes shared by job checkpoints and context lanes."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from mcoda.errors import StorageIOError


def write_text_atomic(path: Path, text: str) -> None:
    """Write through a synced temp file renamed over the target."""

    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as error:
        raise StorageIOError("Failed to write file atomically", path=path) from error
    finally:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)
