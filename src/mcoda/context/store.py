"""JSONL persistence for context lanes."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from mcoda.context.models import ContextMessage, LaneSnapshot
from mcoda.errors import StorageIOError
from mcoda.storage.files import write_text_atomic

_UNSAFE_LANE_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def safe_lane_id(lane_id: str) -> str:
    return _UNSAFE_LANE_CHARS.sub("_", lane_id)


class ContextStore:
    """One ``<safe_lane_id>.jsonl`` file per lane under the workspace."""

    def __init__(self, workspace_root: Path, storage_dir: str = ".mcoda/context") -> None:
        self.workspace_root = workspace_root.resolve()
        self.storage_dir = storage_dir

    def lane_path(self, lane_id: str) -> Path:
        resolved_dir = (self.workspace_root / self.storage_dir).resolve()
        path = resolved_dir / f"{safe_lane_id(lane_id)}.jsonl"
        if not path.is_relative_to(self.workspace_root):
            raise ValueError(f"Context lane path is outside workspace root: {path}")
        return path

    def load_lane(self, lane_id: str) -> LaneSnapshot:
        path = self.lane_path(lane_id)
        try:
            raw = path.read_bytes()
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return LaneSnapshot(lane_id=lane_id, messages=[], message_count=0, byte_size=0)
        except OSError as error:
            raise StorageIOError("Failed to read context lane", path=path) from error

        messages: list[ContextMessage] = []
        for line in raw.decode("utf-8").splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            try:
                record = json.loads(stripped)
            except json.JSONDecodeError as error:
                raise StorageIOError("Corrupt context lane record", path=path) from error
            if not isinstance(record, dict):
                raise StorageIOError("Context lane record must be an object", path=path)
            messages.append(ContextMessage.from_record(record))
        return LaneSnapshot(
            lane_id=lane_id,
            messages=messages,
            message_count=len(messages),
            byte_size=len(raw),
            updated_at=datetime.fromtimestamp(mtime, tz=UTC),
        )

    def append(self, lane_id: str, messages: Iterable[ContextMessage]) -> LaneSnapshot:
        path = self.lane_path(lane_id)
        payload = _encode_lines(messages)
        if payload:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(payload)
            except OSError as error:
                raise StorageIOError("Failed to append context lane", path=path) from error
        return self.load_lane(lane_id)

    def replace(self, lane_id: str, messages: Iterable[ContextMessage]) -> LaneSnapshot:
        write_text_atomic(self.lane_path(lane_id), _encode_lines(messages))
        return self.load_lane(lane_id)

    def truncate(self, lane_id: str, max_messages: int) -> LaneSnapshot:
        if max_messages < 0:
            raise ValueError("max_messages must be non-negative")
        snapshot = self.load_lane(lane_id)
        if snapshot.message_count <= max_messages:
            return snapshot
        kept = snapshot.messages[-max_messages:] if max_messages else []
        return self.replace(lane_id, kept)


def _encode_lines(messages: Iterable[ContextMessage]) -> str:
    lines = [json.dumps(message.to_record(), ensure_ascii=False) for message in messages]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
