"""File-based contracts for job manifests and sequenced checkpoints."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mcoda.errors import StorageIOError
from mcoda.jobs.models import CheckpointRecord, JobManifest, normalize_job_state
from mcoda.storage.files import write_text_atomic

CHECKPOINT_SUFFIX = ".ckpt.json"
CHECKPOINT_SEQ_WIDTH = 6
LEGACY_CHECKPOINT_NAME = "checkpoint.json"
MANIFEST_NAME = "manifest.json"

_CHECKPOINT_NAME_RE = re.compile(r"^(\d+)\.ckpt\.json$")


@dataclass(slots=True, frozen=True)
class JobPaths:
    """On-disk layout of one job under ``<root>/.mcoda/jobs/<job_id>``."""

    job_dir: Path

    @classmethod
    def for_job(cls, workspace_root: Path, job_id: str) -> JobPaths:
        return cls(job_dir=workspace_root / ".mcoda" / "jobs" / job_id)

    @property
    def manifest(self) -> Path:
        return self.job_dir / MANIFEST_NAME

    @property
    def checkpoints_dir(self) -> Path:
        return self.job_dir / "checkpoints"

    @property
    def legacy_checkpoint(self) -> Path:
        return self.job_dir / LEGACY_CHECKPOINT_NAME

    def checkpoint_file(self, seq: int) -> Path:
        return self.checkpoints_dir / f"{seq:0{CHECKPOINT_SEQ_WIDTH}d}{CHECKPOINT_SUFFIX}"

    def ensure(self) -> None:
        try:
            self.checkpoints_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise StorageIOError("Failed to create job directory", path=self.job_dir) from error


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    write_text_atomic(path, json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True))


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except OSError as error:
        raise StorageIOError("Failed to read JSON", path=path) from error
    except json.JSONDecodeError as error:
        raise StorageIOError("Corrupt JSON document", path=path) from error
    if not isinstance(payload, dict):
        raise StorageIOError("Expected JSON object", path=path)
    return payload


def write_manifest(path: Path, manifest: JobManifest) -> None:
    write_json_atomic(
        path,
        {
            "schema_version": manifest.schema_version,
            "job_id": manifest.job_id,
            "workspace_root": manifest.workspace_root,
            "workspace_id": manifest.workspace_id,
            "command_name": manifest.command_name,
            "job_type": manifest.job_type,
            "created_at": manifest.created_at,
            "resume_supported": manifest.resume_supported,
            "payload": manifest.payload,
        },
    )


def read_manifest(path: Path) -> JobManifest:
    """Deserialize and validate a job manifest."""

    raw = load_json(path)
    job_id = raw.get("job_id")
    if not isinstance(job_id, str) or not job_id:
        raise StorageIOError("manifest.job_id must be a non-empty string", path=path)
    payload = raw.get("payload") or {}
    if not isinstance(payload, dict):
        raise StorageIOError("manifest.payload must be an object", path=path)
    return JobManifest(
        job_id=job_id,
        workspace_root=str(raw.get("workspace_root", "")),
        workspace_id=str(raw.get("workspace_id", "")),
        command_name=str(raw.get("command_name", "")),
        job_type=str(raw.get("job_type", "")),
        created_at=str(raw.get("created_at", "")),
        resume_supported=bool(raw.get("resume_supported", True)),
        payload=payload,
        schema_version=int(raw.get("schema_version", 1)),
    )


def write_checkpoint(path: Path, record: CheckpointRecord) -> None:
    write_json_atomic(
        path,
        {
            "schema_version": record.schema_version,
            "job_id": record.job_id,
            "command_name": record.command_name,
            "job_type": record.job_type,
            "checkpoint_seq": record.checkpoint_seq,
            "checkpoint_id": record.checkpoint_id,
            "created_at": record.created_at,
            "status": record.status.value,
            "reason": record.reason,
            "stage": record.stage,
            "payload": record.payload,
            "engine": {
                "runtime_version": record.runtime_version,
                "platform": record.platform,
            },
            "progress": {
                "step": record.progress_step,
                "estimated_total_steps": record.estimated_total_steps,
            },
            "indexes": {
                "tags": list(record.tags),
                "cursor": record.cursor,
                "parents": list(record.parents),
            },
        },
    )


def read_checkpoint(path: Path) -> CheckpointRecord:
    """Deserialize one sequenced checkpoint file."""

    raw = load_json(path)
    job_id = raw.get("job_id")
    if not isinstance(job_id, str) or not job_id:
        raise StorageIOError("checkpoint.job_id must be a non-empty string", path=path)
    seq = raw.get("checkpoint_seq")
    if not isinstance(seq, int) or seq < 1:
        raise StorageIOError("checkpoint.checkpoint_seq must be a positive integer", path=path)
    payload = raw.get("payload") or {}
    if not isinstance(payload, dict):
        raise StorageIOError("checkpoint.payload must be an object", path=path)
    engine = raw.get("engine") or {}
    progress = raw.get("progress") or {}
    indexes = raw.get("indexes") or {}
    return CheckpointRecord(
        job_id=job_id,
        command_name=str(raw.get("command_name", "")),
        job_type=str(raw.get("job_type", "")),
        checkpoint_seq=seq,
        checkpoint_id=str(raw.get("checkpoint_id", "")),
        created_at=str(raw.get("created_at", "")),
        status=normalize_job_state(raw.get("status")),
        stage=str(raw.get("stage", "")),
        payload=payload,
        runtime_version=str(engine.get("runtime_version", "")),
        platform=str(engine.get("platform", "")),
        reason=raw.get("reason"),
        progress_step=int(progress.get("step") or 0),
        estimated_total_steps=progress.get("estimated_total_steps"),
        tags=list(indexes.get("tags") or []),
        cursor=indexes.get("cursor"),
        parents=list(indexes.get("parents") or []),
        schema_version=int(raw.get("schema_version", 1)),
    )


def read_legacy_checkpoint(path: Path) -> dict[str, Any]:
    """Load the single-file camelCase checkpoint written by older releases."""

    raw = load_json(path)
    job_id = raw.get("jobId")
    if not isinstance(job_id, str) or not job_id:
        raise StorageIOError("checkpoint.jobId must be a non-empty string", path=path)
    payload = raw.get("payload") or {}
    if not isinstance(payload, dict):
        raise StorageIOError("checkpoint.payload must be an object", path=path)
    return {
        "job_id": job_id,
        "command_name": str(raw.get("command", "")),
        "stage": str(raw.get("stage", "")),
        "payload": payload,
        "updated_at": str(raw.get("updatedAt", "")),
        "command_run_id": raw.get("commandRunId"),
    }


def checkpoint_sequence(path: Path) -> int | None:
    match = _CHECKPOINT_NAME_RE.match(path.name)
    return int(match.group(1)) if match else None


def list_checkpoint_files(checkpoints_dir: Path) -> list[Path]:
    """Sequenced checkpoint files ordered by sequence number."""

    if not checkpoints_dir.is_dir():
        return []
    numbered: list[tuple[int, Path]] = []
    for path in checkpoints_dir.iterdir():
        seq = checkpoint_sequence(path)
        if seq is not None and path.is_file():
            numbered.append((seq, path))
    return [path for _, path in sorted(numbered)]


def next_checkpoint_seq(checkpoints_dir: Path) -> int:
    """One past the highest sequence on disk.

    Assumes a single writer per job; concurrent writers may collide.
    """

    files = list_checkpoint_files(checkpoints_dir)
    if not files:
        return 1
    last = checkpoint_sequence(files[-1])
    return (last or 0) + 1
