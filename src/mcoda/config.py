"""Runtime configuration for job, routing and context components."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from mcoda import __version__

DEFAULT_QA_PROFILES = (
    "accessibility",
    "api",
    "cli",
    "integration",
    "mobile",
    "smoke",
    "ui",
    "unit",
)
DEFAULT_DOCDEX_SCOPES = ("architecture", "docs", "openapi", "pdr", "sds", "workspace")
DEFAULT_CHAR_PER_TOKEN = 4
DEFAULT_MODEL_TOKEN_LIMIT = 8192


@dataclass(slots=True)
class JobSettings:
    """Job engine settings."""

    runtime_version: str = __version__


@dataclass(slots=True)
class RoutingSettings:
    """Routing resolver settings."""

    api_base_url: str | None = None
    request_timeout_seconds: float = 30.0
    qa_profiles: tuple[str, ...] = DEFAULT_QA_PROFILES
    docdex_scopes: tuple[str, ...] = DEFAULT_DOCDEX_SCOPES


@dataclass(slots=True)
class ContextSettings:
    """Context lane settings."""

    enabled: bool = True
    storage_dir: str = ".mcoda/context"
    max_messages: int = 200
    max_bytes_per_lane: int = 200_000
    char_per_token: int = DEFAULT_CHAR_PER_TOKEN
    default_model_token_limit: int = DEFAULT_MODEL_TOKEN_LIMIT
    model_token_limits: dict[str, int] = field(default_factory=dict)
    summarize_enabled: bool = True
    persist_tool_messages: bool = False
    redact_patterns: tuple[str, ...] = ()


@dataclass(slots=True)
class Settings:
    """Application settings grouped by component."""

    workspace_root: Path = field(default_factory=Path.cwd)
    workspace_id: str = ""
    db_path: Path | None = None
    sqlite_busy_timeout_ms: int = 5_000
    jobs: JobSettings = field(default_factory=JobSettings)
    routing: RoutingSettings = field(default_factory=RoutingSettings)
    context: ContextSettings = field(default_factory=ContextSettings)

    @property
    def mcoda_dir(self) -> Path:
        return self.workspace_root / ".mcoda"

    @property
    def resolved_db_path(self) -> Path:
        return self.db_path or self.mcoda_dir / "mcoda.db"

    @property
    def resolved_workspace_id(self) -> str:
        return self.workspace_id or str(self.workspace_root)

    @classmethod
    def from_env(cls, workspace_root: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local development."""

        root = (
            workspace_root or Path(os.getenv("MCODA_WORKSPACE_ROOT", "") or Path.cwd())
        ).resolve()
        db_path_raw = os.getenv("MCODA_DB_PATH", "").strip()
        return cls(
            workspace_root=root,
            workspace_id=os.getenv("MCODA_WORKSPACE_ID", "").strip(),
            db_path=Path(db_path_raw) if db_path_raw else None,
            sqlite_busy_timeout_ms=int(os.getenv("MCODA_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            jobs=JobSettings(
                runtime_version=os.getenv("MCODA_RUNTIME_VERSION", __version__),
            ),
            routing=RoutingSettings(
                api_base_url=(
                    os.getenv("MCODA_ROUTING_API_URL", "").strip()
                    or os.getenv("MCODA_API_BASE_URL", "").strip()
                    or None
                ),
                request_timeout_seconds=float(
                    os.getenv("MCODA_ROUTING_TIMEOUT_SECONDS", "30.0"),
                ),
                qa_profiles=_merge_known_values(
                    DEFAULT_QA_PROFILES,
                    os.getenv("MCODA_QA_PROFILES", ""),
                ),
                docdex_scopes=_merge_known_values(
                    DEFAULT_DOCDEX_SCOPES,
                    os.getenv("MCODA_DOCDEX_SCOPES", ""),
                ),
            ),
            context=ContextSettings(
                enabled=_env_bool("MCODA_CONTEXT_ENABLED", default=True),
                storage_dir=os.getenv("MCODA_CONTEXT_STORAGE_DIR", ".mcoda/context"),
                max_messages=int(os.getenv("MCODA_CONTEXT_MAX_MESSAGES", "200")),
                max_bytes_per_lane=int(
                    os.getenv("MCODA_CONTEXT_MAX_BYTES_PER_LANE", "200000"),
                ),
                char_per_token=int(
                    os.getenv("MCODA_CONTEXT_CHAR_PER_TOKEN", str(DEFAULT_CHAR_PER_TOKEN)),
                ),
                default_model_token_limit=int(
                    os.getenv(
                        "MCODA_CONTEXT_MODEL_TOKEN_LIMIT",
                        str(DEFAULT_MODEL_TOKEN_LIMIT),
                    ),
                ),
                model_token_limits=_collect_model_token_limits(),
                summarize_enabled=_env_bool("MCODA_CONTEXT_SUMMARIZE", default=True),
                persist_tool_messages=_env_bool(
                    "MCODA_CONTEXT_PERSIST_TOOL_MESSAGES",
                    default=False,
                ),
                redact_patterns=tuple(
                    part.strip()
                    for part in os.getenv("MCODA_CONTEXT_REDACT_PATTERNS", "").split(",")
                    if part.strip()
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on invalid combinations."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("MCODA_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.routing.request_timeout_seconds <= 0:
            raise ValueError("MCODA_ROUTING_TIMEOUT_SECONDS must be > 0.")
        context = self.context
        if context.char_per_token <= 0:
            raise ValueError("MCODA_CONTEXT_CHAR_PER_TOKEN must be > 0.")
        if context.max_messages < -1:
            raise ValueError("MCODA_CONTEXT_MAX_MESSAGES must be >= -1.")
        if context.max_bytes_per_lane < -1:
            raise ValueError("MCODA_CONTEXT_MAX_BYTES_PER_LANE must be >= -1.")
        if context.default_model_token_limit <= 0:
            raise ValueError("MCODA_CONTEXT_MODEL_TOKEN_LIMIT must be > 0.")
        for model, limit in context.model_token_limits.items():
            if limit <= 0:
                raise ValueError(f"Token limit for model {model!r} must be > 0, got {limit}.")


def _collect_model_token_limits() -> dict[str, int]:
    raw = os.getenv("MCODA_CONTEXT_MODEL_TOKEN_LIMITS", "").strip()
    if not raw:
        return {}

    limits: dict[str, int] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "=" not in token:
            raise ValueError(
                "Invalid MCODA_CONTEXT_MODEL_TOKEN_LIMITS entry: "
                f"{token!r}. Expected format '<model>=<tokens>'.",
            )
        model, limit_raw = token.rsplit("=", 1)
        try:
            limits[model.strip()] = int(limit_raw.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid MCODA_CONTEXT_MODEL_TOKEN_LIMITS value for {model.strip()!r}: "
                f"{limit_raw.strip()!r}",
            ) from error
    return limits


def _merge_known_values(defaults: tuple[str, ...], raw: str) -> tuple[str, ...]:
    values = list(defaults)
    for part in raw.split(","):
        normalized = _normalize_known_value(part)
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)


def _normalize_known_value(value: str) -> str:
    return "-".join(value.strip().lower().replace("_", " ").split())


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
