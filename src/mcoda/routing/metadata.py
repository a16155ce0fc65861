"""Command metadata: canonical names, aliases and required capabilities."""

from __future__ import annotations

import re
from collections.abc import Iterable

from mcoda.config import DEFAULT_DOCDEX_SCOPES, DEFAULT_QA_PROFILES
from mcoda.errors import UnknownProfileError

COMMAND_ALIASES: dict[str, tuple[str, ...]] = {
    "create-tasks": ("create_tasks", "create tasks"),
    "refine-tasks": ("refine_tasks", "refine tasks"),
    "work-on-tasks": ("work_on_tasks", "work on tasks"),
    "code-review": ("code_review", "code review"),
    "qa-tasks": ("qa_tasks", "qa tasks"),
    "order-tasks": ("tasks:order", "order_tasks", "tasks order"),
    "pdr": ("docs:pdr:generate", "docs-pdr-generate", "pdr-generate", "docs-pdr"),
    "sds": ("docs:sds:generate", "docs-sds-generate", "sds-generate", "docs-sds"),
    "openapi-from-docs": ("openapi", "openapi_from_docs"),
    "default": ("__default__", "agent:set-default"),
}

REQUIRED_CAPABILITIES: dict[str, tuple[str, ...]] = {
    "create-tasks": ("plan",),
    "refine-tasks": ("plan",),
    "order-tasks": ("plan",),
    "work-on-tasks": ("code_write",),
    "code-review": ("code_review",),
    "qa-tasks": ("qa_interpretation",),
    "pdr": ("docdex_query",),
    "sds": ("docdex_query",),
    "openapi-from-docs": ("docdex_query",),
}

QA_CAPABILITY = "qa_interpretation"

_SEPARATORS_RE = re.compile(r"[_\s]+")


def _normalize(value: str) -> str:
    return _SEPARATORS_RE.sub("-", value.strip().lower())


_ALIAS_INDEX: dict[str, str] = {}
for _canonical, _aliases in COMMAND_ALIASES.items():
    _ALIAS_INDEX[_normalize(_canonical)] = _canonical
    for _alias in _aliases:
        _ALIAS_INDEX[_normalize(_alias)] = _canonical


def canonical_command_name(command_name: str) -> str:
    """Map any spelling of a command onto its canonical name.

    Unknown commands come back normalized (trimmed, lowercase, ``_`` and
    whitespace folded into ``-``).
    """

    normalized = _normalize(command_name)
    return _ALIAS_INDEX.get(normalized, normalized)


def required_capabilities(command_name: str, task_type: str | None = None) -> tuple[str, ...]:
    """Capabilities an agent needs to run a command, in declaration order."""

    required = list(REQUIRED_CAPABILITIES.get(canonical_command_name(command_name), ()))
    if task_type and "qa" in task_type.lower():
        required.append(QA_CAPABILITY)
    return tuple(dict.fromkeys(required))


def missing_capabilities(required: Iterable[str], available: Iterable[str]) -> tuple[str, ...]:
    have = set(available)
    return tuple(cap for cap in required if cap not in have)


def validate_qa_profile(
    value: str | None,
    known: Iterable[str] = DEFAULT_QA_PROFILES,
) -> str | None:
    return _validate_known("qa_profile", value, known)


def validate_docdex_scope(
    value: str | None,
    known: Iterable[str] = DEFAULT_DOCDEX_SCOPES,
) -> str | None:
    return _validate_known("docdex_scope", value, known)


def _validate_known(field: str, value: str | None, known: Iterable[str]) -> str | None:
    if value is None:
        return None
    normalized = _normalize(value)
    allowed = tuple(known)
    if normalized not in allowed:
        raise UnknownProfileError(field=field, value=value, known=allowed)
    return normalized
