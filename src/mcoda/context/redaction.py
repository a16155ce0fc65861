"""Secret redaction for context lane messages."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable
from dataclasses import dataclass

CUSTOM_MASK = "<redacted>"
_SECRET_MASK = "***SECRET:{label}***"

RedactionRule = tuple[re.Pattern[str], str]

DEFAULT_REDACTION_RULES: tuple[RedactionRule, ...] = (
    (re.compile(r"(sk-[a-z0-9]{16,})", re.IGNORECASE), "[REDACTED_API_KEY]"),
    (re.compile(r"(bearer\s+)[a-z0-9._-]{8,}", re.IGNORECASE), r"\1[REDACTED_TOKEN]"),
    (re.compile(r"(authorization:\s*)([^\n]+)", re.IGNORECASE), r"\1[REDACTED_AUTH]"),
    (
        re.compile(r"(api[_-]?key\s*[:=]\s*)(['\"]?[a-z0-9\-_.]{8,}['\"]?)", re.IGNORECASE),
        r"\1[REDACTED_API_KEY]",
    ),
    (
        re.compile(r"(token\s*[:=]\s*)(['\"]?[a-z0-9\-_.]{8,}['\"]?)", re.IGNORECASE),
        r"\1[REDACTED_TOKEN]",
    ),
    (
        re.compile(r"(secret\s*[:=]\s*)(['\"]?[a-z0-9\-_.]{6,}['\"]?)", re.IGNORECASE),
        r"\1[REDACTED_SECRET]",
    ),
)


@dataclass(slots=True, frozen=True)
class RegisteredSecret:
    label: str
    value: str
    fingerprint: str


class ContextRedactor:
    """Mask registered secrets, well-known secret shapes and custom patterns.

    Registered secret values and their sha256 fingerprints are replaced with
    ``***SECRET:<label>***``. Matches of ``patterns`` become ``<redacted>``.
    """

    def __init__(
        self,
        patterns: Iterable[str] = (),
        *,
        rules: Iterable[RedactionRule] = DEFAULT_REDACTION_RULES,
        secrets: Iterable[tuple[str, str | None]] = (),
    ) -> None:
        self.rules = tuple(rules)
        self.patterns = tuple(re.compile(pattern) for pattern in patterns)
        self._secrets: list[RegisteredSecret] = []
        for value, label in secrets:
            self.register_secret(value, label)

    @property
    def secrets(self) -> tuple[RegisteredSecret, ...]:
        return tuple(self._secrets)

    def register_secret(self, value: str | None, label: str | None = None) -> None:
        trimmed = (value or "").strip()
        if not trimmed:
            return
        fingerprint = hashlib.sha256(trimmed.encode("utf-8")).hexdigest()
        if any(entry.fingerprint == fingerprint for entry in self._secrets):
            return
        self._secrets.append(
            RegisteredSecret(label=_normalize_label(label), value=trimmed, fingerprint=fingerprint),
        )

    def clear_secrets(self) -> None:
        self._secrets.clear()

    def redact(self, content: str) -> tuple[str, int]:
        """Return redacted content and the number of replacements made."""

        total = 0
        output = content
        for pattern, replacement in self.rules:
            output, count = pattern.subn(replacement, output)
            total += count
        for pattern in self.patterns:
            output, count = pattern.subn(CUSTOM_MASK, output)
            total += count
        # Secret masks run last so the rules above never rewrite them.
        for entry in self._secrets:
            mask = _SECRET_MASK.format(label=entry.label)
            for needle in (entry.value, entry.fingerprint):
                output, count = re.subn(re.escape(needle), lambda _match: mask, output)
                total += count
        return output, total


def _normalize_label(label: str | None) -> str:
    trimmed = (label or "").strip()
    return re.sub(r"\s+", "_", trimmed) if trimmed else "secret"
