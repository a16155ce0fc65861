"""Character-based token estimates for lane budgeting."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from mcoda.config import DEFAULT_CHAR_PER_TOKEN, DEFAULT_MODEL_TOKEN_LIMIT
from mcoda.context.models import ContextMessage


@dataclass(slots=True)
class BudgetEstimate:
    system_tokens: int
    bundle_tokens: int
    history_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.system_tokens + self.bundle_tokens + self.history_tokens


def estimate_tokens(text: str | None, char_per_token: int = DEFAULT_CHAR_PER_TOKEN) -> int:
    if char_per_token <= 0:
        raise ValueError("char_per_token must be greater than zero")
    if not text:
        return 0
    return math.ceil(len(text) / char_per_token)


def estimate_messages_tokens(
    messages: Iterable[ContextMessage],
    char_per_token: int = DEFAULT_CHAR_PER_TOKEN,
) -> int:
    return sum(estimate_tokens(message.content, char_per_token) for message in messages)


def estimate_budget(
    *,
    system_prompt: str | None = None,
    bundle: str | None = None,
    history: Iterable[ContextMessage] = (),
    char_per_token: int = DEFAULT_CHAR_PER_TOKEN,
) -> BudgetEstimate:
    """Split a prompt's estimated cost into system, bundle and history parts."""

    return BudgetEstimate(
        system_tokens=estimate_tokens(system_prompt, char_per_token),
        bundle_tokens=estimate_tokens(bundle, char_per_token),
        history_tokens=estimate_messages_tokens(history, char_per_token),
    )


def resolve_model_token_limit(
    model: str | None,
    overrides: Mapping[str, int] | None = None,
    fallback: int = DEFAULT_MODEL_TOKEN_LIMIT,
) -> int:
    """Exact model override, then the part before ``:``, else ``fallback``."""

    if not model:
        return fallback
    limits = overrides or {}
    direct = limits.get(model)
    if direct:
        return direct
    base = limits.get(model.split(":", 1)[0])
    if base:
        return base
    return fallback
