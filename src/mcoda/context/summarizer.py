"""Summarization of older lane history into a single system message."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from mcoda.context.models import ContextMessage, MessageRole
from mcoda.errors import SummarizerError

logger = logging.getLogger(__name__)

CONTEXT_SUMMARY_PROMPT = (
    "ROLE: Context Summarizer\n"
    "TASK: Summarize the key technical decisions, constraints, and open questions "
    "from this conversation.\n"
    "OUTPUT: Keep it concise and action-oriented."
)
SUMMARY_PREFIX = "Context summary: "


class SummaryProvider(Protocol):
    """Text generation provider used to produce summaries."""

    def generate(self, messages: Sequence[ContextMessage]) -> str:
        """Return the assistant reply for ``messages``."""


class ContextSummarizer:
    def __init__(self, provider: SummaryProvider) -> None:
        self.provider = provider

    def summarize(self, messages: Sequence[ContextMessage]) -> ContextMessage:
        request = [
            ContextMessage(role=MessageRole.SYSTEM, content=CONTEXT_SUMMARY_PROMPT),
            ContextMessage(role=MessageRole.USER, content=format_history(messages)),
        ]
        try:
            reply = self.provider.generate(request)
        except SummarizerError:
            raise
        except Exception as error:  # noqa: BLE001
            raise SummarizerError(f"Context summarizer provider failed: {error}") from error

        content = (reply or "").strip()
        if not content:
            raise SummarizerError("Context summarizer response is empty")
        logger.debug("Summarized %d messages into %d chars", len(messages), len(content))
        return ContextMessage(role=MessageRole.SYSTEM, content=f"{SUMMARY_PREFIX}{content}")


def format_history(messages: Sequence[ContextMessage]) -> str:
    parts = []
    for message in messages:
        header = f"{message.role.value}({message.name})" if message.name else message.role.value
        parts.append(f"{header}: {message.content}")
    return "\n\n".join(parts)
