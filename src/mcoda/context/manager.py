"""Per-task conversation lanes with token budgeting and storage limits."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence

from mcoda.config import ContextSettings, Settings
from mcoda.context.budget import (
    estimate_budget,
    estimate_messages_tokens,
    resolve_model_token_limit,
)
from mcoda.context.models import (
    ContextLane,
    ContextMessage,
    LaneScope,
    LaneSnapshot,
    MessageRole,
    SummaryOutcome,
    build_lane_id,
)
from mcoda.context.redaction import ContextRedactor
from mcoda.context.store import ContextStore
from mcoda.context.summarizer import ContextSummarizer
from mcoda.errors import SummarizerError
from mcoda.storage.common import utc_now

logger = logging.getLogger(__name__)

MAX_SUMMARY_PASSES = 5
DEFAULT_LANE_ROLE = "custom"


def trim_messages(
    messages: Sequence[ContextMessage],
    *,
    max_messages: int,
    max_bytes: int,
) -> tuple[list[ContextMessage], list[str]]:
    """Keep the most recent messages that fit both limits.

    ``-1`` disables a limit. Byte size is the UTF-8 length of each message's
    content. Returns the kept messages in chronological order and the names
    of the limits that removed something.
    """

    kept = list(messages)
    reasons: list[str] = []
    if max_messages >= 0 and len(kept) > max_messages:
        kept = kept[len(kept) - max_messages :]
        reasons.append("max_messages")
    if max_bytes >= 0:
        total = 0
        newest_first: list[ContextMessage] = []
        for message in reversed(kept):
            size = len(message.content.encode("utf-8"))
            if total + size > max_bytes:
                break
            total += size
            newest_first.append(message)
        if len(newest_first) != len(kept):
            reasons.append("max_bytes")
        kept = list(reversed(newest_first))
    return kept, reasons


class ContextLaneManager:
    """Own in-memory lanes and keep persisted lanes within their budgets."""

    def __init__(
        self,
        config: ContextSettings,
        store: ContextStore,
        *,
        redactor: ContextRedactor | None = None,
        summarizer: ContextSummarizer | None = None,
        char_per_token: int | None = None,
    ) -> None:
        resolved = config.char_per_token if char_per_token is None else char_per_token
        if resolved <= 0:
            raise ValueError("char_per_token must be greater than zero")
        self.config = config
        self.store = store
        self.redactor = redactor
        self.summarizer = summarizer
        self.char_per_token = resolved
        self._lanes: dict[str, ContextLane] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        summarizer: ContextSummarizer | None = None,
    ) -> ContextLaneManager:
        context = settings.context
        return cls(
            context,
            ContextStore(settings.workspace_root, context.storage_dir),
            redactor=ContextRedactor(context.redact_patterns),
            summarizer=summarizer,
        )

    def get_lane(self, scope: LaneScope) -> ContextLane:
        lane_id = build_lane_id(scope)
        persisted = self.config.enabled and not scope.ephemeral
        return self._ensure_lane(lane_id, scope.role, persisted)

    def append(
        self,
        lane_id: str,
        message: ContextMessage,
        *,
        model: str | None = None,
        tokens: int | None = None,
        role: str | None = None,
        persisted: bool | None = None,
    ) -> ContextLane:
        """Add a message, writing through to the store for persisted lanes."""

        lane = self._ensure_lane(
            lane_id,
            role or DEFAULT_LANE_ROLE,
            self.config.enabled if persisted is None else persisted,
        )
        if message.role == MessageRole.TOOL and not self.config.persist_tool_messages:
            logger.debug("Dropped tool message for lane %s", lane_id)
            return lane

        content = message.content
        redactions = 0
        if self.redactor is not None:
            content, redactions = self.redactor.redact(content)

        record = dataclasses.replace(
            message,
            content=content,
            ts=utc_now(),
            model=model,
            tokens=tokens,
        )
        lane.messages = [*lane.messages, record]
        lane.redaction_count += redactions
        self._refresh(lane)

        if lane.persisted:
            snapshot = self.store.append(lane_id, [record])
            snapshot = self.enforce_storage_limits(lane_id, snapshot)
            self._apply_snapshot(lane, snapshot)
        logger.debug(
            "Lane %s updated: messages=%d tokens=%d redactions=%d",
            lane_id,
            len(lane.messages),
            lane.token_estimate,
            lane.redaction_count,
        )
        return lane

    def prepare(
        self,
        lane_id: str,
        *,
        system_prompt: str | None = None,
        bundle: str | None = None,
        model: str | None = None,
    ) -> list[ContextMessage]:
        """Summarize a persisted lane if it is over budget and return its messages."""

        lane = self._lanes.get(lane_id)
        if lane is None:
            lane = self._ensure_lane(lane_id, DEFAULT_LANE_ROLE, self.config.enabled)
        if lane.persisted:
            self.summarize_if_needed(
                lane_id,
                system_prompt=system_prompt,
                bundle=bundle,
                model=model,
            )
        return list(lane.messages)

    def summarize_if_needed(
        self,
        lane_id: str,
        *,
        system_prompt: str | None = None,
        bundle: str | None = None,
        model: str | None = None,
    ) -> SummaryOutcome | None:
        """Fold older history into summaries until the prompt fits the model limit.

        Runs at most ``MAX_SUMMARY_PASSES`` passes and keeps the last result even
        when it is still over the limit. Nothing is committed when the
        summarizer fails.
        """

        lane = self._lanes.get(lane_id)
        if lane is None or not lane.persisted or not self.config.enabled:
            return None
        if self.summarizer is None or not self.config.summarize_enabled:
            return None

        model_limit = resolve_model_token_limit(
            model,
            self.config.model_token_limits,
            self.config.default_model_token_limit,
        )
        before_messages = len(lane.messages)
        before_tokens = lane.token_estimate
        messages = list(lane.messages)
        total = self._budget_total(messages, system_prompt, bundle)
        iterations = 0

        while total > model_limit and len(messages) > 1 and iterations < MAX_SUMMARY_PASSES:
            split = max(1, len(messages) // 2)
            try:
                summary = self.summarizer.summarize(messages[:split])
            except SummarizerError:
                logger.warning(
                    "Summarization of lane %s failed on pass %d; lane left unchanged",
                    lane_id,
                    iterations + 1,
                )
                raise
            messages = [summary, *messages[split:]]
            total = self._budget_total(messages, system_prompt, bundle)
            iterations += 1

        if iterations == 0:
            return None

        snapshot = self.store.replace(lane_id, messages)
        snapshot = self.enforce_storage_limits(lane_id, snapshot)
        self._apply_snapshot(lane, snapshot)
        outcome = SummaryOutcome(
            lane_id=lane_id,
            iterations=iterations,
            before_messages=before_messages,
            after_messages=len(lane.messages),
            before_tokens=before_tokens,
            after_tokens=lane.token_estimate,
            model_limit=model_limit,
            over_budget=self._budget_total(lane.messages, system_prompt, bundle) > model_limit,
        )
        logger.info(
            "Lane %s summarized in %d pass(es): messages %d -> %d, tokens %d -> %d (limit %d)",
            lane_id,
            iterations,
            outcome.before_messages,
            outcome.after_messages,
            outcome.before_tokens,
            outcome.after_tokens,
            model_limit,
        )
        if outcome.over_budget:
            logger.warning("Lane %s is still over the %d token limit", lane_id, model_limit)
        return outcome

    def flush(self, lane_id: str) -> None:
        lane = self._lanes.get(lane_id)
        if lane is None or not lane.persisted:
            return
        snapshot = self.store.replace(lane_id, lane.messages)
        self._apply_snapshot(lane, snapshot)

    def enforce_storage_limits(
        self,
        lane_id: str,
        snapshot: LaneSnapshot | None = None,
    ) -> LaneSnapshot:
        """Trim a stored lane to ``max_messages`` and ``max_bytes_per_lane``."""

        current = snapshot if snapshot is not None else self.store.load_lane(lane_id)
        kept, reasons = trim_messages(
            current.messages,
            max_messages=self.config.max_messages,
            max_bytes=self.config.max_bytes_per_lane,
        )
        if len(kept) == len(current.messages):
            return current

        replaced = self.store.replace(lane_id, kept)
        logger.info(
            "Lane %s trimmed by %s: messages %d -> %d, bytes %d -> %d",
            lane_id,
            ",".join(reasons),
            current.message_count,
            replaced.message_count,
            current.byte_size,
            replaced.byte_size,
        )
        lane = self._lanes.get(lane_id)
        if lane is not None:
            self._apply_snapshot(lane, replaced)
        return replaced

    def _ensure_lane(self, lane_id: str, role: str, persisted: bool) -> ContextLane:
        existing = self._lanes.get(lane_id)
        if existing is not None:
            return existing
        lane = ContextLane(lane_id=lane_id, role=role, persisted=persisted)
        if persisted:
            snapshot = self.store.load_lane(lane_id)
            lane.messages = snapshot.messages
            if snapshot.updated_at is not None:
                lane.updated_at = snapshot.updated_at
        lane.token_estimate = estimate_messages_tokens(lane.messages, self.char_per_token)
        self._lanes[lane_id] = lane
        return lane

    def _apply_snapshot(self, lane: ContextLane, snapshot: LaneSnapshot) -> None:
        lane.messages = list(snapshot.messages)
        self._refresh(lane)

    def _refresh(self, lane: ContextLane) -> None:
        lane.token_estimate = estimate_messages_tokens(lane.messages, self.char_per_token)
        lane.updated_at = utc_now()

    def _budget_total(
        self,
        messages: Sequence[ContextMessage],
        system_prompt: str | None,
        bundle: str | None,
    ) -> int:
        return estimate_budget(
            system_prompt=system_prompt,
            bundle=bundle,
            history=messages,
            char_per_token=self.char_per_token,
        ).total_tokens
