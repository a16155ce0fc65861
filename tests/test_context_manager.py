from __future__ import annotations

from collections.abc import Sequence

import allure
import pytest

from mcoda.config import ContextSettings, Settings
from mcoda.context.manager import ContextLaneManager, trim_messages
from mcoda.context.models import ContextMessage, LaneScope, MessageRole, build_lane_id
from mcoda.context.redaction import ContextRedactor
from mcoda.context.store import ContextStore
from mcoda.context.summarizer import CONTEXT_SUMMARY_PROMPT, ContextSummarizer
from mcoda.errors import SummarizerError

pytestmark = [
    allure.epic("Context Lanes"),
    allure.feature("Lane Manager"),
]


class _FakeProvider:
    def __init__(self, reply: str = "short", *, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.requests: list[list[ContextMessage]] = []

    def generate(self, messages: Sequence[ContextMessage]) -> str:
        self.requests.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.reply


def _user(content: str) -> ContextMessage:
    return ContextMessage(role=MessageRole.USER, content=content)


def _manager(
    store: ContextStore,
    provider: _FakeProvider | None = None,
    **settings,
) -> ContextLaneManager:
    summarizer = ContextSummarizer(provider) if provider is not None else None
    return ContextLaneManager(ContextSettings(**settings), store, summarizer=summarizer)


@pytest.mark.parametrize(
    ("scope", "lane_id"),
    [
        (LaneScope(role="coder"), "run:ad-hoc:coder"),
        (LaneScope(role="qa", run_id="r-1", task_key="web-01"), "r-1:web-01:qa"),
        (LaneScope(role="qa", job_id="j-1", run_id="r-1", task_id="T-1"), "j-1:T-1:qa"),
    ],
)
def test_build_lane_id(scope: LaneScope, lane_id: str) -> None:
    assert build_lane_id(scope) == lane_id


def test_byte_limit_keeps_latest_messages_in_order(context_store: ContextStore) -> None:
    manager = _manager(context_store, max_bytes_per_lane=2000)
    lane = manager.get_lane(LaneScope(role="coder", job_id="job-1", task_id="T-1"))

    for index in range(10):
        manager.append(lane.lane_id, _user(str(index) * 1000))

    assert [message.content[0] for message in lane.messages] == ["8", "9"]
    stored = context_store.load_lane(lane.lane_id)
    assert [message.content[0] for message in stored.messages] == ["8", "9"]
    assert lane.token_estimate == 500


def test_message_limit_trims_oldest(context_store: ContextStore) -> None:
    manager = _manager(context_store, max_messages=3)

    for index in range(5):
        manager.append("lane", _user(f"m{index}"))

    assert [m.content for m in context_store.load_lane("lane").messages] == ["m2", "m3", "m4"]


@pytest.mark.parametrize(
    ("max_messages", "max_bytes", "kept"),
    [
        (-1, -1, ["aa", "bb", "cc"]),
        (0, -1, []),
        (-1, 0, []),
        (2, -1, ["bb", "cc"]),
        (-1, 5, ["bb", "cc"]),
        (1, 100, ["cc"]),
    ],
)
def test_trim_messages_limits(max_messages: int, max_bytes: int, kept: list[str]) -> None:
    messages = [_user("aa"), _user("bb"), _user("cc")]

    trimmed, _ = trim_messages(messages, max_messages=max_messages, max_bytes=max_bytes)

    assert [message.content for message in trimmed] == kept


def test_prepare_summarizes_older_half_when_over_limit(context_store: ContextStore) -> None:
    provider = _FakeProvider("decided to use sqlite")
    manager = _manager(context_store, provider, default_model_token_limit=50)
    for index in range(8):
        manager.append("lane", _user(f"msg-{index}".ljust(40, ".")))

    messages = manager.prepare("lane")

    assert len(provider.requests) == 1
    request = provider.requests[0]
    assert request[0].role == MessageRole.SYSTEM
    assert request[0].content == CONTEXT_SUMMARY_PROMPT
    assert request[1].content.startswith("user: msg-0")
    assert "msg-3" in request[1].content
    assert "msg-4" not in request[1].content
    assert len(messages) == 5
    assert messages[0].role == MessageRole.SYSTEM
    assert messages[0].content == "Context summary: decided to use sqlite"
    assert [m.content for m in context_store.load_lane("lane").messages] == [
        m.content for m in messages
    ]


def test_summarize_reports_outcome(context_store: ContextStore) -> None:
    provider = _FakeProvider("ok")
    manager = _manager(
        context_store,
        provider,
        model_token_limits={"small": 30},
    )
    for index in range(6):
        manager.append("lane", _user("x" * 40))

    outcome = manager.summarize_if_needed("lane", model="small:v2")

    assert outcome is not None
    assert outcome.model_limit == 30
    assert outcome.before_messages == 6
    assert outcome.before_tokens == 60
    assert outcome.iterations >= 1
    assert outcome.after_tokens <= 30
    assert outcome.over_budget is False


def test_summarization_stops_after_five_passes(context_store: ContextStore) -> None:
    provider = _FakeProvider("y" * 400)
    manager = _manager(context_store, provider, default_model_token_limit=50)
    for index in range(12):
        manager.append("lane", _user(f"{index}".ljust(40, ".")))

    outcome = manager.summarize_if_needed("lane")

    assert outcome is not None
    assert outcome.iterations == 5
    assert len(provider.requests) == 5
    assert outcome.over_budget is True
    assert len(context_store.load_lane("lane").messages) == 3


def test_under_budget_lane_is_not_summarized(context_store: ContextStore) -> None:
    provider = _FakeProvider()
    manager = _manager(context_store, provider)
    manager.append("lane", _user("tiny"))

    assert manager.summarize_if_needed("lane") is None
    assert manager.prepare("lane", system_prompt="sys", bundle="docs") == [
        context_store.load_lane("lane").messages[0],
    ]
    assert provider.requests == []


@pytest.mark.parametrize(
    "provider",
    [_FakeProvider(error=RuntimeError("provider down")), _FakeProvider("   ")],
)
def test_summarizer_failure_leaves_lane_untouched(
    context_store: ContextStore,
    provider: _FakeProvider,
) -> None:
    manager = _manager(context_store, provider, default_model_token_limit=20)
    lane = manager.get_lane(LaneScope(role="coder", job_id="job-s"))
    for index in range(4):
        manager.append(lane.lane_id, _user(f"{index}".ljust(40, ".")))
    before = context_store.lane_path(lane.lane_id).read_bytes()

    with pytest.raises(SummarizerError):
        manager.prepare(lane.lane_id)

    assert context_store.lane_path(lane.lane_id).read_bytes() == before
    assert len(lane.messages) == 4
    assert lane.token_estimate == 40


def test_tool_messages_are_dropped_unless_enabled(context_store: ContextStore) -> None:
    tool_message = ContextMessage(role=MessageRole.TOOL, content="ls output", name="shell")

    dropping = _manager(context_store)
    assert dropping.append("dropped", tool_message).messages == []
    assert not context_store.lane_path("dropped").exists()

    keeping = _manager(context_store, persist_tool_messages=True)
    lane = keeping.append("kept", tool_message)
    assert [m.name for m in lane.messages] == ["shell"]
    assert context_store.load_lane("kept").messages[0].role == MessageRole.TOOL


def test_ephemeral_lane_is_never_written(context_store: ContextStore) -> None:
    provider = _FakeProvider()
    manager = _manager(context_store, provider, default_model_token_limit=1)
    lane = manager.get_lane(LaneScope(role="coder", job_id="j", ephemeral=True))

    manager.append(lane.lane_id, _user("x" * 100))
    manager.append(lane.lane_id, _user("y" * 100))
    messages = manager.prepare(lane.lane_id)
    manager.flush(lane.lane_id)

    assert lane.persisted is False
    assert len(messages) == 2
    assert provider.requests == []
    assert not context_store.lane_path(lane.lane_id).exists()


def test_disabled_context_keeps_lanes_in_memory(context_store: ContextStore) -> None:
    manager = _manager(context_store, enabled=False)
    lane = manager.get_lane(LaneScope(role="coder"))

    manager.append(lane.lane_id, _user("hello"))

    assert lane.persisted is False
    assert lane.token_estimate == 2
    assert not context_store.lane_path(lane.lane_id).exists()


def test_persisted_lane_reloads_in_new_manager(context_store: ContextStore) -> None:
    scope = LaneScope(role="coder", job_id="job-9", task_id="T-9")
    first = _manager(context_store)
    first.append(build_lane_id(scope), _user("remember me"), model="gpt", tokens=3)

    lane = _manager(context_store).get_lane(scope)

    assert [m.content for m in lane.messages] == ["remember me"]
    assert lane.messages[0].model == "gpt"
    assert lane.messages[0].tokens == 3
    assert lane.token_estimate == 3


def test_append_redacts_and_counts(context_store: ContextStore) -> None:
    manager = ContextLaneManager(
        ContextSettings(),
        context_store,
        redactor=ContextRedactor([r"ACME-\d+"]),
    )

    manager.append("lane", _user("token=abcdefgh12345 for ACME-1"))
    lane = manager.append("lane", _user("plain"))

    assert lane.messages[0].content == "token=[REDACTED_TOKEN] for <redacted>"
    assert lane.redaction_count == 2
    assert "abcdefgh12345" not in context_store.lane_path("lane").read_text("utf-8")


def test_flush_rewrites_store_from_memory(context_store: ContextStore) -> None:
    manager = _manager(context_store)
    manager.append("lane", _user("a"))
    context_store.replace("lane", [])

    manager.flush("lane")

    assert [m.content for m in context_store.load_lane("lane").messages] == ["a"]


def test_invalid_char_per_token_is_configuration_error(context_store: ContextStore) -> None:
    with pytest.raises(ValueError, match="char_per_token"):
        ContextLaneManager(ContextSettings(), context_store, char_per_token=0)


def test_from_settings_wires_store_and_redaction(workspace) -> None:
    settings = Settings(
        workspace_root=workspace,
        context=ContextSettings(storage_dir="lanes", redact_patterns=(r"ACME-\d+",)),
    )
    manager = ContextLaneManager.from_settings(settings)

    lane = manager.append("job:task:coder", _user("see ACME-12"))

    assert lane.messages[0].content == "see <redacted>"
    assert (workspace / "lanes" / "job_task_coder.jsonl").exists()
