from pathlib import Path

import allure
import pytest

from mcoda.context.models import ContextMessage, MessageRole
from mcoda.context.store import ContextStore, safe_lane_id
from mcoda.errors import StorageIOError

pytestmark = [
    allure.epic("Context Lanes"),
    allure.feature("Lane Store"),
]


def _message(content: str, role: MessageRole = MessageRole.USER) -> ContextMessage:
    return ContextMessage(role=role, content=content)


def test_missing_lane_loads_as_empty(context_store: ContextStore) -> None:
    snapshot = context_store.load_lane("job-1:T-1:coder")

    assert snapshot.messages == []
    assert snapshot.message_count == 0
    assert snapshot.byte_size == 0
    assert snapshot.updated_at is None


def test_append_writes_jsonl_under_safe_name(context_store: ContextStore, workspace: Path) -> None:
    snapshot = context_store.append(
        "job-1:T 1:coder",
        [_message("hello"), ContextMessage(role=MessageRole.ASSISTANT, content="hi", model="m1")],
    )

    lane_file = workspace / ".mcoda" / "context" / "job-1_T_1_coder.jsonl"
    assert lane_file.exists()
    assert len(lane_file.read_text("utf-8").splitlines()) == 2
    assert snapshot.message_count == 2
    assert snapshot.byte_size == lane_file.stat().st_size
    assert [message.content for message in snapshot.messages] == ["hello", "hi"]
    assert snapshot.messages[1].role == MessageRole.ASSISTANT
    assert snapshot.messages[1].model == "m1"
    assert snapshot.updated_at is not None


def test_replace_overwrites_lane(context_store: ContextStore) -> None:
    context_store.append("lane", [_message("a"), _message("b")])

    snapshot = context_store.replace("lane", [_message("summary", MessageRole.SYSTEM)])

    assert [(message.role, message.content) for message in snapshot.messages] == [
        (MessageRole.SYSTEM, "summary"),
    ]
    assert context_store.replace("lane", []).byte_size == 0


def test_truncate_keeps_most_recent(context_store: ContextStore) -> None:
    context_store.append("lane", [_message(str(index)) for index in range(5)])

    assert [m.content for m in context_store.truncate("lane", 2).messages] == ["3", "4"]
    assert context_store.truncate("lane", 10).message_count == 2
    assert context_store.truncate("lane", 0).messages == []
    with pytest.raises(ValueError, match="non-negative"):
        context_store.truncate("lane", -1)


def test_storage_dir_outside_workspace_is_rejected(workspace: Path) -> None:
    store = ContextStore(workspace, storage_dir="../elsewhere")

    with pytest.raises(ValueError, match="outside workspace"):
        store.load_lane("lane")


def test_corrupt_lane_line_raises_storage_error(context_store: ContextStore) -> None:
    context_store.append("lane", [_message("ok")])
    path = context_store.lane_path("lane")
    path.write_text(path.read_text("utf-8") + "{broken\n", "utf-8")

    with pytest.raises(StorageIOError):
        context_store.load_lane("lane")


def test_safe_lane_id_replaces_runs_of_unsafe_characters() -> None:
    assert safe_lane_id("run:ad-hoc:qa/agent") == "run_ad-hoc_qa_agent"
    assert safe_lane_id("a::b") == "a_b"
