import allure
import pytest

from mcoda.context.budget import (
    estimate_budget,
    estimate_messages_tokens,
    estimate_tokens,
    resolve_model_token_limit,
)
from mcoda.context.models import ContextMessage, MessageRole

pytestmark = [
    allure.epic("Context Lanes"),
    allure.feature("Token Budget"),
]


@pytest.mark.parametrize(
    ("text", "char_per_token", "expected"),
    [
        ("", 4, 0),
        (None, 4, 0),
        ("abcd", 4, 1),
        ("abcde", 4, 2),
        ("abcde", 1, 5),
    ],
)
def test_estimate_tokens_rounds_up(text: str | None, char_per_token: int, expected: int) -> None:
    assert estimate_tokens(text, char_per_token) == expected


@pytest.mark.parametrize("char_per_token", [0, -3])
@pytest.mark.parametrize("text", ["hello", "", None])
def test_non_positive_char_per_token_is_rejected(text: str | None, char_per_token: int) -> None:
    with pytest.raises(ValueError, match="char_per_token"):
        estimate_tokens(text, char_per_token)


def test_estimate_budget_sums_all_parts() -> None:
    history = [
        ContextMessage(role=MessageRole.USER, content="x" * 8),
        ContextMessage(role=MessageRole.ASSISTANT, content="y" * 5),
    ]

    estimate = estimate_budget(
        system_prompt="s" * 12,
        bundle="b" * 4,
        history=history,
        char_per_token=4,
    )

    assert (estimate.system_tokens, estimate.bundle_tokens, estimate.history_tokens) == (3, 1, 4)
    assert estimate.total_tokens == 8
    assert estimate_messages_tokens(history, 4) == 4


def test_resolve_model_token_limit_prefers_exact_then_base_name() -> None:
    overrides = {"gpt-4o": 1_000, "gpt-4o:mini": 500}

    assert resolve_model_token_limit("gpt-4o:mini", overrides) == 500
    assert resolve_model_token_limit("gpt-4o:large", overrides) == 1_000
    assert resolve_model_token_limit("claude", overrides, fallback=64) == 64
    assert resolve_model_token_limit(None, overrides, fallback=64) == 64
    assert resolve_model_token_limit("gpt-4o") == 8192
