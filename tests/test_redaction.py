import hashlib

import allure
import pytest

from mcoda.context.redaction import ContextRedactor

pytestmark = [
    allure.epic("Context Lanes"),
    allure.feature("Redaction"),
]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("key sk-abcdefghijklmnop1234 here", "key [REDACTED_API_KEY] here"),
        ("use Bearer abc.def-123456", "use Bearer [REDACTED_TOKEN]"),
        ("api_key=abcd1234efgh", "api_key=[REDACTED_API_KEY]"),
        ("API-KEY: 'abcd1234efgh'", "API-KEY: [REDACTED_API_KEY]"),
        ("token = 12345678abc", "token = [REDACTED_TOKEN]"),
        ("secret: s3cr3t!", "secret: [REDACTED_SECRET]!"),
        ("nothing to hide", "nothing to hide"),
    ],
)
def test_default_rules_mask_common_secret_shapes(raw: str, expected: str) -> None:
    content, _ = ContextRedactor().redact(raw)

    assert content == expected


def test_authorization_header_is_masked_to_end_of_line() -> None:
    content, count = ContextRedactor().redact("Authorization: Basic dXNlcjpwYXNz\nnext line")

    assert content == "Authorization: [REDACTED_AUTH]\nnext line"
    assert count == 1


def test_custom_patterns_use_generic_mask_and_are_counted() -> None:
    redactor = ContextRedactor([r"ACME-\d+"])

    assert redactor.redact("ticket ACME-42 and ACME-7") == ("ticket <redacted> and <redacted>", 2)


def test_registered_secret_and_fingerprint_are_masked() -> None:
    redactor = ContextRedactor()
    redactor.register_secret("  hunter2-pass  ", "db password")
    fingerprint = hashlib.sha256(b"hunter2-pass").hexdigest()

    content, count = redactor.redact(f"pw hunter2-pass hash {fingerprint}")

    assert content == "pw ***SECRET:db_password*** hash ***SECRET:db_password***"
    assert count == 2


def test_register_secret_ignores_blank_and_duplicates() -> None:
    redactor = ContextRedactor(secrets=[("value-1", None), ("value-1", "again")])
    redactor.register_secret("   ")
    redactor.register_secret(None)

    assert [entry.label for entry in redactor.secrets] == ["secret"]
    assert redactor.redact("x value-1 y") == ("x ***SECRET:secret*** y", 1)

    redactor.clear_secrets()
    assert redactor.redact("x value-1 y") == ("x value-1 y", 0)


def test_registries_are_per_instance() -> None:
    first = ContextRedactor()
    first.register_secret("only-first")

    assert ContextRedactor().redact("only-first") == ("only-first", 0)
