from __future__ import annotations

import allure
import pytest

from mcoda.errors import UnknownProfileError
from mcoda.routing.chain import routing_tiers
from mcoda.routing.metadata import (
    canonical_command_name,
    required_capabilities,
    validate_docdex_scope,
    validate_qa_profile,
)
from mcoda.routing.models import GLOBAL_WORKSPACE_ID, RoutingSource

pytestmark = [
    allure.epic("Routing Resolver"),
    allure.feature("Command Metadata"),
]


@pytest.mark.parametrize(
    ("raw", "canonical"),
    [
        ("create_tasks", "create-tasks"),
        ("  Create Tasks ", "create-tasks"),
        ("work on tasks", "work-on-tasks"),
        ("tasks:order", "order-tasks"),
        ("tasks order", "order-tasks"),
        ("docs:sds:generate", "sds"),
        ("docs-pdr", "pdr"),
        ("openapi_from_docs", "openapi-from-docs"),
        ("__default__", "default"),
        ("agent:set-default", "default"),
        ("Custom_Command", "custom-command"),
    ],
)
def test_canonical_command_name(raw: str, canonical: str) -> None:
    assert canonical_command_name(raw) == canonical


def test_required_capabilities_deduplicate_qa() -> None:
    assert required_capabilities("qa-tasks", task_type="qa") == ("qa_interpretation",)
    assert required_capabilities("unknown-command") == ()
    assert required_capabilities("unknown-command", task_type="e2e-QA") == ("qa_interpretation",)


def test_known_profile_validation() -> None:
    assert validate_qa_profile(None) is None
    assert validate_qa_profile("Integration") == "integration"
    assert validate_docdex_scope("openapi") == "openapi"
    with pytest.raises(UnknownProfileError, match="Use one of"):
        validate_docdex_scope("everything")


def test_routing_tiers_order() -> None:
    assert routing_tiers("ws", "qa-tasks") == [
        ("ws", "qa-tasks", RoutingSource.WORKSPACE_DEFAULT),
        (GLOBAL_WORKSPACE_ID, "qa-tasks", RoutingSource.GLOBAL_DEFAULT),
        ("ws", "default", RoutingSource.WORKSPACE_DEFAULT),
        (GLOBAL_WORKSPACE_ID, "default", RoutingSource.GLOBAL_DEFAULT),
    ]
    assert len(routing_tiers("ws", "default")) == 2
