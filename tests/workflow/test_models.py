"""Tests for definition parsing and serialization."""

import pytest

from loomflow.errors import ActionDefinitionError, ParameterError
from loomflow.workflow.models import (
    ActionStatus,
    ActorAction,
    DoUntilAction,
    HttpAction,
    IfAction,
    RetryAction,
    UntilAction,
    WhileAction,
    WorkflowDefinition,
    parse_action,
)

BODY = {"noop": {"type": "Compose", "inputs": 1}}


class TestParseAction:
    """Variant selection and common fields."""

    def test_actor_with_resilience_fields(self):
        action = parse_action(
            "call",
            {
                "type": "Actor",
                "inputs": {"actorType": "Billing", "method": "charge", "args": {"amount": 10}},
                "runAfter": {"prepare": ["Succeeded", "Failed"]},
                "timeout": "PT30S",
                "circuitBreaker": {"failureThreshold": 3, "timeout": 10_000, "cooldown": 2_000},
                "rateLimit": {"requests": 5, "per": "minute"},
            },
        )

        assert isinstance(action, ActorAction)
        assert action.actor_type == "Billing"
        assert action.run_after == {"prepare": frozenset({ActionStatus.SUCCEEDED, ActionStatus.FAILED})}
        assert action.timeout == 30.0
        assert action.circuit_breaker.failure_threshold == 3
        assert action.circuit_breaker.cooldown_seconds == 2.0
        assert action.rate_limit.period_seconds == 60

    def test_numeric_timeout_is_milliseconds(self):
        action = parse_action("c", {"type": "Compose", "inputs": 1, "timeout": 1500})

        assert action.timeout == 1.5

    def test_empty_run_after_list_means_succeeded(self):
        action = parse_action("c", {"type": "Compose", "inputs": 1, "runAfter": {"a": []}})

        assert action.run_after == {"a": frozenset({ActionStatus.SUCCEEDED})}

    def test_http_uri_alias(self):
        action = parse_action("h", {"type": "Http", "inputs": {"uri": "https://x.test", "method": "patch"}})

        assert isinstance(action, HttpAction)
        assert action.url == "https://x.test"
        assert action.method == "PATCH"

    def test_loop_variants(self):
        inputs = {"condition": "@equals(1, 1)", "actions": BODY, "limit": {"count": 4, "timeout": "PT1M"}}

        until = parse_action("u", {"type": "Until", "inputs": inputs})
        do_until = parse_action("d", {"type": "DoUntil", "inputs": inputs})
        while_loop = parse_action("w", {"type": "While", "inputs": inputs})

        assert type(until) is UntilAction
        assert isinstance(do_until, DoUntilAction)
        assert until.limit.count == 4
        assert until.limit.timeout == 60
        assert while_loop.as_until().condition == "@not(equals(1, 1))"

    def test_while_literal_condition_inverts(self):
        while_loop = parse_action("w", {"type": "While", "inputs": {"condition": True, "actions": BODY}})

        assert isinstance(while_loop, WhileAction)
        assert while_loop.as_until().condition is False

    def test_if_else_forms(self):
        wrapped = parse_action(
            "i", {"type": "If", "inputs": {"condition": True, "else": {"actions": {"x": {"type": "Compose"}}}}}
        )
        direct = parse_action("i", {"type": "If", "inputs": {"condition": True, "else": {"x": {"type": "Compose"}}}})

        assert isinstance(wrapped, IfAction)
        assert list(wrapped.else_actions) == ["x"]
        assert list(direct.else_actions) == ["x"]

    def test_retry_nested_action(self):
        action = parse_action(
            "r",
            {
                "type": "Retry",
                "inputs": {
                    "action": {"type": "Actor", "inputs": {"actorId": "a-1", "method": "go"}},
                    "retryPolicy": {"type": "fixed", "count": 2, "interval": "PT1S"},
                },
            },
        )

        assert isinstance(action, RetryAction)
        assert isinstance(action.action, ActorAction)
        assert action.policy.count == 2

    @pytest.mark.parametrize(
        "data,match",
        [
            ({"type": "Teleport"}, "unknown type"),
            ({"type": "Actor", "inputs": {"method": "x"}}, "actorType"),
            ({"type": "Actor", "inputs": {"actorId": "a"}}, "method"),
            ({"type": "Activity", "inputs": {}}, "activityName"),
            ({"type": "Http", "inputs": {"url": "https://x", "method": "BREW"}}, "method"),
            ({"type": "Compose", "runAfter": {"a": ["Maybe"]}}, "unknown status"),
            ({"type": "Compose", "timeout": -5}, "timeout"),
            ({"type": "Until", "inputs": {"condition": True, "actions": BODY, "limit": {"count": 0}}}, "limit.count"),
            ("not an object", "must be an object"),
        ],
    )
    def test_malformed_actions(self, data, match):
        with pytest.raises(ActionDefinitionError, match=match) as exc_info:
            parse_action("bad", data)
        assert exc_info.value.action == "bad"

    def test_depth_limit(self):
        inner = {"type": "Compose", "inputs": 1}
        for _ in range(3):
            inner = {"type": "Scope", "inputs": {"actions": {"s": inner}}}

        with pytest.raises(ActionDefinitionError, match="nesting depth"):
            parse_action("top", inner, max_depth=2)


class TestWorkflowDefinition:
    """Whole-document parsing."""

    DOCUMENT = {
        "$schema": "https://schema.example/workflow.json",
        "contentVersion": "2.1.0",
        "name": "orders",
        "parameters": {
            "region": {"type": "string", "defaultValue": "eu", "allowedValues": ["eu", "us"]},
            "limit": {"type": "int", "metadata": {"description": "page size"}},
        },
        "triggers": {"nightly": {"type": "recurrence", "recurrence": {"frequency": "Day", "interval": 1}}},
        "actions": {
            "fetch": {"type": "Http", "inputs": {"url": "https://orders.test", "method": "GET"}},
            "count": {"type": "Compose", "inputs": "@length(body('fetch').body)", "runAfter": {"fetch": ["Succeeded"]}},
        },
        "outputs": {"total": {"type": "int", "value": "@actions('count').outputs"}},
    }

    def test_from_dict(self):
        definition = WorkflowDefinition.from_dict(self.DOCUMENT)

        assert definition.name == "orders"
        assert definition.content_version == "2.1.0"
        assert definition.parameters["region"].has_default
        assert definition.parameters["limit"].description == "page size"
        assert not definition.parameters["limit"].has_default
        assert definition.triggers["nightly"].recurrence == {"frequency": "Day", "interval": 1}
        assert definition.outputs["total"].type == "int"

    def test_to_dict_reparses_to_same_structure(self):
        definition = WorkflowDefinition.from_dict(self.DOCUMENT)

        again = WorkflowDefinition.from_dict(definition.to_dict(), name="orders")

        assert again.to_dict() == definition.to_dict()
        assert again.to_dict()["actions"]["count"]["runAfter"] == {"fetch": ["Succeeded"]}

    def test_bad_parameter_type(self):
        with pytest.raises(ParameterError, match="invalid type"):
            WorkflowDefinition.from_dict({"parameters": {"x": {"type": "decimal"}}, "actions": {}})
