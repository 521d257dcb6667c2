"""Declarative configuration for workflow action types.

This registry lists every action type, the processor that runs it, whether
it nests an action graph, and the inputs a definition must supply.
"""

from typing import TypedDict


class StepConfig(TypedDict):
    """Configuration for a workflow action type."""

    processor: str
    nests_actions: bool
    required_fields: list[str]


# Registry of all workflow action types
STEP_TYPES: dict[str, StepConfig] = {
    # Invocations (call out to collaborators or evaluate data)
    "Actor": {"processor": "actor", "nests_actions": False, "required_fields": ["method"]},
    "Activity": {"processor": "activity", "nests_actions": False, "required_fields": ["activityName"]},
    "AI": {"processor": "ai", "nests_actions": False, "required_fields": ["prompt"]},
    "Http": {"processor": "http", "nests_actions": False, "required_fields": ["url"]},
    "Compose": {"processor": "compose", "nests_actions": False, "required_fields": []},
    # Control flow (run nested action graphs)
    "If": {"processor": "conditional", "nests_actions": True, "required_fields": ["condition"]},
    "Foreach": {"processor": "foreach", "nests_actions": True, "required_fields": ["items", "actions"]},
    "Parallel": {"processor": "parallel", "nests_actions": True, "required_fields": ["actions"]},
    "Until": {"processor": "loop", "nests_actions": True, "required_fields": ["condition", "actions"]},
    "While": {"processor": "loop", "nests_actions": True, "required_fields": ["condition", "actions"]},
    "DoUntil": {"processor": "loop", "nests_actions": True, "required_fields": ["condition", "actions"]},
    "Retry": {"processor": "retry", "nests_actions": True, "required_fields": ["action"]},
    "Scope": {"processor": "scope", "nests_actions": True, "required_fields": ["actions"]},
}


def get_step_config(action_type: str) -> StepConfig | None:
    """Get configuration for an action type."""
    return STEP_TYPES.get(action_type)


def is_control_flow(action_type: str) -> bool:
    """Whether the action type runs a nested action graph."""
    config = STEP_TYPES.get(action_type)
    return config is not None and config["nests_actions"]


def processor_for(action_type: str) -> str:
    """Name of the processor that runs an action type.

    Raises:
        KeyError: If the action type is not registered
    """
    return STEP_TYPES[action_type]["processor"]
