"""Interfaces of the external services the engine calls into.

The engine never constructs these; callers inject implementations into
``WorkflowExecutor``. Any object with matching methods satisfies them.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ActorRouter(Protocol):
    """Resolves an actor type to a concrete actor id."""

    async def route_to_actor(self, actor_type: str) -> str: ...


@runtime_checkable
class MessageTransport(Protocol):
    """Delivers a request to an actor and waits for its reply.

    The message is ``{"targetActorId", "method", "args"}``.
    """

    async def send_and_wait(self, message: dict[str, Any]) -> Any: ...


@runtime_checkable
class ActivityStore(Protocol):
    """Persists and runs activity records."""

    async def create(self, record: dict[str, Any]) -> Any: ...

    async def execute(self, activity_id: str) -> Any: ...


@dataclass
class Secret:
    """A resolved secret; only ``value`` is used by the engine."""

    name: str
    value: Any
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class SecretStore(Protocol):
    """Source of secrets for the ``secret()`` expression function."""

    def is_available(self) -> bool: ...

    async def get_secret(self, name: str) -> Secret | None: ...


@dataclass
class Collaborators:
    """Bundle of injected collaborators. Every member is optional."""

    router: ActorRouter | None = None
    transport: MessageTransport | None = None
    activities: ActivityStore | None = None
    secrets: SecretStore | None = None
    http_client: Any = None  # httpx.AsyncClient
