"""Shared fixtures for the workflow engine tests."""

import asyncio
import random
from typing import Any

import pytest

from loomflow.config import WorkflowEngineConfig, reset_config
from loomflow.workflow.collaborators import Collaborators, Secret
from loomflow.workflow.executor import WorkflowExecutor


class RecordingSleep:
    """Awaitable sleep that records requested delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRouter:
    """Routes every actor type to ``<type>-1``."""

    def __init__(self):
        self.routed: list[str] = []

    async def route_to_actor(self, actor_type: str) -> str:
        self.routed.append(actor_type)
        return f"{actor_type}-1"


class FakeTransport:
    """Records messages and answers them with per-method handlers."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []
        self.handlers: dict[str, Any] = {}

    def on(self, method: str, handler):
        self.handlers[method] = handler

    async def send_and_wait(self, message: dict[str, Any]) -> Any:
        self.messages.append(message)
        handler = self.handlers.get(message["method"])
        if handler is None:
            return {"echo": message["args"]}
        result = handler(message)
        if asyncio.iscoroutine(result):
            result = await result
        return result


class FakeActivityStore:
    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}

    async def create(self, record: dict[str, Any]) -> dict[str, Any]:
        self.records[record["activityId"]] = record
        return record

    async def execute(self, activity_id: str) -> Any:
        record = self.records[activity_id]
        return {"activity": record["name"], "input": record["input"]}


class FakeSecretStore:
    def __init__(self, secrets: dict[str, Any] | None = None, available: bool = True):
        self.secrets = secrets or {}
        self.available = available

    def is_available(self) -> bool:
        return self.available

    async def get_secret(self, name: str) -> Secret | None:
        if name not in self.secrets:
            return None
        return Secret(name=name, value=self.secrets[name])


@pytest.fixture(autouse=True)
def _reset_global_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def engine_config() -> WorkflowEngineConfig:
    return WorkflowEngineConfig(wait_poll_interval_ms=1, wait_timeout_ms=5000)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def router() -> FakeRouter:
    return FakeRouter()


@pytest.fixture
def activity_store() -> FakeActivityStore:
    return FakeActivityStore()


@pytest.fixture
def secret_store() -> FakeSecretStore:
    return FakeSecretStore({"api-key": "s3cr3t"})


@pytest.fixture
def collaborators(router, transport, activity_store, secret_store) -> Collaborators:
    return Collaborators(router=router, transport=transport, activities=activity_store, secrets=secret_store)


@pytest.fixture
def executor(engine_config, collaborators, recording_sleep) -> WorkflowExecutor:
    return WorkflowExecutor(
        config=engine_config,
        collaborators=collaborators,
        sleep=recording_sleep,
        rng=random.Random(7),
    )


@pytest.fixture
def make_workflow():
    """Build a definition document with a manual trigger around an actions map."""

    def build(actions: dict[str, Any], **extra: Any) -> dict[str, Any]:
        document = {"triggers": {"manual": {"type": "manual"}}, "actions": actions}
        document.update(extra)
        return document

    return build
