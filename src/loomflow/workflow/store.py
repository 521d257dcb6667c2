"""In-memory stores for workflow instances and versioned definitions."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors.models import ActionError, InstanceNotFoundError, WorkflowNotFoundError, WorkflowStateError
from .models import ActionResult, InstanceStatus, WorkflowDefinition, WorkflowExecutionResult, utc_now

logger = logging.getLogger(__name__)


class ExecutionStore:
    """Records workflow instances and their single terminal transition."""

    def __init__(self):
        self._instances: dict[str, WorkflowExecutionResult] = {}
        self._lock = threading.Lock()

    def create(self, instance_id: str, workflow_id: str) -> WorkflowExecutionResult:
        """Register a new running instance.

        Raises:
            WorkflowStateError: If the instance id is already taken
        """
        with self._lock:
            if instance_id in self._instances:
                raise WorkflowStateError(f"Instance {instance_id} already exists")
            record = WorkflowExecutionResult(instance_id=instance_id, workflow_id=workflow_id)
            self._instances[instance_id] = record
            return record

    def get(self, instance_id: str) -> WorkflowExecutionResult:
        """Get an instance record.

        Raises:
            InstanceNotFoundError: If the id is unknown
        """
        with self._lock:
            record = self._instances.get(instance_id)
        if record is None:
            raise InstanceNotFoundError(f"Instance {instance_id} not found")
        return record

    def list(self, status: InstanceStatus | None = None) -> list[WorkflowExecutionResult]:
        with self._lock:
            records = list(self._instances.values())
        if status is not None:
            records = [record for record in records if record.status is status]
        return records

    def complete(
        self, instance_id: str, actions: dict[str, ActionResult], outputs: dict[str, Any]
    ) -> WorkflowExecutionResult:
        """Transition a running instance to completed."""
        return self._finish(instance_id, InstanceStatus.COMPLETED, actions, outputs=outputs)

    def fail(
        self,
        instance_id: str,
        actions: dict[str, ActionResult],
        error: ActionError,
        failed_action: str | None = None,
    ) -> WorkflowExecutionResult:
        """Transition a running instance to failed, recording why."""
        return self._finish(instance_id, InstanceStatus.FAILED, actions, error=error, failed_action=failed_action)

    def _finish(
        self,
        instance_id: str,
        status: InstanceStatus,
        actions: dict[str, ActionResult],
        outputs: dict[str, Any] | None = None,
        error: ActionError | None = None,
        failed_action: str | None = None,
    ) -> WorkflowExecutionResult:
        with self._lock:
            record = self._instances.get(instance_id)
            if record is None:
                raise InstanceNotFoundError(f"Instance {instance_id} not found")
            if record.is_terminal:
                raise WorkflowStateError(
                    f"Instance {instance_id} is already {record.status.value}; cannot transition to {status.value}"
                )
            record.actions = dict(actions)
            record.outputs = dict(outputs or {})
            record.error = error
            record.failed_action = failed_action
            record.end_time = utc_now()
            record.status = status
            return record


VERSION_BUMPS = ("major", "minor", "patch")


def _parse_version(version: str) -> tuple[int, int, int]:
    major, minor, patch = (int(part) for part in version.split("."))
    return major, minor, patch


def bump_version(version: str, bump: str) -> str:
    """Apply a semantic version bump."""
    if bump not in VERSION_BUMPS:
        raise ValueError(f"Invalid version bump '{bump}', expected one of {list(VERSION_BUMPS)}")
    major, minor, patch = _parse_version(version)
    if bump == "major":
        return f"{major + 1}.0.0"
    if bump == "minor":
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


@dataclass
class StoredWorkflow:
    """One version of a stored workflow definition."""

    workflow_id: str
    version: str
    definition: WorkflowDefinition
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "version": self.version,
            "definition": self.definition.to_dict(),
            "description": self.description,
            "tags": list(self.tags),
            "createdAt": self.created_at.isoformat(),
        }


class WorkflowStore:
    """Versioned in-memory store of workflow definitions."""

    INITIAL_VERSION = "1.0.0"

    def __init__(self):
        self._versions: dict[str, dict[str, StoredWorkflow]] = {}
        self._lock = threading.Lock()

    def create(
        self,
        workflow_id: str,
        definition: WorkflowDefinition,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> StoredWorkflow:
        """Store the first version of a workflow.

        Raises:
            WorkflowStateError: If the workflow id already exists
        """
        with self._lock:
            if workflow_id in self._versions:
                raise WorkflowStateError(f"Workflow '{workflow_id}' already exists")
            stored = StoredWorkflow(
                workflow_id=workflow_id,
                version=self.INITIAL_VERSION,
                definition=definition,
                description=description,
                tags=list(tags or []),
            )
            self._versions[workflow_id] = {stored.version: stored}
        logger.info(f"Created workflow '{workflow_id}' at version {stored.version}")
        return stored

    def get(self, workflow_id: str, version: str | None = None) -> StoredWorkflow:
        """Get a specific version, or the latest one.

        Raises:
            WorkflowNotFoundError: If the workflow or version does not exist
        """
        with self._lock:
            versions = self._versions.get(workflow_id)
            if not versions:
                raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
            if version is None:
                version = max(versions, key=_parse_version)
            stored = versions.get(version)
        if stored is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' has no version {version}")
        return stored

    def list_versions(self, workflow_id: str) -> list[str]:
        with self._lock:
            versions = self._versions.get(workflow_id)
            if not versions:
                raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
            return sorted(versions, key=_parse_version)

    def list_workflows(self) -> list[str]:
        with self._lock:
            return sorted(self._versions)

    def publish(self, workflow_id: str, definition: WorkflowDefinition, bump: str = "patch") -> StoredWorkflow:
        """Store a new version derived from the latest one.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
            ValueError: If ``bump`` is not major, minor or patch
        """
        with self._lock:
            versions = self._versions.get(workflow_id)
            if not versions:
                raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
            latest = versions[max(versions, key=_parse_version)]
            version = bump_version(latest.version, bump)
            stored = StoredWorkflow(
                workflow_id=workflow_id,
                version=version,
                definition=definition,
                description=latest.description,
                tags=list(latest.tags),
            )
            versions[version] = stored
        logger.info(f"Published workflow '{workflow_id}' version {version}")
        return stored

    def delete(self, workflow_id: str) -> None:
        """Delete every version of a workflow.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        with self._lock:
            if self._versions.pop(workflow_id, None) is None:
                raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        logger.info(f"Deleted workflow '{workflow_id}'")
