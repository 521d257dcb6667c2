"""Workflow loader with name-based resolution and YAML parsing."""

import logging
import os
from pathlib import Path

import yaml

from ..errors.models import WorkflowNotFoundError, WorkflowValidationError
from .compiler import WorkflowCompiler
from .models import WorkflowDefinition

logger = logging.getLogger(__name__)

WORKFLOW_DIR = Path(".loomflow") / "workflows"
WORKFLOW_SUFFIXES = (".yaml", ".yml", ".json")


class WorkflowLoader:
    """Loads workflow definitions from YAML or JSON documents."""

    def __init__(self, project_root: str | None = None, user_home: str | None = None, max_nesting_depth: int = 32):
        """Initialize the workflow loader.

        Args:
            project_root: Override project root for testing
            user_home: Override user home for testing
            max_nesting_depth: Nesting bound passed to the compiler
        """
        self.project_root = project_root or os.getcwd()
        self.user_home = user_home or os.path.expanduser("~")
        self.compiler = WorkflowCompiler(max_nesting_depth=max_nesting_depth)

    def load(self, workflow_name: str) -> WorkflowDefinition:
        """Load a workflow by name, looking in the project before the user home.

        Args:
            workflow_name: File name without extension (e.g. "order-processing")

        Returns:
            Parsed, validated workflow definition

        Raises:
            WorkflowNotFoundError: If no matching file exists
            WorkflowValidationError: If the document fails to parse or compile
        """
        searched = []
        for root in (self.project_root, self.user_home):
            for suffix in WORKFLOW_SUFFIXES:
                path = Path(root) / WORKFLOW_DIR / f"{workflow_name}{suffix}"
                searched.append(path)
                if path.exists():
                    logger.debug(f"Loading workflow '{workflow_name}' from {path}")
                    return self.load_file(path, name=workflow_name)

        locations = "\n".join(f"  - {path}" for path in searched)
        raise WorkflowNotFoundError(f"Workflow '{workflow_name}' not found. Searched:\n{locations}")

    def load_file(self, file_path: str | Path, name: str | None = None) -> WorkflowDefinition:
        """Load and validate a workflow file."""
        file_path = Path(file_path)
        try:
            content = file_path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise WorkflowNotFoundError(f"Workflow file not found: {file_path}") from e
        return self.load_string(content, name=name or file_path.stem, source=str(file_path))

    def load_string(self, content: str, name: str | None = None, source: str = "<string>") -> WorkflowDefinition:
        """Parse and validate a YAML (or JSON) workflow document.

        Raises:
            WorkflowValidationError: If the document fails to parse or compile
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowValidationError(f"YAML parsing error in {source}: {e}") from e

        if not isinstance(data, dict):
            raise WorkflowValidationError(f"Workflow in {source} must be a YAML object")

        if name is not None and "name" not in data:
            data = {**data, "name": name}

        result = self.compiler.compile(data)
        result.raise_for_errors(source=source)
        return result.definition
