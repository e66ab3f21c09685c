"""Pytest configuration and shared fixtures for Stepwise tests.

This module contains fixtures used across multiple test modules.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from stepwise.config.loader import load_definition_string
from stepwise.config.schema import StepDef, WorkflowDefinition
from stepwise.config.settings import EngineSettings
from stepwise.config.sources import InMemoryDefinitionSource
from stepwise.engine.executor import StepExecutor
from stepwise.engine.store import FileStateStore, InMemoryStateStore
from stepwise.handlers.registry import ActionHandlerRegistry, create_default_registry

PRD_TEMPLATE = """\
# PRD: {{ project_name }}

Scale: {{ project_scale }}
Stakeholders: {{ stakeholders }}
Success criteria: {{ success_criteria }}
"""


@pytest.fixture
def sample_workflow_yaml() -> str:
    """Return a minimal valid workflow YAML for testing."""
    return """\
workflow:
  name: test-workflow
  description: A test workflow
  steps:
    - name: welcome
      action: display
      message: "Hello, {{ user }}!"
    - name: ask-goal
      action: elicit
      prompt: "What is your goal?"
      variable: goal
  variables:
    user: world
"""


@pytest.fixture
def tmp_workflow_file(tmp_path: Path, sample_workflow_yaml: str) -> Path:
    """Create a temporary workflow YAML file."""
    workflow_file = tmp_path / "test-workflow.yaml"
    workflow_file.write_text(sample_workflow_yaml)
    return workflow_file


@pytest.fixture
def prd_workflow_yaml() -> str:
    """Five-step PRD workflow: state machine, three elicits, template."""
    return """\
workflow:
  name: create-prd
  description: Create a product requirements document
  agent: pm
  phase: 2
  variables:
    project_name: Atlas
  steps:
    - name: load-status
      action: load_state_machine
      status_file: docs/status.md
    - name: ask-scale
      action: elicit
      prompt: "How large is {{ project_name }}?"
      variable: project_scale
    - name: ask-stakeholders
      action: elicit
      prompt: "Who are the stakeholders?"
      variable: stakeholders
    - name: ask-criteria
      action: elicit
      prompt: "What are the success criteria?"
      variable: success_criteria
    - name: write-prd
      action: template
      template: prd.md
      output_file: "docs/prd-{project_name}.md"
      variable: prd_path
"""


@pytest.fixture
def prd_definition(prd_workflow_yaml: str) -> WorkflowDefinition:
    """Return the parsed five-step PRD workflow."""
    return load_definition_string(prd_workflow_yaml)


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    """Engine settings rooted in a temporary directory, with a PRD template."""
    templates_dir = tmp_path / "templates"
    templates_dir.mkdir()
    (templates_dir / "prd.md").write_text(PRD_TEMPLATE)
    return EngineSettings(
        state_dir=tmp_path / "state",
        workflows_dir=tmp_path / "workflows",
        templates_dir=templates_dir,
        output_dir=tmp_path / "out",
    )


@pytest.fixture
def memory_store() -> InMemoryStateStore:
    """Return an empty in-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def file_store(tmp_path: Path) -> FileStateStore:
    """Return a file state store in a temporary directory."""
    return FileStateStore(tmp_path / "state")


@pytest.fixture
def source() -> InMemoryDefinitionSource:
    """Return an empty in-memory definition source."""
    return InMemoryDefinitionSource()


@pytest.fixture
def registry(
    settings: EngineSettings,
    source: InMemoryDefinitionSource,
    memory_store: InMemoryStateStore,
) -> ActionHandlerRegistry:
    """Default registry wired to the in-memory store and source."""
    return create_default_registry(settings=settings, source=source, store=memory_store)


@pytest.fixture
def make_executor(
    memory_store: InMemoryStateStore,
    registry: ActionHandlerRegistry,
    source: InMemoryDefinitionSource,
):
    """Factory returning an executor initialized for a definition."""

    def _make(
        definition: WorkflowDefinition,
        instance_id: str = "run-1",
        variables: dict | None = None,
    ) -> StepExecutor:
        source.add(definition)
        executor = StepExecutor(memory_store, registry, source=source)
        executor.initialize(definition, instance_id, variables)
        return executor

    return _make


@pytest.fixture
def display_workflow():
    """Factory building a workflow of ``count`` display steps."""

    def _build(name: str, count: int) -> WorkflowDefinition:
        return WorkflowDefinition(
            name=name,
            steps=[
                StepDef(name=f"show-{i}", action="display", message=f"message {i}")
                for i in range(count)
            ],
        )

    return _build
