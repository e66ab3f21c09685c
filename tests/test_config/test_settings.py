"""Unit tests for EngineSettings and definition sources.

Tests cover:
- Defaults and STEPWISE_* environment overrides
- Explicit overrides taking precedence
- Invalid environment values
- InMemoryDefinitionSource lookups
- DirectoryDefinitionSource path resolution and caching
"""

from pathlib import Path

import pytest

from stepwise.config.schema import WorkflowDefinition
from stepwise.config.settings import EngineSettings
from stepwise.config.sources import DirectoryDefinitionSource, InMemoryDefinitionSource
from stepwise.exceptions import DefinitionError


class TestEngineSettings:
    """Tests for EngineSettings.from_env."""

    def test_defaults(self) -> None:
        """Test defaults with an empty environment."""
        settings = EngineSettings.from_env({})

        assert settings.state_dir == Path(".stepwise") / "workflow-states"
        assert settings.max_hierarchy_depth == 10
        assert settings.max_steps_per_run == 1000

    def test_environment_values(self) -> None:
        """Test STEPWISE_* variables are parsed and typed."""
        settings = EngineSettings.from_env(
            {
                "STEPWISE_STATE_DIR": "/var/lib/stepwise",
                "STEPWISE_MAX_HIERARCHY_DEPTH": "4",
                "STEPWISE_TEMPLATES_DIR": "",
            }
        )

        assert settings.state_dir == Path("/var/lib/stepwise")
        assert settings.max_hierarchy_depth == 4
        assert settings.templates_dir == Path("templates")

    def test_overrides_win(self) -> None:
        """Test explicit overrides beat the environment; None is ignored."""
        settings = EngineSettings.from_env(
            {"STEPWISE_STATE_DIR": "/from/env", "STEPWISE_OUTPUT_DIR": "/out"},
            state_dir=Path("/explicit"),
            output_dir=None,
        )

        assert settings.state_dir == Path("/explicit")
        assert settings.output_dir == Path("/out")

    def test_invalid_value(self) -> None:
        """Test a malformed value raises DefinitionError."""
        with pytest.raises(DefinitionError, match="Invalid engine settings") as exc_info:
            EngineSettings.from_env({"STEPWISE_MAX_HIERARCHY_DEPTH": "deep"})

        assert "STEPWISE_" in exc_info.value.suggestion

    def test_os_environ_default(self, monkeypatch) -> None:
        """Test os.environ is read when no mapping is given."""
        monkeypatch.setenv("STEPWISE_MAX_STEPS_PER_RUN", "25")

        assert EngineSettings.from_env().max_steps_per_run == 25


class TestInMemoryDefinitionSource:
    """Tests for InMemoryDefinitionSource."""

    def test_lookup_by_name_and_reference(self) -> None:
        """Test definitions resolve by name and by explicit reference."""
        definition = WorkflowDefinition(name="prd")
        source = InMemoryDefinitionSource()
        source.add(definition, reference="flows/prd.workflow.yaml")

        assert source.get("prd") is definition
        assert source.get("flows/prd.workflow.yaml") is definition

    def test_unknown_reference(self) -> None:
        """Test unknown references list what is available."""
        source = InMemoryDefinitionSource([WorkflowDefinition(name="prd")])

        with pytest.raises(DefinitionError) as exc_info:
            source.get("arch")

        assert "prd" in exc_info.value.suggestion


class TestDirectoryDefinitionSource:
    """Tests for DirectoryDefinitionSource."""

    @pytest.fixture
    def workflows(self, tmp_path: Path) -> Path:
        (tmp_path / "prd.workflow.yaml").write_text("workflow:\n  name: prd\n")
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "arch.yaml").write_text("workflow:\n  name: arch\n")
        return tmp_path

    def test_bare_id(self, workflows: Path) -> None:
        """Test a bare id resolves with the workflow suffix."""
        source = DirectoryDefinitionSource(workflows)

        assert source.get("prd").name == "prd"

    def test_relative_path(self, workflows: Path) -> None:
        """Test a path relative to the base directory."""
        source = DirectoryDefinitionSource(workflows)

        assert source.get("nested/arch.yaml").name == "arch"
        assert source.get("nested/arch").name == "arch"

    def test_absolute_path(self, workflows: Path) -> None:
        """Test an absolute path."""
        source = DirectoryDefinitionSource(workflows / "elsewhere")

        assert source.get(str(workflows / "prd.workflow.yaml")).name == "prd"

    def test_cached(self, workflows: Path) -> None:
        """Test definitions are loaded once per path."""
        source = DirectoryDefinitionSource(workflows)

        assert source.get("prd") is source.get("prd.workflow.yaml")

    def test_missing(self, workflows: Path) -> None:
        """Test an unresolvable reference raises DefinitionError."""
        with pytest.raises(DefinitionError, match="Workflow not found: ghost"):
            DirectoryDefinitionSource(workflows).get("ghost")
