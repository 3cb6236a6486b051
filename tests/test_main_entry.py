"""
Tests for the command line entry point.

Tests cover:
- Argument parsing, version and help output
- Observability bootstrap from settings
- Stage plugin loading
- run, resume, digest and reviews commands
"""

import json
import sys
import types
from unittest.mock import patch

import pytest

from nexus_orchestrator import main
from nexus_orchestrator.config.settings import ObservabilityConfig, Settings
from nexus_orchestrator.core.stages import STAGE_ORDER
from nexus_orchestrator.observability.tracing import get_tracer

from conftest import PIPELINE_ID, ScriptedStage


@pytest.fixture
def stages_module(monkeypatch):
    """Importable module registering a succeeding stage for every stage name."""
    module = types.ModuleType("fake_stages")

    def register_stages(registry):
        for name in STAGE_ORDER:
            registry.register(ScriptedStage(name))

    module.register_stages = register_stages
    monkeypatch.setitem(sys.modules, "fake_stages", module)
    return module


@pytest.fixture(autouse=True)
def quiet_root_logger(restore_root_logger):
    """main() reinstalls root logging; restore it after every test."""
    yield


def printed_json(capsys):
    return json.loads(capsys.readouterr().out)


class TestArguments:
    """Test argument handling that never touches the pipeline."""

    def test_version(self, capsys):
        assert main.main(["--version"]) == 0
        assert "Nexus Orchestrator v1.0.0" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main.main([]) == 0
        assert "nexus-orchestrator" in capsys.readouterr().out

    def test_run_requires_stages(self):
        with pytest.raises(SystemExit):
            main.main(["run", PIPELINE_ID])

    def test_resume_options(self):
        args = main.build_parser().parse_args(
            ["resume", PIPELINE_ID, "--stages", "fake_stages", "--from-stage", "tts"]
        )
        assert args.command == "resume"
        assert args.from_stage == "tts"


class TestConfigureObservability:
    def test_tracing_disabled_by_default(self):
        assert main.configure_observability(Settings()) is None

    def test_tracing_enabled(self):
        """Enabling tracing installs an SDK tracer."""
        settings = Settings(observability=ObservabilityConfig(enable_tracing=True))

        manager = main.configure_observability(settings)

        assert manager is not None
        assert manager.tracer_provider is not None
        assert get_tracer() is manager.tracer
        manager.shutdown()


class TestLoadStages:
    def test_registers_stages(self, stages_module):
        container = main.setup_container(Settings())

        main.load_stages(container, "fake_stages")

        assert container.get("stage_registry").names() == list(STAGE_ORDER)

    def test_module_without_hook(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "empty_stages", types.ModuleType("empty_stages"))

        with pytest.raises(ValueError, match="register_stages"):
            main.load_stages(main.setup_container(Settings()), "empty_stages")


class TestCommands:
    """Test commands end to end on the in-memory store."""

    def test_run(self, stages_module, capsys):
        code = main.main(["run", PIPELINE_ID, "--stages", "fake_stages"])

        assert code == 0
        payload = printed_json(capsys)
        assert payload["status"] == "completed"
        assert payload["completedStages"] == [str(s) for s in STAGE_ORDER]

    def test_resume_unknown_pipeline(self, stages_module, capsys):
        """A NexusError is printed as JSON with a failing exit code."""
        code = main.main(["resume", PIPELINE_ID, "--stages", "fake_stages"])

        assert code == 1
        assert printed_json(capsys)["code"] == "NEXUS_STATE_NOT_FOUND"

    def test_digest(self, capsys):
        assert main.main(["digest", PIPELINE_ID]) == 0

        payload = printed_json(capsys)
        assert payload["date"] == PIPELINE_ID
        assert payload["totalCount"] == 0

    def test_reviews(self, capsys):
        assert main.main(["reviews", "--pipeline-id", PIPELINE_ID]) == 0
        assert printed_json(capsys) == []


class TestCliMain:
    def test_exit_code_from_main(self):
        with patch.object(main, "main", return_value=1), pytest.raises(SystemExit) as exc_info:
            main.cli_main()
        assert exc_info.value.code == 1

    def test_unexpected_error(self, capsys):
        with patch.object(main, "main", side_effect=RuntimeError("boom")), pytest.raises(
            SystemExit
        ) as exc_info:
            main.cli_main()

        assert exc_info.value.code == 1
        assert "Command failed: boom" in capsys.readouterr().out
