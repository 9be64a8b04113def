"""Tests for service wiring and the command-line interface."""

import json
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from paperpilot.cli import app
from paperpilot.config import PaperpilotConfig
from paperpilot.exceptions import PaperlessError
from paperpilot.pipeline.ocr import LLMVisionExtractor, TesseractExtractor
from paperpilot.services import ModificationNotFound, build_extractor, build_services
from paperpilot.sources.paperless import PaperlessClient

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"data_dir": str(tmp_path / "data"), "ocr": {"backend": "tesseract"}}))
    return path


class TestBuildServices:
    def test_wiring(self, tmp_path) -> None:
        config = PaperpilotConfig(data_dir=tmp_path)
        config.ocr.backend = "tesseract"

        services = build_services(config, db_url="sqlite://")

        assert isinstance(services.client, PaperlessClient)
        assert services.client.history is not None
        assert services.workflows.source is services.client
        assert services.list_workflows() == []
        assert services.list_modifications() == []

    def test_undo_unknown_record(self, tmp_path) -> None:
        services = build_services(PaperpilotConfig(data_dir=tmp_path), db_url="sqlite://")
        with pytest.raises(ModificationNotFound):
            services.undo_modification(1)

    def test_extractor_selection(self, tmp_path) -> None:
        config = PaperpilotConfig(data_dir=tmp_path)
        assert isinstance(build_extractor(config), LLMVisionExtractor)

        config.ocr.backend = "tesseract"
        assert isinstance(build_extractor(config), TesseractExtractor)

        config.ocr.backend = "carrier-pigeon"
        with pytest.raises(ValueError):
            build_extractor(config)


class TestWorkflowCommands:
    def test_import_then_list(self, tmp_path, config_file) -> None:
        definitions = tmp_path / "workflows.json"
        definitions.write_text(json.dumps([
            {
                "name": "inbox",
                "run_order": 1,
                "triggers": [{"match_action": "Match tags", "match_data": ["inbox"]}],
                "actions": [{"action_type": "Auto title"}, {"action_type": "Apply tags", "action_data": ["done"]}],
            },
            {"name": "manual", "run_order": -1},
        ]))

        result = runner.invoke(app, ["--config", str(config_file), "workflows", "import", str(definitions)])
        assert result.exit_code == 0, result.output
        assert "Imported 2 workflows" in result.output

        result = runner.invoke(app, ["--config", str(config_file), "workflows", "list"])
        assert result.exit_code == 0, result.output
        assert "inbox" in result.output
        assert "manual" in result.output

    def test_import_rejects_non_list(self, tmp_path, config_file) -> None:
        definitions = tmp_path / "workflows.json"
        definitions.write_text(json.dumps({"name": "single"}))

        result = runner.invoke(app, ["--config", str(config_file), "workflows", "import", str(definitions)])
        assert result.exit_code == 1

    def test_list_empty(self, config_file) -> None:
        result = runner.invoke(app, ["--config", str(config_file), "workflows", "list"])
        assert result.exit_code == 0
        assert "No workflows defined" in result.output


def test_history_empty(config_file) -> None:
    result = runner.invoke(app, ["--config", str(config_file), "history"])
    assert result.exit_code == 0
    assert "No modifications recorded" in result.output


def test_history_undo_unknown_record(config_file) -> None:
    result = runner.invoke(app, ["--config", str(config_file), "history", "--undo", "99"])
    assert result.exit_code == 1
    assert "Modification 99 not found" in result.output


def test_history_undo_paperless_down(config_file, monkeypatch) -> None:
    services = MagicMock()
    services.undo_modification.side_effect = PaperlessError("connection refused")
    monkeypatch.setattr("paperpilot.cli._services", lambda: services)

    result = runner.invoke(app, ["--config", str(config_file), "history", "--undo", "3"])

    assert result.exit_code == 1
    assert "connection refused" in result.output
    services.undo_modification.assert_called_once_with(3)


def test_config_show(config_file) -> None:
    result = runner.invoke(app, ["--config", str(config_file), "config", "--show"])
    assert result.exit_code == 0
    assert "tesseract" in result.output
