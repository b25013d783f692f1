"""Tests for the dialogforge command-line interface."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from dialogforge.cli.__main__ import load_context, main
from dialogforge.protocols import ErrorKind, GenerationResult
from dialogforge.service import DialogService


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep a developer's .env or DIALOGFORGE_* variables out of CLI runs."""
    monkeypatch.chdir(tmp_path)
    for name in ("DIALOGFORGE_MODEL", "DIALOGFORGE_BASE_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def context_file(tmp_path):
    path = tmp_path / "context.json"
    path.write_text(json.dumps({"current": {"nodeId": "n1", "type": "npcDialog", "text": ""}}))
    return path


def run_cli(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestModels:
    def test_lists_models(self, capsys):
        with patch.object(DialogService, "list_models", AsyncMock(return_value=["llama3.2:latest", "mistral"])):
            code = run_cli(["models"])

        assert code == 0
        assert capsys.readouterr().out.splitlines() == ["llama3.2:latest", "mistral"]

    def test_no_models_exits_nonzero(self, capsys):
        with patch.object(DialogService, "list_models", AsyncMock(return_value=[])):
            code = run_cli(["models"])

        assert code == 1
        assert "No models found" in capsys.readouterr().out


class TestGenerate:
    def test_prints_generated_text(self, capsys, context_file):
        generate = AsyncMock(return_value=GenerationResult.success("Halt, who goes there?"))
        with patch.object(DialogService, "generate", generate):
            code = run_cli(["generate", "npcDialog", "--context", str(context_file)])

        assert code == 0
        assert capsys.readouterr().out.strip() == "Halt, who goes there?"
        assert generate.await_args.kwargs == {"force_validation": False}

    def test_error_result_exits_nonzero(self, capsys, context_file):
        failure = GenerationResult.failure(ErrorKind.API, "500 - boom")
        with patch.object(DialogService, "generate", AsyncMock(return_value=failure)):
            code = run_cli(["generate", "npcDialog", "-c", str(context_file), "--json"])

        assert code == 1
        payload = json.loads(capsys.readouterr().out)
        assert payload["ok"] is False
        assert payload["error"] == {"kind": "api", "message": "500 - boom"}

    def test_custom_prompt(self, capsys, context_file):
        custom = AsyncMock(return_value=GenerationResult.success("The storm breaks."))
        with patch.object(DialogService, "generate_with_custom_prompt", custom):
            code = run_cli(["generate", "customNode", "-c", str(context_file), "--custom", "Describe a storm."])

        assert code == 0
        assert custom.await_args.args[-1] == "Describe a storm."

    def test_missing_context_file(self, tmp_path):
        assert run_cli(["generate", "npcDialog", "-c", str(tmp_path / "missing.json")]) == 1


class TestEvaluate:
    def test_prints_scores(self, capsys, context_file):
        code = run_cli(["evaluate", "npcDialog", "The gate opens at dawn.", "-c", str(context_file)])

        out = capsys.readouterr().out
        assert code == 0
        assert "Combined:          0.70" in out
        assert "+ Natural dialog flow progression" in out

    def test_json_output(self, capsys, context_file):
        code = run_cli(["evaluate", "npcDialog", "The gate opens at dawn.", "-c", str(context_file), "--json"])

        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["scores"]["combined"] == pytest.approx(0.7)

    def test_context_without_node_id(self, capsys, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("{}")

        assert run_cli(["evaluate", "npcDialog", "Text.", "-c", str(path)]) == 1


def test_load_context_rejects_non_objects(tmp_path):
    path = tmp_path / "list.json"
    path.write_text("[]")

    with pytest.raises(ValueError):
        load_context(str(path))
