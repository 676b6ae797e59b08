import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from semantic_indexer.errors import IndexingError
from semantic_indexer.indexer import IndexingResult, RunOutcome
from semantic_indexer.main import build_parser, main, run_watch

from test_config import ENV_VARS


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        # setenv first so teardown also removes values load_dotenv adds
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VECTOR_STORE", "memory")
    return monkeypatch


class TestParser:
    def test_index_flags(self):
        args = build_parser().parse_args(["--workspace", "/src", "index", "--force"])

        assert args.command == "index"
        assert args.force is True
        assert args.workspace == "/src"

    def test_search_limit(self):
        args = build_parser().parse_args(["search", "auth middleware", "-n", "3"])

        assert args.query == "auth middleware"
        assert args.limit == 3

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:
    def test_status_of_fresh_workspace(self, cli_env, workspace, capsys):
        exit_code = main(["--workspace", str(workspace), "status", "--json"])

        assert exit_code == 0
        assert json.loads(capsys.readouterr().out) == {
            "status": "notIndexed",
            "message": "Workspace has not been indexed",
        }

    def test_index_without_workspace(self, cli_env, capsys):
        exit_code = main(["index"])

        assert exit_code == 1
        assert "No workspace folder" in capsys.readouterr().out

    def test_search_before_indexing(self, cli_env, workspace, capsys):
        exit_code = main(["--workspace", str(workspace), "search", "anything"])

        assert exit_code == 0
        assert "No relevant code found." in capsys.readouterr().out

    def test_clear(self, cli_env, workspace, capsys):
        exit_code = main(["--workspace", str(workspace), "clear"])

        assert exit_code == 0
        assert "Index state cleared" in capsys.readouterr().out

    def test_configuration_error(self, cli_env, workspace, capsys):
        cli_env.setenv("EMBEDDING_PROVIDER", "openai")

        exit_code = main(["--workspace", str(workspace), "status"])

        assert exit_code == 1
        assert "OpenAI API key required" in capsys.readouterr().out


class TestWatch:
    @patch("semantic_indexer.main.time.sleep")
    def test_failed_sweep_keeps_watching(self, mock_sleep, capsys):
        indexer = MagicMock()
        indexer.workspace_root = "/src"
        indexer.index_workspace.side_effect = [
            IndexingError("Ollama Error: connection refused", IndexingResult(RunOutcome.COMPLETED)),
            IndexingResult(RunOutcome.COMPLETED, files_indexed=2),
            KeyboardInterrupt,
        ]

        exit_code = run_watch(indexer, 5)

        out = capsys.readouterr().out
        assert exit_code == 0
        assert indexer.index_workspace.call_count == 3
        assert "Sweep failed, retrying in 5s: Ollama Error: connection refused" in out
        assert "2 files indexed" in out
        assert "Stopped watching" in out


class TestCheck:
    @patch("semantic_indexer.embeddings.requests.get")
    def test_reachable(self, mock_get, cli_env, workspace, capsys):
        mock_get.return_value = MagicMock(ok=True, json=MagicMock(return_value={"models": []}))

        exit_code = main(["--workspace", str(workspace), "check"])

        assert exit_code == 0
        assert "reachable" in capsys.readouterr().out

    @patch("semantic_indexer.embeddings.requests.get")
    def test_unreachable(self, mock_get, cli_env, workspace, capsys):
        cli_env.setenv("INDEXING_CONNECTION_RETRIES", "1")
        mock_get.side_effect = requests.ConnectionError("connection refused")

        exit_code = main(["--workspace", str(workspace), "check"])

        assert exit_code == 1
        assert "Ollama Error: request failed" in capsys.readouterr().out
