"""End-to-end tests for the CLI commands.

Commands run against the temporary data directory set up in the root
conftest. The Dialogflow client is swapped for one over a mock transport.
"""

import csv
import re

import httpx
import pytest
from typer.testing import CliRunner

from convosim.cli import factory
from convosim.cli.main import app
from convosim.services.dialogflow_client import DialogflowClient

runner = CliRunner()

JOB_ID = re.compile(r'"id": "([0-9a-f-]{36})"')


def agent_reply(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "queryResult": {
                "responseMessages": [{"text": {"text": ["Sure thing"]}}],
                "match": {"intent": {"displayName": "Order"}, "confidence": 0.8},
                "currentPage": {"displayName": "Order Page"},
            }
        },
    )


@pytest.fixture
def mock_agent(monkeypatch):
    monkeypatch.setattr(
        factory,
        "build_client",
        lambda cfg: DialogflowClient(transport=httpx.MockTransport(agent_reply)),
    )


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "convosim.yaml"
    path.write_text(
        "agent:\n  project_id: test-project\n  agent_id: agent-123\n"
        "execution:\n  max_concurrency: 2\n"
    )
    return str(path)


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "conversations.csv"
    path.write_text(
        "conversation_id,user_input,turn_number\n"
        "conv_1,hi,1\nconv_1,a large pizza,2\nconv_2,hello,1\n"
    )
    return path


def run_job(config_file, csv_file) -> str:
    result = runner.invoke(
        app, ["--config", config_file, "run", str(csv_file), "--json", "--name", "CLI run"]
    )
    assert result.exit_code == 0, result.stdout
    return JOB_ID.search(result.stdout).group(1)


class TestBasicCommands:
    """Commands that need no agent."""

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "ConvoSim" in result.stdout

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "jobs", "report", "serve"):
            assert command in result.stdout

    def test_show_unknown_job(self):
        result = runner.invoke(app, ["jobs", "show", "no-such-job"])
        assert result.exit_code == 1
        assert "Job not found" in result.stdout


class TestRunCommand:
    """convosim run and the commands that read its results."""

    def test_missing_csv(self, tmp_path):
        result = runner.invoke(app, ["run", str(tmp_path / "nope.csv")])
        assert result.exit_code == 1
        assert "File not found" in result.stdout

    def test_invalid_concurrency(self, csv_file):
        result = runner.invoke(app, ["run", str(csv_file), "-c", "0"])
        assert result.exit_code == 1

    def test_empty_csv_reports_error_code(self, mock_agent, config_file, tmp_path):
        empty = tmp_path / "empty.csv"
        empty.write_text("conversation_id,user_input\n")

        result = runner.invoke(app, ["--config", config_file, "run", str(empty)])

        assert result.exit_code == 1
        assert "E-1002" in result.stdout

    def test_run_completes_job(self, mock_agent, config_file, csv_file):
        result = runner.invoke(
            app, ["--config", config_file, "run", str(csv_file), "--json"]
        )

        assert result.exit_code == 0
        assert '"status": "completed"' in result.stdout
        assert '"agentResponse": "Sure thing"' in result.stdout

    def test_list_and_show_after_run(self, mock_agent, config_file, csv_file):
        job_id = run_job(config_file, csv_file)

        listed = runner.invoke(app, ["jobs", "list", "--json"])
        shown = runner.invoke(app, ["jobs", "show", job_id])

        assert listed.exit_code == 0
        assert job_id in listed.stdout
        assert shown.exit_code == 0
        assert "conv_2" in shown.stdout

    def test_report_writes_csv(self, mock_agent, config_file, csv_file, tmp_path):
        job_id = run_job(config_file, csv_file)
        target = tmp_path / "out" / "report.csv"

        result = runner.invoke(app, ["report", job_id, "-o", str(target)])

        assert result.exit_code == 0
        with open(target, newline="") as f:
            rows = list(csv.DictReader(f))
        assert [(r["conversationId"], r["turnNumber"]) for r in rows] == [
            ("conv_1", "1"),
            ("conv_1", "2"),
            ("conv_2", "1"),
        ]
        assert rows[0]["intent"] == "Order"
