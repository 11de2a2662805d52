"""Tests for the typer CLI against inline services."""

import pytest
from typer.testing import CliRunner

from cliphy import cli

runner = CliRunner()

URL = "https://youtu.be/dQw4w9WgXcQ"


@pytest.fixture(autouse=True)
def _services(monkeypatch, services):
    monkeypatch.setattr(cli, "_services", services)
    return services


def test_enqueue_list_show(_services) -> None:
    result = runner.invoke(cli.app, ["enqueue", URL, "--user", "u1", "--title", "Demo"])
    assert result.exit_code == 0, result.output
    assert "position 1" in result.output
    assert "[COMPLETED" in result.output

    item_id = _services.queue.list_items("u1")[0].id
    result = runner.invoke(cli.app, ["list", "--user", "u1"])
    assert item_id in result.output

    result = runner.invoke(cli.app, ["show", item_id, "--user", "u1", "--markdown"])
    assert result.exit_code == 0
    assert result.output.startswith("# Demo")


def test_errors_exit_nonzero() -> None:
    result = runner.invoke(cli.app, ["enqueue", "https://example.com", "--user", "u1"])
    assert result.exit_code == 1
    assert "INVALID_INPUT" in result.output

    result = runner.invoke(cli.app, ["batch", URL, "--user", "u1"])
    assert result.exit_code == 1
    assert "PRO_REQUIRED" in result.output


def test_plan_and_usage() -> None:
    assert runner.invoke(cli.app, ["plan", "u1", "pro"]).exit_code == 0
    result = runner.invoke(cli.app, ["usage", "--user", "u1"])
    assert "Plan: pro" in result.output
    assert "0/100" in result.output

    assert runner.invoke(cli.app, ["plan", "u1", "gold"]).exit_code == 1


def test_summarize_raw_and_checks() -> None:
    result = runner.invoke(cli.app, ["summarize", URL, "--raw", "--check"])
    assert result.exit_code == 0, result.output
    assert '"keyPoints"' in result.output
    assert "PASS  parseFirstTry" in result.output
