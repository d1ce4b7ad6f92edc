"""Tests for the stagegate CLI (cli.py)."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from stagegate.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestEvaluate:
    """Tests for the evaluate command."""

    def test_push_text(self, runner: CliRunner) -> None:
        """Test text output for a push."""
        result = runner.invoke(cli, ["evaluate", "--event", "push"])

        assert result.exit_code == 0, result.output
        assert "context: push" in result.output
        assert "apply    run   approval" in result.output
        assert "destroy  skip  -" in result.output

    def test_dispatch_json(self, runner: CliRunner) -> None:
        """Test JSON output for a dispatched, gated apply."""
        result = runner.invoke(
            cli,
            [
                "evaluate",
                "--event",
                "workflow_dispatch",
                "--do-apply",
                "--use-environment-apply",
                "--environment",
                "prod",
                "--format",
                "json",
            ],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["context"] == "workflow_dispatch"
        assert data["stages"]["apply"]["run"] is True
        assert data["stages"]["apply"]["approval_required"] is True
        assert data["stages"]["apply"]["environment"] == "prod"
        assert data["stages"]["plan"]["run"] is False

    def test_flags_ignored_for_pull_request(self, runner: CliRunner) -> None:
        """Test that flags on a pull request are reported and ignored."""
        result = runner.invoke(
            cli,
            ["evaluate", "--event", "pull_request", "--do-destroy", "--format", "json"],
        )

        assert result.exit_code == 0
        assert "flags are ignored" in result.stderr
        data = json.loads(result.stdout)
        assert data["stages"]["destroy"]["run"] is False

    def test_policy_environment_override(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that a policy file sets approval environment names."""
        policy = tmp_path / "gates.yaml"
        policy.write_text("approvalEnvironments:\n  apply: prod-approvers\n", encoding="utf-8")

        result = runner.invoke(
            cli,
            ["evaluate", "--event", "push", "--policy", str(policy), "--format", "json"],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["stages"]["apply"]["environment"] == "prod-approvers"

    def test_invalid_policy(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that an invalid policy file is a CLI error."""
        policy = tmp_path / "gates.yaml"
        policy.write_text("- not a mapping\n", encoding="utf-8")

        result = runner.invoke(cli, ["evaluate", "--event", "push", "--policy", str(policy)])

        assert result.exit_code != 0
        assert "mapping" in result.output

    def test_unknown_event(self, runner: CliRunner) -> None:
        """Test that unknown events are rejected by the option parser."""
        result = runner.invoke(cli, ["evaluate", "--event", "schedule"])

        assert result.exit_code == 2


class TestTableAndVerify:
    """Tests for the table and verify commands."""

    def test_table(self, runner: CliRunner) -> None:
        """Test that the table lists every rule and context."""
        result = runner.invoke(cli, ["table"])

        assert result.exit_code == 0
        assert "dispatch with doDestroy only" in result.output
        assert "With no flags:" in result.output
        assert "With all flags:" in result.output
        assert result.output.count("context: pull_request") == 2

    def test_verify(self, runner: CliRunner) -> None:
        """Test that the shipped table verifies cleanly."""
        result = runner.invoke(cli, ["verify"])

        assert result.exit_code == 0
        assert "768 combinations checked" in result.output


class TestBackendConfig:
    """Tests for the backend-config command."""

    def test_backend_config(self, runner: CliRunner) -> None:
        """Test backend argument output."""
        result = runner.invoke(
            cli,
            ["backend-config", "-e", "prod", "-g", "rg-tfstate", "-a", "sttfstateprod"],
        )

        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == [
            "-backend-config=resource_group_name=rg-tfstate",
            "-backend-config=storage_account_name=sttfstateprod",
            "-backend-config=container_name=tfstate",
            "-backend-config=key=prod.tfstate",
            "-backend-config=use_oidc=true",
        ]

    def test_backend_config_from_env(self, runner: CliRunner) -> None:
        """Test that backend options fall back to environment variables."""
        result = runner.invoke(
            cli,
            ["backend-config", "-e", "dev"],
            env={
                "STAGEGATE_STATE_RESOURCE_GROUP": "rg-tfstate",
                "STAGEGATE_STATE_STORAGE_ACCOUNT": "sttfstatedev",
            },
        )

        assert result.exit_code == 0, result.output
        assert "-backend-config=key=dev.tfstate" in result.output

    def test_invalid_storage_account(self, runner: CliRunner) -> None:
        """Test storage account validation."""
        result = runner.invoke(
            cli,
            ["backend-config", "-e", "prod", "-g", "rg-tfstate", "-a", "Bad_Account"],
        )

        assert result.exit_code != 0
        assert "STAGEGATE_STATE_STORAGE_ACCOUNT" in result.output

    def test_invalid_environment(self, runner: CliRunner) -> None:
        """Test environment validation."""
        result = runner.invoke(
            cli,
            ["backend-config", "-e", "Prod", "-g", "rg-tfstate", "-a", "sttfstate"],
        )

        assert result.exit_code != 0
        assert "environment must match" in result.output
