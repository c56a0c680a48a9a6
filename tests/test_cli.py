"""Unit tests for groupsyncctl.py - Command line interface."""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from conftest import CONTAINER, computer_dn
from groupsyncctl import cli, setup_logging
from report import Mutation, MutationResult, MutationType, Outcome, RunReport


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def snapshot_file(tmp_path):
    path = tmp_path / "snapshot.yaml"
    computers = [
        ("PC01", "Windows 11 Pro", True),
        ("SRV01", "Windows Server 2022 Datacenter", True),
        ("PC02", "Windows 10 Pro", False),
        ("LNX01", "Ubuntu 22.04", True),
    ]
    path.write_text(
        yaml.safe_dump(
            {
                "containers": [CONTAINER],
                "computers": [
                    {
                        "name": name,
                        "distinguished_name": computer_dn(name),
                        "operating_system": operating_system,
                        "enabled": enabled,
                    }
                    for name, operating_system, enabled in computers
                ],
                "groups": [
                    {
                        "name": "Workstations",
                        "container": CONTAINER,
                        "members": [computer_dn("PC02")],
                    }
                ],
            }
        )
    )
    return path


@pytest.fixture
def config_file(tmp_path, snapshot_file):
    path = tmp_path / "groupsync.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "directory": {"backend": "memory", "snapshot_file": str(snapshot_file)},
                "sync": {
                    "container": CONTAINER,
                    "rules": [
                        {"group": "Workstations", "pattern": r"Windows \d\d"},
                        {"group": "Servers", "pattern": "Server"},
                    ],
                },
                "logging": {"level": "ERROR"},
            }
        )
    )
    return path


class TestRunCommand:
    """Tests for the run command."""

    def test_run(self, runner, config_file):
        result = runner.invoke(cli, ["run", "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "4 computers evaluated, 4 mutations applied" in result.output
        assert "1 unresolved" in result.output

    def test_run_table(self, runner, config_file):
        result = runner.invoke(cli, ["run", "-c", str(config_file), "-o", "table"])
        assert result.exit_code == 0, result.output
        assert "Action" in result.output
        assert "remove_member" in result.output
        assert "unresolved" in result.output

    def test_run_json(self, runner, config_file):
        result = runner.invoke(
            cli, ["run", "-c", str(config_file), "--dry-run", "-o", "json"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["dry_run"] is True
        assert {m["outcome"] for m in data["mutations"]} == {"planned"}

    def test_config_from_env(self, runner, config_file):
        result = runner.invoke(cli, ["run"], env={"SYNC_CONFIG": str(config_file)})
        assert result.exit_code == 0, result.output
        assert "mutations applied" in result.output

    def test_missing_container_skips(self, runner, config_file):
        document = yaml.safe_load(config_file.read_text())
        document["sync"]["container"] = "OU=Missing,DC=example,DC=com"
        config_file.write_text(yaml.safe_dump(document))

        result = runner.invoke(cli, ["run", "-c", str(config_file)])

        assert result.exit_code == 0, result.output
        assert "Run skipped" in result.output

    def test_invalid_config(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("sync:\n  mode: hybrid\n")
        result = runner.invoke(cli, ["run", "-c", str(path)])
        assert result.exit_code == 1
        assert "Could not load configuration" in result.output

    def test_strict_exits_on_failure(self, runner, config_file):
        report = RunReport(mode="static", container=CONTAINER)
        report.results = [
            MutationResult(
                Mutation(MutationType.CREATE_GROUP, "Servers"), Outcome.FAILED, "boom"
            )
        ]
        reconciler = MagicMock()
        reconciler.run.return_value = report

        with patch("groupsyncctl.build_reconciler", return_value=reconciler):
            lenient = runner.invoke(cli, ["run", "-c", str(config_file)])
            strict = runner.invoke(cli, ["run", "-c", str(config_file), "--strict"])

        assert lenient.exit_code == 0
        assert strict.exit_code == 1
        reconciler.directory.close.assert_called()


class TestPlanCommand:
    """Tests for the plan command."""

    def test_plan(self, runner, config_file):
        result = runner.invoke(cli, ["plan", "-c", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "planned" in result.output
        assert "create_group" in result.output
        assert "4 mutations planned" in result.output


class TestResolveCommand:
    """Tests for the resolve command."""

    def test_resolve(self, runner, config_file):
        result = runner.invoke(
            cli,
            [
                "resolve",
                "-c",
                str(config_file),
                "Windows Server 2019 Standard",
                "Ubuntu 22.04",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "Servers" in result.output
        assert "(unresolved)" in result.output


class TestValidateCommand:
    """Tests for the validate command."""

    def test_valid(self, runner, config_file):
        result = runner.invoke(cli, ["validate", str(config_file)])
        assert result.exit_code == 0
        assert "is valid" in result.output

    def test_invalid(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("sync:\n  container: OU=G,DC=x\n")
        result = runner.invoke(cli, ["validate", str(path)])
        assert result.exit_code == 1
        assert "at least one rule" in result.output

    def test_bad_yaml(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("sync: [\n")
        result = runner.invoke(cli, ["validate", str(path)])
        assert result.exit_code == 1
        assert "Invalid YAML" in result.output


class TestSetupLogging:
    """Tests for logging setup."""

    def test_log_file_is_appended(self, tmp_path):
        log_file = tmp_path / "groupsync.log"
        log_file.write_text("earlier run\n")

        setup_logging("INFO", str(log_file))
        logging.getLogger("groupsync.test").info("reconciliation finished")
        for handler in logging.getLogger().handlers:
            handler.close()

        content = log_file.read_text()
        assert content.startswith("earlier run\n")
        assert "groupsync.test - INFO - reconciliation finished" in content
