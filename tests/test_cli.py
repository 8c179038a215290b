import yaml
import pytest
from click.testing import CliRunner

from flow_engine.cli import cli

from conftest import LINEAR_FLOW, SUSPEND_FLOW


@pytest.fixture
def paths(tmp_path):
    linear = tmp_path / "linear.yaml"
    linear.write_text(yaml.safe_dump({"flow": LINEAR_FLOW}), encoding="utf-8")
    approval = tmp_path / "approval.json"
    approval.write_text(yaml.safe_dump(SUSPEND_FLOW), encoding="utf-8")
    return {"linear": str(linear), "approval": str(approval), "db": str(tmp_path / "cli.db")}


def test_run_and_show(paths):
    runner = CliRunner()
    result = runner.invoke(
        cli, ["run", paths["linear"], "--db", paths["db"], "--instance-id", "cli-1", "--data", "4"]
    )
    assert result.exit_code == 0, result.output
    assert "Instance: cli-1" in result.output
    assert "State: Complete" in result.output

    shown = runner.invoke(cli, ["show", "cli-1", "--db", paths["db"]])
    assert shown.exit_code == 0, shown.output
    assert "  double: Complete" in shown.output
    assert "[Info] Execution Complete." in shown.output


def test_run_then_resume(paths):
    runner = CliRunner()
    first = runner.invoke(cli, ["run", paths["approval"], "--db", paths["db"], "--instance-id", "cli-2"])
    assert "State: Suspended" in first.output

    second = runner.invoke(
        cli, ["resume", "cli-2", "--from", "form", "--data", '{"approved": true}', "--db", paths["db"]]
    )
    assert second.exit_code == 0, second.output
    assert "State: Complete" in second.output


def test_invalid_data_is_a_usage_error(paths):
    result = CliRunner().invoke(cli, ["run", paths["linear"], "--db", paths["db"], "--data", "{nope"])
    assert result.exit_code == 2
    assert "not valid JSON" in result.output


def test_resume_unknown_instance_is_abandoned(paths):
    result = CliRunner().invoke(cli, ["resume", "ghost", "--from", "form", "--db", paths["db"]])
    assert result.exit_code == 1


def test_show_unknown_instance(paths):
    result = CliRunner().invoke(cli, ["show", "ghost", "--db", paths["db"]])
    assert result.exit_code == 1
    assert "Flow instance ghost not found" in result.output
