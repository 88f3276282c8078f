"""Tests for the correlator command line interface."""

import pytest
from typer.testing import CliRunner

from correlator.cli import app

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
database_url: sqlite://{tmp_path / 'cli.db'}
cli_identity:
  user_id: operator
  claims:
    can_manage_process_instances: true
    can_delete_process_model: true
"""
    )
    monkeypatch.setenv("CORRELATOR_CONFIG", str(config_path))
    monkeypatch.delenv("CORRELATOR_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    return config_path


def _invoke(*args):
    return runner.invoke(app, list(args))


def test_create_and_show_instance(cli_env):
    result = _invoke("instance", "create", "c1", "p1", "m1", "h1")
    assert result.exit_code == 0, result.output
    assert "p1\trunning\tc1\tm1@h1" in result.output

    result = _invoke("instance", "show", "p1")
    assert result.exit_code == 0
    assert "p1\trunning" in result.output


def test_correlation_listing(cli_env):
    _invoke("instance", "create", "c1", "p1", "m1", "h1")
    _invoke("instance", "create", "c2", "p2", "m2", "h1")
    _invoke("instance", "finish", "c1", "p1")

    result = _invoke("correlation", "list")
    assert result.exit_code == 0
    assert "c1\tfinished\t1 instance(s)" in result.output
    assert "c2\trunning\t1 instance(s)" in result.output

    result = _invoke("correlation", "list", "--active")
    assert "c1" not in result.output
    assert "c2\trunning" in result.output

    result = _invoke("correlation", "show", "c2")
    assert result.exit_code == 0
    assert "p2\trunning" in result.output


def test_subprocess_listing(cli_env):
    _invoke("instance", "create", "c1", "p1", "m1", "h1")
    _invoke("instance", "create", "c1", "p2", "m1", "h1", "--parent", "p1")

    result = _invoke("instance", "list", "--parent", "p1")
    assert result.exit_code == 0
    assert "p2\trunning\tc1\tm1@h1\tparent=p1" in result.output

    result = _invoke("instance", "list", "--parent", "p2")
    assert "No process instances found" in result.output


def test_instance_list_requires_single_filter(cli_env):
    result = _invoke("instance", "list")
    assert result.exit_code == 2
    result = _invoke("instance", "list", "--model", "m1", "--correlation", "c1")
    assert result.exit_code == 2


def test_errors_report_kind_and_identifier(cli_env):
    result = _invoke("instance", "show", "ghost")
    assert result.exit_code == 1
    assert "not_found" in result.output
    assert "ghost" in result.output

    _invoke("instance", "create", "c1", "p1", "m1", "h1")
    result = _invoke("instance", "create", "c1", "p1", "m1", "h1")
    assert result.exit_code == 1
    assert "duplicate_key" in result.output

    _invoke("instance", "fail", "c1", "p1", "--message", "boom")
    result = _invoke("instance", "finish", "c1", "p1")
    assert result.exit_code == 1
    assert "invalid_transition" in result.output


def test_failed_instance_shows_error(cli_env):
    _invoke("instance", "create", "c1", "p1", "m1", "h1")
    result = _invoke("instance", "fail", "c1", "p1", "--message", "boom")
    assert result.exit_code == 0
    assert "p1\terror" in result.output

    result = _invoke("instance", "show", "p1")
    assert "Error: {'message': 'boom'}" in result.output


def test_purge(cli_env):
    _invoke("instance", "create", "c1", "p1", "m1", "h1")
    _invoke("instance", "create", "c2", "p2", "m2", "h1")

    result = _invoke("purge", "m1", "--yes")
    assert result.exit_code == 0
    assert "Removed 1 correlation(s)" in result.output
    assert "- c1" in result.output

    result = _invoke("correlation", "list", "--model", "m1")
    assert "No correlations found" in result.output
