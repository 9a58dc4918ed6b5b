"""Tests for the command line entry point"""

import json

import pytest

from bizflow.main import main
from bizflow.utils.config_loader import ENDPOINT_ENV_OVERRIDES, ENV_OVERRIDES, load_config, save_config


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    for env_var, _, _ in ENV_OVERRIDES:
        monkeypatch.delenv(env_var, raising=False)
    for env_var in (*ENDPOINT_ENV_OVERRIDES, "BIZFLOW_OWNER_ID", "BIZFLOW_ACCESS_TOKEN"):
        monkeypatch.delenv(env_var, raising=False)

    path = tmp_path / "settings.yaml"
    save_config(str(path), {
        'version': 1,
        'local_cache': {'backend': 'file', 'directory': str(tmp_path / "cache")},
        'remote_store': {'url': ''},
        'sheets': {'transport': 'direct', 'endpoints': {}},
        'logging': {'level': 'INFO'},
    })
    return str(path)


def test_summary_on_empty_state(config_path, capsys):
    """Test the summary command on a fresh cache"""
    assert main(["--config", config_path, "summary"]) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["customers_count"] == 0
    assert summary["balance"] == 0


def test_transport_choice_persists_between_runs(config_path, capsys):
    """Test that a transport chosen in one run is used by the next"""
    assert main(["--config", config_path, "transport", "iframe"]) == 0
    capsys.readouterr()

    assert main(["--config", config_path, "transport"]) == 0
    assert capsys.readouterr().out.strip() == "iframe"


def test_schema_prints_sql(config_path, capsys):
    """Test that the schema command prints the setup SQL"""
    assert main(["--config", config_path, "schema"]) == 0

    assert "CREATE TABLE IF NOT EXISTS transactions" in capsys.readouterr().out


def test_export_without_endpoint_fails(config_path, capsys):
    """Test that export exits non-zero when no endpoint is configured"""
    assert main(["--config", config_path, "export", "customers", "--log"]) == 1

    captured = capsys.readouterr()
    assert "not configured" in captured.err
    assert "export_customers" in captured.out


def test_push_without_session_fails(config_path):
    """Test that push exits non-zero without a hosted backend session"""
    assert main(["--config", config_path, "push"]) == 1


def test_missing_config_exits_with_error(tmp_path, capsys):
    """Test that a missing config file ends the CLI with an error status"""
    assert main(["--config", str(tmp_path / "absent.yaml"), "summary"]) == 2
    assert "not found" in capsys.readouterr().err


def test_malformed_endpoint_in_config_exits_with_error(config_path, capsys):
    """Test that an unparseable endpoint URL in the config is a configuration error"""
    config = load_config(config_path)
    config['sheets']['endpoints'] = {'customers': 'http://[::1'}
    save_config(config_path, config)

    assert main(["--config", config_path, "summary"]) == 2
    assert "sheets.endpoints" in capsys.readouterr().err
