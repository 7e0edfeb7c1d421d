"""Tests for configuration resolution."""

import logging
import tomllib
from pathlib import Path

import pytest

from lifeledger.config import LedgerConfig, resolve_state_root
from lifeledger.paths import StatePaths


@pytest.fixture
def repo(tmp_path, monkeypatch):
    """A fake repository root that is also the working directory."""
    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    (repo_root / "pyproject.toml").write_text("[project]\nname = 'x'\n")
    monkeypatch.chdir(repo_root)
    for name in (
        "LIFELEDGER_HOME",
        "LIFELEDGER_ADMIN",
        "LIFELEDGER_AUDIT_LOG",
        "LIFELEDGER_API_HOST",
        "LIFELEDGER_API_PORT",
    ):
        monkeypatch.delenv(name, raising=False)
    return repo_root


def _write_repo_config(repo_root: Path, text: str) -> None:
    config_dir = repo_root / ".lifeledger"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "config.toml").write_text(text)


def test_default_state_root_is_cwd_subdir(repo):
    assert resolve_state_root() == (repo / "lifeledger_state").resolve()


def test_cli_state_path_wins(repo, monkeypatch, tmp_path):
    monkeypatch.setenv("LIFELEDGER_HOME", str(tmp_path / "from_env"))
    _write_repo_config(repo, 'state_path = "from_repo"\n')

    assert resolve_state_root(str(tmp_path / "from_cli")) == (tmp_path / "from_cli").resolve()


def test_repo_config_beats_env(repo, monkeypatch, tmp_path):
    """Test that a relative repo state_path resolves against the repo root."""
    monkeypatch.setenv("LIFELEDGER_HOME", str(tmp_path / "from_env"))
    _write_repo_config(repo, 'state_path = "var/ledger"\n')

    nested = repo / "sub" / "dir"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert resolve_state_root() == (repo / "var" / "ledger").resolve()


def test_env_home_used_without_repo_config(repo, monkeypatch, tmp_path):
    monkeypatch.setenv("LIFELEDGER_HOME", str(tmp_path / "from_env"))
    assert resolve_state_root() == (tmp_path / "from_env").resolve()


def test_malformed_repo_config_is_ignored(repo):
    _write_repo_config(repo, "state_path = [unterminated\n")
    assert resolve_state_root() == (repo / "lifeledger_state").resolve()


def test_from_env_reads_environment(repo, monkeypatch):
    monkeypatch.setenv("LIFELEDGER_ADMIN", "admin-env")
    monkeypatch.setenv("LIFELEDGER_AUDIT_LOG", "off")
    monkeypatch.setenv("LIFELEDGER_API_HOST", "0.0.0.0")
    monkeypatch.setenv("LIFELEDGER_API_PORT", "9000")

    config = LedgerConfig.from_env()

    assert config.admin == "admin-env"
    assert config.audit_log_enabled is False
    assert config.api_host == "0.0.0.0"
    assert config.api_port == 9000


def test_from_env_falls_back_to_config_files(repo):
    """Test that state config overrides repo config, which overrides defaults."""
    _write_repo_config(
        repo,
        'admin = "admin-repo"\n[audit_log]\nenabled = false\n[api]\nport = 7000\n',
    )
    state_root = repo / "lifeledger_state"
    state_root.mkdir()
    (state_root / "config.toml").write_text('[api]\nhost = "10.0.0.1"\nport = 7100\n')

    config = LedgerConfig.from_env()

    assert config.admin == "admin-repo"
    assert config.audit_log_enabled is False
    assert config.api_host == "10.0.0.1"
    assert config.api_port == 7100


@pytest.mark.parametrize("value", ["not-a-port", "70000", "-1", "80.5"])
def test_bad_env_port_falls_back(repo, monkeypatch, caplog, value):
    """Test that a malformed LIFELEDGER_API_PORT is ignored with a warning instead of crashing."""
    _write_repo_config(repo, "[api]\nport = 7000\n")
    monkeypatch.setenv("LIFELEDGER_API_PORT", value)

    with caplog.at_level(logging.WARNING, logger="lifeledger.config"):
        config = LedgerConfig.from_env()

    assert config.api_port == 7000
    assert "LIFELEDGER_API_PORT" in caplog.text


def test_bad_repo_port_falls_back(repo):
    _write_repo_config(repo, '[api]\nport = "eighty"\n')

    assert LedgerConfig.from_env().api_port == 8080


def test_defaults(repo):
    config = LedgerConfig.from_env()

    assert config.admin is None
    assert config.audit_log_enabled is True
    assert config.api_host == "127.0.0.1"
    assert config.api_port == 8080


def test_to_toml_str_round_trips(tmp_path):
    config = LedgerConfig(state_path=tmp_path / "state", admin="admin-alice", api_port=9001)

    data = tomllib.loads(config.to_toml_str())

    assert data["state_path"] == (tmp_path / "state").as_posix()
    assert data["admin"] == "admin-alice"
    assert data["audit_log"]["enabled"] is True
    assert data["api"] == {"host": "127.0.0.1", "port": 9001}


def test_to_toml_str_escapes_values(tmp_path):
    """Test that quotes and backslashes in identities still produce valid TOML."""
    admin = 'we"ird\\admin'
    state = tmp_path / 'st"ate'
    config = LedgerConfig(state_path=state, admin=admin, api_host='host"\\x')

    data = tomllib.loads(config.to_toml_str())

    assert data["admin"] == admin
    assert data["state_path"] == state.as_posix()
    assert data["api"]["host"] == 'host"\\x'


def test_state_paths_layout(state_paths, temp_state):
    assert state_paths.root == temp_state
    assert state_paths.db_file == temp_state / "ledger.sqlite"
    assert state_paths.notifications_file == temp_state / "notifications.jsonl"
    assert state_paths.config_file == temp_state / "config.toml"
    assert not state_paths.is_initialized()


def test_state_paths_from_config():
    paths = StatePaths.from_config(LedgerConfig(state_path=Path("/srv/ledger")))
    assert paths.db_file == Path("/srv/ledger/ledger.sqlite")
