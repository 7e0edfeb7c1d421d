"""Configuration management for the life ledger."""

import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "lifeledger_state"


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or pyproject.toml."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / "pyproject.toml").exists():
            return current_dir

        parent_dir = current_dir.parent

        # Stop if we reach filesystem root
        if parent_dir == current_dir:
            return start_dir

        current_dir = parent_dir


def _load_toml(config_file: Path) -> Optional[dict]:
    if not config_file.exists():
        return None

    try:
        with open(config_file, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        # If config file is malformed, ignore it
        return None


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load repo config data from .lifeledger/config.toml if it exists."""
    return _load_toml(repo_root / ".lifeledger" / "config.toml")


def _first_config_value(sources: list[Optional[dict]], keys: list[str]) -> Optional[Any]:
    for data in sources:
        value = _get_repo_config_value(data, keys)
        if value is not None:
            return value
    return None


def _get_repo_config_value(data: Optional[dict], keys: list[str]) -> Optional[Any]:
    """Safely get a nested repo config value."""
    if not data:
        return None
    current: Any = data
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _as_port(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if isinstance(value, int) and 0 <= value <= 65535:
        return value
    return None


def _env_port(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    port = _as_port(value)
    if port is None:
        logger.warning(f"Ignoring {name}={value!r}: not a port number, using {default}")
        return default
    return port


def resolve_state_root(cli_state_path: Optional[str] = None) -> Path:
    """Resolve the ledger state directory with the following precedence:

    1. CLI --state option (if provided)
    2. repo-local .lifeledger/config.toml `state_path` (walk upward from CWD)
    3. LIFELEDGER_HOME environment variable
    4. ./lifeledger_state

    Relative paths from the repo config are taken relative to the repo root.

    Args:
        cli_state_path: State path from CLI --state option

    Returns:
        Absolute path to the state directory (which may not exist yet)
    """
    if cli_state_path:
        return Path(cli_state_path).expanduser().resolve()

    repo_root = _find_repo_root(Path.cwd())
    repo_value = _get_repo_config_value(_load_repo_config_data(repo_root), ["state_path"])
    if isinstance(repo_value, str) and repo_value:
        state_path = Path(repo_value).expanduser()
        if not state_path.is_absolute():
            state_path = repo_root / state_path
        return state_path.resolve()

    env_home = os.environ.get("LIFELEDGER_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()

    return (Path.cwd() / DEFAULT_STATE_DIR).resolve()


class LedgerConfig(BaseModel):
    """Configuration for a life ledger instance."""

    state_path: Path = Field(default_factory=lambda: Path(DEFAULT_STATE_DIR))
    admin: Optional[str] = Field(default=None)
    audit_log_enabled: bool = Field(default=True)
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8080, ge=0, le=65535)

    model_config = {"frozen": False}

    @classmethod
    def from_env(cls, cli_state_path: Optional[str] = None) -> "LedgerConfig":
        """Load configuration from CLI option, environment, config files or defaults.

        Settings other than the state path come from environment variables
        first, then <state>/config.toml, then the repo's .lifeledger/config.toml.

        Args:
            cli_state_path: State path from CLI --state option (highest precedence)
        """
        state_path = resolve_state_root(cli_state_path)
        sources = [
            _load_toml(state_path / "config.toml"),
            _load_repo_config_data(_find_repo_root(Path.cwd())),
        ]

        admin = os.environ.get("LIFELEDGER_ADMIN") or _first_config_value(sources, ["admin"])
        repo_audit = _first_config_value(sources, ["audit_log", "enabled"])
        repo_host = _first_config_value(sources, ["api", "host"])
        repo_port = _as_port(_first_config_value(sources, ["api", "port"]))

        return cls(
            state_path=state_path,
            admin=admin if isinstance(admin, str) else None,
            audit_log_enabled=_env_bool(
                "LIFELEDGER_AUDIT_LOG",
                repo_audit if isinstance(repo_audit, bool) else True,
            ),
            api_host=os.environ.get("LIFELEDGER_API_HOST") or (repo_host if isinstance(repo_host, str) else "127.0.0.1"),
            api_port=_env_port("LIFELEDGER_API_PORT", repo_port if repo_port is not None else 8080),
        )

    def to_toml_str(self) -> str:
        """Generate TOML configuration string."""
        admin_line = f"admin = {json.dumps(self.admin)}" if self.admin else "# admin = \"<identity>\""
        return f"""# Life Ledger Configuration

state_path = {json.dumps(self.state_path.as_posix())}
{admin_line}

[audit_log]
enabled = {str(self.audit_log_enabled).lower()}

[api]
host = {json.dumps(self.api_host)}
port = {self.api_port}
"""
