"""Path management for a ledger state directory."""

from pathlib import Path

from .config import LedgerConfig


class StatePaths:
    """Manages paths within a ledger state directory."""

    def __init__(self, state_root: Path):
        """Initialize state paths from root directory.

        Args:
            state_root: Root directory of the ledger state
        """
        self.root = state_root

        self.config_file = state_root / "config.toml"
        self.db_file = state_root / "ledger.sqlite"
        self.notifications_file = state_root / "notifications.jsonl"

    @classmethod
    def from_config(cls, config: LedgerConfig) -> "StatePaths":
        """Create StatePaths from a LedgerConfig."""
        return cls(config.state_path)

    def get_all_directories(self) -> list[Path]:
        """Get list of all directories that should exist in the state root."""
        return [self.root]

    def is_initialized(self) -> bool:
        return self.db_file.exists()
