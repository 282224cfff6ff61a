"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from work_tracker.core.auth import ALL_PERMISSIONS


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".work_tracker" / "wt.db")
    actor_id: str | None = "cli-user"
    workspace_id: str = "default"
    permissions: frozenset[str] = ALL_PERMISSIONS
    environment: str = "local"
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("WT_DB_PATH"):
            config.db_path = Path(db)

        if "WT_ACTOR_ID" in os.environ:
            # An empty value means "no caller".
            config.actor_id = os.environ["WT_ACTOR_ID"].strip() or None

        if workspace := os.environ.get("WT_WORKSPACE_ID"):
            config.workspace_id = workspace

        if "WT_PERMISSIONS" in os.environ:
            config.permissions = parse_permissions(os.environ["WT_PERMISSIONS"])

        if env := os.environ.get("WT_ENVIRONMENT"):
            config.environment = env

        if level := os.environ.get("WT_LOG_LEVEL"):
            config.log_level = level.upper()

        return config


def parse_permissions(raw: str) -> frozenset[str]:
    """Parse a comma-separated permission list. ``*`` grants everything."""
    names = {p.strip() for p in raw.split(",") if p.strip()}
    if "*" in names:
        return ALL_PERMISSIONS
    return frozenset(names)


def get_config() -> Config:
    return Config.from_env()
