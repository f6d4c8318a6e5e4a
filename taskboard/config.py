# Taskboard: configuration
# Override via taskboard.yaml, TASKBOARD_* environment variables, or CLI args.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

CONFIG_PATH = Path("taskboard.yaml")
DEFAULT_DB = Path.home() / ".local" / "share" / "taskboard" / "taskboard.db"

# env var -> (field, type)
ENV_OVERRIDES = {
    "TASKBOARD_DB": ("db_path", str),
    "TASKBOARD_HOST": ("host", str),
    "TASKBOARD_PORT": ("port", int),
    "TASKBOARD_SESSION_DAYS": ("session_days", int),
    "TASKBOARD_LOG_LEVEL": ("log_level", str),
}


@dataclass
class Config:
    """Runtime configuration for the taskboard server."""

    db_path: str = str(DEFAULT_DB)
    host: str = "127.0.0.1"
    port: int = 3000

    # Sessions
    session_days: int = 30
    session_cookie: str = "taskboard_session"

    # Schema: add missing columns (e.g. tasks.position) on startup
    migrate_schema: bool = True

    # Rows per store query
    query_limit: int = 5000

    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ in the database path."""
        self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self, environ=None):
        environ = os.environ if environ is None else environ
        for var, (name, cast) in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value:
                try:
                    setattr(self, name, cast(value))
                except ValueError:
                    pass  # Keep file/default value

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "Config":
        """Load config from YAML file, falling back to defaults, then apply env overrides."""
        environ = os.environ if environ is None else environ
        cfg_path = Path(path or environ.get("TASKBOARD_CONFIG") or CONFIG_PATH)
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if hasattr(cls, k)})
            except Exception:
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        return cfg
