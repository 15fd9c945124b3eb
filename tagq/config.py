"""
Configuration management for tagq.

Provides a hierarchical configuration system with sensible defaults.
Supports both global (~/.config/tagq/config.toml) and local (tagq.toml)
configurations.

Configuration is an explicit value: load it once (load_config) and pass it
to Database, QueryExecutor and AggregationEngine. Nothing in the query
pipeline reads configuration from ambient state.
"""
import os
import tomli
import tomli_w
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict, fields


ENV_PREFIX = "TAGQ_"

FUZZY_MODES = ("substring", "fts")


def user_config_path() -> Path:
    return Path.home() / ".config" / "tagq" / "config.toml"


@dataclass
class TagqConfig:
    """
    tagq configuration with sensible defaults.

    Configuration hierarchy (highest to lowest priority):
    1. Command-line arguments
    2. Environment variables (TAGQ_*)
    3. Explicit config file (--config)
    4. Local config file (./tagq.toml or ./.tagqrc)
    5. User config file (~/.config/tagq/config.toml)
    6. Defaults
    """

    # Database settings
    database: str = field(default="tagq.db")
    database_url: Optional[str] = field(default=None)  # Full connection string (overrides database)
    database_echo: bool = field(default=False)  # SQLAlchemy echo for debugging
    connection_timeout: int = field(default=30)  # seconds SQLite waits on a locked database

    # Display settings
    output_format: str = field(default="table")  # table, json, csv
    color_output: bool = field(default=True)

    # Query behaviour
    strict_fields: bool = field(default=True)
    fuzzy_match: str = field(default="substring")  # substring, fts
    max_groups: int = field(default=100)  # aggregation group cap, 0 for no cap
    queries_file: str = field(default="~/.config/tagq/queries.yaml")

    log_level: str = field(default="WARNING")

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "TagqConfig":
        """
        Load configuration from files and environment.

        Args:
            config_file: Specific config file to load (applied after the
                user and local files)

        Returns:
            Merged configuration object
        """
        config = cls()

        user_path = user_config_path()
        if user_path.exists():
            config._merge(cls._load_toml(user_path))

        local_paths = [
            Path.cwd() / "tagq.toml",
            Path.cwd() / ".tagqrc",
        ]
        for path in local_paths:
            if path.exists():
                config._merge(cls._load_toml(path))
                break

        if config_file:
            config_file = Path(config_file)
            if not config_file.exists():
                raise FileNotFoundError(f"Config file not found: {config_file}")
            config._merge(cls._load_toml(config_file))

        config._apply_env_vars()
        config._expand_paths()
        config.validate()
        return config

    @staticmethod
    def _load_toml(path: Path) -> Dict[str, Any]:
        """Load TOML configuration file."""
        with open(path, "rb") as f:
            return tomli.load(f)

    def _merge(self, data: Dict[str, Any]):
        """Merge configuration data into this instance. Unknown keys are ignored."""
        for key, value in data.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def _apply_env_vars(self):
        """Apply environment variables with TAGQ_ prefix."""
        for key, value in os.environ.items():
            if key.startswith(ENV_PREFIX):
                config_key = key[len(ENV_PREFIX):].lower()
                if hasattr(self, config_key):
                    current_value = getattr(self, config_key)
                    if isinstance(current_value, bool):
                        setattr(self, config_key, value.lower() in ("true", "1", "yes"))
                    elif isinstance(current_value, int):
                        setattr(self, config_key, int(value))
                    else:
                        setattr(self, config_key, value)

    def _expand_paths(self):
        """Expand ~ and environment variables in paths."""
        for field_name in ("database", "queries_file"):
            value = getattr(self, field_name)
            if isinstance(value, str):
                setattr(self, field_name, os.path.expanduser(os.path.expandvars(value)))

    def validate(self):
        if self.fuzzy_match not in FUZZY_MODES:
            raise ValueError(
                f"fuzzy_match must be one of {', '.join(FUZZY_MODES)}, got {self.fuzzy_match!r}"
            )
        if self.max_groups < 0:
            raise ValueError("max_groups must not be negative")

    def save(self, path: Optional[Path] = None):
        """
        Save current configuration to TOML file.

        Args:
            path: Path to save to (defaults to user config)
        """
        if path is None:
            path = user_config_path()

        path.parent.mkdir(parents=True, exist_ok=True)

        # TOML has no null
        data = {k: v for k, v in asdict(self).items() if v is not None}
        with open(path, "wb") as f:
            tomli_w.dump(data, f)

    def get_database_path(self) -> Path:
        """Get the resolved database path."""
        path = Path(self.database)
        if not path.is_absolute():
            path = Path.cwd() / path
        return path

    def get_database_url(self) -> str:
        """
        Get SQLAlchemy database URL.

        Examples:
            sqlite:///tagq.db
            sqlite:////var/data/workspace.db
        """
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.get_database_path()}"

    def is_sqlite(self) -> bool:
        return self.get_database_url().startswith("sqlite:")

    def replace(self, **overrides) -> "TagqConfig":
        """Copy with overrides applied; None values are ignored."""
        values = asdict(self)
        known = {f.name for f in fields(self)}
        for key, value in overrides.items():
            if key in known and value is not None:
                values[key] = value
        config = TagqConfig(**values)
        config.validate()
        return config


def load_config(config_file: Optional[Path] = None, **overrides) -> TagqConfig:
    """
    Load configuration and apply command-line overrides.

    Args:
        config_file: Specific config file to load
        **overrides: Field overrides (None values are ignored)

    Returns:
        A new configuration value
    """
    return TagqConfig.load(config_file).replace(**overrides)
