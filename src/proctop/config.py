"""Configuration for proctop, stored as TOML."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from proctop.models import SortField
from proctop.scheduler import SORT_DEFERRAL_TICKS

_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


@dataclass
class DisplayConfig:
    """How the process list is refreshed and initially ordered."""

    delay: int = 15  # Refresh interval in tenths of a second
    sort_key: str = "cpu"
    sort_descending: bool = True
    tree_view: bool = False
    all_branches_collapsed: bool = False
    sort_deferral_ticks: int = SORT_DEFERRAL_TICKS

    @property
    def refresh_seconds(self) -> float:
        return self.delay / 10.0

    @property
    def sort_field(self) -> SortField:
        return SortField.from_name(self.sort_key)


@dataclass
class LoggingConfig:
    """Log file settings."""

    level: str = "info"
    max_bytes: int = 2 * 1024 * 1024
    backup_count: int = 2


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    display: DisplayConfig = field(default_factory=DisplayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        return Path.home() / ".config" / "proctop"

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """Directory for the log file."""
        return Path.home() / ".local" / "state" / "proctop"

    @property
    def log_path(self) -> Path:
        return self.state_dir / "proctop.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to a TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        doc.add("display", _dataclass_to_table(self.display))
        doc.add(tomlkit.nl())
        doc.add("logging", _dataclass_to_table(self.logging))
        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """
        Load config from a TOML file, using dataclass defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or holds an invalid value.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            display=_load_display_config(_section(data, "display")),
            logging=_load_logging_config(_section(data, "logging")),
        )


def _section(data: dict, name: str) -> dict:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"[{name}] must be a table, got {section!r}")
    return section


def _int_value(data: dict, key: str, default: int, section: str, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{section}.{key} must be >= {minimum}, got {value}")
    return int(value)


def _bool_value(data: dict, key: str, default: bool, section: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def _str_value(data: dict, key: str, default: str, section: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"{section}.{key} must be a string, got {value!r}")
    return str(value)


def _load_display_config(data: dict) -> DisplayConfig:
    """Load the [display] section, validating each value."""
    defaults = DisplayConfig()

    sort_key = _str_value(data, "sort_key", defaults.sort_key, "display")
    try:
        SortField.from_name(sort_key)
    except ValueError as e:
        raise ValueError(f"display.sort_key: {e}") from None

    return DisplayConfig(
        delay=_int_value(data, "delay", defaults.delay, "display", 1),
        sort_key=sort_key,
        sort_descending=_bool_value(data, "sort_descending", defaults.sort_descending, "display"),
        tree_view=_bool_value(data, "tree_view", defaults.tree_view, "display"),
        all_branches_collapsed=_bool_value(
            data, "all_branches_collapsed", defaults.all_branches_collapsed, "display"
        ),
        sort_deferral_ticks=_int_value(
            data, "sort_deferral_ticks", defaults.sort_deferral_ticks, "display", 0
        ),
    )


def _load_logging_config(data: dict) -> LoggingConfig:
    """Load the [logging] section."""
    defaults = LoggingConfig()

    level = _str_value(data, "level", defaults.level, "logging").lower()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}, got {level!r}")

    return LoggingConfig(
        level=level,
        max_bytes=_int_value(data, "max_bytes", defaults.max_bytes, "logging", 1),
        backup_count=_int_value(data, "backup_count", defaults.backup_count, "logging", 0),
    )
