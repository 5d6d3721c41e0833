"""Configuration file management for adsb-relay.

Reads/writes ~/.adsb-relay/config.yaml: two levels, section headers and
indented "key: value" lines, no PyYAML needed.

    feed:
      url: "http://127.0.0.1/data/aircraft.json"
      directory: null
    radar:
      latitude: 56.881443

Only the keys of _default_config() exist. Each value is coerced to the type
of its default (ports int, intervals and coordinates float); a value that
cannot be coerced is logged and the default kept, so the service never
starts with a string where it does arithmetic.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".adsb-relay"
CONFIG_FILE = CONFIG_DIR / "config.yaml"

# null turns the source or sink off
NULLABLE = {
    ("feed", "url"),
    ("feed", "directory"),
    ("output", "udp_port"),
    ("output", "file"),
    ("output", "text_file"),
}

_SECTION_NOTES = {
    "feed": "aircraft.json source; null disables url or directory",
    "radar": "reference point: degrees, meters above sea level",
    "tracks": "reset after timeout feed seconds without update, or seen > max_misses",
    "output": "TCP broadcast, UDP datagrams, binary and text files",
}


class ConfigError(ValueError):
    """A value that cannot be used for its setting."""


def _default_config() -> dict:
    return {
        "feed": {
            "url": "http://127.0.0.1/data/aircraft.json",
            "directory": "/run/dump1090-fa",
            "interval": 2.0,
            "fast_interval": 0.4,
            "watch_interval": 0.5,
            "dir_interval": 5.0,
            "timeout": 5.0,
        },
        "radar": {
            "latitude": 56.881443,
            "longitude": 35.932736,
            "height": 149.1,
        },
        "tracks": {
            "timeout": 10.0,
            "max_misses": 5,
        },
        "output": {
            "tcp_host": "0.0.0.0",
            "tcp_port": 30155,
            "udp_host": "127.0.0.1",
            "udp_port": 30155,
            "file": None,
            "truncate": False,
            "text_file": None,
            "check_interval": 2.0,
        },
    }


def _parse_scalar(raw: str):
    """Text after "key:" to None, bool, int, float or str."""
    if raw in ("", "null", "~"):
        return None
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if raw.startswith('"'):
        try:
            return json.loads(raw)
        except ValueError:
            return raw.strip('"')
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1]
    for kind in (int, float):
        try:
            return kind(raw)
        except ValueError:
            pass
    return raw


def coerce_value(section: str, key: str, value, default):
    """Convert value to the type of default. Raises ConfigError."""
    name = f"{section}.{key}"
    if value is None:
        if (section, key) in NULLABLE:
            return None
        raise ConfigError(f"{name} cannot be null")

    # Settings whose default is null hold paths or URLs
    expected = str if default is None else type(default)
    if expected is bool:
        if isinstance(value, bool):
            return value
        raise ConfigError(f"{name} must be true or false, got {value!r}")
    if expected is str:
        if isinstance(value, str):
            return value
        raise ConfigError(f"{name} must be a string, got {value!r}")

    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ConfigError(f"{name} must be finite, got {value!r}")
    if expected is int:
        if not number.is_integer():
            raise ConfigError(f"{name} must be a whole number, got {value!r}")
        return int(number)
    return number


def _read_entries(text: str):
    """Yield (line number, section, key, raw value) for every setting line."""
    section = None
    for lineno, line in enumerate(text.splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, raw = stripped.partition(":")
        if not sep:
            logger.warning("Config line %d ignored, expected 'key: value': %s", lineno, stripped)
            continue
        key, raw = key.strip(), raw.strip()

        if line[0] in " \t":
            if section is None:
                logger.warning("Config line %d ignored, %s is outside any section", lineno, key)
                continue
            yield lineno, section, key, raw
        elif raw:
            logger.warning("Config line %d ignored, top-level value for %s", lineno, key)
            section = None
        else:
            section = key


def load_config(path: str | Path | None = None) -> dict:
    """Load config from ~/.adsb-relay/config.yaml (or path).

    Returns the defaults if the file doesn't exist or can't be read.
    Unknown settings and unusable values are logged and skipped.
    """
    config = _default_config()
    defaults = _default_config()
    config_file = Path(path) if path else CONFIG_FILE
    try:
        text = config_file.read_text()
    except FileNotFoundError:
        return config
    except OSError as e:
        logger.warning("Cannot read %s, using defaults: %s", config_file, e)
        return config

    for lineno, section, key, raw in _read_entries(text):
        if key not in defaults.get(section, {}):
            logger.warning("%s:%d: unknown setting %s.%s ignored", config_file, lineno, section, key)
            continue
        try:
            config[section][key] = coerce_value(section, key, _parse_scalar(raw), defaults[section][key])
        except ConfigError as e:
            logger.warning("%s:%d: %s; keeping %r", config_file, lineno, e, defaults[section][key])

    return config


def _format_scalar(val) -> str:
    if val is None:
        return "null"
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, str):
        return json.dumps(val)
    return repr(val)


def save_config(config: dict, path: str | Path | None = None) -> Path:
    """Save config to ~/.adsb-relay/config.yaml (or path). Returns the path written."""
    config_file = Path(path) if path else CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)

    lines = ["# adsb-relay configuration"]
    for section, values in config.items():
        lines.append("")
        if section in _SECTION_NOTES:
            lines.append(f"# {_SECTION_NOTES[section]}")
        lines.append(f"{section}:")
        lines.extend(f"  {key}: {_format_scalar(val)}" for key, val in values.items())

    config_file.write_text("\n".join(lines) + "\n")
    return config_file
