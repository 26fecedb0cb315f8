"""
Pine Backtest -- Dashboard configuration manager.

Reads and writes the root .env file with full parameter metadata
for the dashboard UI.
"""

from pathlib import Path
from collections import OrderedDict

# Path to the .env file (repo root)
ENV_PATH = Path(__file__).resolve().parent.parent / ".env"

# ---------------------------------------------------------------------------
# Parameter definitions with metadata for the dashboard UI
# ---------------------------------------------------------------------------

PARAM_DEFINITIONS = OrderedDict([
    # --- Backtest ---
    ("BACKTEST_INITIAL_CAPITAL", {
        "label": "Initial Capital",
        "group": "Backtest",
        "type": "float",
        "default": "100000",
        "description": "Starting cash when a run does not specify one",
    }),
    ("BACKTEST_SHARPE_METHOD", {
        "label": "Sharpe Return Series",
        "group": "Backtest",
        "type": "choice",
        "choices": ["sequential", "legacy"],
        "default": "sequential",
        "description": "sequential = bar-to-bar equity returns, legacy = match older stored results",
    }),

    # --- Data ---
    ("BACKTEST_DATA_DIR", {
        "label": "CSV Data Directory",
        "group": "Data",
        "type": "str",
        "default": "data",
        "description": "Folder of <SYMBOL>.csv files used by the csv price source",
    }),
    ("YAHOO_INTERVAL", {
        "label": "Yahoo Bar Interval",
        "group": "Data",
        "type": "str",
        "default": "1d",
        "description": "Bar interval requested from Yahoo Finance",
    }),
    ("YAHOO_RETRY_COUNT", {
        "label": "Yahoo Retry Count",
        "group": "Data",
        "type": "int",
        "default": "3",
        "description": "Max retries for Yahoo Finance API requests",
    }),
    ("YAHOO_BACKOFF_BASE", {
        "label": "Yahoo Backoff Base (s)",
        "group": "Data",
        "type": "int",
        "default": "2",
        "description": "Exponential backoff base in seconds",
    }),

    # --- Logging ---
    ("LOG_LEVEL", {
        "label": "Log Level",
        "group": "Logging",
        "type": "choice",
        "choices": ["DEBUG", "INFO", "WARNING", "ERROR"],
        "default": "INFO",
        "description": "Verbosity of the pine_backtest logger",
    }),
])


def read_env(path: Path = None) -> dict:
    """Read the .env file and return a dict of all key=value pairs."""
    path = path or ENV_PATH
    values = {}
    if not path.exists():
        return values
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            values[key.strip()] = value.strip()
    return values


def get_config(path: Path = None) -> dict:
    """Return config values merged with parameter metadata.

    Returns a dict of {key: {label, group, type, default, description, value}}
    for every parameter in PARAM_DEFINITIONS.
    """
    env_values = read_env(path)
    config = OrderedDict()
    for key, meta in PARAM_DEFINITIONS.items():
        config[key] = {
            **meta,
            "value": env_values.get(key, meta["default"]),
        }
    return config


def validate_updates(updates: dict) -> dict:
    """Keep known keys only and check their values against the metadata.

    Raises:
        ValueError: On an unknown key or a value of the wrong type.
    """
    clean = {}
    for key, value in updates.items():
        meta = PARAM_DEFINITIONS.get(key)
        if meta is None:
            raise ValueError(f"Unknown setting '{key}'")
        value = str(value).strip()
        kind = meta["type"]
        try:
            if kind == "float":
                float(value)
            elif kind == "int":
                int(value)
        except ValueError:
            raise ValueError(f"{key} must be a valid {kind}, got '{value}'") from None
        if kind == "choice" and value not in meta["choices"]:
            raise ValueError(f"{key} must be one of {meta['choices']}, got '{value}'")
        clean[key] = value
    return clean


def save_config(updates: dict, path: Path = None) -> None:
    """Update the .env file with new values, preserving comments and order.

    Args:
        updates: dict of {key: new_value} to write.
    """
    path = path or ENV_PATH
    lines = []
    if path.exists():
        with open(path, "r") as f:
            lines = f.readlines()

    updated_keys = set()
    new_lines = []
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            new_lines.append(line)
            continue

        key = stripped.partition("=")[0].strip()
        if key in updates:
            new_lines.append(f"{key}={updates[key]}\n")
            updated_keys.add(key)
        else:
            new_lines.append(line)

    for key, value in updates.items():
        if key not in updated_keys:
            new_lines.append(f"{key}={value}\n")

    with open(path, "w") as f:
        f.writelines(new_lines)
