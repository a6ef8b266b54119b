"""Configuration file loading and merging for termloop.

Reads TOML config from ~/.config/termloop/config.toml (global) and
./termloop.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .report import ConfigError

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "base_url": str,
    "api_key": str,
    "model": str,
    "state_file": str,
    "log_file": str,
    "max_turns": int,
    "safe": bool,
    "tools": bool,
    "system_prompt": str,
    "color": bool,
    "quiet": bool,
}

_PATH_KEYS = ("state_file", "log_file")

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "base_url": "http://localhost:8080/v1",
    "api_key": None,
    "model": "qwen_coder",
    "state_file": "/tmp/ai_conversation",
    "log_file": "/tmp/ai_log.csv",
    "max_turns": 50,
    "safe": False,
    "tools": False,
    "system_prompt": None,
    "color": False,
    "no_color": False,
    "quiet": False,
}

DEFAULT_API_KEY = "empty"
API_KEY_ENV = "TERMLOOP_API_KEY"


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "termloop"
    return Path.home() / ".config" / "termloop"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate value types in a parsed config dict.

    Raises ConfigError for type mismatches. Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int in Python, so isinstance(True, int) is True.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if "max_turns" in config and config["max_turns"] < 1:
        raise ConfigError(f"{source}: 'max_turns' must be at least 1")


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve relative file paths against the config file's directory.

    Applies expanduser() first so ~/... is not treated as relative.
    """
    for key in _PATH_KEYS:
        if key in config:
            p = Path(config[key]).expanduser()
            config[key] = str(p if p.is_absolute() else config_dir / p)


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{label}: cannot read file: {e}") from e

    _validate_config(config, label)
    known = {k: v for k, v in config.items() if k in CONFIG_KEYS}
    _resolve_paths(known, path.parent)
    return known


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict holding only keys that were actually set in config
    files; no defaults are injected.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(base_dir).resolve() / "termloop.toml"
    project_config = _load_single(project_path, str(project_path))

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Fill argparse values the CLI left unset from config, then from defaults."""

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the --color/--no-color pair
    if "color" in config:
        if _is_unset("color") and _is_unset("no_color"):
            args.color = config["color"]
            args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)

    if args.api_key is None:
        args.api_key = os.environ.get(API_KEY_ENV) or DEFAULT_API_KEY


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# termloop configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'./termloop.toml' if project else '~/.config/termloop/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Endpoint / model ---",
        '# base_url = "http://localhost:8080/v1"',
        '# api_key = "empty"               # prefer the TERMLOOP_API_KEY env var',
        '# model = "qwen_coder"',
        "",
        "# --- Session files ---",
        '# state_file = "/tmp/ai_conversation"',
        '# log_file = "/tmp/ai_log.csv"',
        "",
        "# --- Agent behaviour ---",
        "# tools = false       # true = structured tool calls, false = inline terminal_call blocks",
        "# max_turns = 50",
        "# safe = false        # ask before every command",
        '# system_prompt = "You are an AI assistant that can run terminal commands."',
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
