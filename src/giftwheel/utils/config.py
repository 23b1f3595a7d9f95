"""
Configuration Management

Settings come from three layers: built-in defaults, the JSON file
``config/giftwheel.conf`` (or the file named by ``GIFTWHEEL_CONFIG``), and
prefixed environment variables.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from giftwheel.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).resolve().parents[3] / "config" / "giftwheel.conf"

ENV_SECTIONS = {
    "SERVER_": "server",
    "WHEEL_": "wheel",
    "STORAGE_": "storage",
    "DRAW_": "draw",
    "APP_": "app",
}


def load_config(config_file: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from files and environment variables"""
    config: Dict[str, Any] = {}

    if config_file is None:
        config_file = os.getenv("GIFTWHEEL_CONFIG") or DEFAULT_CONFIG_FILE
    config_file = Path(config_file)

    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                file_config = json.load(f)
                config.update(file_config)
                logger.info(f"Loaded configuration from {config_file}")
        except Exception as e:
            logger.error(f"Error loading config file: {e}")
    else:
        logger.warning(f"Config file {config_file} not found. Will only use defaults and environment variables.")

    # Override with environment variables, defined in .env
    config = _apply_env_overrides(config)
    _apply_defaults(config)

    logger.debug(f"Configuration after applying environment overrides: {json.dumps(config, indent=2)}")

    return config


def _apply_defaults(config: Dict[str, Any]) -> None:
    server = config.setdefault('server', {})
    server.setdefault('host', '0.0.0.0')
    server.setdefault('port', 3000)

    # Resolver timing and allocation defaults
    wheel = config.setdefault('wheel', {})
    wheel.setdefault('dedupe_window_ms', 5000)
    wheel.setdefault('combo_lifetime_ms', 30000)
    wheel.setdefault('combo_delay_ms', 5000)
    wheel.setdefault('combo_value_threshold', 99)
    wheel.setdefault('housekeeping_interval_sec', 10)
    wheel.setdefault('max_limit', 0)
    wheel.setdefault('min_coins', 0)
    wheel.setdefault('target_gift', '')
    wheel.setdefault('live_feed_max_entries', 50)

    storage = config.setdefault('storage', {})
    storage.setdefault('path', 'data/wheel_state.json')

    draw = config.setdefault('draw', {})
    draw.setdefault('spin_duration_ms', 4000)
    draw.setdefault('min_rotations', 5)
    draw.setdefault('max_rotations', 7)


def _coerce_env_value(value: str) -> Any:
    """Environment values arrive as text; numbers become ints."""
    try:
        return int(value.strip())
    except ValueError:
        return value


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``PREFIX_KEY=value`` variables onto ``config[section][key]``."""
    applied = []
    for name, value in os.environ.items():
        prefix = next((p for p in ENV_SECTIONS if name.startswith(p)), None)
        if prefix is None or len(name) == len(prefix):
            continue
        section = config.setdefault(ENV_SECTIONS[prefix], {})
        if not isinstance(section, dict):
            logger.warning(f"Ignoring {name}: config section {ENV_SECTIONS[prefix]} is not an object")
            continue
        section[name[len(prefix):].lower()] = _coerce_env_value(value)
        applied.append(name)

    if applied:
        logger.info(f"Applied environment overrides: {', '.join(sorted(applied))}")
    return config


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default
