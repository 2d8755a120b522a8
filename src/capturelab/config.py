"""
Service configuration from environment variables.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "~/.local/share/capturelab/captures"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 10316
DEFAULT_SMOOTHING = 3

STORE_TYPES = ("json", "memory")


def _env_int(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except ValueError:
        logger.warning(f"Invalid {name}={value!r}, using {default}")
        return default
    if number < minimum:
        logger.warning(f"{name} must be >= {minimum}, using {default}")
        return default
    return number


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    logger.warning(f"Invalid {name}={value!r}, using {default}")
    return default


@dataclass
class Config:
    data_dir: str = DEFAULT_DATA_DIR
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    smoothing: int = DEFAULT_SMOOTHING
    prefer_native: bool = True
    store: str = "json"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if env is None else env

        store = env.get("CAPTURELAB_STORE", "json").strip().lower()
        if store not in STORE_TYPES:
            logger.warning(f"Invalid CAPTURELAB_STORE={store!r}, using json")
            store = "json"

        return cls(
            data_dir=os.path.expanduser(env.get("CAPTURELAB_DATA_DIR") or DEFAULT_DATA_DIR),
            host=env.get("CAPTURELAB_HOST") or DEFAULT_HOST,
            port=_env_int(env, "CAPTURELAB_PORT", DEFAULT_PORT, 1),
            smoothing=_env_int(env, "CAPTURELAB_SMOOTHING", DEFAULT_SMOOTHING, 1),
            prefer_native=_env_bool(env, "CAPTURELAB_PREFER_NATIVE", True),
            store=store,
        )
