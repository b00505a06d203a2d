"""Constants used in the project."""

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class RegistryKinds(Enum):
    """Registry kinds supported by the resolver.

    Args:
        Enum (string): Registry kinds supported by the resolver.
    """

    MODRINTH = "modrinth"
    LOCAL = "local"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_MODRINTH = "https://api.modrinth.com/v2"
    REGISTRY_URL_FABRIC_META = "https://meta.fabricmc.net/v2"
    USER_AGENT = "mcresolve/0.1.0"
    DEFAULT_REGISTRY = RegistryKinds.MODRINTH.value
    DEFAULT_LOADER = "fabric"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for each registry request
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    RUN_DEADLINE_SEC: Optional[float] = None  # Overall deadline for one run
    CONFIG_ENV = "MCRESOLVE_CONFIG"
    CONFIG_DEFAULT_PATH = os.path.join("~", ".config", "mcresolve", "config.yml")


# Settings keys accepted from YAML, mapped to Constants attributes and coercers.
_SETTINGS = {
    "modrinth_url": ("REGISTRY_URL_MODRINTH", str),
    "fabric_meta_url": ("REGISTRY_URL_FABRIC_META", str),
    "user_agent": ("USER_AGENT", str),
    "default_registry": ("DEFAULT_REGISTRY", str),
    "default_loader": ("DEFAULT_LOADER", str),
    "request_timeout": ("REQUEST_TIMEOUT", float),
    "http_retry_max": ("HTTP_RETRY_MAX", int),
    "http_retry_base_delay": ("HTTP_RETRY_BASE_DELAY_SEC", float),
    "run_deadline": ("RUN_DEADLINE_SEC", float),
}

_ENV_OVERRIDES = {
    "MCRESOLVE_MODRINTH_URL": "modrinth_url",
    "MCRESOLVE_FABRIC_META_URL": "fabric_meta_url",
    "MCRESOLVE_REQUEST_TIMEOUT": "request_timeout",
    "MCRESOLVE_HTTP_RETRY_MAX": "http_retry_max",
    "MCRESOLVE_RUN_DEADLINE": "run_deadline",
}


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the settings document from YAML.

    Looks at ``path``, then ``$MCRESOLVE_CONFIG``, then the default location.
    A missing file yields an empty mapping.
    """
    candidate = path or os.environ.get(Constants.CONFIG_ENV) or Constants.CONFIG_DEFAULT_PATH
    candidate = os.path.expanduser(candidate)
    if not os.path.isfile(candidate):
        return {}

    import yaml  # pylint: disable=import-outside-toplevel

    try:
        with open(candidate, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Could not read settings file %s: %s", candidate, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Settings file %s is not a mapping; ignoring", candidate)
        return {}
    return data


def apply_config(cfg: Dict[str, Any]) -> None:
    """Apply a settings mapping onto Constants, skipping invalid values."""
    for key, value in cfg.items():
        target = _SETTINGS.get(key)
        if target is None:
            logger.debug("Ignoring unknown setting %s", key)
            continue
        attr, coerce = target
        if value is None:
            setattr(Constants, attr, None)
            continue
        try:
            setattr(Constants, attr, coerce(value))
        except (TypeError, ValueError):
            logger.warning("Invalid value for setting %s: %r", key, value)


def apply_env_overrides(environ: Optional[Dict[str, str]] = None) -> None:
    """Apply MCRESOLVE_* environment variables onto Constants."""
    env = os.environ if environ is None else environ
    overrides = {
        setting: env[name]
        for name, setting in _ENV_OVERRIDES.items()
        if env.get(name, "").strip()
    }
    if overrides:
        apply_config(overrides)


def load_settings(path: Optional[str] = None) -> None:
    """Layer defaults, the YAML settings file and the environment."""
    apply_config(_load_yaml_config(path))
    apply_env_overrides()
