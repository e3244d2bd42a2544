"""Connection settings: environment first, then the on-disk config file."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

import voluptuous as vol

from .const import (
    CONF_TOKEN,
    CONF_URL,
    CONF_VERIFY_SSL,
    CONFIG_DIR,
    CONFIG_FILE,
    ENV_TOKEN,
    ENV_URL,
    ENV_VERIFY_SSL,
)

_LOGGER = logging.getLogger(__name__)

URL_VALIDATOR = vol.All(
    str,
    vol.Match(r"^https?://", msg="URL must start with http:// or https://"),
    lambda value: value.rstrip("/"),
)

SETTINGS_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_URL): URL_VALIDATOR,
        vol.Required(CONF_TOKEN): vol.All(str, vol.Length(min=1)),
        vol.Optional(CONF_VERIFY_SSL, default=True): vol.Boolean(),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass
class HassSettings:
    url: str = ""
    token: str = ""
    verify_ssl: bool = True

    @property
    def configured(self) -> bool:
        return bool(self.url and self.token)


def _settings_path(config_dir: Optional[str]) -> str:
    return os.path.join(config_dir or CONFIG_DIR, CONFIG_FILE)


def _env_truthy(value: str) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def load_settings(config_dir: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> HassSettings:
    """Load settings; HA_URL/HA_TOKEN in the environment take precedence."""
    env = os.environ if environ is None else environ
    if env.get(ENV_URL) and env.get(ENV_TOKEN):
        verify = env.get(ENV_VERIFY_SSL)
        return HassSettings(
            url=env[ENV_URL].rstrip("/"),
            token=env[ENV_TOKEN],
            verify_ssl=True if verify is None else _env_truthy(verify),
        )

    path = _settings_path(config_dir)
    if not os.path.exists(path):
        return HassSettings()
    try:
        with open(path, "r", encoding="utf-8") as f_handle:
            raw = json.load(f_handle)
        data = SETTINGS_SCHEMA(raw)
    except (OSError, ValueError, vol.Invalid) as ex:
        _LOGGER.warning("Ignoring unreadable settings file %s: %s", path, ex)
        return HassSettings()
    return HassSettings(url=data[CONF_URL], token=data[CONF_TOKEN], verify_ssl=data[CONF_VERIFY_SSL])


def save_settings(settings: HassSettings, config_dir: Optional[str] = None) -> str:
    path = _settings_path(config_dir)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    payload = {
        CONF_URL: settings.url,
        CONF_TOKEN: settings.token,
        CONF_VERIFY_SSL: settings.verify_ssl,
    }
    with open(path, "w", encoding="utf-8") as f_handle:
        json.dump(payload, f_handle, indent=2)
    return path
