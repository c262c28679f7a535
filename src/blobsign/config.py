"""storage credentials loading

credentials come from a preference store, which is any mapping of the keys
below. environment variables and YAML files are supported out of the box.
"""

import base64
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Union

import yaml

from . import ConfigurationInvalid

logger = logging.getLogger(__name__)

KEY_ENABLED = "azure_storage_enabled"
KEY_ACCOUNT = "azure_storage_account"
KEY_KEY = "azure_storage_key"
KEY_CONTAINER = "azure_storage_container"
KEY_CALENDAR_CONTAINER = "azure_storage_container_calendar"
KEY_SAS_TOKEN = "azure_storage_sas_token"
KEY_HOST = "azure_host"
KEY_IP_WHITELIST = "azure_ip_whitelist"

# fmt: off
REQUIRED_KEYS = (
    #(preference key,          StorageConfig field),
    (KEY_ACCOUNT,              "account_name"),
    (KEY_KEY,                  "account_key"),
    (KEY_CONTAINER,            "container_name"),
    (KEY_CALENDAR_CONTAINER,   "calendar_container_name"),
    (KEY_SAS_TOKEN,            "sas_token_seed"),
    (KEY_HOST,                 "host_url"),
)
# fmt: on

ALL_KEYS = (KEY_ENABLED,) + tuple(k for k, _ in REQUIRED_KEYS) + (KEY_IP_WHITELIST,)

TRUTHY = {"true", "1", "yes", "on"}


@dataclass(frozen=True)
class StorageConfig:
    account_name: str
    account_key: str
    container_name: str
    calendar_container_name: str
    sas_token_seed: str
    host_url: str
    ip_whitelist: str = ""

    @property
    def sas_hash(self):
        return base64.b64encode(self.sas_token_seed.encode("utf-8")).decode("ascii")

    def __repr__(self):
        # keep secrets out of logs and tracebacks
        return (
            f"StorageConfig(account_name={self.account_name!r}, "
            f"container_name={self.container_name!r}, "
            f"host_url={self.host_url!r})"
        )


@dataclass(frozen=True)
class Invalid:
    """a config that can't be used, missing lists the preference keys"""

    reason: str
    missing: tuple = field(default_factory=tuple)

    def __bool__(self):
        return False

    def raise_for_invalid(self):
        raise ConfigurationInvalid(f"azure storage configuration {self.reason}", self.missing)


LoadResult = Union[StorageConfig, Invalid]


def _as_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return False


def _as_str(value):
    if value is None:
        return ""
    return str(value).strip()


def is_enabled(prefs: Mapping) -> bool:
    return _as_bool(prefs.get(KEY_ENABLED))


def load(prefs: Mapping) -> LoadResult:
    """
    builds a StorageConfig out of prefs. partial configuration is never
    returned, Invalid tells which keys are absent instead.
    """
    if not is_enabled(prefs):
        logger.debug("azure storage disabled by %s", KEY_ENABLED)
        return Invalid("disabled", tuple(k for k, _ in REQUIRED_KEYS))

    values = {}
    missing = []
    for key, attr in REQUIRED_KEYS:
        value = _as_str(prefs.get(key))
        if not value:
            missing.append(key)
        values[attr] = value

    if missing:
        logger.error("azure storage configuration incomplete, missing: %s", missing)
        return Invalid("incomplete", tuple(missing))

    values["host_url"] = values["host_url"].rstrip("/")
    # ip whitelist is optional and only feeds SAS generation
    values["ip_whitelist"] = _as_str(prefs.get(KEY_IP_WHITELIST))
    return StorageConfig(**values)


def env_preferences(environ: Mapping = None) -> dict:
    """preferences from environment, AZURE_STORAGE_ACCOUNT etc."""
    if environ is None:
        environ = os.environ
    return dict(
        (key, environ[key.upper()]) for key in ALL_KEYS if key.upper() in environ
    )


def yaml_preferences(path) -> dict:
    """
    preferences from a YAML file. keys can be top level, or nested under
    "azure:" so the file can be shared with other settings
    """
    path = Path(path)
    with path.open("r") as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationInvalid(f"config file {path} is not a mapping")
    if isinstance(data.get("azure"), dict):
        data = data["azure"]
    logger.debug("loaded preference keys %s from %s", sorted(data), path)
    return dict((k, v) for k, v in data.items() if k in ALL_KEYS)
