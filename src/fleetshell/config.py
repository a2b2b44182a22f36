"""User configuration management for fleetshell."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, TYPE_CHECKING

import yaml
from vpd.next.util import read_yaml

if TYPE_CHECKING:
    from scitrera_app_framework.api.variables import Variables

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "fleetshell"

DEFAULT_SSH_USER = "root"
DEFAULT_CONNECT_TIMEOUT = 5
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF = 1.0
DEFAULT_SESSION_ATTEMPTS = 5
DEFAULT_COPY_PORT = 7000
DEFAULT_COMPRESSOR = "pigz"
DEFAULT_READY_TIMEOUT = 10
DEFAULT_SERVICE_MANAGER = "sysv"
DEFAULT_LOCAL_INTERFACE = "bond0"


def get_config_root(v: Variables | None = None) -> Path:
    """Config root from SAF stateful root, falling back to DEFAULT_CONFIG_DIR."""
    if v is not None:
        from scitrera_app_framework.core import is_stateful_ready
        stateful_root = is_stateful_ready(v)
        if stateful_root:
            return Path(stateful_root)
    return DEFAULT_CONFIG_DIR


class FleetshellConfig:
    """Manages fleetshell user configuration.

    Values come from ``config.yaml`` (or an explicit *data* dict, which
    skips file loading entirely) and fall back to the module defaults.
    """

    def __init__(self, config_path: Path | None = None, data: dict[str, Any] | None = None):
        self.config_path = config_path or (DEFAULT_CONFIG_DIR / "config.yaml")
        self._data: dict[str, Any] = {}
        if data is not None:
            self._data = dict(data)
        else:
            self._load()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FleetshellConfig:
        return cls(data=data)

    def _load(self):
        if self.config_path.exists():
            self._data = read_yaml(str(self.config_path)) or {}
            logger.debug("Loaded config from %s", self.config_path)
        else:
            self._data = {}

    # --- ssh ---

    @property
    def ssh_user(self) -> str:
        return self.get("ssh.user", DEFAULT_SSH_USER)

    @property
    def ssh_keys(self) -> list[str]:
        """Private key files, ``~`` expanded. Accepts ``keys`` (list) or ``key`` (single)."""
        ssh = self._data.get("ssh", {})
        keys = ssh.get("keys")
        if keys is None:
            keys = [ssh["key"]] if ssh.get("key") else []
        elif isinstance(keys, str):
            keys = [keys]
        return [os.path.expanduser(k) for k in keys]

    @property
    def connect_timeout(self) -> float:
        return float(self.get("ssh.connect_timeout", DEFAULT_CONNECT_TIMEOUT))

    # --- retry ---

    @property
    def retry_attempts(self) -> int:
        return int(self.get("retry.attempts", DEFAULT_RETRY_ATTEMPTS))

    @property
    def retry_backoff(self) -> float:
        return float(self.get("retry.backoff", DEFAULT_RETRY_BACKOFF))

    @property
    def session_attempts(self) -> int:
        return int(self.get("retry.session_attempts", DEFAULT_SESSION_ATTEMPTS))

    # --- copy ---

    @property
    def copy_port(self) -> int:
        return int(self.get("copy.port", DEFAULT_COPY_PORT))

    @property
    def compressor(self) -> str:
        return self.get("copy.compressor", DEFAULT_COMPRESSOR)

    @property
    def ready_timeout(self) -> float:
        return float(self.get("copy.ready_timeout", DEFAULT_READY_TIMEOUT))

    # --- misc ---

    @property
    def service_manager(self) -> str:
        return self.get("service.manager", DEFAULT_SERVICE_MANAGER)

    @property
    def default_hosts(self) -> list[str]:
        fleet = self._data.get("fleet", {})
        return fleet.get("hosts", [])

    @property
    def local_interface(self) -> str:
        return self.get("fleet.local_interface", DEFAULT_LOCAL_INTERFACE)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by dot-separated key path."""
        parts = key.split(".")
        current = self._data
        for part in parts:
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def set(self, key: str, value: Any) -> None:
        """Set a config value by dot-separated key path, creating sections as needed."""
        parts = key.split(".")
        current = self._data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value

    def effective(self) -> dict[str, Any]:
        """All settings with defaults filled in, shaped like config.yaml."""
        return {
            "ssh": {
                "user": self.ssh_user,
                "keys": self.ssh_keys,
                "connect_timeout": self.connect_timeout,
            },
            "retry": {
                "attempts": self.retry_attempts,
                "backoff": self.retry_backoff,
                "session_attempts": self.session_attempts,
            },
            "copy": {
                "port": self.copy_port,
                "compressor": self.compressor,
                "ready_timeout": self.ready_timeout,
            },
            "service": {"manager": self.service_manager},
            "fleet": {"hosts": self.default_hosts, "local_interface": self.local_interface},
        }

    def save(self) -> None:
        """Write the explicitly set values back to ``config_path``."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with self.config_path.open("w") as f:
            yaml.dump(self._data, f, default_flow_style=False, sort_keys=False)
        logger.debug("Wrote config to %s", self.config_path)
