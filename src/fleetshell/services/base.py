"""Base class for fleetshell service-control plugins."""

from __future__ import annotations

import logging
from abc import abstractmethod
from logging import Logger

from scitrera_app_framework import Plugin, Variables

logger = logging.getLogger(__name__)

EXT_SERVICE = "fleetshell.service"


class ServicePlugin(Plugin):
    """Abstract base class for service-control plugins.

    Each plugin is an SAF Plugin that registers as a multi-extension
    under the 'fleetshell.service' extension point, so several init
    systems can be available at once and hosts pick one by name.

    Subclasses must define:
        - manager_name: str identifier (e.g. "sysv", "systemd")
        - service_command(): produce the command for an operation
    """

    eager = False  # don't initialize until requested

    manager_name: str = ""

    # --- SAF Plugin interface ---

    def name(self) -> str:
        return "fleetshell.service.%s" % self.manager_name

    def extension_point_name(self, v: Variables) -> str:
        return EXT_SERVICE

    def is_enabled(self, v: Variables) -> bool:
        # Multi-extension plugins must report False, otherwise SAF caches
        # the first one under the extension point and skips the rest.
        return False

    def is_multi_extension(self, v: Variables) -> bool:
        return True

    def initialize(self, v: Variables, logger: Logger) -> ServicePlugin:
        return self

    # --- Service interface ---

    @abstractmethod
    def service_command(self, operation: str, name: str) -> str:
        """Return the shell command performing *operation* on service *name*."""
        ...
