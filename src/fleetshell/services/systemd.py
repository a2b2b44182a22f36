"""systemd ``systemctl`` control."""

from __future__ import annotations

import shlex

from fleetshell.services.base import ServicePlugin


class SystemdServicePlugin(ServicePlugin):
    manager_name = "systemd"

    def service_command(self, operation: str, name: str) -> str:
        return "systemctl %s %s" % (shlex.quote(str(operation)), shlex.quote(name))
