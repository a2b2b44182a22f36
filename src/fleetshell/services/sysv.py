"""RedHat/CentOS style ``/sbin/service`` control."""

from __future__ import annotations

import shlex

from fleetshell.services.base import ServicePlugin


class SysvServicePlugin(ServicePlugin):
    manager_name = "sysv"

    def service_command(self, operation: str, name: str) -> str:
        return "/sbin/service %s %s" % (shlex.quote(name), shlex.quote(str(operation)))
