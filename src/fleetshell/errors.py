"""Exception hierarchy shared across fleetshell."""

from __future__ import annotations


class FleetshellError(Exception):
    """Base class for every error raised by fleetshell."""

    pass
