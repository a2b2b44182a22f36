"""Host list resolution with priority chain.

Resolves host addresses from CLI args, hosts files, or config defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fleetshell.errors import FleetshellError

logger = logging.getLogger(__name__)


class HostResolutionError(FleetshellError):
    """Error during host resolution."""

    pass


def parse_hosts_file(path: str | Path) -> list[str]:
    """Parse hosts file with one host per line.

    Comments (#) and blank lines are ignored.

    Args:
        path: Path to hosts file

    Returns:
        List of host strings

    Raises:
        HostResolutionError: If file not found
    """
    file_path = Path(path)
    if not file_path.exists():
        raise HostResolutionError("Hosts file not found: %s" % file_path)

    hosts = []
    with file_path.open("r") as f:
        for line in f:
            if "#" in line:
                line = line[: line.index("#")]
            line = line.strip()
            if line:
                hosts.append(line)

    logger.debug("Parsed %d hosts from file: %s", len(hosts), file_path)
    return hosts


def resolve_hosts(
    hosts: str | None = None,
    hosts_file: str | None = None,
    config_default_hosts: list[str] | None = None,
) -> list[str]:
    """Resolve hosts using priority chain.

    Priority:
    1. hosts (comma-separated CLI arg)
    2. hosts_file (path to file with one host per line)
    3. config_default_hosts (``fleet.hosts`` in config.yaml)
    4. Empty list (caller decides whether to error)
    """
    if hosts:
        resolved = [h.strip() for h in hosts.split(",") if h.strip()]
        logger.debug("Resolved %d hosts from CLI arg", len(resolved))
        return resolved

    if hosts_file:
        return parse_hosts_file(hosts_file)

    if config_default_hosts:
        logger.debug("Resolved %d hosts from config defaults", len(config_default_hosts))
        return list(config_default_hosts)

    logger.debug("No hosts resolved from any source")
    return []
