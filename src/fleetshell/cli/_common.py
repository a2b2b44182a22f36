"""Shared CLI infrastructure: logging setup, decorators, resolution helpers."""

from __future__ import annotations

import logging
import sys

import click

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool):
    """Configure logging based on verbosity.

    Uses explicit handler setup instead of ``logging.basicConfig`` which
    is silently a no-op when the root logger already has handlers.
    """
    level = logging.DEBUG if verbose else logging.INFO
    fmt = ("%(asctime)s [%(levelname)s] %(name)s: %(message)s" if verbose
           else "%(asctime)s %(message)s")

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt="%H:%M:%S"))
    root.addHandler(handler)

    from fleetshell.utils import suppress_noisy_loggers
    suppress_noisy_loggers()


def _get_config(ctx: click.Context):
    """Load FleetshellConfig from --config or the config root."""
    from fleetshell.config import FleetshellConfig, get_config_root

    config_path = (ctx.obj or {}).get("config_path")
    if config_path:
        from pathlib import Path
        return FleetshellConfig(Path(config_path))
    return FleetshellConfig(get_config_root() / "config.yaml")


def _get_registry(ctx: click.Context):
    """Create the HostRegistry shared by every host touched in this invocation."""
    from fleetshell.host import HostRegistry
    return HostRegistry(_get_config(ctx))


def _resolve_hosts_or_exit(hosts, hosts_file, config) -> list[str]:
    """Resolve host addresses from CLI args; exit if none are found."""
    from fleetshell.hosts import HostResolutionError, resolve_hosts
    try:
        host_list = resolve_hosts(
            hosts=hosts,
            hosts_file=hosts_file,
            config_default_hosts=config.default_hosts,
        )
    except HostResolutionError as e:
        click.echo("Error: %s" % e, err=True)
        sys.exit(1)
    if not host_list:
        click.echo("Error: No hosts specified. Use --hosts or configure defaults.", err=True)
        sys.exit(1)
    return host_list


def _fail(error: Exception):
    """Report a fleetshell error and exit non-zero."""
    logger.debug("Command failed", exc_info=error)
    click.echo("Error: %s" % error, err=True)
    sys.exit(1)


def host_options(f):
    """Common host-targeting options: --hosts, --hosts-file."""
    f = click.option("--hosts-file", default=None,
                     help="File with hosts (one per line, # comments)")(f)
    f = click.option("--hosts", "-H", default=None,
                     help="Comma-separated host list")(f)
    return f


def tree_options(f):
    """Options selecting what part of a tree to copy or compare."""
    f = click.option("--file", "-f", "files", multiple=True,
                     help="Only this entry of BASE_DIR (repeatable)")(f)
    f = click.option("--dest-dir", default=None,
                     help="Destination directory on every target (default: BASE_DIR)")(f)
    return f


def _build_targets(registry, host_list: list[str], dest_dir: str | None):
    """Targets argument for compare/copy: hosts in chain order, or host -> dir."""
    hosts = registry.resolve_many(host_list)
    if dest_dir:
        return {h: dest_dir for h in hosts}
    return hosts
