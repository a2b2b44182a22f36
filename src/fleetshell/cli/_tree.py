"""fleetshell ls, du, compare and copy commands."""

from __future__ import annotations

import click

from ._common import (
    _build_targets,
    _fail,
    _get_registry,
    _resolve_hosts_or_exit,
    host_options,
    tree_options,
)


@click.command()
@click.argument("host")
@click.argument("path")
@click.pass_context
def ls(ctx, host, path):
    """List PATH on HOST with sizes (directories shown with a trailing /)."""
    from fleetshell.errors import FleetshellError
    from fleetshell.orchestration.listing import DIRECTORY

    registry = _get_registry(ctx)
    try:
        listing = registry.resolve(host).dir_list(path)
    except FleetshellError as e:
        _fail(e)
    for name in sorted(listing):
        size = listing[name]
        if size == DIRECTORY:
            click.echo("%12s  %s/" % ("-", name))
        else:
            click.echo("%12d  %s" % (size, name))


@click.command()
@click.argument("host")
@click.argument("path")
@click.pass_context
def du(ctx, host, path):
    """Print the total size in bytes of files under PATH on HOST."""
    from fleetshell.errors import FleetshellError

    registry = _get_registry(ctx)
    try:
        click.echo(registry.resolve(host).dir_size(path))
    except FleetshellError as e:
        _fail(e)


@click.command()
@click.argument("source")
@click.argument("base_dir")
@host_options
@tree_options
@click.pass_context
def compare(ctx, source, base_dir, hosts, hosts_file, dest_dir, files):
    """Compare BASE_DIR on SOURCE with the same tree on every host."""
    from fleetshell.errors import FleetshellError

    registry = _get_registry(ctx)
    host_list = _resolve_hosts_or_exit(hosts, hosts_file, registry.config)
    targets = _build_targets(registry, host_list, dest_dir)
    try:
        registry.resolve(source).compare_dir(base_dir, targets, files=list(files) or None)
    except FleetshellError as e:
        _fail(e)
    click.echo("All %d host(s) match %s:%s" % (len(host_list), source, base_dir))


@click.command()
@click.argument("source")
@click.argument("base_dir")
@host_options
@tree_options
@click.option("--port", type=int, default=None, help="netcat port (default from config: 7000)")
@click.option("--overwrite", is_flag=True, help="Allow writing over existing non-empty files")
@click.option("--timeout", "ready_timeout", type=float, default=None,
              help="Seconds to wait for each listener to come up")
@click.pass_context
def copy(ctx, source, base_dir, hosts, hosts_file, dest_dir, files, port, overwrite, ready_timeout):
    """Copy BASE_DIR from SOURCE to every host through a relay chain.

    Hosts are chained in the order given.  The copy is not idempotent;
    check the destinations before re-running a failed copy.
    """
    from fleetshell.errors import FleetshellError

    registry = _get_registry(ctx)
    host_list = _resolve_hosts_or_exit(hosts, hosts_file, registry.config)
    targets = _build_targets(registry, host_list, dest_dir)
    try:
        registry.resolve(source).fast_copy_chain(
            base_dir, targets, files=list(files) or None, port=port,
            overwrite=overwrite, ready_timeout=ready_timeout,
        )
    except FleetshellError as e:
        _fail(e)
    click.echo("Copied %s:%s to %d host(s)" % (source, base_dir, len(host_list)))
