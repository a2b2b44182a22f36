"""fleetshell exec, status and service commands."""

from __future__ import annotations

import sys

import click

from ._common import _fail, _get_registry, _resolve_hosts_or_exit, host_options


@click.command("exec")
@host_options
@click.option("--attempts", type=int, default=None,
              help="Attempts per host; use 1 for commands that are not idempotent")
@click.argument("command", nargs=-1, required=True)
@click.pass_context
def exec_cmd(ctx, hosts, hosts_file, attempts, command):
    """Run COMMAND on every host in parallel and print the output."""
    from fleetshell.orchestration.primitives import execute_parallel

    registry = _get_registry(ctx)
    host_list = _resolve_hosts_or_exit(hosts, hosts_file, registry.config)
    results = execute_parallel(registry.resolve_many(host_list), " ".join(command), attempts=attempts)

    by_host = {r.host: r for r in results}
    failed = 0
    for address in host_list:
        result = by_host[address]
        if result.success:
            click.echo("[%s]" % address)
            if result.stdout.strip():
                click.echo(result.stdout.rstrip())
        else:
            failed += 1
            click.echo("[%s] FAILED rc=%d: %s" % (address, result.returncode,
                                                 (result.stderr or result.stdout).strip()), err=True)
    if failed:
        sys.exit(1)


@click.command()
@host_options
@click.pass_context
def status(ctx, hosts, hosts_file):
    """Show reachability, hostname and core count of each host."""
    from fleetshell.errors import FleetshellError

    registry = _get_registry(ctx)
    host_list = _resolve_hosts_or_exit(hosts, hosts_file, registry.config)

    click.echo("%-20s %-10s %-30s %s" % ("Host", "Reachable", "Hostname", "Cores"))
    for host in registry.resolve_many(host_list):
        if not host.is_reachable():
            click.echo("%-20s %-10s %-30s %s" % (host, "no", "-", "-"))
            continue
        try:
            click.echo("%-20s %-10s %-30s %d" % (host, "yes", host.hostname(), host.cores()))
        except FleetshellError as e:
            click.echo("%-20s %-10s %-30s %s" % (host, "yes", "error: %s" % e, "-"))


@click.command()
@click.argument("host")
@click.argument("operation")
@click.argument("name")
@click.pass_context
def service(ctx, host, operation, name):
    """Perform OPERATION (start, stop, restart...) on service NAME on HOST."""
    from fleetshell.bootstrap import init_fleetshell
    from fleetshell.errors import FleetshellError

    init_fleetshell()
    registry = _get_registry(ctx)
    try:
        output = registry.resolve(host).service(operation, name)
    except (FleetshellError, ValueError) as e:
        _fail(e)
    if output.strip():
        click.echo(output.rstrip())
