"""fleetshell CLI — run commands on and copy directories across a fleet."""

from __future__ import annotations

import click

from fleetshell import __version__
from ._common import _setup_logging
from ._config import config
from ._exec import exec_cmd, service, status
from ._tree import compare, copy, du, ls


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose/debug output")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Config file (default: ~/.config/fleetshell/config.yaml)")
@click.version_option(__version__, prog_name="fleetshell")
@click.pass_context
def main(ctx, verbose, config_path):
    """fleetshell — administer a fleet of machines over SSH."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path
    _setup_logging(verbose)


main.add_command(exec_cmd)
main.add_command(status)
main.add_command(service)
main.add_command(ls)
main.add_command(du)
main.add_command(compare)
main.add_command(copy)
main.add_command(config)
