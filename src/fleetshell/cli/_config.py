"""fleetshell config group and subcommands."""

from __future__ import annotations

import click

from ._common import _get_config


@click.group()
@click.pass_context
def config(ctx):
    """Show or change fleetshell settings."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx):
    """Print the effective configuration, defaults included."""
    import yaml

    cfg = _get_config(ctx)
    click.echo("# %s" % cfg.config_path)
    click.echo(yaml.safe_dump(cfg.effective(), default_flow_style=False, sort_keys=False).rstrip())


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key, value):
    """Set KEY (dotted, e.g. copy.port) to VALUE and save.

    VALUE is read as YAML, so ``7100`` is a number and ``[db1, db2]`` a list.
    """
    import yaml

    cfg = _get_config(ctx)
    cfg.set(key, yaml.safe_load(value))
    cfg.save()
    click.echo("Set %s in %s" % (key, cfg.config_path))
