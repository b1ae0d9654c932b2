"""Main CLI entry point for panelkit."""

import logging

import click

from panelkit import __version__
from panelkit.config import get_config
from panelkit.output import OutputFormatter

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@click.group()
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__, prog_name="panelkit")
@click.pass_context
def cli(ctx: click.Context, output_json: bool, verbose: bool) -> None:
    """panelkit - crash recovery and registry trust for the panel daemon.

    Use --json flag for machine-readable output.
    """
    level = logging.DEBUG if verbose else getattr(logging, get_config().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    ctx.ensure_object(dict)
    ctx.obj["formatter"] = OutputFormatter(json_mode=output_json)
    ctx.obj["json_mode"] = output_json


# Import and register commands
from panelkit.commands.startup import init  # noqa: E402
from panelkit.commands import registry  # noqa: E402

cli.add_command(init)
cli.add_command(registry.registry)
