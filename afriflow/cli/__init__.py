"""
afriflow/cli/__init__.py

AfriFlow CLI - root Click command group, registered in pyproject.toml as:

    [project.scripts]
    afriflow = "afriflow.cli:cli"

Adding a command: write it in afriflow/cli/<name>.py, import it here,
cli.add_command(...).
"""

import logging

import click

from afriflow.cli.fees import corridors_command, fee_command
from afriflow.cli.verify import verify_command


@click.group()
@click.version_option(package_name="afriflow")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
def cli(log_level: str) -> None:
    """
    AfriFlow - settlement and escrow core.

    \b
    Commands:
      verify     Verify a signed settlement journal.
      fee        Show the fee split for an amount.
      corridors  List the bulk-initialized corridor table.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


cli.add_command(verify_command)
cli.add_command(fee_command)
cli.add_command(corridors_command)
