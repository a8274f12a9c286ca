"""
afriflow fee / afriflow corridors - configuration inspection commands.
"""

import json
import sys
from typing import Optional

import click

from afriflow.config import (
    DEFAULT_EXTERNAL_CORRIDORS,
    DEFAULT_REGIONAL_CORRIDORS,
    SettlementConfig,
    validate_fee_bps,
)
from afriflow.core.access import AccessControl
from afriflow.core.exceptions import AfriFlowError
from afriflow.core.models import ZERO_ADDRESS
from afriflow.ledger.corridors import CorridorRegistry
from afriflow.ledger.fees import split_amount


@click.command(name="fee")
@click.argument("amount", type=int)
@click.option("--bps", type=int, default=10, show_default=True, help="Fee rate in basis points.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
def fee_command(amount: int, bps: int, as_json: bool) -> None:
    """Show the fee split for AMOUNT atomic units."""
    try:
        validate_fee_bps(bps, "bps")
        fee, net = split_amount(amount, bps)
    except (AfriFlowError, ValueError) as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(2)

    if as_json:
        click.echo(json.dumps({"amount": amount, "feeBps": bps, "fee": fee, "netAmount": net}))
    else:
        click.echo(f"amount {amount}  fee {fee}  net {net}  ({bps} bps)")


@click.command(name="corridors")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML settlement config; defaults apply when omitted.",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
def corridors_command(config_path: Optional[str], as_json: bool) -> None:
    """List the corridor table produced by bulk initialization."""
    regional = list(DEFAULT_REGIONAL_CORRIDORS)
    external = list(DEFAULT_EXTERNAL_CORRIDORS)
    if config_path:
        try:
            config = SettlementConfig.from_yaml(config_path)
        except AfriFlowError as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(2)
        regional, external = config.regional_corridors, config.external_corridors

    registry = CorridorRegistry(AccessControl(ZERO_ADDRESS))
    registry.initialize(regional, external)
    pairs = registry.list_enabled()

    if as_json:
        click.echo(json.dumps([{"origin": o, "destination": d} for o, d in pairs]))
        return
    for origin, destination in pairs:
        click.echo(f"{origin} -> {destination}")
    click.echo(f"{len(pairs)} corridors")
