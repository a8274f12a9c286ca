"""
afriflow/cli/verify.py

afriflow verify - settlement journal verification
=================================================

Usage:
    afriflow verify <journal.jsonl>                  Human output (default)
    afriflow verify <journal.jsonl> --format json    Machine-readable JSON
    afriflow verify <journal.jsonl> --format compact One-line output
    afriflow verify <journal.jsonl> --quiet          Exit code only

Exit codes:
    0  Journal fully valid  (sequence + chain + nonces + signatures)
    1  Journal has violations
    2  Error  (file missing, malformed JSON, schema violation)
"""

import json
import sys
from pathlib import Path

import click

from afriflow.journal.replay import JournalReplay, ReplaySummary


# ── ANSI color ────────────────────────────────────────────────

class _Color:
    """Auto-disables when not a TTY or --no-color is passed."""
    _on: bool = True

    @classmethod
    def configure(cls, enabled: bool) -> None:
        cls._on = enabled and sys.stdout.isatty()

    @classmethod
    def green(cls, s: str) -> str:
        return f"\033[32m{s}\033[0m" if cls._on else s

    @classmethod
    def red(cls, s: str) -> str:
        return f"\033[31m{s}\033[0m" if cls._on else s

    @classmethod
    def dim(cls, s: str) -> str:
        return f"\033[2m{s}\033[0m" if cls._on else s


def _row(label: str, ok: bool, value: str) -> str:
    mark = _Color.green("OK  ") if ok else _Color.red("FAIL")
    return f"  {_Color.dim(f'{label:<16}')}  {mark}  {value}"


# ── Command ───────────────────────────────────────────────────

@click.command(name="verify")
@click.argument("journal", type=click.Path(exists=False))
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json", "compact"]),
    default="human",
    show_default=True,
    help="Output format.",
)
@click.option("--quiet", is_flag=True, default=False, help="No output; exit code only.")
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
def verify_command(journal: str, fmt: str, quiet: bool, no_color: bool) -> None:
    """
    Verify a settlement journal: sequence, chain, nonces, signatures.

    JOURNAL is the path to a journal.jsonl file.
    """
    _Color.configure(not no_color)
    path = Path(journal)

    if not path.exists():
        _emit_error(f"Journal not found: {journal}", fmt, quiet)
        sys.exit(2)

    try:
        summary = JournalReplay().load(path).verify()
    except (ValueError, FileNotFoundError) as e:
        _emit_error(str(e), fmt, quiet)
        sys.exit(2)

    valid = not summary.violations

    if quiet:
        sys.exit(0 if valid else 1)

    if fmt == "json":
        _output_json(summary, path, valid)
    elif fmt == "compact":
        _output_compact(summary, path, valid)
    else:
        _output_human(summary, path, valid)

    sys.exit(0 if valid else 1)


# ── Output ────────────────────────────────────────────────────

def _output_human(summary: ReplaySummary, path: Path, valid: bool) -> None:
    click.echo("")
    click.echo(f"  AfriFlow journal  {path}")
    click.echo("")
    click.echo(_row("entries", True, str(summary.total_entries)))
    click.echo(_row(
        "signatures", summary.invalid_signatures == 0,
        f"{summary.valid_signatures} valid, {summary.invalid_signatures} invalid",
    ))
    click.echo(_row("chain", summary.chain_valid, f"{len(summary.violations)} violation(s)"))
    if summary.record_type_counts:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(summary.record_type_counts.items()))
        label  = _Color.dim(f"{'records':<16}")
        click.echo(f"  {label}        {counts}")
    for v in summary.violations[:20]:
        click.echo(_Color.red(f"    #{v.at_sequence} {v.violation_type}: {v.detail}"))
    if len(summary.violations) > 20:
        click.echo(_Color.dim(f"    ... {len(summary.violations) - 20} more"))
    click.echo("")
    click.echo(_Color.green("  VALID") if valid else _Color.red("  INVALID"))


def _output_json(summary: ReplaySummary, path: Path, valid: bool) -> None:
    out = summary.to_dict()
    out["journal"]       = str(path)
    out["journal_valid"] = valid
    click.echo(json.dumps({"afriflow_verify": out}, indent=2))


def _output_compact(summary: ReplaySummary, path: Path, valid: bool) -> None:
    status = "VALID" if valid else "INVALID"
    colour = _Color.green if valid else _Color.red
    click.echo(
        colour(f"{status:<8}")
        + f"  {path.name}  {summary.total_entries} entries  "
        + f"{len(summary.violations)} violations"
    )


def _emit_error(msg: str, fmt: str, quiet: bool) -> None:
    if quiet:
        return
    if fmt == "json":
        click.echo(json.dumps({"afriflow_verify": {"error": msg, "journal_valid": False}}))
    else:
        click.echo(_Color.red(f"ERROR: {msg}"), err=True)
