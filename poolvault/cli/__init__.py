"""
poolvault.cli
-------------

Offline tooling for the vault core (requires `typer`, `rich`, `PyYAML`):

  - simulate    : run a YAML scenario against an in-memory host
  - distribute  : show a proportional split
  - inspect     : decode a saved state file
  - config      : print the effective runtime configuration

Exit codes: 0 ok, 1 a scenario step was rejected (with --fail-on-reject),
2 unreadable or malformed input.
Logging follows POOLVAULT_LOG_LEVEL / POOLVAULT_LOG_FORMAT.

Example:
  python -m poolvault.cli simulate scenario.yaml --state-out state.json
  python -m poolvault.cli inspect state.json
  python -m poolvault.cli distribute --pool 41 --weight a=100 --weight b=300
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from poolvault import logging as vlog
from poolvault.cli.scenario import ScenarioError, load_yaml, run_scenario, summarize
from poolvault.config import CFG
from poolvault.distribution import distribute
from poolvault.errors import VaultError
from poolvault.runtime.host import InMemoryHost
from poolvault.version import __version__

__all__ = ["app", "main"]

app = typer.Typer(
    name="poolvault",
    help="Pooled-contribution vault tooling (simulate → inspect → distribute).",
    no_args_is_help=True,
    add_completion=False,
)

_console = Console()


def _die(msg: str, code: int = 2) -> NoReturn:
    typer.echo(msg.rstrip(), err=True)
    raise typer.Exit(code=code)


def _read_state(path: Path) -> InMemoryHost:
    try:
        snap = json.loads(path.read_text(encoding="utf-8"))
        return InMemoryHost.load(snap)
    except FileNotFoundError:
        _die(f"state file not found: {path}")
    except (json.JSONDecodeError, ValueError, KeyError, TypeError, AttributeError) as e:
        _die(f"state file {path} is not a valid snapshot: {e}")


def _write_state(path: Path, host: InMemoryHost) -> None:
    path.write_text(json.dumps(host.snapshot(), indent=2, sort_keys=True) + "\n", encoding="utf-8")


# ----------------------------------------------------------------------------
# simulate
# ----------------------------------------------------------------------------


@app.command("simulate")
def cmd_simulate(
    scenario: Path = typer.Argument(..., help="Scenario YAML file."),
    state_in: Optional[Path] = typer.Option(None, "--state-in", help="Start from a saved state file."),
    state_out: Optional[Path] = typer.Option(None, "--state-out", help="Write the final state here."),
    as_json: bool = typer.Option(False, "--json", help="Emit machine-readable JSON."),
    fail_on_reject: bool = typer.Option(False, "--fail-on-reject", help="Exit 1 if any step was rejected."),
) -> None:
    """Run every step of a scenario through the dispatcher on an in-memory host."""
    host = _read_state(state_in) if state_in else None
    try:
        run = run_scenario(load_yaml(scenario), host=host)
        summary = summarize(run["host"], run["config"])
    except ScenarioError as e:
        _die(str(e))
    except VaultError as e:
        _die(f"state could not be decoded: {e}")

    steps = run["steps"]
    install = run["install"]
    if state_out:
        _write_state(state_out, run["host"])

    if as_json:
        payload: Dict[str, Any] = {
            "install": install.to_dict() if install is not None else None,
            "steps": [s.to_dict() for s in steps],
            "outbox": [p.to_dict() for p in run["host"].outbox],
            "final": summary,
        }
        typer.echo(json.dumps(payload, indent=2))
    else:
        if install is not None and not install.accepted:
            _console.print(f"[red]install rejected:[/red] {install.reason} ({install.code.name})")
        table = Table(title="Invocations", box=box.SIMPLE_HEAVY)
        for col in ("#", "at", "kind", "sender", "amount", "result", "reason", "payments"):
            table.add_column(col)
        for s in steps:
            r = s.result
            verdict = "[green]accept[/green]" if r.accepted else f"[red]reject {int(r.code)}[/red]"
            table.add_row(
                str(s.index), str(s.at), s.kind, s.sender, str(s.amount),
                verdict, r.reason, str(len(r.emissions)),
            )
        _console.print(table)

        outbox = Table(title="Outbox", box=box.SIMPLE)
        for col in ("id", "kind", "destination", "amount", "asset"):
            outbox.add_column(col)
        for p in run["host"].outbox:
            outbox.add_row(str(p.emission_id), p.kind, p.destination.hex().upper(), str(p.amount), p.asset)
        _console.print(outbox)
        _console.print(
            f"status: [bold]{summary.get('status', 'NOT INSTALLED')}[/bold]  "
            f"total_raised: {summary.get('total_raised', 0)}"
        )

    if fail_on_reject and any(not s.result.accepted for s in steps):
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------------
# distribute
# ----------------------------------------------------------------------------


def _parse_weights(items: Sequence[str]) -> List[tuple]:
    out: List[tuple] = []
    for item in items:
        label, sep, raw = item.partition("=")
        if not sep or not label:
            _die(f"--weight expects LABEL=WEIGHT, got {item!r}")
        try:
            w = int(raw)
        except ValueError:
            _die(f"weight for {label!r} is not an integer: {raw!r}")
        if w < 0:
            _die(f"weight for {label!r} must be non-negative")
        out.append((label.encode("utf-8"), w))
    return out


@app.command("distribute")
def cmd_distribute(
    pool: int = typer.Option(..., "--pool", min=0, help="Units to split."),
    weight: List[str] = typer.Option(..., "--weight", "-w", help="LABEL=WEIGHT (repeatable)."),
    as_json: bool = typer.Option(False, "--json", help="Emit machine-readable JSON."),
) -> None:
    """Show floor(pool * w / W) for each weight, and the undistributed dust."""
    weights = _parse_weights(weight)
    outcome = distribute(pool, weights)
    if as_json:
        typer.echo(json.dumps({
            "pool": outcome.pool,
            "shares": {k.decode("utf-8"): v for k, v in outcome.shares.items()},
            "distributed": outcome.distributed,
            "dust": outcome.dust,
        }, indent=2))
        return
    table = Table(title=f"Distribution of {pool}", box=box.SIMPLE_HEAVY)
    table.add_column("label")
    table.add_column("weight", justify="right")
    table.add_column("share", justify="right")
    for label, w in weights:
        table.add_row(label.decode("utf-8"), str(w), str(outcome.share_of(label)))
    _console.print(table)
    _console.print(f"distributed: {outcome.distributed}  dust: {outcome.dust}")


# ----------------------------------------------------------------------------
# inspect / config
# ----------------------------------------------------------------------------


@app.command("inspect")
def cmd_inspect(
    state: Path = typer.Argument(..., help="State file written by `simulate --state-out`."),
    as_json: bool = typer.Option(False, "--json", help="Emit machine-readable JSON."),
) -> None:
    """Decode a saved state file into a readable summary."""
    host = _read_state(state)
    try:
        summary = summarize(host)
    except VaultError as e:
        _die(f"state could not be decoded: {e}")

    if as_json:
        typer.echo(json.dumps(summary, indent=2))
        return
    if not summary["installed"]:
        _console.print("no vault installed")
        return

    _console.print(
        f"status: [bold]{summary['status']}[/bold]  total_raised: {summary['total_raised']}  "
        f"target: {summary['vault']['target_amount']}  deadline: {summary['vault']['deadline']}  "
        f"settlement: {summary['settlement_state'] or '-'}  pending emissions: {len(summary['pending_emissions'])}"
    )
    parts = Table(title="Participants", box=box.SIMPLE)
    for col in ("address", "contributed", "refunded", "allocation pending"):
        parts.add_column(col)
    for p in summary["participants"]:
        parts.add_row(p["address"], str(p["contributed"]), "yes" if p["refunded"] else "no", str(p["allocation_pending"]))
    _console.print(parts)

    if summary["tokens"]:
        toks = Table(title="Tokens", box=box.SIMPLE)
        for col in ("token", "maturity", "matured", "coupons remaining"):
            toks.add_column(col)
        for t in summary["tokens"]:
            toks.add_row(t["token"], str(t["maturity"]), "yes" if t["matured"] else "no", str(t["coupons_remaining"]))
        _console.print(toks)

    if summary["emissions"]:
        em = Table(title="Emissions", box=box.SIMPLE)
        for col in ("id", "kind", "destination", "amount", "state"):
            em.add_column(col)
        for e in summary["emissions"]:
            em.add_row(str(e["emission_id"]), e["kind"], e["destination"], str(e["amount"]), e["state"])
        _console.print(em)


@app.command("config")
def cmd_config() -> None:
    """Print the effective runtime configuration (POOLVAULT_* env vars applied)."""
    typer.echo(json.dumps({"version": __version__, **CFG.as_dict()}, indent=2))


def main(argv: Optional[Sequence[str]] = None) -> None:  # pragma: no cover - thin wrapper
    """Entry-point for `python -m poolvault.cli` and the `poolvault` script."""
    vlog.configure()
    try:
        app(args=list(argv) if argv is not None else None, prog_name="poolvault")
    except KeyboardInterrupt:
        typer.echo("", err=True)
        sys.exit(130)


if __name__ == "__main__":  # pragma: no cover
    main()
