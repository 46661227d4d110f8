"""spamsync command-line interface.

What:
  Provide the Typer application operators use to run the daemon (``run``),
  trigger a single pass (``once``), inspect the server hierarchy
  (``mailboxes``) and read or rewind mailbox cursors (``checkpoint``).

Why:
  The daemon is usually started by a service manager, but setting it up
  requires finding the exact mailbox paths and, occasionally, re-training a
  mailbox from scratch. Exposing those tasks as commands avoids editing
  checkpoint files by hand.

How:
  Every command loads the runtime configuration through
  :func:`spamsync.config.loader.load_runtime_config` and assembles components
  with the helpers in :mod:`spamsync._wiring`.

Interfaces:
  ``app`` (Typer application), ``run``, ``once``, ``mailboxes``,
  ``checkpoint_show``, ``checkpoint_set``, ``main``.

Invariants & Safety:
  - Exit codes follow shell expectations (``0`` success, ``1`` failure).
  - ``checkpoint set`` is the only supported way to move a cursor backwards.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from ._wiring import (
    ROLES,
    build_checkpoint_store,
    build_components,
    build_connection,
    checkpoint_snapshot,
    identity_for_role,
)
from .config.loader import ConfigLoadError, load_runtime_config
from .config.schema import RuntimeConfig
from .imap.client import ImapError
from .utils.logging import get_logger


app = typer.Typer(help="Synchronise IMAP mailboxes with SpamAssassin")
checkpoint_app = typer.Typer(help="Inspect or rewind mailbox checkpoints")
app.add_typer(checkpoint_app, name="checkpoint")

LOGGER = get_logger("cli")

ConfigOption = typer.Option(None, "--config", help="Path to config.json (or a YAML file)")


def _load(config: Optional[Path]) -> RuntimeConfig:
    try:
        return load_runtime_config(config)
    except ConfigLoadError as exc:
        LOGGER.error("runtime_load_failed", error=str(exc))
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command("run")
def run(config: Optional[Path] = ConfigOption) -> None:
    """Track the spam, ham and inbox mailboxes until interrupted."""

    runtime = _load(config)
    components = build_components(runtime)
    try:
        components.tracker.start()
    except KeyboardInterrupt:
        LOGGER.info("tracker_stopped")
    finally:
        components.connection.disconnect()


@app.command("once")
def once(config: Optional[Path] = ConfigOption) -> None:
    """Run a single pass over the trackers and print the resulting cursors.

    What:
      Executes one orchestrator round (spam, then ham, then inbox as long as
      the previous tracker is drained).

    Why:
      Useful from cron or while checking a fresh configuration.
    """

    runtime = _load(config)
    components = build_components(runtime)
    try:
        idle = components.tracker.run_round()
    except ImapError as exc:
        LOGGER.error("once_failed", error=str(exc))
        raise typer.Exit(code=1) from exc
    finally:
        components.connection.disconnect()
    summary = {role: engine.last_uid for role, engine in components.engines().items()}
    summary["drained"] = idle
    typer.echo(json.dumps(summary))


@app.command("mailboxes")
def mailboxes(config: Optional[Path] = ConfigOption) -> None:
    """Print every mailbox path of the account, parents first."""

    runtime = _load(config)
    connection = build_connection(runtime)
    try:
        paths = connection.list_mailbox_paths()
    except ImapError as exc:
        LOGGER.error("mailboxes_failed", error=str(exc))
        typer.echo(f"IMAP error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        connection.disconnect()
    for path in paths:
        typer.echo(path)


@checkpoint_app.command("show")
def checkpoint_show(config: Optional[Path] = ConfigOption) -> None:
    """Print the persisted ``lastUid`` of every role."""

    runtime = _load(config)
    typer.echo(json.dumps(checkpoint_snapshot(runtime), indent=2))


@checkpoint_app.command("set")
def checkpoint_set(
    role: str = typer.Argument(..., help="One of: spam, ham, inbox"),
    uid: int = typer.Argument(..., min=0, help="New lastUid"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Overwrite the cursor of ``role``; the next round resumes at ``uid + 1``."""

    if role not in ROLES:
        typer.echo(f"Unknown role {role!r}; expected one of {', '.join(ROLES)}", err=True)
        raise typer.Exit(code=1)
    runtime = _load(config)
    identity = identity_for_role(runtime, role)
    store = build_checkpoint_store(runtime)
    previous = store.get(identity.fingerprint())
    store.set(identity.fingerprint(), uid)
    LOGGER.info("checkpoint_reset", role=role, mailbox=identity.mailbox, previous=previous, last_uid=uid)
    typer.echo(f"{role} ({identity.mailbox}): {previous} -> {uid}")


def main() -> None:
    """Execute the Typer application entry point."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
