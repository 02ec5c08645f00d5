"""provider-rbac: CLI for the provider RBAC controller."""

from __future__ import annotations

import typer

from .db import build_engine, create_tables
from .errors import ReconcileError
from .main import _setup_logging, build_reconciler, build_store
from .main import main as controller_main
from .settings import get_settings

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="Provider RBAC controller CLI (start, reconcile, init-db).",
)


@app.callback()
def _main(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@app.command(name="start", help="Start the controller and reconcile until interrupted.")
def start() -> None:
    raise typer.Exit(code=controller_main())


@app.command(name="reconcile", help="Reconcile one provider revision once and print the result.")
def reconcile(
    name: str = typer.Argument(..., help="Name of the ProviderRevision."),
) -> None:
    settings = get_settings()
    _setup_logging(settings.log_level)
    store = build_store(settings)
    try:
        result = build_reconciler(settings, store).reconcile(name)
    except ReconcileError as exc:
        typer.echo(f"❌ {exc}: {exc.__cause__}", err=True)
        raise typer.Exit(code=1) from exc

    if result.requeue_after > 0:
        typer.echo(f"requeue after {result.requeue_after:g}s")
    elif result.requeue:
        typer.echo("requeue")
    else:
        typer.echo("done")


@app.command(name="init-db", help="Create the object store tables.")
def init_db() -> None:
    settings = get_settings()
    create_tables(build_engine(settings))
    typer.echo(f"✅ tables ready at {settings.database_url}")


if __name__ == "__main__":
    app()
