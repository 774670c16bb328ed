"""Typer CLI for Invitide."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .maintenance import run_maintenance_cycle, vacuum_database
from .scheduler import start_scheduler, stop_scheduler
from .seed import SEED_PASSWORD, seed_fake_data
from .storage import init_db, upgrade_database

app = typer.Typer(help="Invitide command-line interface")


def _is_read_only(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "readonly" in message or "read-only" in message


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        if _is_read_only(exc):
            typer.secho(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}.",
                err=True,
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("maintenance")
def maintenance(
    vacuum: bool = typer.Option(
        False,
        "--vacuum",
        help="Run SQLite VACUUM after the sweep completes",
    ),
) -> None:
    """Sweep orphaned attendance rows and expired sessions."""
    init_db()
    stats = run_maintenance_cycle()
    typer.echo(f"Maintenance complete: {stats}")
    if vacuum:
        vacuum_database()
        typer.echo("Database vacuum complete.")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    start_scheduler()
    config = uvicorn.Config(
        "invitide.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting Invitide on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of accounts to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    max_rsvps: int = typer.Option(
        5, "--max-rsvps", min=0, help="Maximum RSVPs to attach to each event"
    ),
):
    """Populate the database with fake accounts and events for testing."""
    stats = seed_fake_data(
        user_count=users, event_count=events, max_rsvps_per_event=max_rsvps
    )
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['rsvps']} RSVPs created."
    )
    typer.echo(f"Seeded accounts sign in with password '{SEED_PASSWORD}'.")


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    database_url: str | None = typer.Option(
        None, "--database-url", help="SQLAlchemy URL (default: SQLite in data dir)"
    ),
    session_ttl_hours: int | None = typer.Option(
        None, "--session-ttl-hours", min=1, help="Hours a sign-in stays valid"
    ),
    github_client_id: str | None = typer.Option(
        None, "--github-client-id", help="GitHub OAuth app client id"
    ),
    pass_type_identifier: str | None = typer.Option(
        None, "--pass-type-identifier", help="Wallet pass type identifier"
    ),
    pass_team_identifier: str | None = typer.Option(
        None, "--pass-team-identifier", help="Apple developer team identifier"
    ),
    pass_organization_name: str | None = typer.Option(
        None, "--pass-organization-name", help="Organization shown on passes"
    ),
    pass_certificate_path: str | None = typer.Option(
        None, "--pass-certificate", help="PEM pass-type certificate"
    ),
    pass_key_path: str | None = typer.Option(
        None, "--pass-key", help="PEM private key for the pass certificate"
    ),
    pass_wwdr_certificate_path: str | None = typer.Option(
        None, "--pass-wwdr-certificate", help="Apple WWDR intermediate certificate"
    ),
    pass_assets_dir: str | None = typer.Option(
        None, "--pass-assets-dir", help="Directory holding icon.png and icon@2x.png"
    ),
    maintenance_interval_hours: int | None = typer.Option(
        None, "--maintenance-hours", min=1, help="Hours between maintenance sweeps"
    ),
    vacuum_hours: int | None = typer.Option(
        None, "--vacuum-hours", min=1, help="Hours between SQLite VACUUM runs"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background scheduler (maintenance/vacuum)",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to invitide.toml (default: ./invitide.toml)"
    ),
):
    """View or update the persistent configuration file.

    Secrets (session secret, OAuth client secret, signing passphrase) are only
    read from the environment or an edited TOML file.
    """

    updates = {
        "database_url": database_url,
        "session_ttl_hours": session_ttl_hours,
        "github_client_id": github_client_id,
        "pass_type_identifier": pass_type_identifier,
        "pass_team_identifier": pass_team_identifier,
        "pass_organization_name": pass_organization_name,
        "pass_certificate_path": pass_certificate_path,
        "pass_key_path": pass_key_path,
        "pass_wwdr_certificate_path": pass_wwdr_certificate_path,
        "pass_assets_dir": pass_assets_dir,
        "maintenance_interval_hours": maintenance_interval_hours,
        "sqlite_vacuum_hours": vacuum_hours,
        "enable_scheduler": enable_scheduler,
        "app_host": host,
        "app_port": port,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
