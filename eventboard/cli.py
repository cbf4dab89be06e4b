"""Typer CLI for eventboard."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
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
from .crud import set_admin
from .database import get_session
from .errors import NotFound
from .seed import seed_fake_data
from .storage import (
    fetch_root_token,
    init_db,
    rotate_root_token,
    upgrade_database,
)

app = typer.Typer(help="eventboard command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _exit_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("admin-token")
def admin_token() -> None:
    """Print the current root admin token."""
    init_db()
    typer.echo(fetch_root_token())


@app.command("rotate-admin-token")
def rotate_admin_token() -> None:
    """Rotate the root admin token."""
    try:
        init_db()
        token = rotate_root_token()
    except OperationalError as exc:
        _exit_if_readonly(exc, "rotate the root admin token")
        raise
    typer.echo(token)


@app.command("grant-admin")
def grant_admin(
    email: str = typer.Argument(..., help="Email of the account to update"),
    revoke: bool = typer.Option(
        False, "--revoke", help="Remove admin rights instead of granting them"
    ),
) -> None:
    """Grant (or revoke) moderation rights for an existing account."""
    init_db()
    try:
        with get_session() as session:
            profile = set_admin(session, email=email, is_admin=not revoke)
            label = profile.email
    except NotFound as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    verb = "Revoked admin rights from" if revoke else "Granted admin rights to"
    typer.echo(f"{verb} {label}")


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    fetch_root_token()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI app under uvicorn."""
    init_db()
    config = uvicorn.Config(
        "eventboard.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting eventboard on {host}:{port}")
    server.run()


@app.command("seed-data")
def seed_data(
    venues: int = typer.Option(
        settings.seed_venues, "--venues", min=0, help="Number of venue accounts"
    ),
    users: int = typer.Option(
        settings.seed_users, "--users", min=0, help="Number of attendee accounts"
    ),
    events_per_venue: int = typer.Option(
        settings.seed_events_per_venue,
        "--events-per-venue",
        min=1,
        help="Maximum events to create for each venue",
    ),
):
    """Populate the database with fake venues, attendees, events and RSVPs."""
    stats = seed_fake_data(
        venue_count=venues,
        user_count=users,
        max_events_per_venue=events_per_venue,
    )
    typer.echo(
        f"Seed complete: {stats['venues']} venues, {stats['users']} attendees, "
        f"{stats['events']} events, {stats['rsvps']} RSVPs created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None,
        "--config-path",
        help="Path to eventboard.toml (default: ./eventboard.toml)",
    ),
    events_per_page: int | None = typer.Option(
        None, "--events-per-page", min=1, help="Public listing page size"
    ),
    admin_events_per_page: int | None = typer.Option(
        None, "--admin-events-per-page", min=1, help="Moderation queue size"
    ),
    session_ttl_hours: int | None = typer.Option(
        None, "--session-ttl-hours", min=1, help="Hours a login stays valid"
    ),
    max_avatar_bytes: int | None = typer.Option(
        None, "--max-avatar-bytes", min=1, help="Largest accepted profile image"
    ),
    max_event_image_bytes: int | None = typer.Option(
        None, "--max-event-image-bytes", min=1, help="Largest accepted event image"
    ),
    media_url_prefix: str | None = typer.Option(
        None, "--media-url-prefix", help="URL prefix that serves uploaded images"
    ),
    seed_venues: int | None = typer.Option(
        None, "--seed-venues", min=0, help="Default seed-data venues"
    ),
    seed_users: int | None = typer.Option(
        None, "--seed-users", min=0, help="Default seed-data attendees"
    ),
    seed_events_per_venue: int | None = typer.Option(
        None, "--seed-events-per-venue", min=1, help="Default seed-data events/venue"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "events_per_page": events_per_page,
        "admin_events_per_page": admin_events_per_page,
        "session_ttl_hours": session_ttl_hours,
        "max_avatar_bytes": max_avatar_bytes,
        "max_event_image_bytes": max_event_image_bytes,
        "media_url_prefix": media_url_prefix,
        "seed_venues": seed_venues,
        "seed_users": seed_users,
        "seed_events_per_venue": seed_events_per_venue,
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


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite with helpful defaults."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    uv_path = shutil.which("uv")
    if uv_path:
        cmd = [uv_path, "run", "pytest"]
    else:
        typer.echo("uv not found, falling back to python -m pytest")
        cmd = [sys.executable, "-m", "pytest"]
    if pytest_args:
        cmd.extend(pytest_args)
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()
