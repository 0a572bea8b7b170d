"""SessionGuard admin CLI — config checks, maintenance, session management.

Usage:
    sessionguard check-config                       # Validate SESSIONGUARD_* env vars
    sessionguard init-db                            # Create tables (dev; prod uses alembic)
    sessionguard cleanup                            # Purge expired blacklist rows + sessions
    sessionguard list-sessions alice@example.com    # Live sessions for a user
    sessionguard revoke-sessions alice@example.com  # Sign a user out everywhere

Every command reads the same Settings the server does, so a bad config
fails here exactly like it would at server startup.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
import uuid
from typing import Optional

import click
from pydantic import ValidationError

from sessionguard import __version__
from sessionguard.config import Settings
from sessionguard.db.engine import build_engine, build_session_factory, create_tables
from sessionguard.logging import configure_logging
from sessionguard.services.auth_service import AuthService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _load_settings() -> Settings:
    try:
        settings = Settings()
    except ValidationError as e:
        click.secho("Invalid configuration:", fg="red", err=True)
        for error in e.errors():
            click.secho(f"  {error['msg']}", fg="red", err=True)
        sys.exit(1)
    configure_logging(settings)
    return settings


async def _with_auth_service(settings: Settings, fn):
    """Open an engine + session, hand an AuthService to fn, clean up."""
    engine = build_engine(settings)
    try:
        factory = build_session_factory(engine)
        async with factory() as db:
            return await fn(AuthService(db, settings))
    finally:
        await engine.dispose()


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k) or "-")[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="sessionguard")
def main():
    """SessionGuard — authentication and session-security administration."""


# ---------------------------------------------------------------------------
# sessionguard check-config
# ---------------------------------------------------------------------------


@main.command("check-config")
def check_config():
    """Validate configuration without starting the server."""
    settings = _load_settings()
    jwt = settings.jwt_config()
    click.secho("Configuration OK", fg="green", bold=True)
    click.echo(f"  environment:         {settings.environment}")
    click.echo(f"  jwt issuer:          {jwt.issuer}")
    click.echo(f"  jwt algorithm:       {jwt.algorithm}")
    click.echo(f"  access token ttl:    {jwt.access_ttl_seconds}s")
    click.echo(f"  refresh token ttl:   {settings.refresh_token_ttl_days}d")
    click.echo(f"  max sessions/user:   {settings.max_sessions_per_user}")
    click.echo(f"  bcrypt rounds:       {settings.bcrypt_rounds}")


# ---------------------------------------------------------------------------
# sessionguard init-db
# ---------------------------------------------------------------------------


@main.command("init-db")
def init_db():
    """Create all tables directly from the models (development only)."""
    settings = _load_settings()

    async def _impl():
        engine = build_engine(settings)
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    _run(_impl())
    click.secho("Tables created", fg="green")


# ---------------------------------------------------------------------------
# sessionguard cleanup
# ---------------------------------------------------------------------------


@main.command("cleanup")
def cleanup():
    """Purge expired blacklist entries and expired sessions."""
    settings = _load_settings()

    async def _impl(auth: AuthService):
        return await auth.cleanup_blacklist(), await auth.cleanup_expired_sessions()

    blacklisted, sessions = _run(_with_auth_service(settings, _impl))
    click.echo(f"Removed {blacklisted} expired blacklist entries")
    click.echo(f"Removed {sessions} expired sessions")


# ---------------------------------------------------------------------------
# sessionguard list-sessions
# ---------------------------------------------------------------------------


@main.command("list-sessions")
@click.argument("email")
def list_sessions(email: str):
    """List live sessions for the user with EMAIL."""
    settings = _load_settings()

    async def _impl(auth: AuthService):
        user = await auth.users.get_by_email(email)
        if user is None:
            return None
        return await auth.list_sessions(user.id)

    sessions = _run(_with_auth_service(settings, _impl))
    if sessions is None:
        click.secho(f"No user with email {email}", fg="red", err=True)
        sys.exit(1)
    if not sessions:
        click.echo("No live sessions.")
        return

    rows = [
        {
            "id": str(s.id),
            "ip": s.ip_address,
            "created": s.created_at.strftime("%Y-%m-%d %H:%M"),
            "expires": s.expires_at.strftime("%Y-%m-%d %H:%M"),
            "agent": s.user_agent,
        }
        for s in sessions
    ]
    _print_table(rows, [
        ("ID", "id", 36),
        ("IP", "ip", 15),
        ("CREATED", "created", 16),
        ("EXPIRES", "expires", 16),
        ("USER AGENT", "agent", 30),
    ])


# ---------------------------------------------------------------------------
# sessionguard revoke-sessions
# ---------------------------------------------------------------------------


@main.command("revoke-sessions")
@click.argument("email")
@click.option("--except", "except_session", help="Session UUID to keep")
def revoke_sessions(email: str, except_session: Optional[str]):
    """Revoke every session of the user with EMAIL."""
    settings = _load_settings()

    keep = None
    if except_session:
        try:
            keep = uuid.UUID(except_session)
        except ValueError:
            click.secho(f"Not a session id: {except_session}", fg="red", err=True)
            sys.exit(1)

    async def _impl(auth: AuthService):
        user = await auth.users.get_by_email(email)
        if user is None:
            return None
        return await auth.revoke_all_sessions(
            user.id, except_session_id=keep, ip_address="cli", user_agent="sessionguard-cli"
        )

    count = _run(_with_auth_service(settings, _impl))
    if count is None:
        click.secho(f"No user with email {email}", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Revoked {count} session(s)", fg="yellow" if count else "white")
