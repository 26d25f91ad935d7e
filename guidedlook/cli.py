"""Command line interface for serving the API and inspecting sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer
import uvicorn

from guidedlook.api import build_services, create_app
from guidedlook.config import load_config
from guidedlook.persistence import get_repository

app = typer.Typer(help="CLI for the guided look service")

session_app = typer.Typer(help="Commands for inspecting guided look sessions")

app.add_typer(session_app, name="session")


@app.callback()
def main() -> None:
    """Guided look CLI entry point."""
    pass


@app.command("serve")
def serve(
    host: str = "127.0.0.1",
    port: int = 8000,
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to a YAML config file"),
    log_level: str = "info",
) -> None:
    """
    Run the HTTP API with uvicorn.

    Example:
        guidedlook serve --port 8080 --log-level debug
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    application = create_app(build_services(load_config(config_path)))
    uvicorn.run(application, host=host, port=port, log_level=log_level.lower())


@session_app.command("list")
def session_list(user_id: Optional[str] = None) -> None:
    """
    List stored sessions with their status.

    Example:
        guidedlook session list --user-id 7f9c...
        # Output: 7f9c...    3b1e...    confirming    2026-01-01T10:00:00+00:00
    """
    repo = get_repository()
    sessions = asyncio.run(repo.list_sessions(user_id))
    if not sessions:
        typer.echo("No sessions found")
        return
    for session in sessions:
        expires = session.expires_at.isoformat() if session.expires_at else "-"
        typer.echo(f"{session.user_id}\t{session.session_id}\t{session.status}\t{expires}")


@session_app.command("show")
def session_show(user_id: str, session_id: str) -> None:
    """Show the collected fields, pending action and artifact of one session."""
    repo = get_repository()
    session = asyncio.run(repo.get_session(user_id, session_id))
    if session is None:
        typer.echo("Session not found")
        raise typer.Exit(code=1)
    collected = session.collected
    typer.echo(f"Session {session.session_id}: {session.status}")
    typer.echo(
        f"Collected: occasion={collected.occasion} style={collected.style} "
        f"category={collected.category} strategy={collected.strategy}"
    )
    if collected.pending_action:
        typer.echo(f"Pending: {collected.pending_action} ({collected.pending_cost_credits} credits)")
    if session.generated_artifact is not None:
        artifact = session.generated_artifact
        saved = "saved" if artifact.saved_to_inventory else "not saved"
        typer.echo(f"Artifact: {artifact.id} {artifact.image_ref} ({saved})")
    if collected.tryon_result_ref:
        typer.echo(f"Try-on: {collected.tryon_result_ref}")
    typer.echo(f"Autosave: {'on' if session.autosave_enabled else 'off'}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
