import asyncio
import uuid
from datetime import timedelta

from typer.testing import CliRunner

import guidedlook.persistence as persistence
from guidedlook.cli import app
from guidedlook.contracts import ArtifactMetadata, Collected, GeneratedArtifact, WorkflowSession, utcnow
from guidedlook.persistence import InMemoryWorkflowRepository


def _setup_repo(monkeypatch) -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    monkeypatch.setattr(persistence, "_repository_instance", repo)
    return repo


def test_session_list_shows_sessions(monkeypatch):
    repo = _setup_repo(monkeypatch)
    first, second = str(uuid.uuid4()), str(uuid.uuid4())
    asyncio.run(repo.save_session(WorkflowSession(user_id="u1", session_id=first, status="collecting")))
    asyncio.run(
        repo.save_session(
            WorkflowSession(
                user_id="u2", session_id=second, status="confirming", expires_at=utcnow() + timedelta(hours=12)
            )
        )
    )

    runner = CliRunner()
    result = runner.invoke(app, ["session", "list"])
    assert result.exit_code == 0, f"Command failed with exit code {result.exit_code}. Output: {result.output}"
    assert first in result.output
    assert second in result.output
    assert "confirming" in result.output

    filtered = runner.invoke(app, ["session", "list", "--user-id", "u1"])
    assert first in filtered.output
    assert second not in filtered.output


def test_session_list_empty(monkeypatch):
    _setup_repo(monkeypatch)
    result = CliRunner().invoke(app, ["session", "list"])
    assert result.exit_code == 0
    assert "No sessions found" in result.output


def test_session_show_details_and_missing(monkeypatch):
    repo = _setup_repo(monkeypatch)
    session = WorkflowSession(
        user_id="u1",
        session_id="s1",
        status="generated",
        autosave_enabled=True,
        collected=Collected(strategy="guided", occasion="cita", style="urbano", category="top"),
        generated_artifact=GeneratedArtifact(
            id="guided_ai_s1",
            image_ref="https://cdn.example.com/a.png",
            metadata=ArtifactMetadata(category="top"),
            saved_to_inventory=True,
        ),
    )
    asyncio.run(repo.save_session(session))

    runner = CliRunner()
    result = runner.invoke(app, ["session", "show", "u1", "s1"])
    assert result.exit_code == 0, f"Command failed with exit code {result.exit_code}. Output: {result.output}"
    assert "Session s1: generated" in result.output
    assert "occasion=cita" in result.output
    assert "Artifact: guided_ai_s1 https://cdn.example.com/a.png (saved)" in result.output
    assert "Autosave: on" in result.output

    missing = runner.invoke(app, ["session", "show", "u1", "missing"])
    assert missing.exit_code == 1
    assert "Session not found" in missing.output
