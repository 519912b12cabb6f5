"""Tests for the Markdown session views."""

from relpub import fields
from relpub.models import AgentStatus, ReleaseSession, SessionStatus
from relpub.render import render_request, render_session_summary


def test_summary_of_failed_attempt(release_data):
    session = ReleaseSession(
        id="release_1_abc",
        user_id=1,
        chat_id=1,
        project_ref="https://github.com/acme/snake-game",
        status=SessionStatus.WAITING_USER,
        release_data=release_data,
        collected_responses={"package_name": "com.example.snake", "app_type": "GAMES"},
        retry_count=2,
        last_error="App name is too long",
        failed_at_step="store_publish",
    )
    session.agent_statuses["source"] = AgentStatus(name="source", state="completed", progress=100, message="done")
    session.install_requests([fields.make_request("app_name", required=True)])

    summary = render_session_summary(session)

    assert "# Release session `release_1_abc`" in summary
    assert "**Waiting for your input** (waiting_user)" in summary
    assert "- Release: v1.2.0" in summary
    assert "[ok] source: 100% done" in summary
    assert "Mandatory collected: 2/5" in summary
    assert "Pending: App Name" in summary
    assert "- Retries: 2" in summary
    assert "- Last error at store_publish: App name is too long" in summary


def test_summary_of_fresh_session_has_no_publication_section():
    session = ReleaseSession(id="release_1_new", user_id=1, chat_id=1, project_ref="acme/snake")
    summary = render_session_summary(session)
    assert "(active)" in summary
    assert "## Publication" not in summary


def test_render_request_lists_constraints_and_suggestions():
    req = fields.make_request("categories", required=True, suggestions=["arcade,puzzle"])
    text = render_request(req)
    assert text.startswith("Categories (required)")
    assert "Up to 2 comma separated values" in text
    assert "[1] arcade,puzzle" in text

    optional = render_request(fields.make_request("whats_new", required=False))
    assert "(optional, empty to skip)" in optional
    assert "Max length: 5000" in optional
