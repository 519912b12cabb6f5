# src/relpub/render.py
"""
Human-readable views of a session (Markdown), deterministic and side-effect free.

- render_session_summary: status, collaborator progress, field progress,
  last error / retry count.
- render_request: one question as shown to the user (description, limits,
  allowed values, suggestions).
"""
from __future__ import annotations

from typing import List

from relpub import fields
from relpub.models import DataCollectionRequest, ReleaseSession, SessionStatus

STATUS_LABELS = {
    SessionStatus.ACTIVE: "Collecting data",
    SessionStatus.WAITING_USER: "Waiting for your input",
    SessionStatus.PUBLISHING: "Publishing",
    SessionStatus.RETRY_NEEDED: "Analyzing publication error",
    SessionStatus.COMPLETED: "Published",
    SessionStatus.FAILED: "Failed",
    SessionStatus.CANCELLED: "Cancelled",
}

AGENT_ICONS = {"running": "[..]", "completed": "[ok]", "failed": "[!!]"}


def render_session_summary(session: ReleaseSession) -> str:
    lines: List[str] = []
    lines.append(f"# Release session `{session.id}`")
    lines.append("")
    lines.append(f"- Project: {session.project_ref}")
    lines.append(f"- Status: **{STATUS_LABELS[session.status]}** ({session.status.value})")
    if session.release_data is not None and session.release_data.release is not None:
        lines.append(f"- Release: {session.release_data.release.tag_name}")

    if session.agent_statuses:
        lines.append("")
        lines.append("## Agents")
        for name, status in sorted(session.agent_statuses.items()):
            line = f"- {AGENT_ICONS.get(status.state, '[??]')} {name}: {status.progress}% {status.message}"
            if status.error_message:
                line += f" (error: {status.error_message})"
            lines.append(line)

    mandatory = fields.MANDATORY_FIELDS
    done = sum(1 for name in mandatory if name in session.collected_responses)
    lines.append("")
    lines.append("## Fields")
    lines.append(f"- Mandatory collected: {done}/{len(mandatory)}")
    lines.append(f"- Collected total: {len(session.collected_responses)}")
    if session.pending_requests:
        pending = ", ".join(r.display_name for r in session.pending_requests)
        lines.append(f"- Pending: {pending}")

    if session.last_error or session.retry_count:
        lines.append("")
        lines.append("## Publication")
        lines.append(f"- Retries: {session.retry_count}")
        if session.last_error:
            step = f" at {session.failed_at_step}" if session.failed_at_step else ""
            lines.append(f"- Last error{step}: {session.last_error}")

    return "\n".join(lines).rstrip() + "\n"


def render_request(req: DataCollectionRequest) -> str:
    marker = "required" if req.required else "optional, empty to skip"
    lines = [f"{req.display_name} ({marker})", f"  {req.description}"]
    if req.max_length:
        lines.append(f"  Max length: {req.max_length}")
    if req.valid_values:
        lines.append(f"  Allowed: {', '.join(req.valid_values)}")
    if req.max_categories:
        lines.append(f"  Up to {req.max_categories} comma separated values")
    for i, s in enumerate(req.suggestions, 1):
        lines.append(f"  [{i}] {s}")
    return "\n".join(lines)
