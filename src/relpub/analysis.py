# src/relpub/analysis.py
"""
Requirement analysis: which store fields still have to be asked?

Purpose:
- Summarize what a session already knows (project metadata, previous release
  notes, collected answers, suggested changelog, a few recent commits).
- Ask the classifier which fields are still missing, with priority and
  suggested values, and turn the reply into DataCollectionRequests.
- Fall back to a deterministic minimal request set whenever the classifier is
  unavailable or replies in an unusable shape.

Key guardrails:
- Strict JSON-only output + Pydantic validation (FieldAnalysis).
- Only catalogue fields become questions; fields already collected are skipped.
- The fallback never touches the network.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import ValidationError

from relpub import fields
from relpub.errors import AnalysisParseError, CollaboratorError
from relpub.llm import ChatMessage, TextGenerator, extract_json_block
from relpub.models import DataCollectionRequest, SessionContext
from relpub.schema import FieldAnalysis

logger = logging.getLogger(__name__)

# Bounds the prompt size.
COMMIT_CONTEXT_LIMIT = 3
README_CONTEXT_CHARS = 300
RELEASE_NOTES_CONTEXT_CHARS = 200


# System prompt acts as a policy layer: it lists the store's field catalogue
# and forces a strict schema for robust downstream handling.
SYSTEM_PROMPT = f"""You are an expert in publishing Android applications to an app store.
Analyze the collected release data and decide which fields REALLY have to be asked from the user.

Criteria:
1. Technical fields (package_name, app_name, app_type, categories, age_legal): try to infer them, ask if unsure.
2. User-facing content (descriptions, changelog): ask unless good quality data is present.
3. Optional fields: ask only when there is a specific need.

Store fields:
{fields.catalogue_summary()}

Return ONLY valid JSON matching this schema. No extra text.
{{
  "analysis": "short analysis of the situation",
  "required_fields": [
    {{
      "field": "field_name",
      "reason": "why it must be asked",
      "priority": "high" | "medium" | "low",
      "suggestions": ["value 1", "value 2"]
    }}
  ]
}}
"""


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def build_analysis_context(ctx: SessionContext) -> str:
    data = ctx.release_data
    out: List[str] = ["=== COLLECTED DATA ===", ""]

    if data is not None and data.project is not None:
        p = data.project
        out.append(f"Repository: {p.repo_name}")
        out.append(f"Description: {p.description}")
        out.append(f"Primary language: {p.primary_language}")
        out.append(f"Topics: {', '.join(p.topics)}")
        if p.readme:
            out.append(f"README (fragment): {truncate(p.readme, README_CONTEXT_CHARS)}")
        out.append("")

    if data is not None and data.release is not None:
        r = data.release
        out.append(f"Release tag: {r.tag_name}")
        out.append(f"Release name: {r.name}")
        if r.body:
            out.append(f"Release notes: {truncate(r.body, RELEASE_NOTES_CONTEXT_CHARS)}")
        out.append("")

    if ctx.collected_responses:
        out.append("ALREADY FILLED FIELDS:")
        for name, value in sorted(ctx.collected_responses.items()):
            out.append(f"- {name}: {value}")
        out.append("")

    if data is not None and data.suggested_whats_new:
        out.append("AI GENERATED CHANGELOG:")
        out.extend(f"- {s}" for s in data.suggested_whats_new)
        out.append("")

    if data is not None and data.commits:
        out.append("RECENT COMMITS:")
        for commit in data.commits[:COMMIT_CONTEXT_LIMIT]:
            out.append(f"- {commit.short_sha}: {commit.message}")
        out.append("")

    out.append("=== TASK ===")
    out.append("Determine the minimal set of fields to ask the user for publication.")
    out.append("Priority: automation > quality > completeness.")
    return "\n".join(out)


def parse_field_analysis(raw: str) -> FieldAnalysis:
    try:
        return FieldAnalysis.model_validate(extract_json_block(raw))
    except ValidationError as e:
        raise AnalysisParseError(f"LLM analysis does not match the expected schema: {e}") from e


def convert_analysis(ctx: SessionContext, analysis: FieldAnalysis) -> List[DataCollectionRequest]:
    requests: List[DataCollectionRequest] = []
    seen = set()
    for item in analysis.required_fields:
        name = item.field.strip()
        if name in ctx.collected_responses:
            logger.debug("Skipping already filled field: %s", name)
            continue
        if not fields.is_known_field(name):
            logger.warning("Ignoring unknown field proposed by LLM: %s", name)
            continue
        if name in seen:
            continue
        seen.add(name)

        spec = fields.CATALOGUE[name]
        description = spec.description + (f" ({item.reason})" if item.reason else "")
        requests.append(
            fields.make_request(
                name,
                required=item.priority == "high",
                suggestions=item.suggestions or fields.suggest_for(name, ctx.release_data),
                description=description,
            )
        )
        logger.info("Added LLM-determined field request: %s (priority: %s)", name, item.priority)
    return requests


def analyze_requirements(ctx: SessionContext, generator: TextGenerator) -> List[DataCollectionRequest]:
    """
    Ask the classifier which fields are missing.
    Raises CollaboratorError / AnalysisParseError; derive_requests() handles the fallback.
    """
    messages = [
        ChatMessage("system", SYSTEM_PROMPT),
        ChatMessage("user", "Analyze the release data and list the missing fields:\n\n" + build_analysis_context(ctx)),
    ]
    raw = generator.generate(messages)
    analysis = parse_field_analysis(raw)
    logger.info("LLM analysis: %s (%d fields)", analysis.analysis, len(analysis.required_fields))
    return convert_analysis(ctx, analysis)


def fallback_requests(ctx: SessionContext) -> List[DataCollectionRequest]:
    requests: List[DataCollectionRequest] = []
    for name in fields.MANDATORY_FIELDS:
        if name not in ctx.collected_responses:
            requests.append(
                fields.make_request(name, required=True, suggestions=fields.suggest_for(name, ctx.release_data))
            )
    for name in fields.FALLBACK_OPTIONAL_FIELDS:
        if name not in ctx.collected_responses:
            requests.append(
                fields.make_request(name, required=False, suggestions=fields.suggest_for(name, ctx.release_data))
            )
    logger.info("Generated %d fallback requests for session %s", len(requests), ctx.session_id)
    return requests


def derive_requests(ctx: SessionContext, generator: Optional[TextGenerator]) -> List[DataCollectionRequest]:
    if generator is None:
        return fallback_requests(ctx)
    try:
        return analyze_requirements(ctx, generator)
    except (CollaboratorError, AnalysisParseError) as e:
        logger.warning("LLM requirement analysis failed, using fallback: %s", e)
        return fallback_requests(ctx)
