# src/relpub/recovery.py
"""
Error recovery after a failed publish attempt.

Given the publish error and the values that were sent, decide which fields the
user has to correct. An empty result means "nothing to correct, retry with the
same data".

Two strategies, same contract:
- classifier-backed: error text, failed step, retry count and current values
  go to the LLM; its reply is validated against ErrorAnalysis.
- fallback: keyword matching on the error text (no network).
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError

from relpub import fields
from relpub.errors import AnalysisParseError, CollaboratorError
from relpub.llm import ChatMessage, TextGenerator, extract_json_block
from relpub.models import DataCollectionRequest, SessionContext
from relpub.schema import ErrorAnalysis

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = f"""You are an expert in publishing Android applications to an app store.
Analyze the publication error and decide which fields have to be corrected or added.

Typical causes:
1. Wrong data format (package_name, app_name)
2. Violated constraints (field length, number of categories)
3. Missing mandatory fields
4. Invalid enum values
5. Descriptions that are too short or too long

Store fields:
{fields.catalogue_summary()}

Return ONLY valid JSON matching this schema. No extra text.
{{
  "error_analysis": "cause of the error",
  "retry_strategy": "how to fix it",
  "required_fields": [
    {{
      "field": "field_name",
      "reason": "why the field must be corrected",
      "current_issue": "problem with the current value",
      "suggestions": ["corrected value"]
    }}
  ]
}}
"""

# Lowercased substrings of the error text -> field to correct.
# Order matters only for the order of the produced requests.
ERROR_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("package_name", ("package", "packagename")),
    ("app_name", ("appname", "name")),
    ("app_type", ("apptype", "app_type", "app type")),
    ("categories", ("categor",)),
    ("age_legal", ("agelegal", "age_legal", "age rating")),
]


def build_error_context(ctx: SessionContext, error: BaseException) -> str:
    out: List[str] = ["=== PUBLICATION ERROR ===", ""]
    out.append(f"Error: {error}")
    out.append(f"Failed at step: {ctx.failed_at_step or 'unknown'}")
    out.append(f"Retry attempt: {ctx.retry_count}")
    out.append("")

    out.append("CURRENT DATA:")
    for name, value in sorted(ctx.collected_responses.items()):
        out.append(f"- {name}: '{value}'")
    out.append("")

    data = ctx.release_data
    if data is not None and data.project is not None:
        out.append("PROJECT CONTEXT:")
        out.append(f"- Repository: {data.project.repo_name}")
        out.append(f"- Description: {data.project.description}")
        out.append(f"- Language: {data.project.primary_language}")
        out.append("")

    out.append("TASK: Determine which fields have to be corrected for a successful publication")
    return "\n".join(out)


def parse_error_analysis(raw: str) -> ErrorAnalysis:
    try:
        return ErrorAnalysis.model_validate(extract_json_block(raw))
    except ValidationError as e:
        raise AnalysisParseError(f"LLM error analysis does not match the expected schema: {e}") from e


def convert_error_analysis(ctx: SessionContext, analysis: ErrorAnalysis) -> List[DataCollectionRequest]:
    requests: List[DataCollectionRequest] = []
    seen = set()
    for item in analysis.required_fields:
        name = item.field.strip()
        if not fields.is_known_field(name):
            logger.warning("Ignoring unknown correction field proposed by LLM: %s", name)
            continue
        if name in seen:
            continue
        seen.add(name)

        description = fields.CATALOGUE[name].description
        if item.reason:
            description += f". {item.reason}"
        current = ctx.collected_responses.get(name)
        if current is not None:
            description += f" (current value '{current}': {item.current_issue or 'rejected'})"

        requests.append(
            fields.make_request(
                name,
                required=True,
                suggestions=item.suggestions or fields.suggest_for(name, ctx.release_data),
                description=description,
            )
        )
        logger.info("Added error recovery field: %s (reason: %s)", name, item.reason)
    return requests


def analyze_error(ctx: SessionContext, error: BaseException, generator: TextGenerator) -> List[DataCollectionRequest]:
    messages = [
        ChatMessage("system", SYSTEM_PROMPT),
        ChatMessage(
            "user",
            "Analyze the publication error and list the fields to correct:\n\n" + build_error_context(ctx, error),
        ),
    ]
    raw = generator.generate(messages)
    analysis = parse_error_analysis(raw)
    logger.info("LLM error analysis: %s / strategy: %s", analysis.error_analysis, analysis.retry_strategy)
    return convert_error_analysis(ctx, analysis)


def fallback_corrections(ctx: SessionContext, error: BaseException) -> List[DataCollectionRequest]:
    message = str(error)
    lowered = message.lower()
    requests: List[DataCollectionRequest] = []
    for name, tokens in ERROR_KEYWORDS:
        if not any(t in lowered for t in tokens):
            continue
        spec = fields.CATALOGUE[name]
        description = f"Correct the {spec.display_name.lower()}: {spec.description}. Error: {message}"
        current = ctx.collected_responses.get(name)
        if current is not None:
            description += f" (current value '{current}')"
        req = fields.make_request(
            name,
            required=True,
            suggestions=fields.suggest_for(name, ctx.release_data),
            description=description,
        )
        req.display_name = f"{spec.display_name} (correction)"
        requests.append(req)
    return requests


def derive_corrections(
    ctx: SessionContext,
    error: BaseException,
    generator: Optional[TextGenerator],
) -> List[DataCollectionRequest]:
    if generator is not None:
        try:
            return analyze_error(ctx, error, generator)
        except (CollaboratorError, AnalysisParseError) as e:
            logger.warning("LLM error analysis failed, using keyword fallback: %s", e)
    requests = fallback_corrections(ctx, error)
    logger.info("Keyword fallback produced %d correction requests", len(requests))
    return requests
