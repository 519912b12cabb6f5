# src/relpub/automation.py
"""
Post-collection automation: fill what can be known without asking.

Steps (run once, right after source collection):
1) package name: the one declared by the Android build (applicationId or
   manifest package) when the collector found it, otherwise the classifier's
   answer, kept only when it is a well-formed package name
2) existing store listing: when the publisher can look one up, identity
   fields (app_name, app_type, categories, age_legal) are taken from it

Every prefilled value passes the same validation as a user answer. Values that
do not are left to the questions. Fields already collected are never
overwritten.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from relpub import fields
from relpub.analysis import truncate
from relpub.errors import CollaboratorError
from relpub.llm import ChatMessage, TextGenerator
from relpub.models import SessionContext
from relpub.publish import ListingLookup, StoreListing
from relpub.validation import validate

logger = logging.getLogger(__name__)

README_CONTEXT_CHARS = 500

PACKAGE_PROMPT = """You identify Android application ids.
Given the project information, answer with the package name only, in the form com.company.appname.
If you cannot tell with confidence, answer with an empty line. No other text."""


def is_valid_value(name: str, value: str) -> bool:
    return bool(value) and validate(value, fields.make_request(name, required=True)).valid


def build_package_context(ctx: SessionContext) -> str:
    project = ctx.release_data.project if ctx.release_data is not None else None
    if project is None:
        return ""
    out: List[str] = [
        f"Project: {project.repo_name}",
        f"Description: {project.description}",
        f"Primary language: {project.primary_language}",
        f"Topics: {', '.join(project.topics)}",
    ]
    if project.readme:
        out.append(f"README (fragment): {truncate(project.readme, README_CONTEXT_CHARS)}")
    return "\n".join(out)


def _first_line(raw: str) -> str:
    for line in raw.splitlines():
        cleaned = line.strip().strip("`'\"").strip()
        if cleaned:
            return cleaned
    return ""


def detect_package_name(ctx: SessionContext, generator: Optional[TextGenerator]) -> Optional[str]:
    """Package name for the release, or None when it has to be asked."""
    project = ctx.release_data.project if ctx.release_data is not None else None
    if project is None:
        return None

    if is_valid_value("package_name", project.package_name):
        logger.info("Package name declared by the build: %s", project.package_name)
        return project.package_name

    if generator is None:
        return None
    messages = [
        ChatMessage("system", PACKAGE_PROMPT),
        ChatMessage("user", build_package_context(ctx)),
    ]
    try:
        raw = generator.generate(messages)
    except CollaboratorError as e:
        logger.warning("LLM package name detection failed: %s", e)
        return None

    candidate = _first_line(raw)
    if is_valid_value("package_name", candidate):
        logger.info("Package name detected via LLM: %s", candidate)
        return candidate
    logger.info("No usable package name from LLM (%r), it will be asked", candidate)
    return None


def listing_values(listing: StoreListing) -> Dict[str, str]:
    values = {
        "app_name": listing.app_name[:5],
        "app_type": listing.app_type.upper(),
        "categories": ",".join(c.strip() for c in listing.categories[:2]),
        "age_legal": listing.age_legal,
    }
    return {name: value for name, value in values.items() if is_valid_value(name, value)}


def prefill(
    ctx: SessionContext,
    generator: Optional[TextGenerator],
    lookup: Optional[ListingLookup],
) -> Dict[str, str]:
    """Values to add to collected_responses before requirement analysis."""
    found: Dict[str, str] = {}
    package = ctx.collected_responses.get("package_name")
    if package is None:
        package = detect_package_name(ctx, generator)
        if package:
            found["package_name"] = package
    if not package or lookup is None:
        return found

    try:
        listing = lookup.lookup(package)
    except CollaboratorError as e:
        logger.warning("Store listing lookup failed for %s: %s", package, e)
        return found
    if listing is None:
        logger.info("No existing store listing for %s", package)
        return found

    for name, value in listing_values(listing).items():
        if name not in ctx.collected_responses:
            found[name] = value
    logger.info("Prefilled from existing listing %s: %s", package, ", ".join(sorted(found)))
    return found
