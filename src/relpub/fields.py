# src/relpub/fields.py
"""
Store field catalogue and deterministic suggestions.

Purpose:
- Single source of truth for the publication fields the store accepts:
  display names, descriptions and validation constraints per field.
- Deterministic, network-free suggestions derived from project metadata.
  These back the analyzer fallbacks and fill suggestion lists the LLM left empty.

Heuristics here are keyword based and conservative. They propose values, the
user always confirms them.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from relpub.models import DataCollectionRequest, ReleaseData, ValidationType

PACKAGE_NAME_PATTERN = r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    display_name: str
    description: str
    validation_type: ValidationType = "text"
    pattern: Optional[str] = None
    max_length: int = 0
    valid_values: Tuple[str, ...] = ()
    max_categories: int = 0
    mandatory: bool = False


CATALOGUE: Dict[str, FieldSpec] = {
    spec.name: spec
    for spec in [
        FieldSpec(
            "package_name",
            "Package Name",
            "Application package name (e.g. com.company.app)",
            pattern=PACKAGE_NAME_PATTERN,
            mandatory=True,
        ),
        FieldSpec(
            "app_name",
            "App Name",
            "Short application name (max 5 characters)",
            max_length=5,
            mandatory=True,
        ),
        FieldSpec(
            "app_type",
            "App Type",
            "Application type: GAMES or MAIN",
            validation_type="enum",
            valid_values=("GAMES", "MAIN"),
            mandatory=True,
        ),
        FieldSpec(
            "categories",
            "Categories",
            "Application categories (max 2, comma separated)",
            validation_type="categories",
            max_categories=2,
            mandatory=True,
        ),
        FieldSpec(
            "age_legal",
            "Age Rating",
            "Age restriction: 0+, 6+, 12+, 16+, 18+",
            validation_type="enum",
            valid_values=("0+", "6+", "12+", "16+", "18+"),
            mandatory=True,
        ),
        FieldSpec(
            "short_description",
            "Short Description",
            "Short application description (max 80 characters)",
            max_length=80,
        ),
        FieldSpec(
            "full_description",
            "Full Description",
            "Full application description (max 4000 characters)",
            max_length=4000,
        ),
        FieldSpec(
            "whats_new",
            "What's New",
            "Changes in this version (max 5000 characters)",
            max_length=5000,
        ),
        FieldSpec(
            "moder_info",
            "Moderator Notes",
            "Additional information for store moderators (max 180 characters)",
            max_length=180,
        ),
        FieldSpec(
            "price_value",
            "Price",
            "Price in kopecks (0 for a free application)",
            validation_type="numeric",
            pattern=r"^\d+$",
        ),
        FieldSpec(
            "publish_type",
            "Publish Type",
            "Publication type: MANUAL, INSTANTLY, DELAYED",
            validation_type="enum",
            valid_values=("MANUAL", "INSTANTLY", "DELAYED"),
        ),
    ]
}

MANDATORY_FIELDS: Tuple[str, ...] = tuple(name for name, spec in CATALOGUE.items() if spec.mandatory)

# Content fields always offered by the fallback, never required.
FALLBACK_OPTIONAL_FIELDS: Tuple[str, ...] = ("whats_new",)


def is_known_field(name: str) -> bool:
    return name in CATALOGUE


def display_name(name: str) -> str:
    spec = CATALOGUE.get(name)
    return spec.display_name if spec else name


def make_request(
    name: str,
    *,
    required: bool,
    suggestions: Optional[List[str]] = None,
    description: Optional[str] = None,
) -> DataCollectionRequest:
    """Build a request for a catalogue field with its validation constraints."""
    spec = CATALOGUE.get(name) or FieldSpec(name, name, name)
    return DataCollectionRequest(
        field=name,
        display_name=spec.display_name,
        description=description or spec.description,
        required=required,
        suggestions=list(suggestions or []),
        validation_type=spec.validation_type,
        pattern=spec.pattern,
        max_length=spec.max_length,
        valid_values=list(spec.valid_values),
        max_categories=spec.max_categories,
    )


# ---------- Deterministic suggestions ----------

GAME_KEYWORDS = ["game", "snake", "puzzle", "arcade", "racing", "adventure", "rpg", "strategy"]

DEFAULT_WHATS_NEW = "Bug fixes and performance improvements"


def _project_text(data: Optional[ReleaseData]) -> Tuple[str, str]:
    if data is None or data.project is None:
        return "", ""
    return data.project.repo_name.lower(), data.project.description.lower()


def _looks_like_game(data: Optional[ReleaseData]) -> bool:
    repo, desc = _project_text(data)
    return any(k in repo or k in desc for k in GAME_KEYWORDS)


def _clean_markdown(text: str) -> str:
    return re.sub(r"[#*`]", "", text).strip()


def guess_package_name(data: Optional[ReleaseData]) -> Optional[str]:
    repo, _ = _project_text(data)
    slug = re.sub(r"[^a-z0-9]", "", repo)
    if not slug:
        return None
    if slug[0].isdigit():
        slug = "app" + slug
    return f"com.example.{slug}"


def suggest_app_name(data: Optional[ReleaseData]) -> List[str]:
    out: List[str] = []
    repo, _ = _project_text(data)
    if repo:
        cleaned = repo.replace("snake", "snk").replace("game", "g").replace("app", "")
        cleaned = re.sub(r"[-_\s]", "", cleaned)
        if cleaned:
            out.append(cleaned[:5].title())
    for generic in ("Game", "App", "MyApp"):
        if generic not in out:
            out.append(generic)
    return out


def suggest_categories(data: Optional[ReleaseData]) -> List[str]:
    repo, desc = _project_text(data)
    out: List[str] = []
    if "snake" in repo:
        out.append("arcade,puzzle")
    elif "game" in repo:
        out.append("games,entertainment")
    if "productivity" in desc:
        out.append("productivity,utilities")
    elif "social" in desc:
        out.append("social,communication")
    if not out:
        out = ["utilities,productivity", "entertainment,lifestyle"]
    return out


def suggest_age_rating(data: Optional[ReleaseData]) -> List[str]:
    repo, _ = _project_text(data)
    if "snake" in repo or "puzzle" in repo:
        return ["6+"]
    return ["12+"]


def suggest_short_description(data: Optional[ReleaseData]) -> List[str]:
    out: List[str] = []
    if data is not None and data.project is not None and data.project.description:
        desc = data.project.description.strip()
        out.append(desc if len(desc) <= 80 else desc[:77] + "...")
    out.append("A handy mobile app for everyday use")
    return out


def suggest_full_description(data: Optional[ReleaseData]) -> List[str]:
    out: List[str] = []
    if data is not None and data.project is not None and data.project.readme:
        readme = _clean_markdown(data.project.readme)
        if readme:
            out.append(readme if len(readme) <= 4000 else readme[:3997] + "...")
    out.append("A convenient mobile application with a simple interface and useful features.")
    return out


def suggest_whats_new(data: Optional[ReleaseData]) -> List[str]:
    if data is not None and data.suggested_whats_new:
        return list(data.suggested_whats_new)
    return [DEFAULT_WHATS_NEW]


def suggest_moder_info(data: Optional[ReleaseData]) -> List[str]:
    out: List[str] = []
    if _looks_like_game(data):
        out.append("Game without ads or in-app purchases. Suitable for all ages.")
    out.extend(
        [
            "The app contains no ads or in-app purchases.",
            "Stable build, ready for publication.",
        ]
    )
    return out


def suggest_for(name: str, data: Optional[ReleaseData]) -> List[str]:
    """Deterministic suggestions for one field (empty list for unknown fields)."""
    if name == "package_name":
        guessed = guess_package_name(data)
        base = ["com.example.app", "com.mycompany.game"]
        return [guessed] + base if guessed else base
    if name == "app_name":
        return suggest_app_name(data)
    if name == "app_type":
        return ["GAMES"] if _looks_like_game(data) else ["MAIN"]
    if name == "categories":
        return suggest_categories(data)
    if name == "age_legal":
        return suggest_age_rating(data)
    if name == "short_description":
        return suggest_short_description(data)
    if name == "full_description":
        return suggest_full_description(data)
    if name == "whats_new":
        return suggest_whats_new(data)
    if name == "moder_info":
        return suggest_moder_info(data)
    if name == "price_value":
        return ["0", "9900", "19900"]
    if name == "publish_type":
        return ["MANUAL"]
    return []


def catalogue_summary() -> str:
    """One line per catalogue field, for classifier prompts."""
    lines = []
    for spec in CATALOGUE.values():
        kind = "mandatory" if spec.mandatory else "optional"
        lines.append(f"- {spec.name} ({kind}): {spec.description}")
    return "\n".join(lines)
