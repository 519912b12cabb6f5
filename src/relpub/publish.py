# src/relpub/publish.py
"""
Publish orchestration.

Purpose:
- Merge the user's validated answers onto the upstream release snapshot and
  produce the store payload (StorePayload).
- Hand the payload to a StorePublisher. Errors from the publisher are not
  inspected here: they propagate unchanged to the session state machine,
  whose recovery path interprets them.
- Publishers that can also find an existing listing (ListingLookup) let the
  session prefill identity fields before anything is asked.

Merge rules:
- collected values always win over AI-suggested defaults
- categories: comma separated -> list
- price_value: integer, silently dropped when unparsable (optional field)
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from relpub import fields
from relpub.errors import CollaboratorError, PublishError
from relpub.models import SessionContext
from relpub.validation import split_categories

logger = logging.getLogger(__name__)


class StorePayload(BaseModel):
    # Mandatory identity / category / rating fields
    package_name: str
    app_name: str
    app_type: str
    categories: List[str]
    age_legal: str

    # Optional descriptive fields
    short_description: Optional[str] = None
    full_description: Optional[str] = None
    whats_new: Optional[str] = None
    moder_info: Optional[str] = None

    # Optional commercial / publication fields
    price_value: Optional[int] = None
    publish_type: Optional[str] = None

    # Release identity from the upstream source
    version: Optional[str] = None
    asset_name: Optional[str] = None
    asset_type: Optional[str] = None
    key_changes: List[str] = Field(default_factory=list)


class StorePublisher(Protocol):
    def publish(self, payload: StorePayload) -> None:
        ...


class StoreListing(BaseModel):
    """What the store already holds for an application (identity fields only)."""

    package_name: str
    app_name: str = ""
    app_type: str = ""
    categories: List[str] = Field(default_factory=list)
    age_legal: str = ""


@runtime_checkable
class ListingLookup(Protocol):
    """Optional publisher capability: find the existing listing for a package."""

    def lookup(self, package_name: str) -> Optional[StoreListing]:
        ...


def missing_mandatory_fields(collected: Dict[str, str]) -> List[str]:
    return [name for name in fields.MANDATORY_FIELDS if name not in collected]


def _optional(collected: Dict[str, str], name: str) -> Optional[str]:
    value = (collected.get(name) or "").strip()
    return value or None


def _parse_price(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring unparsable price_value: %r", raw)
        return None


def build_payload(ctx: SessionContext) -> StorePayload:
    collected = ctx.collected_responses
    missing = missing_mandatory_fields(collected)
    if missing:
        raise PublishError(f"Not all mandatory fields collected: {', '.join(missing)}", step="build_payload")

    data = ctx.release_data
    whats_new = _optional(collected, "whats_new")
    if whats_new is None and data is not None and data.suggested_whats_new:
        whats_new = data.suggested_whats_new[0]

    publish_type = _optional(collected, "publish_type")

    return StorePayload(
        package_name=collected["package_name"].strip(),
        app_name=collected["app_name"].strip(),
        app_type=collected["app_type"].strip().upper(),
        categories=[c for c in split_categories(collected["categories"]) if c],
        age_legal=collected["age_legal"].strip(),
        short_description=_optional(collected, "short_description"),
        full_description=_optional(collected, "full_description"),
        whats_new=whats_new,
        moder_info=_optional(collected, "moder_info"),
        price_value=_parse_price(_optional(collected, "price_value")),
        publish_type=publish_type.upper() if publish_type else None,
        version=data.release.tag_name if data is not None and data.release is not None else None,
        asset_name=data.asset.name if data is not None and data.asset is not None else None,
        asset_type=data.asset.asset_type if data is not None and data.asset is not None else None,
        key_changes=list(data.key_changes) if data is not None else [],
    )


def publish_release(ctx: SessionContext, publisher: StorePublisher) -> StorePayload:
    payload = build_payload(ctx)
    logger.info(
        "Publishing %s (%s) version=%s for session %s",
        payload.package_name,
        payload.app_name,
        payload.version,
        ctx.session_id,
    )
    publisher.publish(payload)
    return payload


class JsonFilePublisher:
    """
    Dry-run store: persists the payload as a readable, diff-friendly JSON file
    under <output_dir>/<package_name>/<version>.json.
    """

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def path_for(self, payload: StorePayload) -> Path:
        version = payload.version or "unversioned"
        safe_version = "".join(ch if ch.isalnum() or ch in "._-" else "_" for ch in version)
        return self.output_dir / payload.package_name / f"{safe_version}.json"

    def publish(self, payload: StorePayload) -> None:
        path = self.path_for(payload)
        document = {
            "metadata": {"published_at": datetime.now(timezone.utc).isoformat()},
            "payload": payload.model_dump(),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise PublishError(f"Failed to write payload to {path}: {e}") from e
        logger.info("Payload written to %s", path)

    def lookup(self, package_name: str) -> Optional[StoreListing]:
        """Listing from the newest payload previously written for this package."""
        package_dir = self.output_dir / package_name
        if not package_dir.is_dir():
            return None
        documents = sorted(package_dir.glob("*.json"), key=lambda p: p.stat().st_mtime)
        if not documents:
            return None
        path = documents[-1]
        try:
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)
            return StoreListing.model_validate(document["payload"])
        except (OSError, ValueError, KeyError, TypeError, ValidationError) as e:
            raise CollaboratorError(f"Unreadable store listing {path}: {e}") from e
