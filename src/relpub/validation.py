# src/relpub/validation.py
"""
Per-field validation of user answers (deterministic, side-effect free).

Order of checks:
1) trim, then required/empty handling
2) max_length
3) type check (numeric, url with a case-sensitive http:// or https:// prefix,
   enum, categories)
4) pattern (full match), applied last and independently of the type check

The same input always produces the same ValidationResult.
"""
from __future__ import annotations

import re
from typing import List

from relpub.models import DataCollectionRequest, ValidationResult

INTEGER_RE = re.compile(r"^[+-]?\d+$")
URL_SCHEMES = ("http://", "https://")


def split_categories(value: str) -> List[str]:
    return [c.strip() for c in value.split(",")]


def _check_type(value: str, req: DataCollectionRequest) -> ValidationResult:
    name = req.display_name

    if req.validation_type == "numeric":
        if not INTEGER_RE.match(value):
            return ValidationResult.fail(f"'{name}' must be a whole number", ["Enter a number, e.g. 0"])

    elif req.validation_type == "url":
        if not value.startswith(URL_SCHEMES):
            return ValidationResult.fail(
                f"'{name}' must be a valid URL",
                ["Start with http:// or https://", "Example: https://example.com/privacy"],
            )

    elif req.validation_type == "enum":
        allowed = {v.upper() for v in req.valid_values}
        if value.upper() not in allowed:
            return ValidationResult.fail(
                f"Invalid value for '{name}'. Allowed values: {', '.join(req.valid_values)}",
                req.valid_values,
            )

    elif req.validation_type == "categories":
        categories = split_categories(value)
        if req.max_categories > 0 and len(categories) > req.max_categories:
            return ValidationResult.fail(
                f"At most {req.max_categories} categories allowed, got {len(categories)}",
                [f"Pick no more than {req.max_categories} comma-separated categories"],
            )
        if any(not c for c in categories):
            return ValidationResult.fail(
                "Categories must not be empty",
                ["Example: games,entertainment or utilities,productivity"],
            )

    return ValidationResult.ok()


def _matches_pattern(pattern: str, value: str) -> bool:
    try:
        return re.fullmatch(pattern, value) is not None
    except re.error:
        # a broken rule can never be satisfied
        return False


def validate(raw_value: str, req: DataCollectionRequest) -> ValidationResult:
    value = (raw_value or "").strip()

    if not value:
        if req.required:
            return ValidationResult.fail(f"Field '{req.display_name}' is required")
        return ValidationResult.ok()

    if req.max_length > 0 and len(value) > req.max_length:
        return ValidationResult.fail(
            f"Field '{req.display_name}' exceeds the maximum length of {req.max_length} "
            f"characters (current: {len(value)})",
            [f"Shorten the text to {req.max_length} characters"],
        )

    result = _check_type(value, req)
    if not result.valid:
        return result

    if req.pattern and not _matches_pattern(req.pattern, value):
        return ValidationResult.fail(
            f"'{req.display_name}' does not match the required format",
            req.suggestions,
        )

    return ValidationResult.ok()
