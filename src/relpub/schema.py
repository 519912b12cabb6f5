# src/relpub/schema.py
"""
LLM output contract (schema).

Purpose:
- Define the machine-validated shape of every classifier reply used by the
  requirement and error-recovery analyzers.
- Anything that does not conform is rejected before it can create questions
  for the user (the caller then falls back to deterministic rules).

Design principles:
- Explicit fields with permissive defaults for prose-only keys
  (analysis, reason), strict types for the keys that drive control flow
  (field, priority).
- Validation via Pydantic before any downstream use.
"""
from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, Field, field_validator

Priority = Literal["high", "medium", "low"]


def _lower(value):
    return value.strip().lower() if isinstance(value, str) else value


# One field the classifier wants to ask the user about.
class RequiredField(BaseModel):
    field: str = Field(..., min_length=1, description="Catalogue key of the store field.")
    reason: str = Field("", description="Why the field has to be asked.")
    priority: Priority = Field("medium", description="high = the field is required.")
    suggestions: List[str] = Field(default_factory=list, description="Candidate values.")

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, value):
        return _lower(value)


class FieldAnalysis(BaseModel):
    analysis: str = Field("", description="Short summary of the situation.")
    required_fields: List[RequiredField] = Field(..., description="Fields to request, most important first.")


# A field the classifier wants corrected after a failed publish.
class CorrectionField(BaseModel):
    field: str = Field(..., min_length=1)
    reason: str = ""
    current_issue: str = Field("", description="What is wrong with the current value.")
    suggestions: List[str] = Field(default_factory=list)


class ErrorAnalysis(BaseModel):
    error_analysis: str = ""
    retry_strategy: str = ""
    required_fields: List[CorrectionField] = Field(...)
