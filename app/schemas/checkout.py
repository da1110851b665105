# app/schemas/checkout.py
"""
Pydantic schemas for the checkout API.

Request bodies only; responses are the domain objects' to_dict() output.
Uses snake_case to match existing API conventions.
"""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from pricing.models import CitationFormat, LanguageLevel, ProjectParams, VerifyLevel


class ProjectParamsSchema(BaseModel):
    """Quote inputs for a project."""
    word_count: int = Field(ge=0)
    verify_level: VerifyLevel = VerifyLevel.STANDARD
    addons: List[str] = Field(default_factory=list)
    level: LanguageLevel = LanguageLevel.UG
    citation_format: CitationFormat = CitationFormat.APA
    resources: int = Field(default=1, ge=0)
    has_style_samples: bool = False
    allow_preprint: bool = True

    def to_params(self) -> ProjectParams:
        return ProjectParams(
            word_count=self.word_count,
            verify_level=self.verify_level,
            addons=frozenset(self.addons),
            level=self.level,
            citation_format=self.citation_format,
            resources=self.resources,
            has_style_samples=self.has_style_samples,
            allow_preprint=self.allow_preprint,
        )


class VerifyLevelRequest(BaseModel):
    verify_level: VerifyLevel


class AddonToggleRequest(BaseModel):
    on: bool


class LockRequest(BaseModel):
    """Set force to replace a still-valid lock with a fresh one."""
    force: bool = False
