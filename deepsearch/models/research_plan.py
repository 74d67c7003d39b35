from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


PLAN_SEARCH_COUNT = 5
PLAN_ANALYSIS_COUNT = 5


class SearchSpec(BaseModel):
    """One planned web search. Priority 1 is the most important."""

    model_config = {"frozen": True}

    priority: int = Field(ge=1, le=5)
    query: str
    type: Literal["web"] = "web"


class AnalysisSpec(BaseModel):
    """One planned analysis over the accumulated search corpus."""

    model_config = {"frozen": True}

    type: str
    description: str
    priority: int = Field(ge=1, le=5)


class ResearchPlan(BaseModel):
    """Structured plan produced once by the planning step, read-only thereafter."""

    model_config = {"frozen": True}

    searches: tuple[SearchSpec, ...] = Field(
        min_length=PLAN_SEARCH_COUNT, max_length=PLAN_SEARCH_COUNT
    )
    analyses: tuple[AnalysisSpec, ...] = Field(
        min_length=PLAN_ANALYSIS_COUNT, max_length=PLAN_ANALYSIS_COUNT
    )


# --- Analysis output schema ---


class SourceLink(BaseModel):
    title: str
    url: str


class Finding(BaseModel):
    insight: str
    evidence: list[str] = []
    confidence: float = Field(ge=0, le=1)
    source_links: list[SourceLink] = []


class KeySource(BaseModel):
    title: str
    url: str
    relevance: float = Field(ge=0, le=1)


class AnalysisResult(BaseModel):
    """Schema the model must satisfy for every analysis step."""

    findings: list[Finding] = []
    implications: list[str] = []
    limitations: list[str] = []
    key_sources: list[KeySource] = []
