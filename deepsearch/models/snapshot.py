"""Durable, append-only record of one research run.

A ``ResearchSnapshot`` is never mutated: every pipeline step derives the next
snapshot with ``with_search`` / ``with_analysis`` / ``completed`` and the
orchestrator persists that value before emitting the matching frame. Any
snapshot read back from the store is therefore a consistent prefix of the
full run.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

from deepsearch.tools import web_utils


RecordStatus = Literal["running", "completed", "failed"]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LinkRecord(BaseModel):
    model_config = {"frozen": True}

    title: str
    url: str
    relevance: float = 0.0
    domain: str = ""
    found_at: str = ""


class SearchLinkRecord(BaseModel):
    model_config = {"frozen": True}

    step: int
    query: str
    priority: int
    links: tuple[LinkRecord, ...] = ()
    status: RecordStatus = "completed"
    result_count: int = 0
    error: str | None = None
    started_at: str = ""

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def step_data(self, preview_count: int) -> dict[str, Any]:
        """Payload carried by this search's ``step_complete`` frame."""
        data: dict[str, Any] = {
            "query": self.query,
            "resultCount": self.result_count,
            "sources": [
                {"title": link.title, "url": link.url} for link in self.links[:preview_count]
            ],
        }
        if self.error:
            data["error"] = self.error
        return data


class KeySourceRecord(BaseModel):
    model_config = {"frozen": True}

    title: str
    url: str
    relevance: float = 0.0


class AnalysisLinkRecord(BaseModel):
    model_config = {"frozen": True}

    step: int
    type: str
    description: str
    key_sources: tuple[KeySourceRecord, ...] = ()
    findings_count: int = 0
    insights: tuple[str, ...] = ()
    status: RecordStatus = "completed"
    error: str | None = None
    started_at: str = ""

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def step_data(self, preview_count: int) -> dict[str, Any]:
        """Payload carried by this analysis's ``step_complete`` frame."""
        data: dict[str, Any] = {
            "type": self.type,
            "findingsCount": self.findings_count,
            "insights": list(self.insights),
            "keyLinks": [
                source.model_dump(mode="json") for source in self.key_sources[:preview_count]
            ],
        }
        if self.error:
            data["error"] = self.error
        return data


class ReportSource(BaseModel):
    """One entry of the final, numbered citation list."""

    model_config = {"frozen": True}

    title: str
    url: str
    relevance: float | None = None


class ResearchSnapshot(BaseModel):
    model_config = {"frozen": True}

    plan_id: str = Field(default_factory=lambda: str(uuid4()))
    created_at: str = Field(default_factory=utc_now)
    searches: tuple[SearchLinkRecord, ...] = ()
    analyses: tuple[AnalysisLinkRecord, ...] = ()
    total_links: int = 0
    unique_domains: tuple[str, ...] = ()
    completion_rate: int = Field(default=0, ge=0, le=100)
    report_started_at: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.searches and not self.analyses

    def _rate(self, completion_rate: int) -> int:
        # Never decreases.
        return max(self.completion_rate, min(int(completion_rate), 100))

    def with_search(self, record: SearchLinkRecord, *, completion_rate: int) -> "ResearchSnapshot":
        domains = list(self.unique_domains)
        for link in record.links:
            domain = link.domain or web_utils.extract_domain(link.url)
            if domain and domain not in domains:
                domains.append(domain)
        return self.model_copy(
            update={
                "searches": self.searches + (record,),
                "total_links": self.total_links + len(record.links),
                "unique_domains": tuple(domains),
                "completion_rate": self._rate(completion_rate),
            }
        )

    def with_analysis(
        self, record: AnalysisLinkRecord, *, completion_rate: int
    ) -> "ResearchSnapshot":
        return self.model_copy(
            update={
                "analyses": self.analyses + (record,),
                "completion_rate": self._rate(completion_rate),
            }
        )

    def with_report_started(self, started_at: str) -> "ResearchSnapshot":
        return self.model_copy(update={"report_started_at": started_at})

    def completed(self) -> "ResearchSnapshot":
        return self.model_copy(update={"completion_rate": 100})

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, raw: dict[str, Any]) -> "ResearchSnapshot":
        return cls.model_validate(raw)
