"""Deal analysis models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from cortex.models.summary import CamelModel


class AnalysisType(str, Enum):
    """Kinds of deal analysis the assistant can write."""

    INTERVIEW_OUTLINE = "interview_outline"
    INVESTMENT_HIGHLIGHTS = "investment_highlights"
    IC_MEMO = "ic_memo"
    INDUSTRY_MAPPING = "industry_mapping"
    NOTES_SUMMARY = "notes_summary"
    DEFAULT = "default"

    @classmethod
    def parse(cls, value: str | None) -> "AnalysisType":
        """Unknown or missing values fall back to ``DEFAULT``."""
        try:
            return cls(value)
        except ValueError:
            return cls.DEFAULT


class DealAnalysisRequest(CamelModel):
    """Body of ``POST /deals/{deal_id}/analysis``."""

    analysis_type: str = AnalysisType.DEFAULT.value
    input_data: dict[str, Any] = Field(default_factory=dict)


# (column, label) pairs rendered into the prompt, in order
DEAL_FIELDS: tuple[tuple[str, str], ...] = (
    ("description", "Description"),
    ("sector", "Sector"),
    ("status", "Status"),
    ("hq_location", "HQ Location"),
    ("funding_round", "Funding Round"),
    ("funding_amount", "Funding Amount"),
    ("valuation_terms", "Valuation/Terms"),
    ("bu_category", "BU Category"),
    ("source", "Source"),
    ("leads", "Leads"),
    ("followers", "Followers"),
    ("key_contacts", "Key Contacts"),
    ("pre_investors", "Pre-Investors"),
    ("financials", "Financials"),
    ("benchmark_companies", "Benchmark Companies"),
    ("feedback_notes", "Feedback Notes"),
    ("deal_date", "Deal Date"),
)


class Deal(BaseModel):
    """The subset of a ``deals`` row used for analysis."""

    id: str
    project_name: str
    folder_link: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Deal":
        return cls(
            id=row["id"],
            project_name=row.get("project_name") or "",
            folder_link=row.get("folder_link"),
            fields={column: row.get(column) for column, _ in DEAL_FIELDS},
        )

    @property
    def sector(self) -> str:
        return self.fields.get("sector") or ""

    def describe(self) -> str:
        """Render the deal as labelled lines, ``N/A`` for empty fields."""
        lines = [f"Project Name: {self.project_name}"]
        for column, label in DEAL_FIELDS:
            value = self.fields.get(column)
            lines.append(f"{label}: {value if value else 'N/A'}")
        return "\n".join(lines)


class DealMetadata(CamelModel):
    """Meta frame sent before the analysis text."""

    notion_connected: bool = False
    web_connected: bool = False
    web_citations: list[str] = Field(default_factory=list)
    deal_name: str = ""
