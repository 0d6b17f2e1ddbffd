"""
Data models for BOM power and thermal analysis.

Wire format (what the model sends and receives) is camelCase; Python
attributes are snake_case. Records are immutable: every change produces
a new record so result-set snapshots can be shared safely.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# A spreadsheet row keyed by header. Empty cells are "" (never absent).
RawRow = Dict[str, Union[str, int, float]]

MISC_FAMILY = "Miscellaneous Parts"

# Search-engine redirect/query URLs are never shown as datasheet links.
FORBIDDEN_URL_PATTERNS = (
    "google.com/search",
    "google.com/url",
    "bing.com/search",
    "bing.com/ck",
)


class MetricSource(str, Enum):
    """How a metric value was derived."""
    DATASHEET = "Datasheet"
    ESTIMATION = "Estimation"
    FORMULA = "Formula"


class ConfidenceLevel(str, Enum):
    """Model's confidence in an item's figures."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class AnalysisStatus(str, Enum):
    """Session workflow states."""
    IDLE = "IDLE"
    PARSING = "PARSING"
    ANALYZING = "ANALYZING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


def is_trusted_url(url: Optional[str]) -> bool:
    """True for a direct http(s) link that is not a search-engine URL."""
    if not url:
        return False
    lowered = url.strip().lower()
    if not lowered.startswith(("http://", "https://")):
        return False
    return not any(pattern in lowered for pattern in FORBIDDEN_URL_PATTERNS)


# =============================================================================
# Record Schema
# =============================================================================

class AnalysisRecord(BaseModel):
    """One analyzed BOM line item. Metrics are per unit."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, protected_namespaces=())

    part_number: str = Field(default="", alias="partNumber")
    description: str = ""
    model_family: str = Field(default="", alias="modelFamily")
    quantity: int = Field(default=1, ge=1)
    category: str = ""

    typical_power_watts: float = Field(default=0.0, ge=0.0, alias="typicalPowerWatts")
    typical_source: MetricSource = Field(default=MetricSource.ESTIMATION, alias="typicalSource")
    typical_power_citation: Optional[str] = Field(default=None, alias="typicalPowerCitation")

    max_power_watts: float = Field(default=0.0, ge=0.0, alias="maxPowerWatts")
    max_source: MetricSource = Field(default=MetricSource.ESTIMATION, alias="maxSource")
    max_power_citation: Optional[str] = Field(default=None, alias="maxPowerCitation")

    heat_dissipation_btu: float = Field(default=0.0, ge=0.0, alias="heatDissipationBTU")
    heat_source: MetricSource = Field(default=MetricSource.FORMULA, alias="heatSource")

    methodology: str = ""
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")
    source_title: Optional[str] = Field(default=None, alias="sourceTitle")
    matched_model_snippet: Optional[str] = Field(default=None, alias="matchedModelSnippet")
    confidence: ConfidenceLevel = ConfidenceLevel.LOW
    notes: str = ""

    is_ignored: bool = Field(default=False, alias="isIgnored")

    @property
    def trusted_source_url(self) -> Optional[str]:
        """Source URL if it passes the search-engine filter, else None."""
        if is_trusted_url(self.source_url):
            return self.source_url.strip()
        return None

    @property
    def total_typical_watts(self) -> float:
        return self.typical_power_watts * self.quantity

    @property
    def total_max_watts(self) -> float:
        return self.max_power_watts * self.quantity

    @property
    def total_btu(self) -> float:
        return self.heat_dissipation_btu * self.quantity

    def to_wire(self, include_ignored: bool = False) -> Dict[str, Any]:
        """camelCase dict as exchanged with the model."""
        exclude = None if include_ignored else {"is_ignored"}
        return self.model_dump(by_alias=True, mode="json", exclude=exclude)


class IndexedRecord(BaseModel):
    """A record together with its stable position in the result set."""
    original_index: int = Field(ge=0)
    record: AnalysisRecord


# =============================================================================
# Aggregation views
# =============================================================================

class GroupedFamily(BaseModel):
    """Records sharing a model family, with totals over non-ignored members."""
    model_config = ConfigDict(protected_namespaces=())

    model_family: str
    category: str = ""
    total_typical_watts: float = 0.0
    total_max_watts: float = 0.0
    total_btu: float = 0.0
    items: List[IndexedRecord] = Field(default_factory=list)

    @property
    def active_count(self) -> int:
        return sum(1 for item in self.items if not item.record.is_ignored)


class CategoryBreakdown(BaseModel):
    """Max power (W, quantity-weighted) attributed to one category."""
    name: str
    value: float


class ProjectSummary(BaseModel):
    """Whole-BOM totals over non-ignored records."""
    total_typical_kw: float = 0.0
    total_max_kw: float = 0.0
    total_btu: float = 0.0
    total_components: int = 0
    highest_consumer: Optional[IndexedRecord] = None
    breakdown_by_category: List[CategoryBreakdown] = Field(default_factory=list)


class BudgetReport(BaseModel):
    """Summary plus grouped families, derived from one result-set snapshot."""
    summary: ProjectSummary
    groups: List[GroupedFamily] = Field(default_factory=list)


class AnalysisMetadata(BaseModel):
    """Metadata about an analysis run."""
    llm_model: str
    batch_count: int = 0
    item_count: int = 0
    processing_time_seconds: float = 0.0
    generated_at: datetime
    generator_version: str
