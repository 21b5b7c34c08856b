"""Pydantic schemas for the market screener and alert engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_LIMIT


class FieldCategory(str, Enum):
    """Attribute family a filter field belongs to."""

    PRICE = "price"
    VOLUME = "volume"
    MARKET_CAP = "market_cap"
    TECHNICAL = "technical"
    FUNDAMENTAL = "fundamental"
    PATTERN = "pattern"


class FilterOperator(str, Enum):
    """Closed set of comparison operators."""

    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    EQUALS = "EQUALS"
    BETWEEN = "BETWEEN"
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    CROSSES_ABOVE = "CROSSES_ABOVE"
    CROSSES_BELOW = "CROSSES_BELOW"


class LogicalJoin(str, Enum):
    AND = "AND"
    OR = "OR"


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class AlertPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FilterCondition(BaseModel):
    """A single predicate over one snapshot field."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Filter identifier")
    field_category: FieldCategory = Field(..., description="Field category")
    field_name: str = Field(..., description="Snapshot field name")
    operator: FilterOperator = Field(..., description="Comparison operator")
    value: Optional[Union[float, str]] = Field(
        default=None, description="Threshold, or lower bound for BETWEEN"
    )
    value2: Optional[Union[float, str]] = Field(
        default=None, description="Upper bound for BETWEEN"
    )
    logical_join: Optional[LogicalJoin] = Field(
        default=None,
        description="How this filter combines with the preceding result",
    )


class CriteriaSet(BaseModel):
    """Ordered filters plus sort and limit directives."""

    model_config = ConfigDict(frozen=True)

    filters: list[FilterCondition] = Field(
        default_factory=list, description="Filters, evaluated left to right"
    )
    sort_by: Optional[str] = Field(default=None, description="Ranking field")
    sort_order: SortOrder = Field(default=SortOrder.DESC, description="Sort order")
    limit: int = Field(default=DEFAULT_LIMIT, description="Maximum matches")


class InstrumentSnapshot(BaseModel):
    """Latest attribute values for one instrument, linked to the prior snapshot."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    symbol: str = Field(..., description="Ticker symbol")
    timestamp: datetime = Field(..., description="Snapshot timestamp")
    fields: dict[str, float] = Field(
        default_factory=dict, description="Numeric attributes by name"
    )
    previous: Optional["InstrumentSnapshot"] = Field(
        default=None, description="Immediately preceding snapshot"
    )

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ScanMatch(BaseModel):
    """An instrument that satisfied the criteria during one scan."""

    symbol: str = Field(..., description="Ticker symbol")
    matched_at: datetime = Field(..., description="Match timestamp")
    snapshot: InstrumentSnapshot = Field(..., description="Evaluated snapshot")
    ranking: dict[str, Optional[float]] = Field(
        default_factory=dict, description="Field values used for ordering"
    )


class ScanResult(BaseModel):
    """Ranked, paginated result of a scan."""

    matches: list[ScanMatch] = Field(default_factory=list, description="Matches")
    total_evaluated: int = Field(..., description="Instruments evaluated")
    total_matched: int = Field(..., description="Instruments matched")
    offset: int = Field(default=0, description="Pagination offset")
    limit: int = Field(..., description="Page size")


class ScreenerTemplate(BaseModel):
    """Read-only named criteria template."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Template identifier")
    name: str = Field(..., description="Template name")
    description: str = Field(default="", description="Template description")
    category: str = Field(default="General", description="Template category")
    criteria: CriteriaSet = Field(..., description="Template criteria")


class AlertRule(BaseModel):
    """Persistent named criteria with scheduling and notification semantics."""

    id: str = Field(..., description="Rule identifier")
    name: str = Field(..., description="Rule name")
    criteria: CriteriaSet = Field(..., description="Rule criteria")
    is_active: bool = Field(default=True, description="Whether the rule is scheduled")
    priority: AlertPriority = Field(
        default=AlertPriority.MEDIUM, description="Notification priority"
    )
    created_at: datetime = Field(..., description="Creation time")
    updated_at: datetime = Field(..., description="Last update time")


class TriggerEvent(BaseModel):
    """Symbols that newly matched a rule on one tick."""

    rule_id: str = Field(..., description="Rule identifier")
    triggered_at: datetime = Field(..., description="Trigger time")
    symbols: list[str] = Field(..., description="Newly matching symbols")
    priority: AlertPriority = Field(..., description="Rule priority")


class AlertRuleView(BaseModel):
    """Alert rule with its match state embedded."""

    id: str = Field(..., description="Rule identifier")
    name: str = Field(..., description="Rule name")
    criteria: CriteriaSet = Field(..., description="Rule criteria")
    priority: AlertPriority = Field(..., description="Notification priority")
    is_active: bool = Field(..., description="Whether the rule is scheduled")
    created_at: datetime = Field(..., description="Creation time")
    match_count: int = Field(default=0, description="Trigger count today")
    last_triggered: Optional[datetime] = Field(
        default=None, description="Last trigger time"
    )
    current_matches: list[str] = Field(
        default_factory=list, description="Symbols matching on the last tick"
    )
    status: Literal["IDLE", "EVALUATING"] = Field(
        default="IDLE", description="Evaluation status"
    )
    last_error: Optional[str] = Field(
        default=None, description="Last evaluation error"
    )
