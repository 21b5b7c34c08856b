"""API schemas for screener and alert rule endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

import marketscanner.screener.schemas as screener_schemas


class ScanRequest(BaseModel):
    """Request payload for an on-demand scan or export."""

    criteria: screener_schemas.CriteriaSet = Field(..., description="Criteria set")
    offset: int = Field(default=0, ge=0, description="Pagination offset")


class PresetScanRequest(BaseModel):
    """Request payload for scanning with a preset template."""

    template_id: str = Field(..., description="Template identifier")
    offset: int = Field(default=0, ge=0, description="Pagination offset")


class ScanData(BaseModel):
    """Response payload for a scan."""

    matches: list[screener_schemas.ScanMatch] = Field(
        default_factory=list, description="Ranked matches"
    )
    total_evaluated: int = Field(..., description="Instruments evaluated")
    total_matched: int = Field(..., description="Instruments matched")
    offset: int = Field(default=0, description="Pagination offset")
    limit: int = Field(..., description="Page size")


class PresetScanData(ScanData):
    """Response payload for a preset scan."""

    resolved_template: screener_schemas.ScreenerTemplate = Field(
        ..., description="Template used for the scan"
    )


class TemplateListData(BaseModel):
    templates: list[screener_schemas.ScreenerTemplate] = Field(
        default_factory=list, description="Preset templates"
    )


class ScannerStatusData(BaseModel):
    """Response payload for the status endpoint."""

    is_scanning: bool = Field(..., description="Whether a scan or tick is running")
    last_scan_time: Optional[datetime] = Field(
        default=None, description="Completion time of the latest scan"
    )
    last_tick_time: Optional[datetime] = Field(
        default=None, description="Completion time of the latest alert tick"
    )
    active_alerts: int = Field(..., description="Active alert rules")
    available_templates: int = Field(..., description="Preset templates")
    scheduler_running: bool = Field(..., description="Whether the scheduler loop is running")


class AlertRuleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Rule name")
    criteria: screener_schemas.CriteriaSet = Field(..., description="Rule criteria")
    priority: screener_schemas.AlertPriority = Field(
        default=screener_schemas.AlertPriority.MEDIUM, description="Priority"
    )
    is_active: bool = Field(default=True, description="Schedule immediately")


class AlertRuleUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, description="Rule name")
    is_active: Optional[bool] = Field(default=None, description="Active flag")
    criteria: Optional[screener_schemas.CriteriaSet] = Field(
        default=None, description="Rule criteria"
    )
    priority: Optional[screener_schemas.AlertPriority] = Field(
        default=None, description="Priority"
    )


class AlertRuleListData(BaseModel):
    rules: list[screener_schemas.AlertRuleView] = Field(
        default_factory=list, description="Alert rules with match state"
    )


class AlertRuleHistoryData(BaseModel):
    rule_id: str = Field(..., description="Rule identifier")
    events: list[screener_schemas.TriggerEvent] = Field(
        default_factory=list, description="Recent trigger events, newest first"
    )
