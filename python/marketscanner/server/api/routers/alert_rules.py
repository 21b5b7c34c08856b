"""Alert rule API router."""

from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, HTTPException, Path

from marketscanner.screener.errors import AlertRuleNotFound, InvalidCriteria
from marketscanner.screener.schemas import AlertRule
from marketscanner.server.api.schemas.base import SuccessResponse
from marketscanner.server.api.schemas.screener import (
    AlertRuleCreateRequest,
    AlertRuleHistoryData,
    AlertRuleListData,
    AlertRuleUpdateRequest,
)
from marketscanner.server.services.screener_service import (
    ScreenerService,
    get_screener_service,
)


def create_alert_rules_router(
    get_service: Callable[[], ScreenerService] = get_screener_service,
) -> APIRouter:
    """Create alert rules router."""
    router = APIRouter(
        prefix="/alert-rules",
        tags=["alert-rules"],
        responses={404: {"description": "Not found"}},
    )

    @router.post(
        "",
        response_model=SuccessResponse[AlertRule],
        summary="Create an alert rule",
        description="Validate criteria and schedule a new alert rule.",
    )
    async def create_alert_rule(
        request: AlertRuleCreateRequest,
    ) -> SuccessResponse[AlertRule]:
        try:
            rule = get_service().create_alert_rule(
                request.name, request.criteria, request.priority, request.is_active
            )
        except InvalidCriteria as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return SuccessResponse.create(data=rule, msg="Alert rule created")

    @router.get(
        "",
        response_model=SuccessResponse[AlertRuleListData],
        summary="List alert rules",
        description="Get alert rules with match counts and last trigger time.",
    )
    async def list_alert_rules() -> SuccessResponse[AlertRuleListData]:
        rules = get_service().list_alert_rules()
        return SuccessResponse.create(data=AlertRuleListData(rules=rules))

    @router.patch(
        "/{rule_id}",
        response_model=SuccessResponse[AlertRule],
        summary="Update an alert rule",
        description="Change activation, criteria, priority or name.",
    )
    async def update_alert_rule(
        request: AlertRuleUpdateRequest,
        rule_id: str = Path(..., description="Rule identifier"),
    ) -> SuccessResponse[AlertRule]:
        try:
            rule = get_service().update_alert_rule(
                rule_id,
                name=request.name,
                is_active=request.is_active,
                criteria=request.criteria,
                priority=request.priority,
            )
        except AlertRuleNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except InvalidCriteria as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return SuccessResponse.create(data=rule, msg="Alert rule updated")

    @router.delete(
        "/{rule_id}",
        response_model=SuccessResponse[AlertRule],
        summary="Delete an alert rule",
        description="Delete an alert rule and its match state.",
    )
    async def delete_alert_rule(
        rule_id: str = Path(..., description="Rule identifier"),
    ) -> SuccessResponse[AlertRule]:
        try:
            rule = get_service().delete_alert_rule(rule_id)
        except AlertRuleNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return SuccessResponse.create(data=rule, msg="Alert rule deleted")

    @router.get(
        "/{rule_id}/history",
        response_model=SuccessResponse[AlertRuleHistoryData],
        summary="Alert rule trigger history",
        description="Get recent trigger events for a rule, newest first.",
    )
    async def get_alert_history(
        rule_id: str = Path(..., description="Rule identifier"),
    ) -> SuccessResponse[AlertRuleHistoryData]:
        try:
            events = get_service().get_alert_history(rule_id)
        except AlertRuleNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return SuccessResponse.create(
            data=AlertRuleHistoryData(rule_id=rule_id, events=events)
        )

    return router
