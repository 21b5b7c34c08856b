"""Market screener API router."""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, HTTPException, Path, Query
from fastapi.responses import Response

from marketscanner.screener.errors import InvalidCriteria, TemplateNotFound
from marketscanner.server.api.schemas.base import SuccessResponse
from marketscanner.server.api.schemas.screener import (
    PresetScanData,
    PresetScanRequest,
    ScanData,
    ScannerStatusData,
    ScanRequest,
    TemplateListData,
)
from marketscanner.server.services.screener_service import (
    ScreenerService,
    get_screener_service,
)
from marketscanner.screener.schemas import ScreenerTemplate


def create_screener_router(
    get_service: Callable[[], ScreenerService] = get_screener_service,
) -> APIRouter:
    """Create screener router."""
    router = APIRouter(
        prefix="/screener",
        tags=["screener"],
        responses={404: {"description": "Not found"}},
    )

    async def _preset_scan(template_id: str, offset: int) -> PresetScanData:
        try:
            result, template = await get_service().scan_with_preset(
                template_id, offset=offset
            )
        except TemplateNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except InvalidCriteria as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return PresetScanData(**result.model_dump(), resolved_template=template)

    @router.post(
        "/scan",
        response_model=SuccessResponse[ScanData],
        summary="Scan the market",
        description="Evaluate criteria against the current universe and rank matches.",
    )
    async def scan_market(request: ScanRequest) -> SuccessResponse[ScanData]:
        try:
            result = await get_service().scan(request.criteria, offset=request.offset)
        except InvalidCriteria as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return SuccessResponse.create(
            data=ScanData(**result.model_dump()),
            msg=f"Found {result.total_matched} matches",
        )

    @router.post(
        "/scan/preset",
        response_model=SuccessResponse[PresetScanData],
        summary="Scan with a preset template",
        description="Resolve a preset template and scan with its criteria.",
    )
    async def scan_with_preset(
        request: PresetScanRequest,
    ) -> SuccessResponse[PresetScanData]:
        data = await _preset_scan(request.template_id, request.offset)
        return SuccessResponse.create(data=data)

    @router.get(
        "/scan/preset/{template_id}",
        response_model=SuccessResponse[PresetScanData],
        summary="Scan with a preset template",
        description="Resolve a preset template and scan with its criteria.",
    )
    async def scan_with_preset_by_path(
        template_id: str = Path(..., description="Template identifier"),
        offset: int = Query(0, ge=0, description="Pagination offset"),
    ) -> SuccessResponse[PresetScanData]:
        data = await _preset_scan(template_id, offset)
        return SuccessResponse.create(data=data)

    @router.get(
        "/templates",
        response_model=SuccessResponse[TemplateListData],
        summary="List preset templates",
        description="Get the read-only screener template catalog.",
    )
    async def list_templates(
        category: Optional[str] = Query(None, description="Filter by category"),
    ) -> SuccessResponse[TemplateListData]:
        templates = get_service().list_templates(category)
        return SuccessResponse.create(data=TemplateListData(templates=templates))

    @router.get(
        "/templates/{template_id}",
        response_model=SuccessResponse[ScreenerTemplate],
        summary="Get a preset template",
        description="Get one screener template by identifier.",
    )
    async def get_template(
        template_id: str = Path(..., description="Template identifier"),
    ) -> SuccessResponse[ScreenerTemplate]:
        template = get_service().get_template(template_id)
        if not template:
            raise HTTPException(status_code=404, detail="Template not found")
        return SuccessResponse.create(data=template)

    @router.post(
        "/export",
        summary="Export scan results",
        description="Run the scan without the page limit and return CSV.",
        response_class=Response,
        responses={200: {"content": {"text/csv": {}}}},
    )
    async def export_results(request: ScanRequest) -> Response:
        try:
            csv_content = await get_service().export_csv(request.criteria)
        except InvalidCriteria as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return Response(
            content=csv_content,
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="scan_results.csv"'},
        )

    @router.get(
        "/status",
        response_model=SuccessResponse[ScannerStatusData],
        summary="Scanner status",
        description="Scanning flag, last scan time and catalog/alert counts.",
    )
    async def get_status() -> SuccessResponse[ScannerStatusData]:
        return SuccessResponse.create(data=ScannerStatusData(**get_service().status()))

    return router
