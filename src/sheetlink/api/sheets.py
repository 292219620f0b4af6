"""Sheet snapshot read path — cache first, Smartsheet on a miss.

Learn: This is the fetch path that refills entries the webhook receiver
invalidated. The cache generation is read before the upstream call; if a
webhook invalidates the sheet while we're fetching, the (possibly stale)
response is returned to this caller but not stored.
"""

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from sheetlink.api.deps import get_services
from sheetlink.clients.smartsheet import SheetClientError
from sheetlink.services.container import Services

logger = structlog.get_logger()
router = APIRouter(prefix="/sheets")


@router.get("/{sheet_id}")
async def get_sheet(
    sheet_id: str,
    services: Services = Depends(get_services),
):
    cached = services.cache.get(sheet_id)
    if cached is not None:
        return {"sheetId": sheet_id, "cached": True, "data": cached}

    if services.sheets is None:
        return JSONResponse(
            status_code=503,
            content={"error": "Smartsheet access is not configured"},
        )

    generation = services.cache.generation(sheet_id)
    try:
        data = await services.sheets.get_sheet(sheet_id)
    except SheetClientError as e:
        logger.warning("sheet.fetch_failed", sheet_id=sheet_id, error=str(e))
        return JSONResponse(status_code=502, content={"error": "Failed to fetch sheet"})

    version = data.get("version")
    stored = services.cache.set(
        sheet_id,
        data,
        version=str(version) if version is not None else None,
        generation=generation,
    )
    logger.info("sheet.fetched", sheet_id=sheet_id, cached=stored)
    return {"sheetId": sheet_id, "cached": False, "data": data}
