from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from restyle.dependencies.services import get_kpi_service
from restyle.schemas.kpi import KpiQuery, KpiResponse
from restyle.services import KpiService
from restyle.services.exceptions import ServiceError

router = APIRouter()


@router.get("/{metric}")
async def get_kpi(
    metric: str,
    filter: str = Query("today"),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    service: KpiService = Depends(get_kpi_service),
):
    query = KpiQuery(filter=filter or "today", start=start, end=end)
    try:
        data = await service.compute(metric, query)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc
    return KpiResponse[type(data)](data=data).model_dump(by_alias=True)
