from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from restyle.dependencies.services import get_transaction_service
from restyle.schemas.transaction import (
    OkResponse,
    SplitPreviewResponse,
    TransactionCreateRequest,
    TransactionCreateResponse,
    TransactionDetailResponse,
    TransactionListResponse,
    TransactionSearchRequest,
    TransactionSearchResponse,
    TransactionUpdate,
)
from restyle.services import TransactionService
from restyle.services.exceptions import ServiceError

router = APIRouter()


@router.post("", response_model=TransactionCreateResponse, response_model_exclude_none=True)
async def create_transaction(
    req: TransactionCreateRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        return await service.create(req)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc


@router.post("/preview", response_model=SplitPreviewResponse)
async def preview_transaction(
    req: TransactionCreateRequest,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        return await service.preview(req)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(50, ge=1),
    appointment_id: Optional[str] = Query(None, alias="appointmentId"),
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        data = await service.list(limit=limit, appointment_id=appointment_id)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc
    return TransactionListResponse(data=data)


@router.delete("", response_model=OkResponse)
async def delete_transaction(
    id: Optional[str] = Query(None),
    service: TransactionService = Depends(get_transaction_service),
):
    if not id:
        raise HTTPException(status_code=400, detail="Missing id")
    try:
        await service.delete(id)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc
    return OkResponse()


# Declared before "/{transaction_id}" so "search" is not taken as an id.
@router.get("/search", response_model=TransactionSearchResponse)
async def search_transactions(
    q: str = Query(""),
    staff: str = Query(""),
    method: str = Query(""),
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    service: TransactionService = Depends(get_transaction_service),
):
    req = TransactionSearchRequest(query=q, staff=staff, method=method, limit=limit, offset=offset)
    try:
        return await service.search(req)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc


@router.get("/{transaction_id}", response_model=TransactionDetailResponse)
async def get_transaction(
    transaction_id: str,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        data = await service.get(transaction_id)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc
    return TransactionDetailResponse(data=data)


@router.put("/{transaction_id}", response_model=OkResponse)
async def update_transaction(
    transaction_id: str,
    req: TransactionUpdate,
    service: TransactionService = Depends(get_transaction_service),
):
    try:
        await service.update(transaction_id, req)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc
    return OkResponse()
