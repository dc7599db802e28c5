from fastapi import APIRouter, Depends, HTTPException

from restyle.dependencies.services import get_transaction_item_service
from restyle.schemas.transaction import OkResponse, TransactionItemUpdate
from restyle.services import TransactionItemService
from restyle.services.exceptions import ServiceError

router = APIRouter()


@router.put("/{item_id}", response_model=OkResponse)
async def update_transaction_item(
    item_id: str,
    req: TransactionItemUpdate,
    service: TransactionItemService = Depends(get_transaction_item_service),
):
    try:
        await service.update(item_id, req)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=str(exc)) from exc
    return OkResponse()
