from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for payloads exchanged with the admin front end (camelCase keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class LineItem(CamelModel):
    id: str
    payment_id: Optional[str] = None
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    price: float = 0.0
    staff_name: Optional[str] = None
    staff_tip_split: Optional[float] = None      # derived, overwritten on checkout
    staff_tip_collected: Optional[float] = None  # derived, overwritten on checkout
    values_joined_2: Optional[str] = None
    status_joined: Optional[str] = None


class SplitPayment(CamelModel):
    method: str
    amount: float
    percentage: Optional[float] = None


class ServiceSplit(CamelModel):
    service_id: str
    payment_method: str
    service_name: Optional[str] = None
    service_price: Optional[float] = None
    staff_names: List[str] = Field(default_factory=list)


class TransactionCreate(CamelModel):
    id: str
    subtotal: float
    tax: float
    tip: float
    total_paid: float
    method: Optional[str] = None
    payment_date: Optional[str] = None

    is_split_payment: bool = False
    split_payments: List[SplitPayment] = Field(default_factory=list)
    is_service_split: bool = False
    service_splits: List[ServiceSplit] = Field(default_factory=list)
    split_count: Optional[int] = None

    # Sale metadata copied onto every generated record
    booking_id: Optional[str] = None
    booking_service_lookup: Optional[str] = None
    booking_booked_rate: Optional[float] = None
    booking_customer_phone: Optional[str] = None
    booking_type: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_lookup: Optional[str] = None
    payment_staff: Optional[str] = None
    status: Optional[str] = None
    transaction_services: Optional[float] = None
    transaction_services_total: Optional[float] = None
    service_names_joined: Optional[str] = None
    service_acuity_ids: Optional[str] = None
    walk_in_customer_id: Optional[str] = None
    walk_in_phone: Optional[str] = None
    transaction_paid: Optional[str] = None
    guest_customer_name: Optional[str] = None
    guest_customer_phone: Optional[str] = None
    is_guest_checkout: bool = False


class TransactionCreateRequest(CamelModel):
    transaction: TransactionCreate
    items: List[LineItem]
    meta: Optional[Dict[str, Any]] = None


class TransactionCreateResponse(CamelModel):
    ok: bool = True
    id: str
    splits: Optional[List[str]] = None


class TransactionView(CamelModel):
    id: str
    payment_date: Optional[str] = None
    method: Optional[str] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    tip: Optional[float] = None
    total_paid: Optional[float] = None
    services: Optional[str] = None
    service_ids: Optional[str] = None
    booking_id: Optional[str] = None
    staff: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_lookup: Optional[str] = None
    walk_in_customer_id: Optional[str] = None
    walk_in_phone: Optional[str] = None
    sort_index: Optional[int] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    paid: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)


class TransactionListResponse(CamelModel):
    ok: bool = True
    data: List[TransactionView]


class TransactionDetailResponse(CamelModel):
    ok: bool = True
    data: TransactionView


class TransactionSearchRequest(CamelModel):
    query: str = ""
    staff: str = ""
    method: str = ""
    limit: int = 50
    offset: int = 0


class TransactionSearchResponse(CamelModel):
    ok: bool = True
    data: List[TransactionView]
    total: int
    query: str


class TransactionUpdate(CamelModel):
    method: Optional[str] = None
    total_paid: Optional[float] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    tip: Optional[float] = None


class TransactionItemUpdate(CamelModel):
    service_name: Optional[str] = None
    price: Optional[float] = None
    staff_name: Optional[str] = None
    staff_tip_collected: Optional[float] = None


class OkResponse(CamelModel):
    ok: bool = True


class SplitPreviewRecord(CamelModel):
    id: str
    method: str
    sort_index: int
    subtotal: float
    tax: float
    tip: float
    total_paid: float
    item_ids: List[str] = Field(default_factory=list)


class SplitPreviewResponse(CamelModel):
    ok: bool = True
    records: List[SplitPreviewRecord]
    items: List[LineItem]
