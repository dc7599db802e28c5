from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from restyle.schemas.transaction import CamelModel

T = TypeVar("T")


class KpiQuery(BaseModel):
    filter: str = "today"
    start: Optional[str] = None
    end: Optional[str] = None


class TotalRevenue(CamelModel):
    total_revenue: float
    filter: str
    count: int


class ServiceRevenue(CamelModel):
    service_revenue: float
    filter: str
    count: int


class AverageTicket(CamelModel):
    average_ticket: float
    total_revenue: float
    transaction_count: int
    filter: str


class PaymentMethodRevenue(CamelModel):
    method: str
    total_revenue: float
    transaction_count: int


class RevenueByPaymentMethod(CamelModel):
    payment_methods: List[PaymentMethodRevenue] = Field(default_factory=list)
    filter: str
    total_records: int


class TransactionsCount(CamelModel):
    transactions_count: int
    filter: str


class ActiveStaff(CamelModel):
    active_staff: int
    filter: str
    count: int


class KpiResponse(CamelModel, Generic[T]):
    ok: bool = True
    data: T
