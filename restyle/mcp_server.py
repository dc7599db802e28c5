# MCP tool surface over the checkout allocator and dashboard metrics.
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from mcp.server.fastmcp import FastMCP, Context

from restyle.dependencies.services import get_supabase_client_cached
from restyle.schemas.kpi import KpiQuery
from restyle.schemas.transaction import (
    LineItem,
    ServiceSplit,
    SplitPayment,
    SplitPreviewResponse,
    TransactionCreate,
    TransactionCreateRequest,
)
from restyle.services import KpiService, TransactionService

log = logging.getLogger("restyle.mcp")

mcp = FastMCP("restyle_mcp")


# --------------------------
# Tool I/O models
# --------------------------
class SplitPreviewInput(BaseModel):
    id: str = Field(..., description="Checkout id, e.g. 'TX-1001'")
    subtotal: float
    tax: float = 0.0
    tip: float = 0.0
    total_paid: float
    method: Optional[str] = Field(None, description="Payment method used when the sale is not split")
    split_payments: List[SplitPayment] = Field(default_factory=list)
    service_splits: List[ServiceSplit] = Field(default_factory=list)
    items: List[LineItem] = Field(default_factory=list)


class KpiSummaryInput(BaseModel):
    filter: str = Field("today", description="today, last7days or alltime")
    start: Optional[str] = Field(None, description="ISO date/time start (inclusive)")
    end: Optional[str] = Field(None, description="ISO date/time end (exclusive)")


class KpiSummaryOutput(BaseModel):
    filter: str
    metrics: Dict[str, Any]


# --------------------------
# Tools
# --------------------------
@mcp.tool(
    name="transactions_split_preview",
    description="Show how a checkout would be split into transaction records, without saving it",
)
async def transactions_split_preview(input: SplitPreviewInput, ctx: Context) -> SplitPreviewResponse:
    log.debug("transactions_split_preview input=%s", input.model_dump())
    request = TransactionCreateRequest(
        transaction=TransactionCreate(
            id=input.id,
            subtotal=input.subtotal,
            tax=input.tax,
            tip=input.tip,
            total_paid=input.total_paid,
            method=input.method,
            is_split_payment=bool(input.split_payments),
            split_payments=input.split_payments,
            is_service_split=bool(input.service_splits) and not input.split_payments,
            service_splits=input.service_splits,
        ),
        items=input.items,
    )
    service = TransactionService(get_supabase_client_cached())
    out = await service.preview(request)
    log.debug("transactions_split_preview output=%s", out.model_dump())
    return out


@mcp.tool(name="kpi_summary", description="Dashboard revenue, ticket and staff metrics for a date filter")
async def kpi_summary(input: KpiSummaryInput, ctx: Context) -> KpiSummaryOutput:
    log.debug("kpi_summary input=%s", input.model_dump())
    service = KpiService(get_supabase_client_cached())
    query = KpiQuery(filter=input.filter, start=input.start, end=input.end)
    metrics = {}
    for metric in service.metrics:
        result = await service.compute(metric, query)
        metrics[metric] = result.model_dump(by_alias=True)
    return KpiSummaryOutput(filter=input.filter, metrics=metrics)


@mcp.tool(name="ping", description="Health check")
async def ping(message: str) -> str:
    log.debug("ping %s", message)
    return f"pong: {message}"
