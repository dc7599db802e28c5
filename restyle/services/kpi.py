"""Dashboard KPIs over the transactions table, windowed by business-local days."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from restyle.clients.supabase import Filter, SupabaseClient
from restyle.config import Settings, get_settings
from restyle.schemas.kpi import (
    ActiveStaff,
    AverageTicket,
    KpiQuery,
    PaymentMethodRevenue,
    RevenueByPaymentMethod,
    ServiceRevenue,
    TotalRevenue,
    TransactionsCount,
)
from restyle.services import columns
from restyle.services.allocation import ZERO, round2, to_decimal
from restyle.services.exceptions import NotFoundError, ValidationError
from restyle.services.mock_store import MockDataStore, get_mock_store

logger = logging.getLogger(__name__)

TODAY = "today"
LAST_7_DAYS = "last7days"
ALL_TIME = "alltime"

UNKNOWN_METHOD = "Unknown"


@dataclass(frozen=True)
class DateWindow:
    """Half-open ``[start, end)`` range of payment dates, in UTC."""

    start: datetime
    end: datetime

    def filters(self) -> List[Filter]:
        return [
            Filter.not_null(columns.PAYMENT_DATE),
            Filter.gte(columns.PAYMENT_DATE, self.start.isoformat()),
            Filter.lt(columns.PAYMENT_DATE, self.end.isoformat()),
        ]


def _parse_bound(value: str, tz: ZoneInfo) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value}", cause=exc) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(timezone.utc)


def _local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def resolve_window(
    query: KpiQuery,
    *,
    tz: ZoneInfo,
    now: Optional[datetime] = None,
) -> Optional[DateWindow]:
    """Turn a dashboard filter into a date window. ``None`` means no window.

    An explicit ``start``/``end`` pair wins over the filter name. Unknown
    filter names behave like ``today``.
    """

    if query.start and query.end:
        window = DateWindow(_parse_bound(query.start, tz), _parse_bound(query.end, tz))
        if window.end < window.start:
            raise ValidationError("start must not be after end")
        return window

    if query.filter == ALL_TIME:
        return None

    today = (now or datetime.now(tz)).astimezone(tz).date()
    end = _local_midnight(today + timedelta(days=1), tz)
    if query.filter == LAST_7_DAYS:
        return DateWindow(_local_midnight(today - timedelta(days=6), tz), end)
    return DateWindow(_local_midnight(today, tz), end)


def _sum(rows: Sequence[Dict[str, Any]], column: str) -> Decimal:
    return round2(sum((to_decimal(row.get(column) or 0) for row in rows), ZERO))


class KpiService:
    """Dashboard metrics computed over the Transactions table."""

    def __init__(
        self,
        client: SupabaseClient,
        *,
        store: MockDataStore | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._store: SupabaseClient | MockDataStore = store or client
        if self._client.use_mock_data:
            self._store = store or get_mock_store()
        self._clock = clock
        self._metrics: Dict[str, Callable[[KpiQuery], Any]] = {
            "total-revenue": self.total_revenue,
            "service-revenue": self.service_revenue,
            "average-ticket": self.average_ticket,
            "revenue-by-payment-method": self.revenue_by_payment_method,
            "transactions-count": self.transactions_count,
            "active-staff": self.active_staff,
        }

    @property
    def metrics(self) -> List[str]:
        return list(self._metrics)

    async def compute(self, metric: str, query: KpiQuery) -> BaseModel:
        handler = self._metrics.get(metric)
        if handler is None:
            raise NotFoundError(f"Unknown metric: {metric}")
        return await handler(query)

    def _window(self, query: KpiQuery) -> Optional[DateWindow]:
        tz = ZoneInfo(self._settings.business_timezone)
        now = self._clock() if self._clock else None
        return resolve_window(query, tz=tz, now=now)

    async def _rows(self, query: KpiQuery, *select: str) -> List[Dict[str, Any]]:
        window = self._window(query)
        filters = window.filters() if window else []
        if self._client.use_mock_data:
            await self._client.simulate_latency()
        result = await self._store.select(
            self._settings.transactions_table,
            columns=[columns.PAYMENT_DATE, *select],
            filters=filters,
        )
        logger.debug("KPI filter=%s window=%s rows=%d", query.filter, window, len(result.rows))
        return result.rows

    async def total_revenue(self, query: KpiQuery) -> TotalRevenue:
        rows = await self._rows(query, columns.TOTAL_PAID)
        return TotalRevenue(
            total_revenue=float(_sum(rows, columns.TOTAL_PAID)),
            filter=query.filter,
            count=len(rows),
        )

    async def service_revenue(self, query: KpiQuery) -> ServiceRevenue:
        rows = await self._rows(query, columns.PAYMENT_SUBTOTAL)
        return ServiceRevenue(
            service_revenue=float(_sum(rows, columns.PAYMENT_SUBTOTAL)),
            filter=query.filter,
            count=len(rows),
        )

    async def average_ticket(self, query: KpiQuery) -> AverageTicket:
        rows = await self._rows(query, columns.TOTAL_PAID)
        revenue = _sum(rows, columns.TOTAL_PAID)
        average = round2(revenue / len(rows)) if rows else ZERO
        return AverageTicket(
            average_ticket=float(average),
            total_revenue=float(revenue),
            transaction_count=len(rows),
            filter=query.filter,
        )

    async def revenue_by_payment_method(self, query: KpiQuery) -> RevenueByPaymentMethod:
        rows = await self._rows(query, columns.PAYMENT_METHOD, columns.TOTAL_PAID)
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            grouped.setdefault(row.get(columns.PAYMENT_METHOD) or UNKNOWN_METHOD, []).append(row)

        methods = [
            PaymentMethodRevenue(
                method=method,
                total_revenue=float(_sum(group, columns.TOTAL_PAID)),
                transaction_count=len(group),
            )
            for method, group in grouped.items()
        ]
        methods.sort(key=lambda entry: entry.total_revenue, reverse=True)
        return RevenueByPaymentMethod(
            payment_methods=methods, filter=query.filter, total_records=len(rows)
        )

    async def transactions_count(self, query: KpiQuery) -> TransactionsCount:
        window = self._window(query)
        result = await self._store.select(
            self._settings.transactions_table,
            columns=[columns.PAYMENT_DATE],
            filters=window.filters() if window else [],
            limit=1,
            count=True,
        )
        return TransactionsCount(transactions_count=result.count or 0, filter=query.filter)

    async def active_staff(self, query: KpiQuery) -> ActiveStaff:
        rows = await self._rows(query, columns.PAYMENT_STAFF)
        names = {
            name.strip()
            for row in rows
            for name in str(row.get(columns.PAYMENT_STAFF) or "").split(",")
            if name.strip()
        }
        return ActiveStaff(active_staff=len(names), filter=query.filter, count=len(rows))
