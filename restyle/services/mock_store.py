from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from restyle.clients.supabase import Filter, Order, SelectResult
from restyle.config import get_settings
from restyle.services import columns
from restyle.services.exceptions import DownstreamServiceError


def _parse_datetime(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        parsed = _parse_datetime(value)
        return parsed if parsed is not None else value
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return value


def _ilike(pattern: str) -> re.Pattern[str]:
    regex = "".join(
        ".*" if ch in "%*" else "." if ch == "_" else re.escape(ch) for ch in pattern
    )
    return re.compile(f"^{regex}$", re.IGNORECASE | re.DOTALL)


def _matches(row: Dict[str, Any], condition: Filter) -> bool:
    value = row.get(condition.column)
    if condition.op == "not_null":
        return value is not None
    if condition.op == "eq":
        return value is not None and str(value) == str(condition.value)
    if condition.op == "in":
        return value is not None and str(value) in {str(v) for v in condition.value}
    if condition.op == "ilike":
        return value is not None and bool(_ilike(str(condition.value)).match(str(value)))
    if value is None:
        return False
    left, right = _comparable(value), _comparable(condition.value)
    try:
        if condition.op == "gte":
            return left >= right
        if condition.op == "lt":
            return left < right
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator {condition.op!r}")


def _sort(rows: List[Dict[str, Any]], order: Sequence[Order]) -> List[Dict[str, Any]]:
    # Apply the least significant key first; sorted() is stable.
    for spec in reversed(order):
        nulls_first = spec.nulls_first if spec.nulls_first is not None else not spec.ascending
        present = [r for r in rows if r.get(spec.column) is not None]
        missing = [r for r in rows if r.get(spec.column) is None]
        present.sort(key=lambda r: _comparable(r[spec.column]), reverse=not spec.ascending)
        rows = missing + present if nulls_first else present + missing
    return rows


class TableRepository:
    """In-memory table keyed by a primary key column, queried like PostgREST."""

    def __init__(self, name: str, primary_key: str) -> None:
        self.name = name
        self.primary_key = primary_key
        self._rows: Dict[str, Dict[str, Any]] = {}

    def rows(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._rows.values()]

    def _where(self, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        return [
            row for row in self._rows.values()
            if all(_matches(row, condition) for condition in filters)
        ]

    async def select(
        self,
        *,
        columns: Sequence[str] | None = None,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        limit: int | None = None,
        offset: int | None = None,
        count: bool = False,
    ) -> SelectResult:
        matched = _sort(self._where(filters), order)
        start = offset or 0
        end = start + limit if limit is not None else None
        page = matched[start:end]
        if columns:
            page = [{column: row.get(column) for column in columns} for row in page]
        else:
            page = [dict(row) for row in page]
        return SelectResult(rows=page, count=len(matched) if count else None)

    async def insert(self, rows: Sequence[Dict[str, Any]]) -> None:
        keys = [str(row.get(self.primary_key)) for row in rows]
        duplicates = {key for key in keys if key in self._rows or keys.count(key) > 1}
        if duplicates:
            # Whole batch is rejected, as a single INSERT statement would be.
            raise DownstreamServiceError(
                f'duplicate key value violates unique constraint on "{self.name}"',
                status_code=409,
            )
        for key, row in zip(keys, rows):
            self._rows[key] = dict(row)

    async def update(self, values: Dict[str, Any], filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        updated = []
        for row in self._where(filters):
            row.update(values)
            updated.append(dict(row))
        return updated

    async def delete(self, filters: Sequence[Filter]) -> None:
        for row in self._where(filters):
            self._rows.pop(str(row[self.primary_key]), None)


class BookingRepository(TableRepository):
    def __init__(self, name: str) -> None:
        super().__init__(name, columns.BOOKING_PK)
        self._seed_defaults()

    def _seed_defaults(self) -> None:
        seeds = [
            {
                "id": "BKG-00001",
                "service_name": "Signature Haircut",
                "customer_name_": "Alex Tan",
                "assigned_barber_name": "Jordan",
                "start_time": "2025-09-05T17:00:00+00:00",
                "booking_price": 45.0,
                "payment_status": "pending",
                "appointment_status": "confirmed",
            },
            {
                "id": "BKG-00002",
                "service_name": "Beard Trim",
                "customer_name_": "Jamie Lee",
                "assigned_barber_name": "Casey",
                "start_time": "2025-09-06T11:30:00+00:00",
                "booking_price": 25.0,
                "payment_status": "pending",
                "appointment_status": "confirmed",
            },
        ]
        for record in seeds:
            self._rows[record["id"]] = dict(record)


@dataclass
class MockDataStore:
    """Stand-in for the Supabase project: one repository per table."""

    transactions: TableRepository
    transaction_items: TableRepository
    bookings: BookingRepository

    def _tables(self) -> Dict[str, TableRepository]:
        return {
            repo.name: repo
            for repo in (self.transactions, self.transaction_items, self.bookings)
        }

    def table(self, name: str) -> TableRepository:
        try:
            return self._tables()[name]
        except KeyError:
            raise DownstreamServiceError(
                f'relation "{name}" does not exist', status_code=404
            ) from None

    def iter_tables(self) -> Iterable[TableRepository]:
        return self._tables().values()

    async def select(self, table: str, **kwargs: Any) -> SelectResult:
        return await self.table(table).select(**kwargs)

    async def insert(self, table: str, rows: Sequence[Dict[str, Any]]) -> None:
        await self.table(table).insert(rows)

    async def update(
        self, table: str, values: Dict[str, Any], filters: Sequence[Filter]
    ) -> List[Dict[str, Any]]:
        return await self.table(table).update(values, filters)

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        await self.table(table).delete(filters)


_mock_store: Optional[MockDataStore] = None


def get_mock_store() -> MockDataStore:
    global _mock_store
    if _mock_store is None:
        settings = get_settings()
        _mock_store = MockDataStore(
            transactions=TableRepository(settings.transactions_table, columns.ROW_ID),
            transaction_items=TableRepository(settings.transaction_items_table, columns.ROW_ID),
            bookings=BookingRepository(settings.bookings_table),
        )
    return _mock_store


def reset_mock_store() -> None:
    global _mock_store
    _mock_store = None
