"""Checkout persistence around the allocator.

A checkout becomes one or more rows in the transactions table plus one row per
line item. All records of a split sale share the checkout id as a prefix.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from restyle.clients.supabase import Filter, Order, SupabaseClient
from restyle.config import Settings, get_settings
from restyle.schemas.transaction import (
    LineItem,
    SplitPreviewRecord,
    SplitPreviewResponse,
    TransactionCreateRequest,
    TransactionCreateResponse,
    TransactionSearchRequest,
    TransactionSearchResponse,
    TransactionUpdate,
    TransactionView,
)
from restyle.services import columns
from restyle.services.allocation import AllocationResult, SaleTotals, allocate
from restyle.services.exceptions import (
    NotFoundError,
    PersistenceError,
    ServiceError,
    ValidationError,
)
from restyle.services.mock_store import MockDataStore, get_mock_store

logger = logging.getLogger(__name__)

PAID = "paid"
UNPAID = "pending"

_UPDATE_COLUMNS = {
    "method": columns.PAYMENT_METHOD,
    "total_paid": columns.TOTAL_PAID,
    "subtotal": columns.PAYMENT_SUBTOTAL,
    "tax": columns.TAX,
    "tip": columns.TIP,
}


class TransactionService:
    """Checkout persistence: split a sale into records, store them, read them back."""

    def __init__(
        self,
        client: SupabaseClient,
        *,
        store: MockDataStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._store: SupabaseClient | MockDataStore = store or client
        if self._client.use_mock_data:
            self._store = store or get_mock_store()

    @property
    def _transactions(self) -> str:
        return self._settings.transactions_table

    @property
    def _items(self) -> str:
        return self._settings.transaction_items_table

    def _allocate(self, request: TransactionCreateRequest) -> AllocationResult:
        tx = request.transaction
        return allocate(
            tx.id,
            SaleTotals.of(tx.subtotal, tx.tax, tx.tip, tx.total_paid),
            request.items,
            method=tx.method,
            is_split_payment=tx.is_split_payment,
            split_payments=tx.split_payments,
            is_service_split=tx.is_service_split,
            service_splits=tx.service_splits,
            tolerance=Decimal(str(self._settings.split_tolerance)),
        )

    async def preview(self, request: TransactionCreateRequest) -> SplitPreviewResponse:
        """Run the allocation without writing anything."""

        result = self._allocate(request)
        items = _apply_assignments(request.items, result)
        records = [
            SplitPreviewRecord(
                id=record.id,
                method=record.method,
                sort_index=record.sort_index,
                subtotal=float(record.subtotal),
                tax=float(record.tax),
                tip=float(record.tip),
                total_paid=float(record.total_paid),
                item_ids=result.items_for(record.id),
            )
            for record in result.records
        ]
        return SplitPreviewResponse(records=records, items=items)

    async def create(self, request: TransactionCreateRequest) -> TransactionCreateResponse:
        tx = request.transaction
        logger.info("Recording checkout %s with %d items", tx.id, len(request.items))
        result = self._allocate(request)

        items_by_id = {item.id: item for item in request.items}
        tx_rows = [columns.transaction_row(tx, record) for record in result.records]
        item_rows = [
            columns.item_row(items_by_id[assignment.item_id], assignment)
            for assignment in result.assignments
        ]

        if self._client.use_mock_data:
            await self._client.simulate_latency()

        try:
            await self._write_checkout(tx_rows, item_rows, result.record_ids)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while recording checkout %s", tx.id)
            raise ServiceError("Failed to create transaction", cause=exc)

        if result.is_split:
            logger.info("Checkout %s split into %s", tx.id, ", ".join(result.record_ids))
            return TransactionCreateResponse(id=tx.id, splits=result.record_ids)
        return TransactionCreateResponse(id=tx.id)

    async def _write_checkout(
        self,
        tx_rows: List[Dict[str, Any]],
        item_rows: List[Dict[str, Any]],
        record_ids: List[str],
    ) -> None:
        # Transactions first, then items. The two inserts are separate requests.
        try:
            await self._store.insert(self._transactions, tx_rows)
        except ServiceError as exc:
            raise PersistenceError(str(exc), cause=exc) from exc

        if not item_rows:
            return

        try:
            await self._store.insert(self._items, item_rows)
        except ServiceError as exc:
            logger.error(
                "Item insert failed after transactions %s were written: %s", record_ids, exc
            )
            if self._settings.rollback_partial_checkout:
                await self._remove_transactions(record_ids)
            raise PersistenceError(str(exc), cause=exc) from exc

    async def _remove_transactions(self, record_ids: List[str]) -> None:
        try:
            await self._store.delete(self._transactions, [Filter.in_(columns.ROW_ID, record_ids)])
            logger.info("Removed transactions %s after failed item insert", record_ids)
        except ServiceError:
            logger.exception("Could not remove transactions %s; they remain without items", record_ids)

    async def _fetch_items(self, transaction_ids: Sequence[str], *, strict: bool = True) -> Dict[str, List[LineItem]]:
        rows: List[Dict[str, Any]] = []
        chunk_size = max(1, self._settings.item_fetch_chunk_size)
        for start in range(0, len(transaction_ids), chunk_size):
            chunk = transaction_ids[start:start + chunk_size]
            try:
                result = await self._store.select(
                    self._items,
                    columns=columns.ITEM_COLUMNS,
                    filters=[Filter.in_(columns.ITEM_PAYMENT_ID, chunk)],
                    order=[Order(columns.ITEM_PAYMENT_ID)],
                )
            except ServiceError:
                if strict:
                    raise
                # Listings still render without their items.
                logger.exception("Error fetching transaction items")
                break
            rows.extend(result.rows)
        return columns.group_items(rows)

    async def _views(self, rows: List[Dict[str, Any]]) -> List[TransactionView]:
        ids = [str(row.get(columns.ROW_ID)) for row in rows]
        items = await self._fetch_items(ids, strict=False) if ids else {}
        return [columns.transaction_view(row, items.get(row_id, [])) for row, row_id in zip(rows, ids)]

    async def list(self, *, limit: int | None = None, appointment_id: str | None = None) -> List[TransactionView]:
        limit = limit if limit is not None else self._settings.default_list_limit
        logger.debug("Listing transactions limit=%s appointment=%s", limit, appointment_id)
        filters = [Filter.eq(columns.BOOKING_ID, appointment_id)] if appointment_id else []
        result = await self._store.select(self._transactions, filters=filters, limit=limit)
        return await self._views(result.rows)

    async def get(self, transaction_id: str) -> TransactionView:
        result = await self._store.select(
            self._transactions,
            filters=[Filter.eq(columns.ROW_ID, transaction_id)],
            limit=1,
        )
        if not result.rows:
            logger.info("Transaction %s not found", transaction_id)
            raise NotFoundError("Not found")
        items = await self._fetch_items([transaction_id])
        return columns.transaction_view(result.rows[0], items.get(transaction_id, []))

    async def update(self, transaction_id: str, update: TransactionUpdate) -> None:
        values = {
            column: getattr(update, field)
            for field, column in _UPDATE_COLUMNS.items()
            if field in update.model_fields_set
        }
        if not values:
            raise ValidationError("No fields to update")
        await self._store.update(
            self._transactions, values, [Filter.eq(columns.ROW_ID, transaction_id)]
        )

    async def _find(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        result = await self._store.select(
            self._transactions,
            columns=[columns.ROW_ID, columns.BOOKING_ID, columns.PAYMENT_SORT],
            filters=[Filter.eq(columns.ROW_ID, transaction_id)],
            limit=1,
        )
        return result.rows[0] if result.rows else None

    async def _sale_record_ids(self, row: Dict[str, Any]) -> List[str]:
        """Ids of every record produced by the same checkout as ``row``.

        Records of a split sale are ``<id>``, ``<id>-2`` ... ``<id>-N`` with
        ``Payment/Sort`` 1..N, so a suffix only counts when the sort index
        agrees with it.
        """

        record = str(row[columns.ROW_ID])
        base = record
        sort_index = _sort_index(row)
        head, _, tail = record.rpartition("-")
        if sort_index and sort_index > 1 and head and tail == str(sort_index):
            first = await self._find(head)
            if first is not None and _sort_index(first) == 1:
                base = head

        siblings = await self._store.select(
            self._transactions,
            columns=[columns.ROW_ID, columns.PAYMENT_SORT],
            filters=[Filter.ilike(columns.ROW_ID, f"{base}-*")],
        )
        ids = [base]
        for sibling in siblings.rows:
            sibling_id = str(sibling.get(columns.ROW_ID))
            index = _sort_index(sibling)
            if index and index > 1 and sibling_id == f"{base}-{index}":
                ids.append(sibling_id)
        return ids

    async def delete(self, transaction_id: str) -> None:
        """Delete every record of a sale with their items, then release its booking.

        ``transaction_id`` may name any record of a split sale. The booking goes
        back to unpaid only when no other transaction still references it.
        """

        logger.info("Deleting transaction %s", transaction_id)
        row = await self._find(transaction_id)
        record_ids = await self._sale_record_ids(row) if row else [transaction_id]
        booking_id = row.get(columns.BOOKING_ID) if row else None
        if len(record_ids) > 1:
            logger.info("Deleting split sale records %s", record_ids)

        try:
            await self._store.delete(self._items, [Filter.in_(columns.ITEM_PAYMENT_ID, record_ids)])
        except ServiceError as exc:
            raise PersistenceError(f"Failed to delete transaction items: {exc}", cause=exc) from exc
        try:
            await self._store.delete(self._transactions, [Filter.in_(columns.ROW_ID, record_ids)])
        except ServiceError as exc:
            raise PersistenceError(str(exc), cause=exc) from exc

        if booking_id:
            await self._release_booking(str(booking_id))

    async def _release_booking(self, booking_id: str) -> None:
        remaining = await self._store.select(
            self._transactions,
            columns=[columns.ROW_ID],
            filters=[Filter.eq(columns.BOOKING_ID, booking_id)],
            limit=1,
        )
        if remaining.rows:
            logger.info("Booking %s still has transactions; payment status kept", booking_id)
            return

        table = self._settings.bookings_table
        pk = [Filter.eq(columns.BOOKING_PK, booking_id)]
        result = await self._store.select(
            table, columns=[columns.BOOKING_PK, columns.BOOKING_PAYMENT_STATUS], filters=pk, limit=1
        )
        if not result.rows:
            return
        status = str(result.rows[0].get(columns.BOOKING_PAYMENT_STATUS) or "")
        if status.lower() != PAID:
            return
        await self._store.update(table, {columns.BOOKING_PAYMENT_STATUS: UNPAID}, pk)
        logger.info("Booking %s payment status reset to %s", booking_id, UNPAID)

    async def search(self, request: TransactionSearchRequest) -> TransactionSearchResponse:
        query, staff, method = request.query.strip(), request.staff.strip(), request.method.strip()
        if not (query or staff or method):
            raise ValidationError("At least one filter (query, staff, or method) is required")

        filters = []
        if query:
            filters.append(Filter.ilike(columns.SERVICE_LIST, f"%{query}%"))
        if staff:
            filters.append(Filter.ilike(columns.PAYMENT_STAFF, f"%{staff}%"))
        if method:
            filters.append(Filter.ilike(columns.PAYMENT_METHOD, f"%{method}%"))

        result = await self._store.select(
            self._transactions,
            filters=filters,
            order=[
                Order(columns.PAYMENT_DATE, ascending=False, nulls_first=False),
                Order(columns.ROW_ID, ascending=False),
            ],
            limit=request.limit,
            offset=request.offset,
            count=True,
        )
        views = await self._views(result.rows)
        return TransactionSearchResponse(data=views, total=result.count or 0, query=request.query)


def _apply_assignments(items: Sequence[LineItem], result: AllocationResult) -> List[LineItem]:
    by_id = {assignment.item_id: assignment for assignment in result.assignments}
    applied = []
    for item in items:
        assignment = by_id[item.id]
        applied.append(
            item.model_copy(
                update={
                    "payment_id": assignment.record_id,
                    "staff_tip_split": _optional_float(assignment.staff_tip_split),
                    "staff_tip_collected": _optional_float(assignment.staff_tip_collected),
                }
            )
        )
    return applied


def _optional_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _sort_index(row: Dict[str, Any]) -> Optional[int]:
    try:
        return int(row.get(columns.PAYMENT_SORT))
    except (TypeError, ValueError):
        return None
