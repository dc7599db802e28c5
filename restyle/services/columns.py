"""Mapping between API models and the Supabase table rows.

The tables were created by a spreadsheet import, so the column names carry
slashes, spaces and an emoji. They are kept exactly as stored.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from restyle.schemas.transaction import LineItem, TransactionCreate, TransactionView
from restyle.services.allocation import Allocation, ItemAssignment

ROW_ID = "🔒 Row ID"

# Transactions
BOOKING_ID = "Booking/ID"
PAYMENT_DATE = "Payment/Date"
PAYMENT_METHOD = "Payment/Method"
PAYMENT_SORT = "Payment/Sort"
PAYMENT_STAFF = "Payment/Staff"
PAYMENT_SUBTOTAL = "Payment/Subtotal"
PAYMENT_STATUS = "Payment/Status"
TAX = "Transaction/Tax"
TIP = "Transaction/Tip"
TOTAL_PAID = "Transaction/Total Paid"
PAID = "Transaction/Paid"
SERVICE_LIST = "Service/Joined List"
SERVICE_IDS = "Service/Acuity IDs"
CUSTOMER_PHONE = "Customer/Phone"
CUSTOMER_LOOKUP = "Customer/Lookup"
WALK_IN_CUSTOMER_ID = "Walk-In/Customer ID"
WALK_IN_PHONE = "Walk-In/Phone"

# Transaction Items
ITEM_PAYMENT_ID = "Payment/ID"
ITEM_SERVICE_ID = "Service/ID"
ITEM_SERVICE_NAME = "Service/Name"
ITEM_PRICE = "Service/Price"
ITEM_STAFF_NAME = "Staff/Name"
ITEM_TIP_SPLIT = "Staff/Tip Split"
ITEM_TIP_COLLECTED = "Staff/Tip Collected"

ITEM_COLUMNS = [
    ROW_ID,
    ITEM_PAYMENT_ID,
    ITEM_SERVICE_ID,
    ITEM_SERVICE_NAME,
    ITEM_PRICE,
    ITEM_STAFF_NAME,
    ITEM_TIP_SPLIT,
    ITEM_TIP_COLLECTED,
]

# Bookings
BOOKING_PK = "id"
BOOKING_PAYMENT_STATUS = "payment_status"


def _money(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def transaction_row(transaction: TransactionCreate, record: Allocation) -> Dict[str, Any]:
    return {
        ROW_ID: record.id,
        BOOKING_ID: transaction.booking_id,
        "Booking/Service Lookup": transaction.booking_service_lookup,
        "Booking/Booked Rate": transaction.booking_booked_rate,
        "Booking/Customer Phone": transaction.booking_customer_phone,
        "Booking/Type": transaction.booking_type,
        CUSTOMER_PHONE: transaction.customer_phone,
        CUSTOMER_LOOKUP: transaction.customer_lookup,
        PAYMENT_DATE: transaction.payment_date,
        PAYMENT_METHOD: record.method,
        PAYMENT_SORT: record.sort_index,
        PAYMENT_STAFF: transaction.payment_staff,
        PAYMENT_SUBTOTAL: float(record.subtotal),
        PAYMENT_STATUS: transaction.status or "Paid",
        "Transaction/Services": float(record.subtotal),
        "Transaction/Services Total": float(record.subtotal),
        TAX: float(record.tax),
        TIP: float(record.tip),
        TOTAL_PAID: float(record.total_paid),
        SERVICE_LIST: transaction.service_names_joined,
        SERVICE_IDS: transaction.service_acuity_ids,
        WALK_IN_CUSTOMER_ID: transaction.walk_in_customer_id,
        WALK_IN_PHONE: transaction.walk_in_phone,
        PAID: transaction.transaction_paid or "Yes",
    }


def item_row(item: LineItem, assignment: ItemAssignment) -> Dict[str, Any]:
    return {
        ROW_ID: item.id,
        ITEM_PAYMENT_ID: assignment.record_id,
        "VALUES JOINED 2": item.values_joined_2,
        "STATUS JOINED": item.status_joined,
        ITEM_STAFF_NAME: item.staff_name,
        ITEM_TIP_SPLIT: _money(assignment.staff_tip_split),
        ITEM_TIP_COLLECTED: _money(assignment.staff_tip_collected),
        ITEM_SERVICE_ID: item.service_id,
        ITEM_SERVICE_NAME: item.service_name,
        ITEM_PRICE: item.price,
    }


def item_from_row(row: Mapping[str, Any]) -> LineItem:
    return LineItem(
        id=str(row.get(ROW_ID)),
        payment_id=row.get(ITEM_PAYMENT_ID),
        service_id=row.get(ITEM_SERVICE_ID),
        service_name=row.get(ITEM_SERVICE_NAME),
        price=row.get(ITEM_PRICE) or 0.0,
        staff_name=row.get(ITEM_STAFF_NAME),
        staff_tip_split=row.get(ITEM_TIP_SPLIT),
        staff_tip_collected=row.get(ITEM_TIP_COLLECTED),
    )


def group_items(rows: List[Mapping[str, Any]]) -> Dict[str, List[LineItem]]:
    grouped: Dict[str, List[LineItem]] = {}
    for row in rows:
        payment_id = str(row.get(ITEM_PAYMENT_ID) or "")
        grouped.setdefault(payment_id, []).append(item_from_row(row))
    return grouped


def transaction_view(row: Mapping[str, Any], items: List[LineItem]) -> TransactionView:
    return TransactionView(
        id=str(row.get(ROW_ID)),
        payment_date=row.get(PAYMENT_DATE),
        method=row.get(PAYMENT_METHOD),
        subtotal=row.get(PAYMENT_SUBTOTAL),
        tax=row.get(TAX),
        tip=row.get(TIP),
        total_paid=row.get(TOTAL_PAID),
        services=row.get(SERVICE_LIST),
        service_ids=row.get(SERVICE_IDS),
        booking_id=row.get(BOOKING_ID),
        staff=row.get(PAYMENT_STAFF),
        customer_phone=row.get(CUSTOMER_PHONE),
        customer_lookup=row.get(CUSTOMER_LOOKUP),
        walk_in_customer_id=row.get(WALK_IN_CUSTOMER_ID),
        walk_in_phone=row.get(WALK_IN_PHONE),
        sort_index=row.get(PAYMENT_SORT),
        status=row.get(PAYMENT_STATUS),
        payment_status=row.get(PAYMENT_STATUS),
        paid=row.get(PAID),
        items=items,
    )
