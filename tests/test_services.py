import asyncio
from datetime import datetime, timezone

import pytest

from restyle.config import Settings
from restyle.schemas.kpi import KpiQuery
from restyle.schemas.transaction import (
    LineItem,
    ServiceSplit,
    SplitPayment,
    TransactionCreate,
    TransactionCreateRequest,
    TransactionItemUpdate,
    TransactionSearchRequest,
    TransactionUpdate,
)
from restyle.services import columns
from restyle.services.exceptions import NotFoundError, PersistenceError, ValidationError
from restyle.services.kpi import KpiService
from restyle.services.mock_store import get_mock_store
from restyle.services.transaction_items import TransactionItemService
from restyle.services.transactions import TransactionService


class MockLatencyClient:
    """Client stub that records simulate_latency calls."""

    def __init__(self) -> None:
        self.use_mock_data = True
        self.latency_called = False

    async def simulate_latency(self) -> None:
        self.latency_called = True


def _checkout(checkout_id="TX-1001", *, booking_id=None, **overrides) -> TransactionCreateRequest:
    transaction = dict(
        id=checkout_id,
        subtotal=100.0,
        tax=12.0,
        tip=18.0,
        total_paid=130.0,
        method="Card",
        payment_date="2025-09-10T15:00:00+00:00",
        booking_id=booking_id,
        payment_staff="Jordan, Casey",
        service_names_joined="Signature Haircut, Beard Trim",
    )
    transaction.update(overrides)
    return TransactionCreateRequest(
        transaction=TransactionCreate(**transaction),
        items=[
            LineItem(id=f"{checkout_id}-I1", service_id="S1", service_name="Signature Haircut", price=60, staff_name="Jordan"),
            LineItem(id=f"{checkout_id}-I2", service_id="S2", service_name="Beard Trim", price=40, staff_name="Casey"),
        ],
    )


def _split_checkout(checkout_id="TX-1001") -> TransactionCreateRequest:
    return _checkout(
        checkout_id,
        is_split_payment=True,
        split_payments=[SplitPayment(method="card", amount=80), SplitPayment(method="cash", amount=50)],
    )


def test_create_single_record_persists_transaction_and_items() -> None:
    client = MockLatencyClient()
    service = TransactionService(client)

    response = asyncio.run(service.create(_checkout()))

    assert response.ok is True
    assert response.id == "TX-1001"
    assert response.splits is None
    assert client.latency_called is True

    store = get_mock_store()
    rows = store.transactions.rows()
    assert len(rows) == 1
    assert rows[0][columns.PAYMENT_METHOD] == "card"
    assert rows[0][columns.PAYMENT_SORT] == 1
    assert rows[0][columns.PAYMENT_STATUS] == "Paid"
    assert rows[0][columns.TOTAL_PAID] == pytest.approx(130.0)

    items = {row[columns.ROW_ID]: row for row in store.transaction_items.rows()}
    assert set(items) == {"TX-1001-I1", "TX-1001-I2"}
    assert items["TX-1001-I1"][columns.ITEM_PAYMENT_ID] == "TX-1001"
    assert items["TX-1001-I1"][columns.ITEM_TIP_COLLECTED] == pytest.approx(10.8)
    assert items["TX-1001-I2"][columns.ITEM_TIP_SPLIT] == pytest.approx(40.0)


def test_create_split_payment_returns_generated_ids() -> None:
    service = TransactionService(MockLatencyClient())

    response = asyncio.run(service.create(_split_checkout()))

    assert response.splits == ["TX-1001", "TX-1001-2"]
    store = get_mock_store()
    rows = {row[columns.ROW_ID]: row for row in store.transactions.rows()}
    assert rows["TX-1001"][columns.TOTAL_PAID] == pytest.approx(80.0)
    assert rows["TX-1001-2"][columns.TOTAL_PAID] == pytest.approx(50.0)
    assert rows["TX-1001-2"][columns.PAYMENT_SUBTOTAL] == pytest.approx(38.46)
    assert rows["TX-1001-2"][columns.PAYMENT_SORT] == 2
    assert {row[columns.ITEM_PAYMENT_ID] for row in store.transaction_items.rows()} == {"TX-1001"}


def test_create_without_items_writes_only_transactions() -> None:
    service = TransactionService(MockLatencyClient())
    request = _checkout()
    request.items = []

    asyncio.run(service.create(request))

    store = get_mock_store()
    assert len(store.transactions.rows()) == 1
    assert store.transaction_items.rows() == []


def test_invalid_split_writes_nothing() -> None:
    service = TransactionService(MockLatencyClient())
    request = _checkout(
        is_split_payment=True,
        split_payments=[SplitPayment(method="card", amount=80), SplitPayment(method="cash", amount=10)],
    )

    with pytest.raises(ValidationError):
        asyncio.run(service.create(request))

    assert get_mock_store().transactions.rows() == []


def test_duplicate_transaction_id_is_a_persistence_error() -> None:
    service = TransactionService(MockLatencyClient())
    asyncio.run(service.create(_checkout()))

    with pytest.raises(PersistenceError):
        asyncio.run(service.create(_checkout()))


def _seed_conflicting_item(item_id: str) -> None:
    store = get_mock_store()
    asyncio.run(store.transaction_items.insert([{columns.ROW_ID: item_id, columns.ITEM_PAYMENT_ID: "OLD"}]))


def test_item_failure_removes_inserted_transactions() -> None:
    _seed_conflicting_item("TX-1001-I2")
    service = TransactionService(MockLatencyClient())

    with pytest.raises(PersistenceError):
        asyncio.run(service.create(_split_checkout()))

    assert get_mock_store().transactions.rows() == []


def test_item_failure_without_rollback_leaves_transactions() -> None:
    _seed_conflicting_item("TX-1001-I2")
    settings = Settings(rollback_partial_checkout=False)
    service = TransactionService(MockLatencyClient(), settings=settings)

    with pytest.raises(PersistenceError):
        asyncio.run(service.create(_split_checkout()))

    ids = sorted(row[columns.ROW_ID] for row in get_mock_store().transactions.rows())
    assert ids == ["TX-1001", "TX-1001-2"]


def test_preview_does_not_write() -> None:
    service = TransactionService(MockLatencyClient())
    request = _checkout(
        is_service_split=True,
        service_splits=[
            ServiceSplit(service_id="S1", payment_method="card"),
            ServiceSplit(service_id="S2", payment_method="gift"),
        ],
    )

    preview = asyncio.run(service.preview(request))

    assert [record.id for record in preview.records] == ["TX-1001", "TX-1001-2"]
    assert [record.method for record in preview.records] == ["card", "gift"]
    assert preview.records[1].item_ids == ["TX-1001-I2"]
    assert preview.items[1].payment_id == "TX-1001-2"
    assert preview.items[0].staff_tip_collected == pytest.approx(10.8)
    assert get_mock_store().transactions.rows() == []


def test_get_returns_transaction_with_items() -> None:
    service = TransactionService(MockLatencyClient())
    asyncio.run(service.create(_checkout()))

    view = asyncio.run(service.get("TX-1001"))

    assert view.id == "TX-1001"
    assert view.method == "card"
    assert view.total_paid == pytest.approx(130.0)
    assert sorted(item.id for item in view.items) == ["TX-1001-I1", "TX-1001-I2"]


def test_get_missing_transaction_raises_not_found() -> None:
    service = TransactionService(MockLatencyClient())

    with pytest.raises(NotFoundError):
        asyncio.run(service.get("missing"))


def test_list_filters_by_appointment_and_fetches_items_in_chunks() -> None:
    settings = Settings(item_fetch_chunk_size=1)
    service = TransactionService(MockLatencyClient(), settings=settings)
    asyncio.run(service.create(_checkout("TX-1", booking_id="BKG-00001")))
    asyncio.run(service.create(_checkout("TX-2", booking_id="BKG-00002")))
    asyncio.run(service.create(_checkout("TX-3", booking_id="BKG-00001")))

    everything = asyncio.run(service.list())
    assert len(everything) == 3
    assert all(len(view.items) == 2 for view in everything)

    for_booking = asyncio.run(service.list(appointment_id="BKG-00001"))
    assert sorted(view.id for view in for_booking) == ["TX-1", "TX-3"]

    assert len(asyncio.run(service.list(limit=2))) == 2


def test_update_changes_only_given_fields() -> None:
    service = TransactionService(MockLatencyClient())
    asyncio.run(service.create(_checkout()))

    asyncio.run(service.update("TX-1001", TransactionUpdate(tip=5.0, method="cash")))

    row = get_mock_store().transactions.rows()[0]
    assert row[columns.TIP] == pytest.approx(5.0)
    assert row[columns.PAYMENT_METHOD] == "cash"
    assert row[columns.TAX] == pytest.approx(12.0)


def test_update_without_fields_is_rejected() -> None:
    service = TransactionService(MockLatencyClient())

    with pytest.raises(ValidationError, match="No fields to update"):
        asyncio.run(service.update("TX-1001", TransactionUpdate()))


def test_delete_removes_items_and_releases_paid_booking() -> None:
    service = TransactionService(MockLatencyClient())
    asyncio.run(service.create(_checkout(booking_id="BKG-00001")))
    store = get_mock_store()
    asyncio.run(store.bookings.update({"payment_status": "paid"}, []))

    asyncio.run(service.delete("TX-1001"))

    assert store.transactions.rows() == []
    assert store.transaction_items.rows() == []
    statuses = {row["id"]: row["payment_status"] for row in store.bookings.rows()}
    assert statuses == {"BKG-00001": "pending", "BKG-00002": "paid"}


def test_delete_leaves_unpaid_booking_untouched() -> None:
    service = TransactionService(MockLatencyClient())
    asyncio.run(service.create(_checkout(booking_id="BKG-00002")))
    store = get_mock_store()
    asyncio.run(store.bookings.update({"payment_status": "refunded"}, []))

    asyncio.run(service.delete("TX-1001"))

    statuses = {row["id"]: row["payment_status"] for row in store.bookings.rows()}
    assert statuses["BKG-00002"] == "refunded"


def _paid_split_sale(checkout_id="TX-1001", booking_id="BKG-00001") -> TransactionService:
    service = TransactionService(MockLatencyClient())
    asyncio.run(
        service.create(
            _checkout(
                checkout_id,
                booking_id=booking_id,
                is_split_payment=True,
                split_payments=[SplitPayment(method="card", amount=80), SplitPayment(method="cash", amount=50)],
            )
        )
    )
    store = get_mock_store()
    asyncio.run(store.bookings.update({"payment_status": "paid"}, []))
    return service


@pytest.mark.parametrize("record_id", ["TX-1001", "TX-1001-2"])
def test_delete_split_record_removes_whole_sale(record_id) -> None:
    service = _paid_split_sale()

    asyncio.run(service.delete(record_id))

    store = get_mock_store()
    assert store.transactions.rows() == []
    assert store.transaction_items.rows() == []
    statuses = {row["id"]: row["payment_status"] for row in store.bookings.rows()}
    assert statuses["BKG-00001"] == "pending"


def test_delete_keeps_booking_paid_while_other_sales_reference_it() -> None:
    service = _paid_split_sale()
    asyncio.run(service.create(_checkout("TX-2002", booking_id="BKG-00001")))

    asyncio.run(service.delete("TX-1001-2"))

    store = get_mock_store()
    assert [row[columns.ROW_ID] for row in store.transactions.rows()] == ["TX-2002"]
    statuses = {row["id"]: row["payment_status"] for row in store.bookings.rows()}
    assert statuses["BKG-00001"] == "paid"


def test_delete_does_not_treat_unrelated_suffixed_ids_as_siblings() -> None:
    service = TransactionService(MockLatencyClient())
    asyncio.run(service.create(_checkout("TX-1001")))
    asyncio.run(service.create(_checkout("TX-1001-2")))

    asyncio.run(service.delete("TX-1001"))

    ids = [row[columns.ROW_ID] for row in get_mock_store().transactions.rows()]
    assert ids == ["TX-1001-2"]
    items = {row[columns.ITEM_PAYMENT_ID] for row in get_mock_store().transaction_items.rows()}
    assert items == {"TX-1001-2"}


def test_search_requires_a_filter() -> None:
    service = TransactionService(MockLatencyClient())

    with pytest.raises(ValidationError):
        asyncio.run(service.search(TransactionSearchRequest(query="  ")))


def test_search_matches_case_insensitively_newest_first() -> None:
    service = TransactionService(MockLatencyClient())
    asyncio.run(service.create(_checkout("TX-1", payment_date="2025-09-01T10:00:00+00:00")))
    asyncio.run(service.create(_checkout("TX-2", payment_date="2025-09-03T10:00:00+00:00")))
    asyncio.run(service.create(_checkout("TX-3", payment_date=None)))
    asyncio.run(
        service.create(
            _checkout("TX-4", service_names_joined="Colour", payment_staff="Riley")
        )
    )

    result = asyncio.run(service.search(TransactionSearchRequest(query="HAIRCUT", staff="jordan")))

    assert result.total == 3
    assert [view.id for view in result.data] == ["TX-2", "TX-1", "TX-3"]
    assert result.query == "HAIRCUT"

    page = asyncio.run(
        service.search(TransactionSearchRequest(method="card", limit=1, offset=1))
    )
    assert page.total == 4
    assert len(page.data) == 1


def test_transaction_item_update() -> None:
    service = TransactionService(MockLatencyClient())
    asyncio.run(service.create(_checkout()))
    items = TransactionItemService(MockLatencyClient())

    asyncio.run(items.update("TX-1001-I1", TransactionItemUpdate(price=75.0, staff_name="Riley")))

    row = {r[columns.ROW_ID]: r for r in get_mock_store().transaction_items.rows()}["TX-1001-I1"]
    assert row[columns.ITEM_PRICE] == pytest.approx(75.0)
    assert row[columns.ITEM_STAFF_NAME] == "Riley"
    assert row[columns.ITEM_SERVICE_NAME] == "Signature Haircut"

    with pytest.raises(ValidationError):
        asyncio.run(items.update("TX-1001-I1", TransactionItemUpdate()))


# Wednesday 10 Sept 2025, 06:00 in Denver (UTC-6).
NOW = datetime(2025, 9, 10, 12, 0, tzinfo=timezone.utc)


def _seed_kpi_rows() -> None:
    rows = [
        {columns.ROW_ID: "K1", columns.PAYMENT_DATE: "2025-09-10T15:00:00+00:00", columns.PAYMENT_METHOD: "card",
         columns.TOTAL_PAID: 130.0, columns.PAYMENT_SUBTOTAL: 100.0, columns.PAYMENT_STAFF: "Jordan, Casey"},
        {columns.ROW_ID: "K2", columns.PAYMENT_DATE: "2025-09-11T02:00:00+00:00", columns.PAYMENT_METHOD: "cash",
         columns.TOTAL_PAID: 20.5, columns.PAYMENT_SUBTOTAL: 18.0, columns.PAYMENT_STAFF: "Jordan"},
        # 23:00 on 9 Sept local time.
        {columns.ROW_ID: "K3", columns.PAYMENT_DATE: "2025-09-10T05:00:00+00:00", columns.PAYMENT_METHOD: None,
         columns.TOTAL_PAID: 40.0, columns.PAYMENT_SUBTOTAL: 35.0, columns.PAYMENT_STAFF: "Riley"},
        {columns.ROW_ID: "K4", columns.PAYMENT_DATE: "2025-08-20T18:00:00+00:00", columns.PAYMENT_METHOD: "card",
         columns.TOTAL_PAID: 60.0, columns.PAYMENT_SUBTOTAL: 50.0, columns.PAYMENT_STAFF: "Sam"},
        {columns.ROW_ID: "K5", columns.PAYMENT_DATE: None, columns.PAYMENT_METHOD: "gift",
         columns.TOTAL_PAID: 10.0, columns.PAYMENT_SUBTOTAL: 10.0, columns.PAYMENT_STAFF: None},
    ]
    asyncio.run(get_mock_store().transactions.insert(rows))


def _kpi_service() -> KpiService:
    return KpiService(MockLatencyClient(), clock=lambda: NOW)


def test_kpi_today_uses_business_day() -> None:
    _seed_kpi_rows()
    service = _kpi_service()

    revenue = asyncio.run(service.total_revenue(KpiQuery(filter="today")))

    assert revenue.count == 2
    assert revenue.total_revenue == pytest.approx(150.5)


def test_kpi_last7days_and_alltime_windows() -> None:
    _seed_kpi_rows()
    service = _kpi_service()

    week = asyncio.run(service.service_revenue(KpiQuery(filter="last7days")))
    assert week.count == 3
    assert week.service_revenue == pytest.approx(153.0)

    everything = asyncio.run(service.transactions_count(KpiQuery(filter="alltime")))
    assert everything.transactions_count == 5


def test_kpi_unknown_filter_behaves_like_today() -> None:
    _seed_kpi_rows()

    count = asyncio.run(_kpi_service().transactions_count(KpiQuery(filter="fortnight")))

    assert count.transactions_count == 2
    assert count.filter == "fortnight"


def test_kpi_explicit_range_overrides_filter() -> None:
    _seed_kpi_rows()

    revenue = asyncio.run(
        _kpi_service().total_revenue(
            KpiQuery(filter="alltime", start="2025-08-01T00:00:00Z", end="2025-09-01T00:00:00Z")
        )
    )

    assert revenue.count == 1
    assert revenue.total_revenue == pytest.approx(60.0)


def test_kpi_average_ticket_and_empty_window() -> None:
    _seed_kpi_rows()
    service = _kpi_service()

    ticket = asyncio.run(service.average_ticket(KpiQuery(filter="today")))
    assert ticket.average_ticket == pytest.approx(75.25)
    assert ticket.transaction_count == 2

    empty = asyncio.run(
        service.average_ticket(KpiQuery(start="2020-01-01", end="2020-01-02"))
    )
    assert empty.average_ticket == 0
    assert empty.transaction_count == 0


def test_kpi_revenue_by_payment_method_sorted_desc() -> None:
    _seed_kpi_rows()

    breakdown = asyncio.run(
        _kpi_service().revenue_by_payment_method(KpiQuery(filter="alltime"))
    )

    assert [(m.method, m.total_revenue, m.transaction_count) for m in breakdown.payment_methods] == [
        ("card", 190.0, 2),
        ("Unknown", 40.0, 1),
        ("cash", 20.5, 1),
        ("gift", 10.0, 1),
    ]
    assert breakdown.total_records == 5


def test_kpi_active_staff_counts_distinct_names() -> None:
    _seed_kpi_rows()
    service = _kpi_service()

    assert asyncio.run(service.active_staff(KpiQuery(filter="today"))).active_staff == 2
    assert asyncio.run(service.active_staff(KpiQuery(filter="alltime"))).active_staff == 4


def test_kpi_unknown_metric_and_bad_dates() -> None:
    service = _kpi_service()

    with pytest.raises(NotFoundError):
        asyncio.run(service.compute("bogus", KpiQuery()))
    with pytest.raises(ValidationError):
        asyncio.run(service.compute("total-revenue", KpiQuery(start="yesterday", end="today")))
