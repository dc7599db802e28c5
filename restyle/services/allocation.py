"""Split a single checkout into transaction records.

A sale is described by its totals (subtotal, tax, tip, total paid), its line
items and, optionally, a split: either across payment instruments (part card,
part cash) or across services (each service paid with its own method).
:func:`allocate` partitions the totals into one record per slice. Every slice
except the last receives a rounded proportional share; the last slice receives
whatever remains, so the records always add back up to the sale totals to the
cent.

All arithmetic uses :class:`~decimal.Decimal` and :func:`round2`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from restyle.schemas.transaction import LineItem, ServiceSplit, SplitPayment
from restyle.services.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

DEFAULT_TOLERANCE = Decimal("0.05")
FALLBACK_METHOD = "other"


def to_decimal(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: object) -> Decimal:
    """Round to cents, halves away from zero."""

    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    tip: Decimal = ZERO
    total_paid: Decimal = ZERO

    @classmethod
    def of(cls, subtotal: object, tax: object, tip: object, total_paid: object) -> "SaleTotals":
        return cls(round2(subtotal), round2(tax), round2(tip), round2(total_paid))

    def __add__(self, other: "SaleTotals") -> "SaleTotals":
        return SaleTotals(
            self.subtotal + other.subtotal,
            self.tax + other.tax,
            self.tip + other.tip,
            self.total_paid + other.total_paid,
        )

    def __sub__(self, other: "SaleTotals") -> "SaleTotals":
        return SaleTotals(
            self.subtotal - other.subtotal,
            self.tax - other.tax,
            self.tip - other.tip,
            self.total_paid - other.total_paid,
        )

    def scaled(self, ratio: Decimal) -> "SaleTotals":
        return SaleTotals(
            round2(self.subtotal * ratio),
            round2(self.tax * ratio),
            round2(self.tip * ratio),
            round2(self.total_paid * ratio),
        )

    def is_negative(self) -> bool:
        return min(self.subtotal, self.tax, self.tip, self.total_paid) < ZERO


@dataclass(frozen=True)
class Allocation:
    """One transaction record produced from a sale."""

    id: str
    method: str
    sort_index: int
    amounts: SaleTotals

    @property
    def subtotal(self) -> Decimal:
        return self.amounts.subtotal

    @property
    def tax(self) -> Decimal:
        return self.amounts.tax

    @property
    def tip(self) -> Decimal:
        return self.amounts.tip

    @property
    def total_paid(self) -> Decimal:
        return self.amounts.total_paid


@dataclass(frozen=True)
class ItemAssignment:
    item_id: str
    record_id: str
    staff_tip_split: Optional[Decimal] = None
    staff_tip_collected: Optional[Decimal] = None


@dataclass(frozen=True)
class AllocationResult:
    records: Tuple[Allocation, ...]
    assignments: Tuple[ItemAssignment, ...] = field(default_factory=tuple)

    @property
    def record_ids(self) -> List[str]:
        return [record.id for record in self.records]

    @property
    def is_split(self) -> bool:
        return len(self.records) > 1

    def items_for(self, record_id: str) -> List[str]:
        return [a.item_id for a in self.assignments if a.record_id == record_id]

    def total(self) -> SaleTotals:
        combined = SaleTotals()
        for record in self.records:
            combined = combined + record.amounts
        return combined


@dataclass(frozen=True)
class _Slice:
    method: str
    # Either a ratio applied to all four totals, or a ratio for subtotal/tax/tip
    # with an authoritative total_paid amount.
    ratio: Decimal
    amount: Optional[Decimal] = None

    def portion(self, totals: SaleTotals) -> SaleTotals:
        scaled = totals.scaled(self.ratio)
        if self.amount is None:
            return scaled
        return SaleTotals(scaled.subtotal, scaled.tax, scaled.tip, round2(self.amount))


def record_id(original_id: str, index: int) -> str:
    return original_id if index == 0 else f"{original_id}-{index + 1}"


def normalize_method(method: Optional[str]) -> str:
    cleaned = (method or "").strip().lower()
    return cleaned or FALLBACK_METHOD


def finalize_last_split(remaining: SaleTotals) -> SaleTotals:
    """The last slice absorbs everything not yet allocated.

    This is what makes the records add back up to the sale totals exactly,
    whatever rounding happened on the earlier slices.
    """

    return remaining


def _partition(original_id: str, totals: SaleTotals, slices: Sequence[_Slice]) -> List[Allocation]:
    records: List[Allocation] = []
    remaining = totals
    last = len(slices) - 1
    for index, piece in enumerate(slices):
        if index == last:
            amounts = finalize_last_split(remaining)
        else:
            amounts = piece.portion(totals)
            remaining = remaining - amounts
        records.append(
            Allocation(
                id=record_id(original_id, index),
                method=piece.method,
                sort_index=index + 1,
                amounts=amounts,
            )
        )
    return records


def validate_split_amounts(
    split_payments: Sequence[SplitPayment],
    total_paid: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> None:
    for payment in split_payments:
        if to_decimal(payment.amount) < ZERO:
            raise ValidationError(f"Split payment amount for {payment.method!r} is negative")
    split_total = round2(sum((to_decimal(p.amount) for p in split_payments), ZERO))
    if abs(split_total - round2(total_paid)) > tolerance:
        raise ValidationError(
            f"Split amounts do not equal total ({split_total} != {round2(total_paid)})"
        )


def distribute_tip(items: Iterable[LineItem], tip: Decimal) -> Dict[str, Tuple[Decimal, Decimal]]:
    """Return ``{staff_name: (share_percent, tip_share)}`` weighted by service price."""

    tip = max(round2(tip), ZERO)
    by_staff: Dict[str, Decimal] = {}
    price_total = ZERO
    for item in items:
        price = to_decimal(item.price)
        # Unstaffed items dilute the pool but receive no share.
        price_total += price
        if item.staff_name:
            by_staff[item.staff_name] = by_staff.get(item.staff_name, ZERO) + price
    if price_total <= ZERO:
        return {}
    return {
        staff: (round2(price / price_total * HUNDRED), round2(price / price_total * tip))
        for staff, price in by_staff.items()
    }


def _assign(
    items: Sequence[LineItem],
    record_ids: Mapping[str, str],
    tip_shares: Mapping[str, Tuple[Decimal, Decimal]],
) -> Tuple[ItemAssignment, ...]:
    assignments = []
    for item in items:
        share = tip_shares.get(item.staff_name or "")
        assignments.append(
            ItemAssignment(
                item_id=item.id,
                record_id=record_ids[item.id],
                staff_tip_split=share[0] if share else None,
                staff_tip_collected=share[1] if share else None,
            )
        )
    return tuple(assignments)


def _payment_slices(split_payments: Sequence[SplitPayment], total_paid: Decimal) -> List[_Slice]:
    slices = []
    for payment in split_payments:
        amount = to_decimal(payment.amount)
        ratio = amount / total_paid if total_paid != ZERO else ZERO
        slices.append(_Slice(method=normalize_method(payment.method), ratio=ratio, amount=amount))
    return slices


def _group_items_by_method(
    items: Sequence[LineItem],
    service_splits: Sequence[ServiceSplit],
    sale_method: str,
) -> Dict[str, List[LineItem]]:
    lookup = {split.service_id: normalize_method(split.payment_method) for split in service_splits}
    groups: Dict[str, List[LineItem]] = {}
    for item in items:
        groups.setdefault(lookup.get(item.service_id, sale_method), []).append(item)
    if not groups:
        groups[sale_method] = list(items)
    return groups


def _service_slices(groups: Mapping[str, Sequence[LineItem]]) -> List[_Slice]:
    price_totals = {
        method: sum((to_decimal(item.price) for item in members), ZERO)
        for method, members in groups.items()
    }
    grand_total = sum(price_totals.values(), ZERO)
    if grand_total <= ZERO:
        grand_total = ONE
    return [_Slice(method=method, ratio=total / grand_total) for method, total in price_totals.items()]


def allocate(
    original_id: str,
    totals: SaleTotals,
    items: Sequence[LineItem],
    *,
    method: Optional[str] = None,
    is_split_payment: bool = False,
    split_payments: Sequence[SplitPayment] = (),
    is_service_split: bool = False,
    service_splits: Sequence[ServiceSplit] = (),
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> AllocationResult:
    """Partition ``totals`` into transaction records and attach ``items`` to them.

    Raises :class:`ValidationError` before producing anything when the input
    cannot be allocated.
    """

    if not original_id or not str(original_id).strip():
        raise ValidationError("Transaction id is required")
    if totals.is_negative():
        raise ValidationError("Transaction totals must not be negative")
    seen = set()
    for item in items:
        if item.id in seen:
            raise ValidationError(f"Duplicate item id {item.id!r}")
        seen.add(item.id)
        if to_decimal(item.price) < ZERO:
            raise ValidationError(f"Item {item.id!r} has a negative price")

    sale_method = normalize_method(method)
    tip_shares = distribute_tip(items, totals.tip)

    if is_split_payment and len(split_payments) >= 2:
        validate_split_amounts(split_payments, totals.total_paid, to_decimal(tolerance))
        records = _partition(original_id, totals, _payment_slices(split_payments, totals.total_paid))
        # Items are not divisible across payment instruments: all go on the first record.
        targets = {item.id: records[0].id for item in items}
        return AllocationResult(tuple(records), _assign(items, targets, tip_shares))

    if is_service_split and len(service_splits) >= 1:
        groups = _group_items_by_method(items, service_splits, sale_method)
        records = _partition(original_id, totals, _service_slices(groups))
        targets = {}
        for record, members in zip(records, groups.values()):
            for item in members:
                targets[item.id] = record.id
        return AllocationResult(tuple(records), _assign(items, targets, tip_shares))

    single = Allocation(id=original_id, method=sale_method, sort_index=1, amounts=totals)
    targets = {item.id: single.id for item in items}
    return AllocationResult((single,), _assign(items, targets, tip_shares))
