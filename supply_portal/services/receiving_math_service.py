from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from supply_portal.models import OrderStatus

ZERO = Decimal('0')
CENTS = Decimal('0.01')


@dataclass(frozen=True)
class DeliveryInput:
    received_quantity: Decimal
    unit_value: Decimal | None = None
    supplier_id: int | None = None


@dataclass(frozen=True)
class LineReconciliation:
    item_id: int
    requested_qty: Decimal
    received_qty: Decimal
    missing_qty: Decimal
    over_delivered_qty: Decimal


@dataclass(frozen=True)
class ReconciliationResult:
    lines: list[LineReconciliation]

    @property
    def shortfall_lines(self) -> list[LineReconciliation]:
        return [line for line in self.lines if line.missing_qty > 0]

    @property
    def is_partial(self) -> bool:
        return bool(self.shortfall_lines)

    @property
    def status(self) -> OrderStatus:
        return OrderStatus.PARTIAL if self.is_partial else OrderStatus.COMPLETED


def missing_quantity(requested: Decimal, received: Decimal | None) -> Decimal:
    return max(Decimal(requested) - Decimal(received or ZERO), ZERO)


def reconcile_line(item_id: int, requested: Decimal, received: Decimal | None) -> LineReconciliation:
    received_qty = Decimal(received or ZERO)
    requested_qty = Decimal(requested)
    return LineReconciliation(
        item_id=item_id,
        requested_qty=requested_qty,
        received_qty=received_qty,
        missing_qty=missing_quantity(requested_qty, received_qty),
        over_delivered_qty=max(received_qty - requested_qty, ZERO),
    )


def reconcile(lines: list[tuple[int, Decimal, Decimal | None]]) -> ReconciliationResult:
    return ReconciliationResult(lines=[reconcile_line(item_id, requested, received) for item_id, requested, received in lines])


def line_value(received: Decimal | None, unit_value: Decimal | None) -> Decimal | None:
    if received is None or unit_value is None:
        return None
    return (Decimal(received) * Decimal(unit_value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def order_total(items) -> Decimal:
    """Sum of received quantity times unit value over the priced lines of one order."""
    total = ZERO
    for item in items:
        value = line_value(item.received_quantity, item.unit_value)
        if value is not None:
            total += value
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)
