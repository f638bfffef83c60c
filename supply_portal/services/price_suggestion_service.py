from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from supply_portal.config import settings
from supply_portal.errors import OrderError, ValidationError
from supply_portal.models import Order, OrderItem, OrderStatus
from supply_portal.services.directory_service import supplier_names_by_id
from supply_portal.services.order_ref_utils import normalize_item_name, order_ref
from supply_portal.services.order_service import get_order, load_items
from supply_portal.services.unit_of_work import flush_unit

logger = logging.getLogger(__name__)

HISTORY_STATUSES = (OrderStatus.COMPLETED, OrderStatus.PARTIAL)


@dataclass(frozen=True)
class PriceHint:
    supplier_name: str
    unit_value: Decimal


@dataclass(frozen=True)
class HistoricalPrice:
    name: str
    unit_value: Decimal | None
    supplier_id: int | None


@dataclass
class PriceSuggestionResult:
    order_id: int
    hints: dict[int, PriceHint | None] = field(default_factory=dict)
    frozen: bool = False
    persisted: bool = True


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def build_price_index(history: Iterable[HistoricalPrice], supplier_names: dict[int, str]) -> dict[str, list[PriceHint]]:
    index: dict[str, list[PriceHint]] = {}
    for row in history:
        unit_value = Decimal(row.unit_value) if row.unit_value is not None else Decimal('0')
        supplier_name = supplier_names.get(row.supplier_id) if row.supplier_id is not None else None
        if unit_value <= 0 or not supplier_name:
            continue
        key = normalize_item_name(row.name)
        if not key:
            continue
        index.setdefault(key, []).append(PriceHint(supplier_name=supplier_name, unit_value=unit_value))
    return index


def cheapest(prices: list[PriceHint]) -> PriceHint | None:
    best: PriceHint | None = None
    for price in prices:
        # Strictly lower only: ties keep the first price seen in scan order.
        if best is None or price.unit_value < best.unit_value:
            best = price
    return best


def suggest_for_name(name: str, index: dict[str, list[PriceHint]]) -> PriceHint | None:
    return cheapest(index.get(normalize_item_name(name), []))


def load_price_history(db: Session, *, since: datetime) -> list[HistoricalPrice]:
    rows = db.execute(
        select(OrderItem.name, OrderItem.unit_value, OrderItem.supplier_id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            Order.status.in_(HISTORY_STATUSES),
            Order.received_at.is_not(None),
            Order.received_at >= since,
            OrderItem.unit_value > 0,
            OrderItem.supplier_id.is_not(None),
        )
        .order_by(Order.received_at.asc(), Order.id.asc(), OrderItem.position.asc())
    ).all()
    return [HistoricalPrice(name=row.name, unit_value=row.unit_value, supplier_id=row.supplier_id) for row in rows]


def frozen_hints(items: list[OrderItem]) -> dict[int, PriceHint | None]:
    hints: dict[int, PriceHint | None] = {}
    for item in items:
        if item.price_hint is not None and item.price_hint_supplier:
            hints[item.id] = PriceHint(supplier_name=item.price_hint_supplier, unit_value=Decimal(item.price_hint))
        else:
            hints[item.id] = None
    return hints


def compute_live_hints(
    db: Session,
    items: list[OrderItem],
    *,
    window_days: int,
    now: datetime,
) -> dict[int, PriceHint | None]:
    history = load_price_history(db, since=now - timedelta(days=window_days))
    if not history:
        return {item.id: None for item in items}
    supplier_names = supplier_names_by_id(db, supplier_ids={row.supplier_id for row in history if row.supplier_id is not None})
    index = build_price_index(history, supplier_names)
    return {item.id: suggest_for_name(item.name, index) for item in items}


def write_hints(items: list[OrderItem], hints: dict[int, PriceHint | None]) -> None:
    for item in items:
        hint = hints.get(item.id)
        item.price_hint = hint.unit_value if hint else None
        item.price_hint_supplier = hint.supplier_name if hint else None


def capture_hints(db: Session, *, order: Order, now: datetime | None = None) -> dict[int, PriceHint | None]:
    """Stage the current hints on a pending order's items; the caller flushes them."""
    items = load_items(db, order_id=order.id)
    hints = compute_live_hints(db, items, window_days=settings.price_hint_window_days, now=now or _now())
    write_hints(items, hints)
    return hints


def suggest_prices(
    db: Session,
    *,
    order_id: int,
    window_days: int | None = None,
    now: datetime | None = None,
) -> PriceSuggestionResult:
    """
    Cheapest recently-seen supplier per item of one order.

    Pending orders are recomputed on every call and the hints are written back
    to their items. Any other status returns the hints written while the order
    was pending, so approved orders keep the prices seen at approval time.
    """
    window = settings.price_hint_window_days if window_days is None else window_days
    if window < 0:
        raise ValidationError('History window cannot be negative')

    order = get_order(db, order_id=order_id)
    items = load_items(db, order_id=order.id)
    if order.status != OrderStatus.NEW:
        return PriceSuggestionResult(order_id=order.id, hints=frozen_hints(items), frozen=True)

    hints = compute_live_hints(db, items, window_days=window, now=now or _now())
    result = PriceSuggestionResult(order_id=order.id, hints=hints)
    ref = order_ref(order)

    write_hints(items, hints)
    try:
        flush_unit(db, operation='persist_price_hints')
    except OrderError as exc:
        logger.warning('Price hints for order %s shown without saving: %s', ref, exc)
        result.persisted = False
    return result
