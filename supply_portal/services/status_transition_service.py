from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from supply_portal.config import settings
from supply_portal.errors import InvalidTransition
from supply_portal.models import Order, OrderStatus
from supply_portal.services.order_ref_utils import order_ref
from supply_portal.services.order_service import check_version, get_order
from supply_portal.services.price_suggestion_service import capture_hints
from supply_portal.services.unit_of_work import flush_unit

logger = logging.getLogger(__name__)

# Administrative edges. approved -> partial/completed belongs to receiving only.
ADMIN_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.NEW: frozenset({OrderStatus.APPROVED, OrderStatus.DENIED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.DENIED, OrderStatus.NEW}),
    OrderStatus.DENIED: frozenset({OrderStatus.APPROVED, OrderStatus.NEW}),
    OrderStatus.PARTIAL: frozenset(),
    OrderStatus.COMPLETED: frozenset(),
}

RECEIVING_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.APPROVED: frozenset({OrderStatus.PARTIAL, OrderStatus.COMPLETED}),
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ADMIN_TRANSITIONS.get(current, frozenset())


def allowed_targets(current: OrderStatus) -> list[OrderStatus]:
    return sorted(ADMIN_TRANSITIONS.get(current, frozenset()), key=lambda status: status.value)


def ensure_receiving_transition(current: OrderStatus, target: OrderStatus) -> None:
    if target not in RECEIVING_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current.value, target.value)


def apply_transition(order: Order, target: OrderStatus, *, actor_name: str | None, now: datetime | None = None) -> Order:
    """Validate and apply one administrative edge to an in-memory order."""
    current = order.status
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)

    order.status = target
    if target == OrderStatus.APPROVED:
        order.approved_by_name = (actor_name or '').strip() or settings.default_approver_name
        order.approved_at = now or _now()
    order.updated_at = now or _now()
    return order


def transition_order(
    db: Session,
    *,
    order_id: int,
    target: OrderStatus,
    actor_name: str | None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Order:
    now = now or _now()
    order = get_order(db, order_id=order_id, for_update=True)
    check_version(order, expected_version)
    previous = order.status
    apply_transition(order, target, actor_name=actor_name, now=now)
    if previous == OrderStatus.NEW:
        # Hints freeze with the prices seen at the moment the order leaves pending.
        capture_hints(db, order=order, now=now)
    flush_unit(db, operation='transition_order')
    logger.info('Order %s moved %s -> %s by %s', order_ref(order), previous.value, target.value, actor_name or '-')
    return order
