from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from supply_portal.config import settings
from supply_portal.errors import ValidationError
from supply_portal.models import Order, OrderItem, OrderStatus
from supply_portal.services.directory_service import existing_supplier_ids
from supply_portal.services.order_ref_utils import order_ref, tag_complement_name
from supply_portal.services.order_service import ItemDraft, check_version, get_order, insert_order, load_items
from supply_portal.services.receiving_math_service import DeliveryInput, ReconciliationResult, reconcile
from supply_portal.services.status_transition_service import ensure_receiving_transition
from supply_portal.services.unit_of_work import flush_unit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceivingOutcome:
    order: Order
    complement: Order | None
    reconciliation: ReconciliationResult


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def validate_deliveries(
    items: list[OrderItem],
    deliveries: dict[int, DeliveryInput],
    *,
    known_supplier_ids: set[int],
    allow_over_delivery: bool,
) -> None:
    items_by_id = {item.id: item for item in items}
    unknown = sorted(set(deliveries) - set(items_by_id))
    if unknown:
        raise ValidationError(f'Items {unknown} do not belong to this order')

    for item_id, delivery in deliveries.items():
        item = items_by_id[item_id]
        if delivery.received_quantity is None or Decimal(delivery.received_quantity) < 0:
            raise ValidationError(f'Received quantity cannot be negative for {item.name}')
        if delivery.unit_value is not None and Decimal(delivery.unit_value) < 0:
            raise ValidationError(f'Unit value cannot be negative for {item.name}')
        if delivery.supplier_id is not None and delivery.supplier_id not in known_supplier_ids:
            raise ValidationError(f'Supplier not found for {item.name}')
        if not allow_over_delivery and Decimal(delivery.received_quantity) > Decimal(item.quantity):
            raise ValidationError(f'Received quantity exceeds the requested quantity for {item.name}')


def build_complement_drafts(items: list[OrderItem], reconciliation: ReconciliationResult, *, parent_ref: str) -> list[ItemDraft]:
    items_by_id = {item.id: item for item in items}
    drafts: list[ItemDraft] = []
    for line in reconciliation.shortfall_lines:
        item = items_by_id[line.item_id]
        drafts.append(
            ItemDraft(
                name=tag_complement_name(item.name, parent_ref),
                unit=item.unit,
                quantity=line.missing_qty,
                material_id=item.material_id,
            )
        )
    return drafts


def receive_order(
    db: Session,
    *,
    order_id: int,
    deliveries: dict[int, DeliveryInput],
    actor_name: str | None,
    expected_version: int | None = None,
) -> ReceivingOutcome:
    """
    Record a delivery against an approved order.

    The parent update and the complement insert are flushed in one unit of work;
    a store failure rolls both back and surfaces as PersistenceFailure.
    """
    order = get_order(db, order_id=order_id, for_update=True)
    check_version(order, expected_version)
    # Only approved orders can be received.
    ensure_receiving_transition(order.status, OrderStatus.COMPLETED)

    items = load_items(db, order_id=order.id)
    supplier_ids = {delivery.supplier_id for delivery in deliveries.values() if delivery.supplier_id is not None}
    validate_deliveries(
        items,
        deliveries,
        known_supplier_ids=existing_supplier_ids(db, supplier_ids),
        allow_over_delivery=settings.allow_over_delivery,
    )

    now = _now()
    for item in items:
        delivery = deliveries.get(item.id)
        item.received_quantity = Decimal(delivery.received_quantity) if delivery else Decimal('0')
        item.unit_value = Decimal(delivery.unit_value) if delivery and delivery.unit_value is not None else None
        item.supplier_id = delivery.supplier_id if delivery else None
        item.updated_at = now

    reconciliation = reconcile([(item.id, item.quantity, item.received_quantity) for item in items])
    ensure_receiving_transition(order.status, reconciliation.status)
    order.status = reconciliation.status
    order.received_at = now
    order.received_by_name = (actor_name or '').strip() or settings.default_receiver_name
    order.updated_at = now

    complement = None
    if reconciliation.is_partial:
        parent_ref = order_ref(order)
        complement = insert_order(
            db,
            site_id=order.site_id,
            user_id=order.user_id,
            drafts=build_complement_drafts(items, reconciliation, parent_ref=parent_ref),
            parent_order_id=order.id,
            now=now,
        )
    flush_unit(db, operation='receive_order')

    if complement is not None:
        logger.info(
            'Order %s partially received; complement %s created with %d items',
            order_ref(order),
            order_ref(complement),
            len(reconciliation.shortfall_lines),
        )
    else:
        logger.info('Order %s fully received', order_ref(order))
    return ReceivingOutcome(order=order, complement=complement, reconciliation=reconciliation)
