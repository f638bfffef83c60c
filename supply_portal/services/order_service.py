from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from supply_portal.errors import OrderNotFound, StaleOrder, ValidationError
from supply_portal.models import Order, OrderItem, OrderStatus, Profile, Site
from supply_portal.services.directory_service import get_active_site, materials_by_id, supplier_names_by_id
from supply_portal.services.order_ref_utils import (
    complement_ref_of,
    complement_tag,
    custom_item_name,
    is_custom_item,
    local_day,
    order_ref,
)
from supply_portal.services.receiving_math_service import line_value, missing_quantity, order_total
from supply_portal.services.unit_of_work import flush_unit

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    OrderStatus.NEW: 'Pendente',
    OrderStatus.APPROVED: 'Aprovado',
    OrderStatus.DENIED: 'Negado',
    OrderStatus.PARTIAL: 'Rec. Parcial',
    OrderStatus.COMPLETED: 'Concluído',
}


@dataclass(frozen=True)
class ItemInput:
    quantity: Decimal
    material_id: int | None = None
    description: str | None = None
    unit: str | None = None


@dataclass(frozen=True)
class ItemDraft:
    name: str
    unit: str
    quantity: Decimal
    material_id: int | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_order(db: Session, *, order_id: int, for_update: bool = False) -> Order:
    query = select(Order).where(Order.id == order_id)
    if for_update:
        query = query.with_for_update()
    order = db.execute(query).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def load_items(db: Session, *, order_id: int) -> list[OrderItem]:
    return db.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.position.asc())
    ).scalars().all()


def check_version(order: Order, expected_version: int | None) -> None:
    if expected_version is not None and order.version != expected_version:
        raise StaleOrder('Order was modified by someone else; reload and try again')


def next_seq_number(db: Session, *, ref_date: date) -> int:
    current = db.execute(select(func.max(Order.seq_number)).where(Order.ref_date == ref_date)).scalar_one_or_none()
    return int(current or 0) + 1


def build_item_drafts(db: Session, items: list[ItemInput]) -> list[ItemDraft]:
    if not items:
        raise ValidationError('Add at least one item to the order')

    catalog = materials_by_id(db, {item.material_id for item in items if item.material_id is not None})
    drafts: list[ItemDraft] = []
    index_by_material: dict[int, int] = {}
    for item in items:
        quantity = Decimal(item.quantity)
        if quantity <= 0:
            raise ValidationError('Quantity must be greater than zero')

        if item.material_id is None:
            description = (item.description or '').strip()
            if not description:
                raise ValidationError('Describe the material that is not in the catalog')
            drafts.append(
                ItemDraft(name=custom_item_name(description), unit=(item.unit or '').strip() or 'un', quantity=quantity)
            )
            continue

        material = catalog.get(item.material_id)
        if material is None:
            raise ValidationError(f'Material {item.material_id} not found')
        existing_index = index_by_material.get(material.id)
        if existing_index is not None:
            merged = drafts[existing_index]
            drafts[existing_index] = ItemDraft(
                name=merged.name,
                unit=merged.unit,
                quantity=merged.quantity + quantity,
                material_id=merged.material_id,
            )
            continue
        index_by_material[material.id] = len(drafts)
        drafts.append(ItemDraft(name=material.name, unit=material.unit, quantity=quantity, material_id=material.id))
    return drafts


def _add_items(db: Session, *, order_id: int, drafts: list[ItemDraft], now: datetime) -> list[OrderItem]:
    rows: list[OrderItem] = []
    for position, draft in enumerate(drafts):
        row = OrderItem(
            order_id=order_id,
            position=position,
            material_id=draft.material_id,
            name=draft.name,
            unit=draft.unit,
            quantity=draft.quantity,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        rows.append(row)
    return rows


def insert_order(
    db: Session,
    *,
    site_id: int,
    user_id: int,
    drafts: list[ItemDraft],
    observations: str | None = None,
    parent_order_id: int | None = None,
    now: datetime | None = None,
) -> Order:
    """Insert a pending order and stage its items; the caller flushes the items."""
    now = now or _now()
    ref_date = local_day(now)
    order = Order(
        site_id=site_id,
        user_id=user_id,
        parent_order_id=parent_order_id,
        status=OrderStatus.NEW,
        seq_number=next_seq_number(db, ref_date=ref_date),
        ref_date=ref_date,
        observations=(observations or '').strip() or None,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    flush_unit(db, operation='insert_order')
    _add_items(db, order_id=order.id, drafts=drafts, now=now)
    return order


def create_order(
    db: Session,
    *,
    site_id: int | None,
    user_id: int,
    items: list[ItemInput],
    observations: str | None = None,
) -> Order:
    if site_id is None:
        raise ValidationError('Select a site for this order')
    if get_active_site(db, site_id) is None:
        raise ValidationError('Site not found')
    drafts = build_item_drafts(db, items)

    order = insert_order(db, site_id=site_id, user_id=user_id, drafts=drafts, observations=observations)
    flush_unit(db, operation='create_order')
    logger.info('Order %s created for site %s with %d items', order_ref(order), site_id, len(drafts))
    return order


def update_order_items(
    db: Session,
    *,
    order_id: int,
    site_id: int | None,
    items: list[ItemInput],
    observations: str | None = None,
    expected_version: int | None = None,
) -> Order:
    order = get_order(db, order_id=order_id)
    check_version(order, expected_version)
    if order.status != OrderStatus.NEW:
        raise ValidationError('Only pending orders can be edited')
    if site_id is None:
        raise ValidationError('Select a site for this order')
    if get_active_site(db, site_id) is None:
        raise ValidationError('Site not found')
    drafts = build_item_drafts(db, items)

    now = _now()
    db.execute(delete(OrderItem).where(OrderItem.order_id == order.id))
    _add_items(db, order_id=order.id, drafts=drafts, now=now)
    order.site_id = site_id
    if observations is not None:
        order.observations = observations.strip() or None
    order.updated_at = now
    flush_unit(db, operation='update_order_items')
    return order


def find_complement_order(db: Session, order: Order) -> Order | None:
    child = db.execute(
        select(Order).where(Order.parent_order_id == order.id).order_by(Order.created_at.asc(), Order.id.asc())
    ).scalars().first()
    if child is not None or order.status != OrderStatus.PARTIAL:
        return child

    # Rows written before parent_order_id existed only carry the name tag.
    # Refs repeat every year, so only unlinked orders created after this one qualify.
    tag = complement_tag(order_ref(order)).strip()
    return db.execute(
        select(Order)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .where(
            Order.id != order.id,
            Order.parent_order_id.is_(None),
            Order.created_at >= order.created_at,
            OrderItem.name.contains(tag, autoescape=True),
        )
        .order_by(Order.created_at.asc(), Order.id.asc())
    ).scalars().first()


def display_status(status: OrderStatus, complement_status: OrderStatus | None) -> OrderStatus:
    # A partial delivery whose complement arrived in full reads as completed.
    if status == OrderStatus.PARTIAL and complement_status == OrderStatus.COMPLETED:
        return OrderStatus.COMPLETED
    return status


def effective_status(order: Order, complement: Order | None) -> OrderStatus:
    return display_status(order.status, complement.status if complement is not None else None)


def serialize_item(item: OrderItem) -> dict:
    return {
        'id': item.id,
        'position': item.position,
        'material_id': item.material_id,
        'is_custom': is_custom_item(item.material_id, item.name),
        'complement_of': complement_ref_of(item.name),
        'name': item.name,
        'unit': item.unit,
        'quantity': item.quantity,
        'received_quantity': item.received_quantity,
        'unit_value': item.unit_value,
        'supplier_id': item.supplier_id,
        'price_hint': item.price_hint,
        'price_hint_supplier': item.price_hint_supplier,
    }


def serialize_order(order: Order, items: list[OrderItem]) -> dict:
    return {
        'id': order.id,
        'ref': order_ref(order),
        'site_id': order.site_id,
        'user_id': order.user_id,
        'parent_order_id': order.parent_order_id,
        'status': order.status.value,
        'status_label': STATUS_LABELS[order.status],
        'seq_number': order.seq_number,
        'version': order.version,
        'observations': order.observations,
        'created_at': order.created_at,
        'approved_at': order.approved_at,
        'approved_by_name': order.approved_by_name,
        'received_at': order.received_at,
        'received_by_name': order.received_by_name,
        'items': [serialize_item(item) for item in items],
    }


def get_order_detail(db: Session, *, order_id: int, site_id: int | None = None) -> dict:
    order = get_order(db, order_id=order_id)
    if site_id is not None and order.site_id != site_id:
        raise OrderNotFound(order_id)
    return serialize_order(order, load_items(db, order_id=order.id))


def _complement_status_by_parent(db: Session, parent_ids: list[int]) -> dict[int, OrderStatus]:
    if not parent_ids:
        return {}
    rows = db.execute(
        select(Order.parent_order_id, Order.status)
        .where(Order.parent_order_id.in_(parent_ids))
        .order_by(Order.created_at.asc(), Order.id.asc())
    ).all()
    statuses: dict[int, OrderStatus] = {}
    for row in rows:
        statuses.setdefault(int(row.parent_order_id), row.status)
    return statuses


def list_orders(
    db: Session,
    *,
    site_id: int | None = None,
    statuses: list[OrderStatus] | None = None,
    search: str | None = None,
    limit: int = 100,
) -> list[dict]:
    item_counts = (
        select(OrderItem.order_id, func.count(OrderItem.id).label('item_count'))
        .group_by(OrderItem.order_id)
        .subquery()
    )
    query = (
        select(Order, Site.name, Profile.name, func.coalesce(item_counts.c.item_count, 0))
        .join(Site, Site.id == Order.site_id)
        .join(Profile, Profile.id == Order.user_id)
        .outerjoin(item_counts, item_counts.c.order_id == Order.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    if site_id is not None:
        query = query.where(Order.site_id == site_id)
    if statuses:
        query = query.where(Order.status.in_(statuses))
    rows = db.execute(query).all()

    partial_ids = [order.id for order, *_ in rows if order.status == OrderStatus.PARTIAL]
    complement_status = _complement_status_by_parent(db, partial_ids)

    term = (search or '').strip().lower()
    results: list[dict] = []
    for order, site_name, requester_name, item_count in rows:
        child_status = complement_status.get(order.id)
        if order.status == OrderStatus.PARTIAL and child_status is None:
            legacy_child = find_complement_order(db, order)
            child_status = legacy_child.status if legacy_child else None
        shown = display_status(order.status, child_status)
        ref = order_ref(order)
        if term and not any(
            term in value.lower()
            for value in (ref, site_name or '', requester_name or '', STATUS_LABELS[shown], shown.value)
        ):
            continue
        results.append(
            {
                'id': order.id,
                'ref': ref,
                'site_id': order.site_id,
                'site_name': site_name,
                'requester_name': requester_name,
                'item_count': int(item_count),
                'status': order.status.value,
                'effective_status': shown.value,
                'status_label': STATUS_LABELS[shown],
                'created_at': order.created_at,
                'version': order.version,
            }
        )
        if len(results) >= limit:
            break
    return results


def dashboard_counts(db: Session, *, site_id: int | None = None) -> dict[str, int]:
    query = select(Order.status, func.count(Order.id)).group_by(Order.status)
    if site_id is not None:
        query = query.where(Order.site_id == site_id)
    counts = {status.value: 0 for status in OrderStatus}
    for status, count in db.execute(query).all():
        counts[status.value] = int(count)
    counts['total'] = sum(counts[status.value] for status in OrderStatus)
    return counts


def get_order_history(db: Session, *, order_id: int) -> dict:
    order = get_order(db, order_id=order_id)
    items = load_items(db, order_id=order.id)
    site_name = db.execute(select(Site.name).where(Site.id == order.site_id)).scalar_one_or_none()
    requester_name = db.execute(select(Profile.name).where(Profile.id == order.user_id)).scalar_one_or_none()

    supplier_names = supplier_names_by_id(
        db, supplier_ids={item.supplier_id for item in items if item.supplier_id is not None}
    )

    lines = [
        {
            'id': item.id,
            'name': item.name,
            'unit': item.unit,
            'quantity': item.quantity,
            'received_quantity': item.received_quantity,
            'missing_quantity': missing_quantity(item.quantity, item.received_quantity),
            'unit_value': item.unit_value,
            'supplier_name': supplier_names.get(item.supplier_id) if item.supplier_id else None,
            'line_value': line_value(item.received_quantity, item.unit_value),
        }
        for item in items
    ]

    complement = find_complement_order(db, order)
    complement_detail = None
    if complement is not None:
        complement_items = load_items(db, order_id=complement.id)
        complement_detail = {
            'id': complement.id,
            'ref': order_ref(complement),
            'status': complement.status.value,
            'status_label': STATUS_LABELS[complement.status],
            'received_at': complement.received_at,
            'received_by_name': complement.received_by_name,
            'items': [{'name': row.name, 'unit': row.unit, 'quantity': row.quantity} for row in complement_items],
        }

    shown = effective_status(order, complement)
    return {
        'order': serialize_order(order, items),
        'site_name': site_name,
        'requester_name': requester_name,
        'lines': lines,
        'complement': complement_detail,
        'effective_status': shown.value,
        'effective_status_label': STATUS_LABELS[shown],
        'total_value': order_total(items),
    }
