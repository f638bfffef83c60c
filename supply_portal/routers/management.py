from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from supply_portal.auth import Principal, Role, require_role
from supply_portal.config import settings
from supply_portal.db import get_db
from supply_portal.dependencies import get_client_ip, http_error
from supply_portal.errors import OrderError
from supply_portal.models import OrderStatus
from supply_portal.schemas import OrderCreate, OrderUpdate, StatusChange
from supply_portal.security.middleware import verify_csrf
from supply_portal.services.audit_service import log_audit
from supply_portal.services.directory_service import list_suppliers
from supply_portal.services.notification_service import mark_orders_seen, unread_order_count
from supply_portal.services.order_ref_utils import order_ref
from supply_portal.services.order_service import (
    create_order,
    dashboard_counts,
    get_order_detail,
    get_order_history,
    list_orders,
    load_items,
    serialize_order,
    update_order_items,
)
from supply_portal.services.price_suggestion_service import PriceSuggestionResult, suggest_prices
from supply_portal.services.status_transition_service import allowed_targets, transition_order
from supply_portal.services.unit_of_work import commit_unit

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/management', tags=['management'])
admin_access = require_role(Role.ADMIN)


def _serialize_hints(result: PriceSuggestionResult) -> dict:
    return {
        'frozen': result.frozen,
        'persisted': result.persisted,
        'items': {
            str(item_id): (
                {'supplier_name': hint.supplier_name, 'unit_value': hint.unit_value} if hint is not None else None
            )
            for item_id, hint in result.hints.items()
        },
    }


@router.get('/dashboard')
def dashboard(
    site_id: int | None = None,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return dashboard_counts(db, site_id=site_id)


@router.get('/notifications')
def notifications(
    request: Request,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return unread_order_count(db, session_token=request.cookies.get(settings.session_cookie_name, ''))


@router.post('/notifications/seen')
def notifications_seen(
    request: Request,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    __: None = Depends(verify_csrf),
):
    seen_at = mark_orders_seen(db, session_token=request.cookies.get(settings.session_cookie_name, ''))
    db.commit()
    return {'unread': 0, 'seen_at': seen_at}


@router.get('/suppliers')
def suppliers(
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return {'suppliers': list_suppliers(db)}


@router.get('/orders')
def orders(
    search: str | None = None,
    site_id: int | None = None,
    status: list[OrderStatus] | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    return {'orders': list_orders(db, site_id=site_id, statuses=status, search=search, limit=limit)}


@router.post('/orders', status_code=201)
def management_create_order(
    payload: OrderCreate,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        order = create_order(
            db,
            site_id=payload.site_id,
            user_id=principal.id,
            items=[item.to_input() for item in payload.items],
            observations=payload.observations,
        )
        log_audit(
            db,
            actor_profile_id=principal.id,
            actor_name=principal.name,
            action='ORDER_CREATED',
            order_id=order.id,
            ip=get_client_ip(request),
            metadata={'ref': order_ref(order), 'item_count': len(payload.items)},
        )
        commit_unit(db, operation='create_order')
    except OrderError as exc:
        raise http_error(exc) from exc
    return serialize_order(order, load_items(db, order_id=order.id))


@router.get('/orders/{order_id}')
def order_detail(
    order_id: int,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    try:
        hints = suggest_prices(db, order_id=order_id)
    except OrderError as exc:
        raise http_error(exc) from exc

    if hints.persisted and not hints.frozen:
        try:
            commit_unit(db, operation='persist_price_hints')
        except OrderError as exc:
            # The hints are still shown; they are recomputed on the next view.
            logger.warning('Could not save price hints for order %s: %s', order_id, exc)
            hints.persisted = False

    try:
        detail = get_order_detail(db, order_id=order_id)
    except OrderError as exc:
        raise http_error(exc) from exc
    detail['allowed_transitions'] = [status.value for status in allowed_targets(OrderStatus(detail['status']))]
    detail['price_hints'] = _serialize_hints(hints)
    return detail


@router.put('/orders/{order_id}')
def update_order(
    order_id: int,
    payload: OrderUpdate,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        order = update_order_items(
            db,
            order_id=order_id,
            site_id=payload.site_id,
            items=[item.to_input() for item in payload.items],
            observations=payload.observations,
            expected_version=payload.expected_version,
        )
        log_audit(
            db,
            actor_profile_id=principal.id,
            actor_name=principal.name,
            action='ORDER_UPDATED',
            order_id=order.id,
            ip=get_client_ip(request),
            metadata={'item_count': len(payload.items)},
        )
        commit_unit(db, operation='update_order_items')
    except OrderError as exc:
        raise http_error(exc) from exc
    return serialize_order(order, load_items(db, order_id=order.id))


@router.post('/orders/{order_id}/status')
def change_status(
    order_id: int,
    payload: StatusChange,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        order = transition_order(
            db,
            order_id=order_id,
            target=payload.status,
            actor_name=principal.name,
            expected_version=payload.expected_version,
        )
        log_audit(
            db,
            actor_profile_id=principal.id,
            actor_name=principal.name,
            action='ORDER_STATUS_CHANGED',
            order_id=order.id,
            ip=get_client_ip(request),
            metadata={'ref': order_ref(order), 'status': payload.status.value},
        )
        commit_unit(db, operation='transition_order')
    except OrderError as exc:
        raise http_error(exc) from exc
    return serialize_order(order, load_items(db, order_id=order.id))


@router.get('/orders/{order_id}/history')
def order_history(
    order_id: int,
    _: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    try:
        return get_order_history(db, order_id=order_id)
    except OrderError as exc:
        raise http_error(exc) from exc
