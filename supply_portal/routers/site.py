from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from supply_portal.auth import Principal, Role, require_role, require_site_scope
from supply_portal.db import get_db
from supply_portal.dependencies import get_client_ip, http_error
from supply_portal.errors import OrderError
from supply_portal.models import OrderStatus
from supply_portal.schemas import OrderCreate, ReceiveRequest
from supply_portal.security.middleware import verify_csrf
from supply_portal.services.audit_service import log_audit
from supply_portal.services.directory_service import list_suppliers
from supply_portal.services.order_ref_utils import order_ref
from supply_portal.services.order_service import create_order, get_order_detail, list_orders, load_items, serialize_order
from supply_portal.services.receiving_service import receive_order
from supply_portal.services.unit_of_work import commit_unit

router = APIRouter(prefix='/site', tags=['site'])
worker_access = require_role(Role.WORKER)


@router.get('/orders')
def site_orders(
    search: str | None = None,
    principal: Principal = Depends(worker_access),
    db: Session = Depends(get_db),
):
    site_id = require_site_scope(principal)
    return {'orders': list_orders(db, site_id=site_id, search=search)}


@router.post('/orders', status_code=201)
def site_create_order(
    payload: OrderCreate,
    request: Request,
    principal: Principal = Depends(worker_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    site_id = require_site_scope(principal)
    try:
        order = create_order(
            db,
            site_id=site_id,
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


@router.get('/orders/receivable')
def receivable_orders(
    principal: Principal = Depends(worker_access),
    db: Session = Depends(get_db),
):
    site_id = require_site_scope(principal)
    return {
        'orders': list_orders(db, site_id=site_id, statuses=[OrderStatus.APPROVED]),
        'suppliers': list_suppliers(db),
    }


@router.get('/orders/{order_id}')
def site_order_detail(
    order_id: int,
    principal: Principal = Depends(worker_access),
    db: Session = Depends(get_db),
):
    site_id = require_site_scope(principal)
    try:
        return get_order_detail(db, order_id=order_id, site_id=site_id)
    except OrderError as exc:
        raise http_error(exc) from exc


@router.post('/orders/{order_id}/receive')
def site_receive_order(
    order_id: int,
    payload: ReceiveRequest,
    request: Request,
    principal: Principal = Depends(worker_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    site_id = require_site_scope(principal)
    try:
        # Scope check before any write.
        get_order_detail(db, order_id=order_id, site_id=site_id)
        outcome = receive_order(
            db,
            order_id=order_id,
            deliveries=payload.to_inputs(),
            actor_name=principal.name,
            expected_version=payload.expected_version,
        )
        ip = get_client_ip(request)
        log_audit(
            db,
            actor_profile_id=principal.id,
            actor_name=principal.name,
            action='ORDER_RECEIVED',
            order_id=outcome.order.id,
            ip=ip,
            metadata={'status': outcome.order.status.value, 'shortfall_lines': len(outcome.reconciliation.shortfall_lines)},
        )
        if outcome.complement is not None:
            log_audit(
                db,
                actor_profile_id=principal.id,
                actor_name=principal.name,
                action='COMPLEMENT_ORDER_CREATED',
                order_id=outcome.complement.id,
                ip=ip,
                metadata={'parent_order_id': outcome.order.id, 'parent_ref': order_ref(outcome.order)},
            )
        commit_unit(db, operation='receive_order')
    except OrderError as exc:
        raise http_error(exc) from exc

    return {
        'order': serialize_order(outcome.order, load_items(db, order_id=outcome.order.id)),
        'complement': (
            serialize_order(outcome.complement, load_items(db, order_id=outcome.complement.id))
            if outcome.complement is not None
            else None
        ),
    }
