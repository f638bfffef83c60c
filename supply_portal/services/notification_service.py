from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from supply_portal.models import Order, OrderStatus, WebSession


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _web_session(db: Session, session_token: str) -> WebSession | None:
    return db.execute(select(WebSession).where(WebSession.session_token == session_token)).scalar_one_or_none()


def unread_order_count(db: Session, *, session_token: str) -> dict:
    """Pending orders created since this login last marked the queue as seen."""
    web_session = _web_session(db, session_token)
    cursor = web_session.orders_seen_at if web_session else None
    query = select(func.count(Order.id)).where(Order.status == OrderStatus.NEW)
    if cursor is not None:
        query = query.where(Order.created_at > cursor)
    return {'unread': int(db.execute(query).scalar_one()), 'seen_at': cursor}


def mark_orders_seen(db: Session, *, session_token: str, now: datetime | None = None) -> datetime | None:
    web_session = _web_session(db, session_token)
    if web_session is None:
        return None
    web_session.orders_seen_at = now or _now()
    return web_session.orders_seen_at
