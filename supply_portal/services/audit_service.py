from __future__ import annotations

from sqlalchemy.orm import Session

from supply_portal.models import AuditLog, AuthEvent


def log_auth_event(
    db: Session,
    *,
    attempted_username: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    profile_id: int | None = None,
    failure_reason: str | None = None,
) -> None:
    db.add(
        AuthEvent(
            attempted_username=attempted_username,
            success=success,
            failure_reason=failure_reason,
            profile_id=profile_id,
            ip=ip,
            user_agent=user_agent,
        )
    )


def log_audit(
    db: Session,
    *,
    actor_profile_id: int | None,
    action: str,
    order_id: int | None = None,
    actor_name: str | None = None,
    ip: str | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_profile_id=actor_profile_id,
            actor_name=actor_name,
            action=action,
            order_id=order_id,
            ip=ip,
            meta=metadata or {},
        )
    )
