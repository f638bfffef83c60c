from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from supply_portal.config import settings
from supply_portal.db import get_db
from supply_portal.dependencies import get_client_ip
from supply_portal.schemas import LoginRequest
from supply_portal.security.credentials import check_credentials
from supply_portal.security.middleware import verify_csrf
from supply_portal.security.sessions import create_web_session, revoke_web_session
from supply_portal.services.audit_service import log_audit, log_auth_event

router = APIRouter(tags=['auth'])


@router.post('/login')
def login_submit(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    username = payload.username.strip()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    profile, failure_reason = check_credentials(db, username=username, password=payload.password)
    log_auth_event(
        db,
        attempted_username=username,
        success=failure_reason is None,
        failure_reason=failure_reason,
        profile_id=profile.id if profile else None,
        ip=ip,
        user_agent=user_agent,
    )
    if failure_reason is not None:
        db.commit()
        return JSONResponse({'detail': 'Invalid username or password'}, status_code=401)

    token = create_web_session(db, profile.id, ip, user_agent)
    log_audit(db, actor_profile_id=profile.id, actor_name=profile.name, action='LOGIN', ip=ip)
    db.commit()

    response = JSONResponse({'id': profile.id, 'name': profile.name, 'role': profile.role.value, 'site_id': profile.site_id})
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    token = request.cookies.get(settings.session_cookie_name)
    principal = getattr(request.state, 'principal', None)
    if token:
        revoke_web_session(db, token)
        if principal:
            log_audit(
                db,
                actor_profile_id=principal.id,
                actor_name=principal.name,
                action='LOGOUT',
                ip=get_client_ip(request),
            )
        db.commit()
    response = JSONResponse({'detail': 'Logged out'})
    response.delete_cookie(settings.session_cookie_name)
    return response
