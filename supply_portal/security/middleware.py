from __future__ import annotations

import secrets

from fastapi import FastAPI, HTTPException, Request, status

from supply_portal.config import settings

CSRF_COOKIE_NAME = 'csrf_token'
CSRF_HEADER_NAME = 'x-csrf-token'
SAFE_METHODS = frozenset({'GET', 'HEAD', 'OPTIONS'})

# Responses carry prices, supplier names and people's names.
SECURITY_HEADERS = {
    'X-Robots-Tag': 'noindex, nofollow, noarchive',
    'X-Content-Type-Options': 'nosniff',
    'Cache-Control': 'no-store',
}


def install_security_headers(app: FastAPI) -> None:
    @app.middleware('http')
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


def install_csrf_cookie_middleware(app: FastAPI) -> None:
    """Hand every client a readable CSRF cookie that unsafe requests must echo in a header."""

    @app.middleware('http')
    async def csrf_cookie_middleware(request: Request, call_next):
        existing = request.cookies.get(CSRF_COOKIE_NAME)
        request.state.csrf_token = existing or secrets.token_urlsafe(24)

        response = await call_next(request)
        if existing != request.state.csrf_token:
            response.set_cookie(
                key=CSRF_COOKIE_NAME,
                value=request.state.csrf_token,
                httponly=False,
                secure=settings.session_cookie_secure,
                samesite='lax',
            )
        return response


async def verify_csrf(request: Request) -> None:
    if request.method in SAFE_METHODS:
        return

    header_token = request.headers.get(CSRF_HEADER_NAME) or ''
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME) or ''
    if not header_token or not cookie_token or not secrets.compare_digest(header_token, cookie_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Invalid CSRF token')
