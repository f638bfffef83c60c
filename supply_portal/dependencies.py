from fastapi import HTTPException, Request

from supply_portal.errors import (
    InvalidTransition,
    OrderError,
    OrderNotFound,
    PersistenceFailure,
    StaleOrder,
    ValidationError,
)


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def http_error(exc: OrderError) -> HTTPException:
    if isinstance(exc, OrderNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransition, StaleOrder)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PersistenceFailure):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
