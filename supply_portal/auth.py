from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    ADMIN = "ADMIN"
    WORKER = "WORKER"


@dataclass
class Principal:
    id: int
    username: str
    name: str
    role: Role
    site_id: int | None
    active: bool


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def require_site_scope(principal: Principal) -> int:
    # Workers only ever see their own site.
    if principal.site_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Worker login is missing a site")
    return principal.site_id
