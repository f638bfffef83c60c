from __future__ import annotations

from pwdlib import PasswordHash
from sqlalchemy import select
from sqlalchemy.orm import Session

from supply_portal.models import Profile

password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return password_hash.verify(raw_password, hashed_password)


def check_credentials(db: Session, *, username: str, password: str) -> tuple[Profile | None, str | None]:
    """Return (profile, None) on success, else (profile or None, failure reason)."""
    profile = db.execute(select(Profile).where(Profile.username == username)).scalar_one_or_none()
    if profile is None:
        return None, 'UNKNOWN_USERNAME'
    if not profile.active:
        return profile, 'INACTIVE'
    if not verify_password(password, profile.password_hash):
        return profile, 'BAD_PASSWORD'
    return profile, None
