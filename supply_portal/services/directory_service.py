from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from supply_portal.models import Material, Site, Supplier


def supplier_names_by_id(db: Session, *, supplier_ids: set[int] | None = None) -> dict[int, str]:
    query = select(Supplier.id, Supplier.name)
    if supplier_ids is not None:
        if not supplier_ids:
            return {}
        query = query.where(Supplier.id.in_(supplier_ids))
    return {int(row.id): row.name for row in db.execute(query).all()}


def existing_supplier_ids(db: Session, supplier_ids: set[int]) -> set[int]:
    if not supplier_ids:
        return set()
    rows = db.execute(select(Supplier.id).where(Supplier.id.in_(supplier_ids))).all()
    return {int(row[0]) for row in rows}


def materials_by_id(db: Session, material_ids: set[int]) -> dict[int, Material]:
    if not material_ids:
        return {}
    rows = db.execute(select(Material).where(Material.id.in_(material_ids), Material.active.is_(True))).scalars().all()
    return {int(row.id): row for row in rows}


def get_active_site(db: Session, site_id: int | None) -> Site | None:
    if site_id is None:
        return None
    return db.execute(select(Site).where(Site.id == site_id, Site.active.is_(True))).scalar_one_or_none()


def list_suppliers(db: Session) -> list[dict]:
    rows = db.execute(select(Supplier).where(Supplier.active.is_(True)).order_by(Supplier.name.asc())).scalars().all()
    return [{'id': row.id, 'name': row.name} for row in rows]
