from sqlalchemy import select

from supply_portal.db import SessionLocal, engine
from supply_portal.models import Base, Material, Profile, ProfileRole, Site, Supplier
from supply_portal.security.credentials import hash_password

DEMO_MATERIALS = [
    ('Cimento CP-II 50kg', 'sc', 'Estrutura'),
    ('Areia média', 'm3', 'Agregados'),
    ('Brita 1', 'm3', 'Agregados'),
    ('Vergalhão CA-50 10mm', 'br', 'Aço'),
    ('Tijolo cerâmico 8 furos', 'un', 'Alvenaria'),
]

DEMO_SUPPLIERS = ['Depósito Central', 'Casa do Construtor', 'Aço Forte']


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        site = db.execute(select(Site).where(Site.name == 'Obra Centro')).scalar_one_or_none()
        if not site:
            site = Site(name='Obra Centro', address='Rua Principal, 100', active=True)
            db.add(site)
            db.flush()

        if not db.execute(select(Material.id)).first():
            for name, unit, category in DEMO_MATERIALS:
                db.add(Material(name=name, unit=unit, category=category, active=True))

        if not db.execute(select(Supplier.id)).first():
            for name in DEMO_SUPPLIERS:
                db.add(Supplier(name=name, active=True))

        admin = db.execute(select(Profile).where(Profile.username == 'admin')).scalar_one_or_none()
        if not admin:
            db.add(
                Profile(
                    username='admin',
                    name='Admin',
                    password_hash=hash_password('adminpass'),
                    role=ProfileRole.ADMIN,
                    site_id=None,
                    active=True,
                )
            )

        worker = db.execute(select(Profile).where(Profile.username == 'encarregado')).scalar_one_or_none()
        if not worker:
            db.add(
                Profile(
                    username='encarregado',
                    name='Encarregado / Mestre de Obras',
                    password_hash=hash_password('workerpass'),
                    role=ProfileRole.WORKER,
                    site_id=site.id,
                    active=True,
                )
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
