"""Seed a demo workshop: operators, a supplier and a small parts catalog.

Safe to re-run; existing rows (matched by email / name / part number) are
left alone.

    DATABASE_URL=sqlite:///./shopdb.db python -m shopdb.scripts.seed_demo
"""

import os
from decimal import Decimal

from sqlalchemy.orm import Session

from shopdb.database import Base, SessionLocal, write_engine
from shopdb.apps.accounts import models as account_models
from shopdb.apps.inventory import schemas as inventory_schemas
from shopdb.apps.inventory import services as inventory_services
from shopdb.apps.purchasing import models as purchasing_models

CREATE_TABLES = os.getenv("SHOPDB_SEED_CREATE_TABLES", "false").lower() in {"1", "true", "yes", "on"}

OPERATORS = [
    ("owner@workshop.test", "Workshop Owner", account_models.AccountRole.ADMIN),
    ("service@workshop.test", "Service Manager", account_models.AccountRole.SERVICE_MANAGER),
    ("parts@workshop.test", "Parts Manager", account_models.AccountRole.PARTS_MANAGER),
    ("tech@workshop.test", "Bay Technician", account_models.AccountRole.TECHNICIAN),
    ("desk@workshop.test", "Front Desk", account_models.AccountRole.FRONT_DESK),
]

SUPPLIER_NAME = "Metro Auto Parts"

CATALOG = [
    # part_number, name, qty, cost, sell, threshold, barcode, location
    ("OF-1001", "Oil filter", 24, "4.20", "9.50", 6, "5012345000011", "A1"),
    ("AF-2040", "Air filter", 12, "7.80", "16.00", 4, "5012345000028", "A2"),
    ("BP-3310", "Brake pads (front)", 8, "21.00", "48.00", 3, "5012345000035", "B1"),
    ("SP-0450", "Spark plug", 40, "2.10", "5.50", 12, "5012345000042", "A3"),
    ("WB-7700", "Wiper blade 22in", 5, "3.90", "11.00", 5, "5012345000059", "C4"),
]


def _seed_operators(db: Session) -> None:
    for email, full_name, role in OPERATORS:
        if db.query(account_models.User).filter(account_models.User.email == email).first():
            continue
        db.add(account_models.User(email=email, full_name=full_name, role=role, is_active=True))
    db.flush()


def _seed_supplier(db: Session) -> purchasing_models.Supplier:
    supplier = db.query(purchasing_models.Supplier).filter(purchasing_models.Supplier.name == SUPPLIER_NAME).first()
    if not supplier:
        supplier = purchasing_models.Supplier(name=SUPPLIER_NAME, email="orders@metroauto.test", is_active=True)
        db.add(supplier)
        db.flush()
    return supplier


def _seed_catalog(db: Session, supplier_id: int) -> int:
    created = 0
    for part_number, name, qty, cost, sell, threshold, barcode, location in CATALOG:
        if inventory_services.get_part_by_number(db, part_number):
            continue
        inventory_services.create_part(
            db,
            payload=inventory_schemas.PartCreate(
                part_number=part_number,
                name=name,
                opening_quantity=qty,
                cost_price=Decimal(cost),
                sell_price=Decimal(sell),
                reorder_threshold=threshold,
                barcode=barcode,
                location=location,
                supplier_id=supplier_id,
                auto_reorder=True,
            ),
        )
        created += 1
    return created


def main() -> None:
    if CREATE_TABLES:
        Base.metadata.create_all(bind=write_engine)

    db: Session = SessionLocal()
    try:
        _seed_operators(db)
        supplier = _seed_supplier(db)
        created = _seed_catalog(db, supplier.id)
        db.commit()
        print(f"Seeded {len(OPERATORS)} operators, supplier {supplier.name!r}, {created} new parts.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
