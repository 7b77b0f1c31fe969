from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("LEDGER_RETRY_BACKOFF_SEC", "0")

import shopdb  # noqa: E402,F401  (registers every model on Base.metadata)
from shopdb.database import Base, build_engine  # noqa: E402
from shopdb.apps.accounts import models as account_models  # noqa: E402


@pytest.fixture()
def db_engine():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(db_engine):
    TestingSession = sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db_session):
    def _make_user(
        role: account_models.AccountRole = account_models.AccountRole.PARTS_MANAGER,
        email: str = "parts@example.com",
    ) -> account_models.User:
        user = account_models.User(email=email, full_name="Parts Desk", role=role, is_active=True)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def make_part(db_session):
    from shopdb.apps.inventory import models as inventory_models

    counter = {"n": 0}

    def _make_part(
        quantity: int = 10,
        *,
        reorder_threshold: int = 5,
        sell_price=None,
        cost_price=None,
        barcode=None,
        part_number=None,
        name: str = "Oil filter",
        auto_reorder: bool = False,
        reorder_quantity: int = 10,
        supplier_id=None,
    ):
        counter["n"] += 1
        part = inventory_models.Part(
            part_number=part_number or f"PN-{counter['n']:04d}",
            name=name,
            quantity=quantity,
            opening_quantity=quantity,
            reorder_threshold=reorder_threshold,
            reorder_quantity=reorder_quantity,
            auto_reorder=auto_reorder,
            sell_price=sell_price,
            cost_price=cost_price,
            barcode=barcode,
            supplier_id=supplier_id,
        )
        db_session.add(part)
        db_session.commit()
        db_session.refresh(part)
        return part

    return _make_part
