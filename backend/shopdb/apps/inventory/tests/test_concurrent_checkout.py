from __future__ import annotations

import threading

import pytest
from sqlalchemy.orm import sessionmaker

from shopdb.apps.inventory import ledger
from shopdb.apps.inventory import models as inventory_models
from shopdb.apps.inventory.gateways import BarcodeCheckOut
from shopdb.apps.inventory.ledger import InsufficientStock
from shopdb.database import Base, build_engine


@pytest.fixture()
def file_engine(tmp_path):
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'stock.db'}", immediate=True)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


def _seed_part(Session, quantity: int) -> int:
    with Session() as db:
        part = inventory_models.Part(
            part_number="PN-RACE",
            name="Brake pads",
            quantity=quantity,
            opening_quantity=quantity,
            reorder_threshold=1,
        )
        db.add(part)
        db.commit()
        return part.id


def test_two_terminals_cannot_oversell(file_engine):
    Session = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    part_id = _seed_part(Session, 5)
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def checkout(terminal: str) -> None:
        with Session() as db:
            barrier.wait()
            try:
                ledger.commit_with_retry(
                    db,
                    lambda: BarcodeCheckOut(part_id, 3).submit(db, idempotency_key=f"{terminal}:1"),
                )
                outcome = "ok"
            except InsufficientStock:
                outcome = "rejected"
            with lock:
                outcomes.append(outcome)

    threads = [threading.Thread(target=checkout, args=(name,)) for name in ("till-a", "till-b")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["ok", "rejected"]
    with Session() as db:
        report = ledger.reconcile(db, part_id).assert_balanced()
        assert report.quantity == 2
        assert report.transaction_count == 1


def test_parallel_receipts_all_land(file_engine):
    Session = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    part_id = _seed_part(Session, 0)
    barrier = threading.Barrier(4)

    def receive(n: int) -> None:
        with Session() as db:
            barrier.wait()
            ledger.commit_with_retry(
                db,
                lambda: ledger.apply_transaction(
                    db,
                    part_id=part_id,
                    transaction_type=inventory_models.TransactionTypeEnum.RECEIVED,
                    quantity_delta=n,
                    reference_type="manual",
                ),
            )

    threads = [threading.Thread(target=receive, args=(n,)) for n in (1, 2, 3, 4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    with Session() as db:
        report = ledger.reconcile(db, part_id).assert_balanced()
        assert report.quantity == 10
        assert report.transaction_count == 4
