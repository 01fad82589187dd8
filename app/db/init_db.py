# app/db/init_db.py
from __future__ import annotations

import argparse
from decimal import Decimal

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.session import engine
from app.db.base import Base

# Import all models so metadata is complete
from app.models import (  # noqa: F401
    Department, User, Drug, Stock, StockTransaction, TransactionType,
    Transfer, TransferItem, NumberSeries)

DEMO_DRUGS = [
    # code, name, unit, unit cost, opening pharmacy qty
    ("PARA500", "Paracetamol 500 mg", "tab", Decimal("0.50"), 5000),
    ("AMOX250S", "Amoxicillin 250 mg/5 ml syrup", "bottle", Decimal("38.00"), 200),
    ("IBU100S", "Ibuprofen 100 mg/5 ml syrup", "bottle", Decimal("25.00"), 150),
    ("ORS", "Oral rehydration salts", "sachet", Decimal("2.50"), 1000),
]

DEMO_USERS = [
    # username, first, last, position, department, admin
    ("pharmacist", "Somchai", "Dee", "เภสัชกร คลังยา", Department.PHARMACY, False),
    ("opdnurse", "Suda", "Jai", "พยาบาล OPD", Department.OPD, False),
    ("manager", "Anan", "Sook", "ผู้จัดการ", Department.PHARMACY, True),
]


def print_tables() -> set:
    names = set(inspect(engine).get_table_names())
    print("Existing tables:", sorted(names))
    return names


def seed_demo(db: Session) -> None:
    """
    Seed ONLY missing demo rows; safe to run multiple times.
    Opening pharmacy stock is posted as RECEIVE_EXTERNAL so the ledger
    stays equal to the sum of its transactions.
    """
    from app.services.stock_ledger import lock_or_create_stock, post_movement

    for username, first, last, position, dept, admin in DEMO_USERS:
        if not db.query(User).filter(User.username == username).first():
            db.add(User(username=username, first_name=first, last_name=last,
                        position=position, department=dept, is_admin=admin))
    db.flush()

    for code, name, unit, cost, qty in DEMO_DRUGS:
        drug = db.query(Drug).filter(Drug.hospital_drug_code == code).first()
        if drug:
            continue
        drug = Drug(hospital_drug_code=code, name=name, unit=unit, price_per_box=cost)
        db.add(drug)
        db.flush()

        st = lock_or_create_stock(db, drug.id, Department.PHARMACY)
        post_movement(
            db,
            st,
            txn_type=TransactionType.RECEIVE_EXTERNAL,
            quantity=qty,
            unit_cost=cost,
            user_id=None,
            reference="OPENING",
            note="Opening balance",
        )


def run(fresh: bool = False, demo: bool = False) -> None:
    if fresh:
        print("WARNING: Dropping ALL tables (dev only) …")
        Base.metadata.drop_all(bind=engine)

    print("Creating all missing tables …")
    Base.metadata.create_all(bind=engine)
    print_tables()

    if not demo:
        return

    try:
        with Session(engine) as db:
            seed_demo(db)
            db.commit()
            print("Demo users, drugs and opening stock seeded.")
    except SQLAlchemyError as e:
        print("Seeding failed:", e)
        raise


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, optionally seed demo data).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Seed demo users, drugs and opening pharmacy stock.",
    )
    args = parser.parse_args()
    run(fresh=args.fresh, demo=args.demo)
