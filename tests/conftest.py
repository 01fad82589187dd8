"""
Shared fixtures: an in-memory SQLite database per test, seeded with
one user per role, a few drugs and opening PHARMACY stock.
"""
import os

# engine is built at import time, point it at SQLite before importing app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["TRANSFER_SHORTAGE_POLICY"] = "reject"

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.api.deps import get_db
from app.core.rbac import actor_from_user
from app.db.base import Base
from app.db.session import build_engine
from app.main import app
from app.models import Department, Drug, TransactionType, User
from app.services.stock_ledger import lock_or_create_stock, post_movement
from app.utils.jwt import create_access_token


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def seed(session_factory):
    """
    Users: opd, pharm, admin (PHARMACY + is_admin), legacy (no department).
    Drugs: d1 (500 in PHARMACY @ 2.00), d2 (5 in PHARMACY @ 10.00), d3 inactive.
    """
    with session_factory() as db:
        users = {
            "opd": User(username="opd", first_name="Suda", last_name="Jai",
                        position="พยาบาล OPD", department=Department.OPD),
            "pharm": User(username="pharm", first_name="Somchai", last_name="Dee",
                          position="เภสัชกร คลังยา", department=Department.PHARMACY),
            "admin": User(username="admin", first_name="Anan", last_name="Sook",
                          position="ผู้จัดการ", department=Department.PHARMACY, is_admin=True),
            "legacy": User(username="legacy", first_name="Old", last_name="Account",
                           position="เจ้าหน้าที่คลังยา", department=None),
        }
        db.add_all(users.values())

        drugs = {
            "d1": Drug(hospital_drug_code="PARA500", name="Paracetamol 500 mg", unit="tab",
                       price_per_box=Decimal("2.00")),
            "d2": Drug(hospital_drug_code="AMOX250", name="Amoxicillin 250 mg", unit="cap",
                       price_per_box=Decimal("10.00")),
            "d3": Drug(hospital_drug_code="OLD001", name="Discontinued", unit="tab",
                       is_active=False),
        }
        db.add_all(drugs.values())
        db.flush()

        for key, qty, cost in (("d1", 500, "2.00"), ("d2", 5, "10.00")):
            st = lock_or_create_stock(db, drugs[key].id, Department.PHARMACY)
            post_movement(
                db,
                st,
                txn_type=TransactionType.RECEIVE_EXTERNAL,
                quantity=qty,
                unit_cost=Decimal(cost),
                user_id=users["pharm"].id,
                reference="OPENING",
            )
        db.commit()

        ns = SimpleNamespace(
            user_ids={k: u.id for k, u in users.items()},
            drug_ids={k: d.id for k, d in drugs.items()},
            actors={k: actor_from_user(u) for k, u in users.items()},
            tokens={k: create_access_token(u) for k, u in users.items()},
        )
    return ns


@pytest.fixture
def db(session_factory, seed):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory, seed):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth(seed):
    def _headers(who: str):
        return {"Authorization": f"Bearer {seed.tokens[who]}"}
    return _headers
