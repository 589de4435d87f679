"""Pytest fixtures for testing"""

import os

# Must be set before the application modules build their engine
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from datetime import date
from typing import Callable, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from statement_gateway.api.main import create_app
from statement_gateway.domain.models import LineClassification, StatementLine
from statement_gateway.infrastructure.database.models import Base, BillPayment
from statement_gateway.infrastructure.database.repositories import BillPaymentRepository
from statement_gateway.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PAYMENT_DATE = date(2025, 11, 5)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def make_bill_payment(db: Session) -> Callable[..., BillPayment]:
    """Factory for committed standalone bill payments"""

    def _make(amount_cents: int = -36691, day: date = PAYMENT_DATE, description: str = "Pagamento fatura") -> BillPayment:
        bill = BillPaymentRepository(db).create_bill_payment(day, amount_cents, description)
        db.commit()
        return bill

    return _make


@pytest.fixture
def nubank_csv() -> bytes:
    """Nubank credit card export: charges positive, refund and payment negative"""
    return (
        "date,title,amount\n"
        "2025-10-08,Mercado Central,420.73\n"
        "2025-10-15,Hospital - Parcela 1/3,200.00\n"
        "2025-10-20,Estorno de compra,-253.82\n"
        "2025-11-05,Pagamento recebido,-366.91\n"
    ).encode("utf-8")


@pytest.fixture
def nubank_lines() -> list[StatementLine]:
    """Parsed (unclassified) lines of the Nubank export above"""
    return [
        StatementLine(date(2025, 10, 8), "Mercado Central", 42073),
        StatementLine(date(2025, 10, 15), "Hospital - Parcela 1/3", 20000),
        StatementLine(date(2025, 10, 20), "Estorno de compra", -25382),
        StatementLine(PAYMENT_DATE, "Pagamento recebido", -36691),
    ]


@pytest.fixture
def negative_lines() -> list[StatementLine]:
    """Statement that writes purchases as negative debits"""
    return [
        StatementLine(date(2025, 11, 1), "Livraria", -50000),
        StatementLine(PAYMENT_DATE, "Pagamento recebido", -50000, LineClassification.PAYMENT_RECEIVED),
    ]
