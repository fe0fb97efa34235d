"""
Shared fixtures — an in-memory SQLite database per test, sync session.

Run with:
    pytest api/tests -v
"""
import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.core.database import Base
from app.models.account import Account, Category, Transaction
from app.models.recurring import RecurringTransaction  # noqa: F401  (registers the table)

TODAY = date(2026, 6, 15)
IBAN = "NL91ABNA0417164300"


@pytest.fixture
def db():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture
def account(db) -> Account:
    acct = Account(id=uuid.uuid4(), name="Joint checking", currency_code="EUR", is_hidden=False)
    db.add(acct)
    db.commit()
    return acct


@pytest.fixture
def category(db, account) -> Category:
    cat = Category(id=uuid.uuid4(), account_id=account.id, name="Subscriptions", color="#4CAF50")
    db.add(cat)
    db.commit()
    return cat


def _add_txn(
    db: Session,
    account: Account,
    days_ago: int,
    amount: int,
    counterparty: str | None = f"IBAN:{IBAN}",
    description: str | None = "Test transaction",
    transaction_type: str | None = "debit",
    parent: Transaction | None = None,
) -> Transaction:
    txn = Transaction(
        id=uuid.uuid4(),
        account_id=account.id,
        date=TODAY - timedelta(days=days_ago),
        amount=amount,
        counterparty_account=counterparty,
        description=description,
        transaction_type=transaction_type,
        parent_transaction_id=parent.id if parent else None,
    )
    db.add(txn)
    db.flush()
    return txn


@pytest.fixture
def add_txn():
    """Factory fixture: ``add_txn(db, account, days_ago, amount, ...)`` flushes one transaction."""
    return _add_txn
