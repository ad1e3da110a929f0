"""Shared fixtures.

Settings are read at import time, so the environment is prepared before any
application module is imported.
"""
import os

os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWT_SECRET", "test-signing-secret-0123456789abcdef")
os.environ.setdefault("RETRY_DELAY", "0")
os.environ.setdefault("RETRY_ANALYSIS_DELAY", "0")
os.environ.setdefault("AZURE_DOCINT_POLL_INITIAL_DELAY", "0")
os.environ.setdefault("LOG_FORMAT", "text")

from datetime import date  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from bmo import models  # noqa: E402
from bmo.store.roles import ensure_default_roles, get_role_by_name  # noqa: E402
from bmo.store.transactions import create_transaction, update_transaction_status  # noqa: E402


@pytest.fixture
async def session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bmo.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)

    maker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
    async with maker() as s:
        yield s
    await engine.dispose()


@pytest.fixture
async def company(session):
    company = models.Company(name="Acme Ltd", currency_code="USD", timezone="UTC", is_active=True)
    session.add(company)
    await session.commit()
    return company


@pytest.fixture
async def admin_user(session, company):
    await ensure_default_roles(session)
    role = await get_role_by_name(session, "admin")
    user = models.User(
        appwrite_user_id="aw-admin",
        email="admin@acme.test",
        name="Ada Admin",
        role_id=role.id,
        company_id=company.id,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    return user


async def add_account(session, company_id, code, name, account_type, balance_type):
    account = models.ChartOfAccount(
        company_id=company_id,
        account_code=code,
        account_name=name,
        account_type=account_type,
        balance_type=balance_type,
        is_active=True,
    )
    session.add(account)
    await session.commit()
    return account


@pytest.fixture
async def ledger(session, company):
    """Cash, payables, equity, sales and rent accounts."""
    return {
        "cash": await add_account(session, company.id, "1000", "Cash", "asset", "debit"),
        "payables": await add_account(session, company.id, "2000", "Accounts Payable", "liability", "credit"),
        "equity": await add_account(session, company.id, "3000", "Owner's Equity", "equity", "credit"),
        "sales": await add_account(session, company.id, "4000", "Sales Revenue", "revenue", "credit"),
        "rent": await add_account(session, company.id, "6000", "Rent Expense", "expense", "debit"),
    }


async def post_entry(session, company_id, debit_account, credit_account, amount, *, on=None, txn_type="journal", description=None):
    """Create a balanced two-line entry and post it."""
    txn = await create_transaction(
        session,
        company_id,
        transaction_date=on or date.today(),
        transaction_type=txn_type,
        description=description,
        lines=[
            {"account_id": debit_account.id, "debit_amount": amount},
            {"account_id": credit_account.id, "credit_amount": amount},
        ],
    )
    return await update_transaction_status(session, company_id, txn.id, "posted")
