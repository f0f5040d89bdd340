"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os
import tempfile
from functools import partial

# Settings are read at import time; point them at throwaway resources
_TEST_DB = os.path.join(tempfile.mkdtemp(prefix="payments-tests-"), "app.db")
os.environ.setdefault("DATABASE__URL", f"sqlite+aiosqlite:///{_TEST_DB}")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("PAYMENT__PROVIDER", "manual")
os.environ.setdefault("WEBHOOK__INBOUND_SECRET", "inbound-secret")
os.environ.pop("REDIS__URL", None)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from core.settings import PaymentSettings, WebhookEndpoint, WebhookSettings  # noqa: E402
from domain.payment.entity import BalanceAccount  # noqa: E402
from infrastructure.database import build_session_factory, create_tables, drop_tables  # noqa: E402
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Per-test file-backed sqlite database (several connections share it)."""
    engine, factory = build_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    try:
        yield factory
    finally:
        await drop_tables(engine)
        await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory)


@pytest_asyncio.fixture
async def account(uow_factory):
    async with uow_factory() as uow:
        return await uow.accounts.create(BalanceAccount(id=1, balance=0))


@pytest.fixture
def payment_cfg():
    return PaymentSettings(provider="manual", manual={"admin_token": "admin-secret"})


@pytest.fixture
def webhook_cfg():
    return WebhookSettings(
        max_attempts=4,
        retry_delays=[60, 300, 1800],
        endpoints={
            "huba": WebhookEndpoint(
                url="https://huba.example.com/hooks",
                secret="huba-secret",
                events=["user.verified", "token.balance_updated"],
            ),
        },
    )
