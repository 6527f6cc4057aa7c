import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import app.models  # noqa

from app.core.rate_limit import get_money_limiter
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.main import create_app
from app.models.enums import ParticipantRole
from app.models.user import User
from app.policies.rbac import Principal
from app.services.storage_service import InvoiceStorage, get_invoice_storage
from app.services.wallet_service import WalletService


@pytest.fixture(scope="function")
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def make_user(db):
    """Creates a user (and wallet, funded when balance > 0); returns a Principal."""

    def _make(user_id: str, role: ParticipantRole, balance: int = 0, display_name=None) -> Principal:
        name = display_name or user_id.replace("-", " ").title()
        db.add(User(id=user_id, role=role.value, display_name=name))
        db.flush()
        wallets = WalletService()
        wallets.ensure_wallet(db, user_id)
        if balance:
            wallets.deposit(db, user_id=user_id, amount=balance, description="Opening balance", commit=False)
        db.commit()
        return Principal(participant_id=user_id, role=role, display_name=name)

    return _make


@pytest.fixture(scope="function")
def startup(make_user):
    return make_user("startup-1", ParticipantRole.STARTUP)


@pytest.fixture(scope="function")
def agency(make_user):
    return make_user("agency-1", ParticipantRole.FUNDING_AGENCY, balance=10_000_000)


def token_for(principal: Principal) -> str:
    return create_access_token(
        participant_id=principal.participant_id,
        role=principal.role.value,
        display_name=principal.display_name,
    )


@pytest.fixture(scope="function")
def auth():
    def _headers(principal: Principal, idem_key=None) -> dict:
        headers = {"Authorization": f"Bearer {token_for(principal)}"}
        if idem_key:
            headers["Idempotency-Key"] = idem_key
        return headers

    return _headers


@pytest.fixture(scope="function")
def invoice_dir(tmp_path):
    return tmp_path / "invoices"


@pytest.fixture(scope="function")
def client(session_factory, invoice_dir):
    app = create_app()

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_invoice_storage] = lambda: InvoiceStorage(
        root_dir=str(invoice_dir),
        public_base_url="/files/invoices",
        max_bytes=1024 * 1024,
    )
    get_money_limiter().reset()

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
    get_money_limiter().reset()
