import os
import tempfile
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ["JWT_SECRET"] = "test-signing-key-with-enough-entropy-0123456789"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(tempfile.gettempdir(), 'amc_portal_test_app.db')}"

import amc_portal.models  # noqa: E402,F401
from amc_portal.api.deps import get_token_codec  # noqa: E402
from amc_portal.core.config import TokenConfig  # noqa: E402
from amc_portal.core.security import TokenCodec, hash_password  # noqa: E402
from amc_portal.db.base_class import Base  # noqa: E402
from amc_portal.db.session import get_db  # noqa: E402
from amc_portal.main import app  # noqa: E402
from amc_portal.models.user import User, UserRole  # noqa: E402
from amc_portal.services.credential_store import SqlCredentialStore  # noqa: E402
from amc_portal.services.session_manager import SessionManager  # noqa: E402

TEST_SECRET = os.environ["JWT_SECRET"]
DEFAULT_PASSWORD = "StrongPass1!"


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = None):
        self.current = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int = 1) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def token_config() -> TokenConfig:
    return TokenConfig(secret=TEST_SECRET)


@pytest.fixture()
def codec(token_config: TokenConfig, clock: FakeClock) -> TokenCodec:
    return TokenCodec(token_config, clock=clock)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def store(db_session: Session) -> SqlCredentialStore:
    return SqlCredentialStore(db_session)


@pytest.fixture()
def manager(store: SqlCredentialStore, codec: TokenCodec) -> SessionManager:
    return SessionManager(store, codec)


@pytest.fixture()
def make_user(store: SqlCredentialStore):
    def _make_user(
        username: str = "alice",
        password: str = DEFAULT_PASSWORD,
        role: UserRole = UserRole.USER,
        email: str = None,
        is_active: bool = True,
    ) -> User:
        user = store.insert_user(
            username=username,
            password_hash=hash_password(password),
            role=role,
            email=email,
        )
        if not is_active:
            user = store.set_user_active(user.id, False)
        return user

    return _make_user


@pytest.fixture()
def client(db_session: Session, codec: TokenCodec) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_codec] = lambda: codec
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
