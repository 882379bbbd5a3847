import os
import tempfile
from datetime import datetime, timedelta, timezone

# Point settings at a throwaway SQLite file before bms is imported
_test_tmp_dir = tempfile.mkdtemp(prefix="bms_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{_test_tmp_dir}/bms_test.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-testing-only-do-not-use-in-production"
os.environ["ROTATE_REFRESH_TOKENS"] = "false"
os.environ["MAILGUN_API_KEY"] = ""
os.environ["MAILGUN_DOMAIN"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_PUBLISHABLE_KEY"] = "pk_test_dummy"
os.environ["CORE_SERVICE_URL"] = "http://core.test"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from bms.database import Base, SessionLocal, engine  # noqa: E402
from bms.models import AccountStatus, User, UserRole  # noqa: E402
from bms.services.account_guard import AccountGuard, LockoutPolicy  # noqa: E402
from bms.services.auth import TokenCodec, TokenSettings, get_password_hash  # noqa: E402
from bms.services.sessions import SessionManager  # noqa: E402

TEST_SECRET = os.environ["JWT_SECRET_KEY"]
PASSWORD = "Secret123!"


class FakeClock:
    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_settings():
    return TokenSettings(secret_key=TEST_SECRET)


@pytest.fixture
def codec(token_settings, clock):
    return TokenCodec(token_settings, clock=clock)


@pytest.fixture
def guard(db, clock):
    return AccountGuard(db, LockoutPolicy(), clock=clock)


@pytest.fixture
def sessions(db, codec, guard, clock):
    return SessionManager(db, codec, guard, clock=clock)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(
        email: str | None = None,
        phone: str | None = None,
        role: UserRole = UserRole.TENANT,
        status: AccountStatus = AccountStatus.ACTIVE,
        verified: bool = True,
        password: str = PASSWORD,
    ) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=email or f"user{n}@example.com",
            phone=phone or f"55500000{n:02d}",
            hashed_password=get_password_hash(password),
            role=role,
            account_status=status,
            first_name="Test",
            last_name=f"User{n}",
            email_verified=verified,
            phone_verified=verified,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def client():
    from bms.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def api_token():
    """Access token signed with the same codec the running app uses."""
    from bms.dependencies import get_token_codec

    def _token(user: User) -> str:
        return get_token_codec().issue_access_token(user)

    return _token
