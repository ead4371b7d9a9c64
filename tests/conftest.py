from datetime import datetime, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from wallet.config import Settings
from wallet.core.constants import ADMIN_ROLES
from wallet.core.security import SecretCipher, create_identity_token
from wallet.db.session import Database
from wallet.models.user import User

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def sleep_calls():
    """Records requested sleeps instead of waiting."""
    calls: list[float] = []

    async def _sleep(seconds: float) -> None:
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        app_env="test",
        fly_app_name=None,
        jwt_secret="test-jwt-secret",
        encryption_key="test-encryption-key",
        ynab_base_url="https://ynab.test/v1",
        scheduler_enabled=False,
        sync_retry_delay_seconds=0.0,
        reset_db=False,
    )


@pytest.fixture
def cipher(settings: Settings) -> SecretCipher:
    return SecretCipher(settings.encryption_key)


@pytest.fixture
async def database(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'wallet.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def db_session(database: Database):
    async with database.session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_user(database: Database):
    """Factory inserting a committed user row."""

    async def _make(user_id: str, role: str | None = "user", status: str = "approved") -> str:
        async with database.session() as session:
            session.add(
                User(
                    id=user_id,
                    username=f"user_{user_id}",
                    name=f"User {user_id}",
                    role=role,
                    status=status,
                    is_admin=role in ADMIN_ROLES,
                )
            )
            await session.commit()
        return user_id

    return _make


@pytest.fixture
def auth_headers(settings: Settings):
    """Factory building bearer headers for a user id."""

    def _headers(user_id: str) -> dict:
        token = create_identity_token(user_id, settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def ynab_handler():
    """Mutable holder for the MockTransport handler used by the app's YNAB client."""
    state = {"handler": lambda request: httpx.Response(200, json={"data": {"category_groups": []}})}
    return state


@pytest.fixture
async def app(settings: Settings, database: Database, ynab_handler):
    from wallet.main import create_app
    from wallet.services.ynab_client import YnabClient

    http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: ynab_handler["handler"](request))
    )
    application = create_app(
        settings=settings,
        database=database,
        environ={},
        ynab_client=YnabClient(settings.ynab_base_url, http_client=http),
    )
    # ASGITransport does not run the lifespan, so drive it here.
    async with application.router.lifespan_context(application):
        yield application
    await http.aclose()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
