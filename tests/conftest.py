import os
import tempfile

# Settings are read at import time: point the app at a scratch SQLite file
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(), 'orders_app.db')}"
)
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
import pytest_asyncio

from order_service.core.order_lock import OrderLockRegistry
from order_service.core.security import create_access_token
from order_service.db.database import Base, make_engine, make_session_factory
from order_service.db.order_store import OrderStore
from order_service.models.order import TableSession, TableSessionStatus
from order_service.realtime.hub import BroadcastHub
from order_service.services.events import EventEmitter
from order_service.services.order_service import OrderService

RESTAURANT_ID = "rest-1"
OTHER_RESTAURANT_ID = "rest-2"


class RecordingHub(BroadcastHub):
    """BroadcastHub that also remembers everything published through it."""

    def __init__(self):
        super().__init__()
        self.published: list[tuple[str, str, dict]] = []

    def publish(self, restaurant_id, event, data):
        self.published.append((restaurant_id, event, data))
        return super().publish(restaurant_id, event, data)

    def events(self, name: str | None = None) -> list[dict]:
        return [data for _, event, data in self.published if name is None or event == name]


def make_token(role: str = "WAITER", restaurant_id: str = RESTAURANT_ID, user_id: str = "user-1") -> str:
    return create_access_token({"userId": user_id, "role": role, "restaurantId": restaurant_id})


def auth_headers(role: str = "WAITER", restaurant_id: str = RESTAURANT_ID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(role, restaurant_id)}"}


async def seed_table_session(
    session_factory,
    restaurant_id: str = RESTAURANT_ID,
    status: TableSessionStatus = TableSessionStatus.OPEN,
) -> str:
    async with session_factory() as session:
        async with session.begin():
            table_session = TableSession(restaurant_id=restaurant_id, table_id="table-7", status=status)
            session.add(table_session)
    return table_session.id


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def table_session_id(session_factory):
    return await seed_table_session(session_factory)


@pytest.fixture
def hub():
    return RecordingHub()


@pytest.fixture
def store(session_factory):
    return OrderStore(session_factory, OrderLockRegistry(timeout=5.0))


@pytest.fixture
def service(store, hub):
    return OrderService(store, EventEmitter(hub))
