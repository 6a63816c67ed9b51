import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from product_service import store
from product_service.config import Settings
from product_service.errors import PublishFailure
from product_service.main import create_app
from product_service.publisher import EventPublisher

SERVICE_TOKEN = "service-secret"
ADMIN_TOKEN = "admin-secret"

SERVICE_HEADERS = {"X-Service-Token": SERVICE_TOKEN}
ADMIN_HEADERS = {**SERVICE_HEADERS, "Authorization": f"Bearer {ADMIN_TOKEN}"}


class RecordingPublisher(EventPublisher):
    """Keeps published events in memory instead of sending them to Redis."""

    def __init__(self):
        super().__init__(redis=None)
        self.events: list[tuple[str, dict]] = []
        self.fail = False

    async def publish(self, event_type, payload):
        if self.fail:
            raise PublishFailure(f"Failed to publish {event_type}: broker down")
        self.events.append((event_type, payload.model_dump(mode="json", by_alias=True)))
        return f"{len(self.events)}-0"

    async def aclose(self):
        pass

    def of_type(self, event_type: str) -> list[dict]:
        return [data for t, data in self.events if t == event_type]


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await store.create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def make_product(session_factory):
    async def _make(name="Widget", stock=10, price=9.99, categories=None, description=None):
        async with session_factory() as s:
            return await store.insert_product(
                s,
                name=name,
                description=description or f"{name} description",
                price=price,
                stock_quantity=stock,
                categories=categories or [],
            )

    return _make


@pytest.fixture
def stock_of(session_factory):
    async def _stock(product_id):
        async with session_factory() as s:
            product = await store.find_by_id(s, product_id)
            return None if product is None else product.stock_quantity

    return _stock


@pytest.fixture
async def client(session_factory, publisher):
    app = create_app(
        Settings(service_token=SERVICE_TOKEN, admin_token=ADMIN_TOKEN),
        session_factory=session_factory,
        publisher=publisher,
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
