"""
Shared fixtures: in-memory Tortoise per test, an initialised realtime channel
with recording sockets, and factories for users, gigs and orders.
"""
from decimal import Decimal

import pytest
from tortoise import Tortoise

from app.utils import websocket_manager
from app.utils.auto_routing import get_model_modules
from applications.gigs.models import Gig, GigCategory, PackageTier
from applications.orders.models import Order, OrderStatus, PaymentStatus
from applications.orders.services import create_order
from applications.user.models import User, UserRole

# registers the rating hooks on Review
import applications.reviews.signals  # noqa: F401

# already in bcrypt form, so model.save() stores it as is and tests skip hashing
PASSWORD_HASH = "$2b$12$KIXQJhY5aVv2v1Jp5dC2h.5q1n6cJ1wS5b0cWqz0Xx9C3Jm1bS3y6"

TEST_DB_CONFIG = {
    "connections": {"default": "sqlite://:memory:"},
    "apps": {"models": {"models": get_model_modules(), "default_connection": "default"}},
    "use_tz": True,
    "timezone": "UTC",
}


# ============================================================================
# INFRASTRUCTURE
# ============================================================================

@pytest.fixture(autouse=True)
async def db():
    await Tortoise.init(config=TEST_DB_CONFIG)
    await Tortoise.generate_schemas()
    yield
    await Tortoise._drop_databases()


class RecordingSocket:
    """Stands in for a starlette WebSocket; keeps every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.accepted = False
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, name: str) -> list[dict]:
        return [frame["data"] for frame in self.sent if frame["event"] == name]


@pytest.fixture
async def channel():
    ch = websocket_manager.init_channel()
    yield ch
    await websocket_manager.close_channel()


@pytest.fixture
def connect(channel):
    async def _connect(user: User, fail: bool = False) -> RecordingSocket:
        socket = RecordingSocket(fail=fail)
        await channel.connect(socket, user.id)
        return socket
    return _connect


# ============================================================================
# FACTORIES
# ============================================================================

@pytest.fixture
def make_user():
    counter = {"n": 0}

    async def _make(role: UserRole = UserRole.CLIENT, **extra) -> User:
        counter["n"] += 1
        n = counter["n"]
        return await User.create(
            username=extra.pop("username", f"user{n}"),
            email=extra.pop("email", f"user{n}@example.com"),
            password=PASSWORD_HASH,
            full_name=extra.pop("full_name", f"User {n}"),
            role=role,
            **extra,
        )
    return _make


@pytest.fixture
async def buyer(make_user) -> User:
    return await make_user(UserRole.CLIENT, username="buyer")


@pytest.fixture
async def seller(make_user) -> User:
    return await make_user(UserRole.FREELANCER, username="seller")


def package(price, revisions=1, delivery_time=5, title="Basic Website"):
    return {
        "title": title,
        "description": f"{title} package",
        "price": price,
        "delivery_time": delivery_time,
        "revisions": revisions,
        "features": ["Responsive Design"],
    }


@pytest.fixture
def make_gig():
    async def _make(freelancer: User, price=150, revisions=1, **extra) -> Gig:
        return await Gig.create(
            freelancer=freelancer,
            title=extra.pop("title", "I will build your website"),
            description="Modern responsive website",
            category=GigCategory.WEB_DEVELOPMENT,
            subcategory="Full Stack Development",
            pricing={"basic": package(price, revisions), "standard": package(price * 2, revisions + 1, title="Std")},
            **extra,
        )
    return _make


@pytest.fixture
async def gig(make_gig, seller) -> Gig:
    return await make_gig(seller)


@pytest.fixture
def make_order(buyer, seller, gig):
    """Create an order for the basic package and force it into ``status``.

    Orders past ``pending`` are marked paid unless the test says otherwise.
    """
    async def _make(status: OrderStatus = OrderStatus.PENDING, revisions: int = 1, price=150, **extra) -> Order:
        order = await create_order(
            buyer=buyer,
            seller_id=seller.id,
            package=PackageTier.BASIC,
            package_details=package(price, revisions),
            gig=gig,
        )
        if status != OrderStatus.PENDING:
            extra.setdefault("payment_status", PaymentStatus.PAID)
        if status != OrderStatus.PENDING or extra:
            await Order.filter(id=order.id).update(status=status, **extra)
            await order.refresh_from_db()
        return order
    return _make


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))
