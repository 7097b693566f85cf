"""
Shared fixtures: in-memory SQLite store, fake downstream services served
through httpx.MockTransport, and a review service wired to both.
"""
import os

# Configure before anything from src is imported
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")

import json
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.lib.db import Base
from src.lib.jwt import create_access_token
from src.lib.metrics import reset_metrics
from src.models.reviews import Review, TargetType
from src.services.review_service import ReviewService
from src.services.service_clients import (
    OrderServiceClient,
    ProductServiceClient,
    UserServiceClient,
)


class FakeDownstream:
    """In-memory product, user and order services.

    Tests toggle the ``*_fail`` flags to simulate outages and inspect
    ``rating_updates`` / ``requests`` to see what the service sent.
    """

    def __init__(self):
        self.products: set[str] = set()
        self.users: dict[str, dict] = {}
        self.purchases: set[tuple[str, str]] = set()
        self.rating_updates: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.product_lookup_fail = False
        self.rating_update_fail = False
        self.user_lookup_fail = False
        self.order_fail = False

    def add_product(self, product_id: UUID) -> UUID:
        self.products.add(str(product_id))
        return product_id

    def add_user(self, user_id: UUID, first_name="Jane", last_name="Doe", avatar=None) -> UUID:
        self.users[str(user_id)] = {
            "firstName": first_name,
            "lastName": last_name,
            "avatar": avatar,
        }
        return user_id

    def product_handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        product_id = request.url.path.rsplit("/", 1)[-1]
        if request.method == "GET":
            if self.product_lookup_fail:
                raise httpx.ConnectError("product service down", request=request)
            if product_id not in self.products:
                return httpx.Response(404, json={"error": "Product not found"})
            return httpx.Response(200, json={"product": {"id": product_id}})
        if request.method == "PATCH":
            if self.rating_update_fail:
                return httpx.Response(503, json={"error": "unavailable"})
            self.rating_updates.append({"product_id": product_id, **json.loads(request.content)})
            return httpx.Response(200, json={"success": True})
        return httpx.Response(405)

    def user_handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.user_lookup_fail:
            raise httpx.ReadTimeout("user service timed out", request=request)
        user_id = request.url.path.rsplit("/", 1)[-1]
        user = self.users.get(user_id)
        if user is None:
            return httpx.Response(404, json={"error": "User not found"})
        return httpx.Response(200, json={"user": user})

    def order_handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.order_fail:
            return httpx.Response(500, json={"error": "boom"})
        key = (request.url.params["userId"], request.url.params["productId"])
        return httpx.Response(200, json={"verified": key in self.purchases})


@pytest.fixture(autouse=True)
def clear_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def engine():
    """Fresh in-memory database per test, shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def downstream():
    return FakeDownstream()


@pytest.fixture
def product_client(downstream):
    return ProductServiceClient(
        "http://product.test", transport=httpx.MockTransport(downstream.product_handler)
    )


@pytest.fixture
def user_client(downstream):
    return UserServiceClient(
        "http://user.test", transport=httpx.MockTransport(downstream.user_handler)
    )


@pytest.fixture
def order_client(downstream):
    return OrderServiceClient(
        "http://order.test",
        environment="test",
        transport=httpx.MockTransport(downstream.order_handler),
    )


@pytest.fixture
def review_service(db_session, product_client, user_client, order_client):
    return ReviewService(
        db_session,
        product_client=product_client,
        user_client=user_client,
        order_client=order_client,
    )


@pytest.fixture
def make_review(db_session):
    """Insert a review directly into the store, bypassing the service."""
    base_time = datetime(2025, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(**overrides) -> Review:
        counter["n"] += 1
        values = {
            "user_id": uuid4(),
            "target_id": uuid4(),
            "target_type": TargetType.PRODUCT,
            "rating": 5,
            "comment": "Great product",
            "images": [],
            "is_verified_purchase": False,
            "created_at": base_time + timedelta(minutes=counter["n"]),
        }
        values.update(overrides)
        review = Review(**values)
        db_session.add(review)
        db_session.commit()
        return review

    return _make


@pytest.fixture
def make_token():
    def _make(user_id: UUID, role: str | None = None, **claims) -> str:
        return create_access_token(str(user_id), role=role, **claims)

    return _make
