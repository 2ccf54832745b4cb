import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

import app.models  # noqa: F401
from app.db.session import get_session
from app.main import app
from app.models.product import Product, ProductVariant
from app.services.auth import AuthService
from seed_data import seed_products

USER_EMAIL = "shopper@example.com"
USER_PASSWORD = "SecurePassword123!"


@pytest.fixture
def engine():
    # One shared in-memory connection so every session sees the same data
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def variants(session):
    """Seeded catalog, keyed by SKU."""
    seed_products(session)
    return {v.sku: v.id for v in session.exec(select(ProductVariant)).all()}


@pytest.fixture
def user(session):
    return AuthService(session).register_user(USER_EMAIL, USER_PASSWORD, name="Shopper")


@pytest.fixture
def other_user(session):
    return AuthService(session).register_user("other@example.com", USER_PASSWORD)


@pytest.fixture
def inactive_variant(session):
    product = Product(title="Retired Jacket", slug="retired-jacket", is_active=True)
    session.add(product)
    session.flush()
    variant = ProductVariant(product_id=product.id, sku="JKT-OLD", price=80.0, is_active=False)
    session.add(variant)
    session.commit()
    return variant.id


@pytest.fixture
def make_client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    clients = []

    def factory() -> TestClient:
        client = TestClient(app)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def login():
    """Log a client in and return its bearer header."""
    def _login(client: TestClient, email: str = USER_EMAIL, password: str = USER_PASSWORD) -> dict:
        response = client.post("/api/v1/auth/token", data={"username": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}
    return _login
