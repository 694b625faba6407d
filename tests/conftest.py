"""
Shared fixtures: a fresh store per test (SQLite or TinyDB), the app wired to
it through dependency overrides, and helpers for seeding and mocking.
"""
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

from storefront import auth, cache, main, notifications, schemas
from storefront.clients.deema_client import DeemaGateway
from storefront.clients.myfatoorah_client import MyFatoorahGateway
from storefront.clients.translate_client import Translator, get_translator
from storefront.crud import SqlStorage
from storefront.database import make_engine, make_session_factory
from storefront.documents import DocumentStorage
from storefront.main import app
from storefront.payments import get_gateways
from storefront.storage import get_storage

CARD_SECRET = "card-webhook-secret"
BNPL_SECRET = "bnpl-webhook-secret"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """No Redis, no WhatsApp, no public base URL override."""
    monkeypatch.setattr(cache, "redis_client", None)
    monkeypatch.setattr(notifications, "WHATSAPP_ACCESS_TOKEN", "")
    monkeypatch.setattr(main, "PUBLIC_BASE_URL", "")
    monkeypatch.setattr(main, "APP_ENV", "development")


@pytest.fixture(params=["sql", "document"])
def store(request, tmp_path):
    if request.param == "sql":
        engine = make_engine(f"sqlite:///{tmp_path / 'storefront.db'}")
        yield SqlStorage(make_session_factory(engine))
        engine.dispose()
    else:
        storage = DocumentStorage(str(tmp_path / "storefront.json"))
        yield storage
        storage.close()


def no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"Unexpected outbound request to {request.url}")


@pytest.fixture
def translator():
    return Translator(url="https://translate.test/translate", transport=httpx.MockTransport(no_network))


@pytest.fixture
def gateways():
    """Unconfigured (demo mode) gateways; tests swap in configured ones."""
    return {
        "myfatoorah": MyFatoorahGateway(api_key="", webhook_secret=CARD_SECRET),
        "deema": DeemaGateway(api_key="", webhook_secret=BNPL_SECRET),
    }


@pytest.fixture
def client(store, translator, gateways):
    app.dependency_overrides[get_storage] = lambda: store
    app.dependency_overrides[get_translator] = lambda: translator
    app.dependency_overrides[get_gateways] = lambda: gateways
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    token = auth.create_access_token({"sub": "admin@store.local", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


def card_gateway(handler, **kwargs) -> MyFatoorahGateway:
    kwargs.setdefault("base_url", "https://apitest.myfatoorah.test")
    kwargs.setdefault("api_key", "card-key")
    kwargs.setdefault("webhook_secret", CARD_SECRET)
    return MyFatoorahGateway(transport=httpx.MockTransport(handler), **kwargs)


def bnpl_gateway(handler, **kwargs) -> DeemaGateway:
    kwargs.setdefault("base_url", "https://api.deema.test")
    kwargs.setdefault("api_key", "bnpl-key")
    kwargs.setdefault("webhook_secret", BNPL_SECRET)
    return DeemaGateway(transport=httpx.MockTransport(handler), **kwargs)


def add_product(store, name="Abaya", price="30", **fields) -> schemas.Product:
    fields.setdefault("images", [f"/images/{name.lower()}.jpg"])
    return store.create_product(schemas.ProductCreate(name=name, price=Decimal(price), **fields).model_dump())


def checkout_payload(items, payment_method="myfatoorah", **customer):
    details = {
        "name": "Sara Ahmed",
        "email": "sara@example.com",
        "phone": "+965 5555 1234",
        "address": "Block 4, Street 12, House 7",
        "city": "Salmiya",
        "country": "Kuwait",
    }
    details.update(customer)
    return {"customer": details, "items": items, "paymentMethod": payment_method}


def line(product, quantity=1, **fields):
    data = {"productId": product.id, "productName": product.name, "quantity": quantity}
    data.update(fields)
    return data


def place_order(client, store, prices=("30",), payment_method="myfatoorah", **customer):
    """Seed one product per price and check out one of each."""
    products = [add_product(store, name=f"Item{i}", price=price) for i, price in enumerate(prices)]
    response = client.post(
        "/orders",
        json=checkout_payload([line(p) for p in products], payment_method, **customer),
    )
    assert response.status_code == 201, response.text
    return response.json()
