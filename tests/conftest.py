"""Shared fixtures: a fresh sqlite database per test, no SMTP, no Slack, no Stripe."""
import pytest

from storefront import create_app
from storefront.cache import store_cache
from storefront.database import main_session
from storefront.models import Product

ADMIN_EMAIL = "boss@example.com"


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "DATABASE_URL": f"sqlite:///{tmp_path / 'test.db'}",
        "LOG_FILE": None,
        "SMTP_HOST": None,
        "SLACK_WEBHOOK_URL": None,
        "ALERT_EMAIL_TO": None,
        "STRIPE_SECRET_KEY": None,
        "STRIPE_WEBHOOK_SECRET": None,
        "ADMIN_EMAILS": [ADMIN_EMAIL],
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "PUBLIC_BASE_URL": "http://shop.test",
        "CURRENCY": "ARS",
        "GOOGLE_CLIENT_ID": None,
        "GOOGLE_CLIENT_SECRET": None,
    })
    yield app
    store_cache.clear()


@pytest.fixture
def client(app):
    return app.test_client()


def register(client, email="ana@example.com", password="secret123", name="Ana"):
    return client.post("/api/auth/register", json={"email": email, "password": password, "name": name})


@pytest.fixture
def user_client(app):
    c = app.test_client()
    assert register(c).status_code == 201
    return c


@pytest.fixture
def other_client(app):
    c = app.test_client()
    assert register(c, email="bob@example.com", name="Bob").status_code == 201
    return c


@pytest.fixture
def admin_client(app):
    c = app.test_client()
    assert register(c, email=ADMIN_EMAIL, name="Boss").status_code == 201
    return c


@pytest.fixture
def make_product(app):
    def _make(**kw):
        fields = dict(name="Taza", description="Taza blanca", price_cents=150000,
                      category="Tazas", stock=10, status="active")
        fields.update(kw)
        colores = fields.pop("colores", [])
        motivos = fields.pop("motivos", [])
        with main_session() as db:
            p = Product(**fields)
            p.colores = colores
            p.motivos = motivos
            db.add(p)
            db.commit()
            pid = p.id
        store_cache.invalidate_by_pattern("products")
        return pid
    return _make


def stock_of(pid):
    with main_session() as db:
        return db.get(Product, pid).stock
