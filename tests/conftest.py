"""Pytest fixtures for marketplace tests."""

from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from itertools import count

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.config import AppConfig
from marketplace.errors import PaymentFailure
from marketplace.models import Base, Product, Promotion, RelayPoint, User
from marketplace.services.payment_gateway import sign_payload


JWT_SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "test-webhook-secret"


def make_config(**overrides) -> AppConfig:
    values = dict(
        database_url="sqlite://",
        secret_key="test",
        jwt_secret=JWT_SECRET,
        log_level="WARNING",
        environment="development",
        currency="TND",
        payment_gateway_url="https://gateway.test/v1",
        payment_gateway_key="sk_test",
        payment_webhook_secret=WEBHOOK_SECRET,
        payment_timeout_seconds=2.0,
        pending_order_ttl_hours=24,
        delivered_completion_days=7,
        low_stock_threshold=3,
    )
    values.update(overrides)
    return AppConfig(**values)


class FakeGateway:
    """Records calls; set ``fail`` to make the next call raise PaymentFailure."""

    provider = "fake"

    def __init__(self):
        self.intents = []
        self.refunds = []
        self.fail = False
        self._ids = count(1)

    def create_intent(self, order_id, amount, currency):
        if self.fail:
            raise PaymentFailure("Payment gateway timed out", timeout=2.0)
        intent = {"id": f"pi_{next(self._ids)}", "client_secret": "secret", "status": "requires_confirmation"}
        self.intents.append({"order_id": order_id, "amount": amount, "currency": currency, **intent})
        return intent

    def refund(self, provider_reference, amount, operation_key):
        if self.fail:
            raise PaymentFailure("Payment gateway rejected the request", status=402)
        self.refunds.append({"reference": provider_reference, "amount": amount, "key": operation_key})
        return {"id": f"re_{next(self._ids)}", "status": "succeeded"}


class RecordingEmailSender:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, body):
        self.sent.append({"to": to, "subject": subject, "body": body})


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    eng = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    """Unit-of-work factory shaped like ``get_session``."""
    maker = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    @contextmanager
    def factory():
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return factory


@pytest.fixture
def users(session_factory):
    rows = {
        "customer": User(id="u-customer", email="customer@example.com", name="Amira", role="customer"),
        "other": User(id="u-other", email="other@example.com", name="Karim", role="customer"),
        "seller": User(id="u-seller", email="seller@example.com", name="Shop", role="seller"),
        "courier": User(id="u-courier", email="courier@example.com", name="Sami", role="delivery"),
        "admin": User(id="u-admin", email="admin@example.com", name="Admin", role="admin"),
    }
    with session_factory() as session:
        session.add_all(rows.values())
    return {key: row.id for key, row in rows.items()}


@pytest.fixture
def products(session_factory, users):
    rows = {
        "a": Product(
            id="p-a", sku="SKU-A", name="Olive oil", price=Decimal("10.00"), currency="TND",
            seller_id=users["seller"], weight_kg=Decimal("0"), stock=10, brand="Zitouna",
        ),
        "b": Product(
            id="p-b", sku="SKU-B", name="Harissa", price=Decimal("25.50"), currency="TND",
            seller_id=users["seller"], weight_kg=Decimal("0"), stock=5, brand="Cap Bon",
        ),
        "c": Product(
            id="p-c", sku="SKU-C", name="Dates", price=Decimal("40.00"), discount_percentage=Decimal("25"),
            currency="TND", seller_id=users["seller"], weight_kg=Decimal("0"), stock=2,
        ),
    }
    with session_factory() as session:
        session.add_all(rows.values())
    return {key: row.id for key, row in rows.items()}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def components(session_factory, config, gateway, email_sender):
    from app import build_components

    return build_components(config, session_factory=session_factory, gateway=gateway, email_sender=email_sender)


@pytest.fixture
def relay_point(session_factory):
    with session_factory() as session:
        rp = RelayPoint(
            id="rp-1",
            name="Lac 2 Kiosk",
            address={"street": "Rue du Lac", "city": "Tunis"},
            contact_phone="+21670000000",
            latitude=36.84,
            longitude=10.27,
            max_capacity=1,
            current_occupancy=0,
            status="active",
        )
        session.add(rp)
    return "rp-1"


@pytest.fixture
def make_promotion(session_factory):
    def _make(code="SUMMER20", type="percentage", value="20", usage_limit=-1, **fields):
        now = datetime.utcnow()
        with session_factory() as session:
            promo = Promotion(
                code=code,
                name=code,
                type=type,
                value=Decimal(value),
                usage_limit=usage_limit,
                times_used=fields.pop("times_used", 0),
                start_date=fields.pop("start_date", now - timedelta(days=1)),
                end_date=fields.pop("end_date", now + timedelta(days=1)),
                **fields,
            )
            session.add(promo)
            session.flush()
            return promo.id

    return _make


HOME_ADDRESS = {"street": "12 Avenue Habib Bourguiba", "city": "Tunis", "postal_code": "1000"}


@pytest.fixture
def place_order(components, users, products):
    """Place a home-delivery order for the seeded customer."""

    def _place(items=None, payment_method="cash_on_delivery", **fields):
        fields.setdefault("user_id", users["customer"])
        fields.setdefault("delivery_option", "home_delivery")
        if fields["delivery_option"] == "home_delivery":
            fields.setdefault("shipping_address", dict(HOME_ADDRESS))
        return components["orders"].create_order(
            items=items or [{"product_id": products["a"], "quantity": 3}],
            payment_method=payment_method,
            **fields,
        )

    return _place


@pytest.fixture
def advance(components, users):
    """Walk an order through admin status updates."""

    def _advance(order_id, *statuses):
        order = None
        for status in statuses:
            order = components["orders"].update_order_status(order_id, status, actor_id=users["admin"])
        return order

    return _advance


def stock_of(session_factory, product_id):
    with session_factory() as session:
        return session.get(Product, product_id).stock


def bearer(user_id, role):
    token = jwt.encode({"sub": user_id, "role": role}, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def signed_webhook(payload: bytes):
    return {"X-Signature": f"sha256={sign_payload(WEBHOOK_SECRET, payload)}", "Content-Type": "application/json"}


@pytest.fixture
def flask_app(session_factory, config, gateway, email_sender, tmp_path):
    from app import create_app
    from config import MarketplaceConfig

    app = create_app(
        MarketplaceConfig(app=config, project_root=tmp_path),
        session_factory=session_factory,
        gateway=gateway,
        email_sender=email_sender,
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()
