"""
Shared fixtures: environment defaults for Settings, an in-memory SQLite session
with all tables, and small factories for the rows settlement reads.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("EMAIL_PROVIDER_API_KEY", "")

from decimal import Decimal  # noqa: E402
from unittest.mock import patch  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.models.affiliate_link import AffiliateLink  # noqa: E402
from app.models.product import Product, ProductModule  # noqa: E402
from app.models.seller_billing import SellerBilling  # noqa: E402
from app.models.user import User  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def no_side_effects():
    """Settlement never reaches the broker in tests."""
    with patch("app.services.settlement.engine.schedule_side_effects") as mock_schedule:
        yield mock_schedule


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        user = User(
            email=kwargs.pop("email", f"user{counter['n']}@example.com"),
            display_name=kwargs.pop("display_name", f"User {counter['n']}"),
            seller_type=kwargs.pop("seller_type", "private"),
            total_earnings=kwargs.pop("total_earnings", Decimal("0")),
            available_balance=kwargs.pop("available_balance", Decimal("0")),
            pending_balance=kwargs.pop("pending_balance", Decimal("0")),
            level=kwargs.pop("level", 1),
            **kwargs,
        )
        db.add(user)
        db.flush()
        return user

    return _make


@pytest.fixture
def make_product(db):
    def _make(owner, **kwargs):
        product = Product(
            user_id=owner.id,
            title=kwargs.pop("title", "Lightroom Presets"),
            description=kwargs.pop("description", "20 presets"),
            price=kwargs.pop("price", Decimal("29.99")),
            **kwargs,
        )
        db.add(product)
        db.flush()
        return product

    return _make


@pytest.fixture
def make_module(db):
    def _make(product, type="file", **kwargs):
        defaults = {
            "file": {"file_url": "https://cdn.example.com/files/presets.zip", "file_name": "presets.zip"},
            "link": {"url": "https://example.com/course"},
            "text": {"content": "Thanks for buying"},
            "embed": {"embed_url": "https://www.youtube.com/embed/abc", "provider": "youtube"},
        }[type]
        defaults.update(kwargs)
        module = ProductModule(product_id=product.id, type=type, **defaults)
        db.add(module)
        db.flush()
        return module

    return _make


@pytest.fixture
def make_billing(db):
    def _make(user, **kwargs):
        billing = SellerBilling(
            user_id=user.id,
            business_name=kwargs.pop("business_name", "Studio Muster GmbH"),
            street=kwargs.pop("street", "Hauptstr. 1"),
            zip=kwargs.pop("zip", "10115"),
            city=kwargs.pop("city", "Berlin"),
            country=kwargs.pop("country", "DE"),
            is_small_business=kwargs.pop("is_small_business", False),
            tax_id=kwargs.pop("tax_id", "DE123456789"),
        )
        db.add(billing)
        db.flush()
        return billing

    return _make


@pytest.fixture
def make_affiliate_link(db):
    def _make(promoter, product, code="PROMO1", is_active=True):
        link = AffiliateLink(code=code, promoter_id=promoter.id, product_id=product.id, is_active=is_active)
        db.add(link)
        db.flush()
        return link

    return _make


@pytest.fixture
def checkout_session():
    """Builds a checkout.session.completed data.object dict (amounts in cents)."""

    def _make(product, buyer, seller, promoter=None, session_id="cs_test_1", amount_total=None, **metadata):
        price_cents = int(Decimal(str(product.price)) * 100) if amount_total is None else amount_total
        meta = {
            "product_id": str(product.id),
            "buyer_id": str(buyer.id),
            "seller_id": str(seller.id),
            "platform_fee": str(int(Decimal(price_cents) * 29 / 100 + Decimal("0.5"))),
            "affiliate_commission": "0",
        }
        if promoter is not None:
            meta["promoter_id"] = str(promoter.id)
        meta.update(metadata)
        return {
            "id": session_id,
            "object": "checkout.session",
            "amount_total": price_cents,
            "currency": "eur",
            "payment_intent": f"pi_{session_id}",
            "customer_email": buyer.email,
            "metadata": meta,
        }

    return _make
