from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
)


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class Product(Base):
    __tablename__ = "products"
    id = Column(String, primary_key=True)
    slug = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=False)
    # TEA | OIL | COFFEE | SUPERFOOD | OTHER
    category = Column(String, nullable=False, default="OTHER")
    price_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="SEK")
    # DRAFT | PUBLISHED
    status = Column(String, nullable=False, default="DRAFT")
    inventory = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)


class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    # admin | buyer
    role = Column(String, primary_key=True)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)
    order_number = Column(String, nullable=False, unique=True)
    user_id = Column(String, nullable=True, index=True)

    full_name = Column(String, nullable=False)
    email = Column(String, nullable=False, default="")
    phone = Column(String, nullable=True)
    address = Column(JSON, nullable=False)
    items = Column(JSON, nullable=False)
    totals = Column(JSON, nullable=False)
    currency = Column(String, nullable=False)
    lang = Column(String, nullable=False, default="en")

    # CARD | SWISH | PAYPAL
    payment_method = Column(String, nullable=False)
    # STRIPE | MOCKPAY | SWISH
    payment_provider = Column(String, nullable=False)
    # CREATED | AWAITING_PAYMENT | PAID | FAILED | CANCELLED | REFUNDED
    payment_status = Column(String, nullable=False, default="CREATED")

    # redirect flow only
    provider_session_id = Column(String, nullable=True, index=True)
    provider_metadata = Column(JSON, nullable=False, default=dict)

    # unauthenticated manual-transfer orders only
    guest_access_token_hash = Column(String, nullable=True)
    guest_access_token_expires_at = Column(Float, nullable=True)

    created_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)


class PaymentAttempt(Base):
    __tablename__ = "payment_attempts"
    id = Column(String, primary_key=True)
    order_id = Column(
        String, ForeignKey("orders.id"), nullable=False, index=True
    )
    provider = Column(String, nullable=False)
    reference = Column(String, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    # pending | pending_review | paid
    status = Column(String, nullable=False, default="pending")
    created_at = Column(Float, nullable=False)
    swish_verified_at = Column(Float, nullable=True)
    verified_by = Column(String, nullable=True)


class PaymentEvent(Base):
    # append-only audit log
    __tablename__ = "payment_events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, nullable=True, index=True)
    provider = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    provider_event_id = Column(String, nullable=True)
    raw = Column(JSON, nullable=False, default=dict)
    created_at = Column(Float, nullable=False)


class WebhookEventSeen(Base):
    __tablename__ = "webhook_events_seen"
    idempotency_key = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)
