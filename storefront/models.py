"""
SQLAlchemy ORM models for the relational storage backend.

Defines the database schema for products, orders, order items, settings and
the order timeline.
"""
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from .database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Product(Base):
    """
    Catalog product. Consulted at checkout for the authoritative price and
    stock flag.
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    name_ar = Column(String, nullable=False, default="")
    price = Column(Numeric(12, 3), nullable=False)
    category = Column(String, nullable=False, default="")
    images = Column(JSONType, nullable=False, default=list)
    description = Column(Text, nullable=False, default="")
    sku = Column(String, nullable=True)
    out_of_stock = Column(Boolean, nullable=False, default=False)


class Order(Base):
    """
    Order model representing one checkout.

    Attributes:
        id (int): Primary key, auto-incremented
        order_number (str): Human-readable order number, unique
        customer_* (str): Customer snapshot taken at order time
        customer_*_en (str): English rendering for drivers, when it differs
        status (str): Pending, Paid, Processing, Shipped, Delivered,
            Unfinished or Cancelled
        payment_method (str): myfatoorah, deema or manual
        payment_id (str): Gateway reference, set once initiation succeeds
        payment_status (str): pending, initiated, paid, failed or manual
        total (Decimal): Subtotal plus shipping
        shipping_cost (Decimal): Shipping fixed at creation or admin edit
        created_at (str): Creation date, YYYY-MM-DD
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String, unique=True, nullable=False, index=True)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False, default="")
    customer_phone = Column(String, nullable=False)
    customer_address = Column(Text, nullable=False)
    customer_city = Column(String, nullable=False)
    customer_country = Column(String, nullable=False)
    customer_name_en = Column(String, nullable=True)
    customer_address_en = Column(Text, nullable=True)
    customer_city_en = Column(String, nullable=True)
    customer_country_en = Column(String, nullable=True)
    status = Column(String, nullable=False, default="Pending")
    payment_method = Column(String, nullable=False, default="myfatoorah")
    payment_id = Column(String, nullable=True, index=True)
    payment_status = Column(String, nullable=False, default="pending")
    total = Column(Numeric(12, 3), nullable=False)
    shipping_cost = Column(Numeric(12, 3), nullable=False, default=0)
    created_at = Column(String, nullable=False)

    items = relationship(
        "OrderItem",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class OrderItem(Base):
    """One line of an order. Product name, price and image are snapshots."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(12, 3), nullable=False)
    image = Column(String, nullable=False, default="")
    size = Column(String, nullable=True)
    measurements = Column(JSONType, nullable=True)
    notes = Column(Text, nullable=True)
    notes_en = Column(Text, nullable=True)


class Settings(Base):
    """Single store-wide settings row."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True)
    store_name = Column(String, nullable=False, default="BILYAR")
    store_email = Column(String, nullable=False, default="info@bilyar.com")
    store_phone = Column(String, nullable=False, default="+965 1234 5678")
    currency = Column(String, nullable=False, default="KWD")
    free_shipping_threshold = Column(Numeric(12, 3), nullable=False, default=90)
    default_shipping_cost = Column(Numeric(12, 3), nullable=False, default=5)


class OrderEvent(Base):
    """
    OrderEvent model representing historical events in an order's lifecycle.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        order_id (int): Foreign key to the order
        event_type (str): created, status_changed, payment_changed, updated
            or transition_refused
        description (str): Human-readable description of the event
        old_value (str): Previous value (for changes, optional)
        new_value (str): New value (for changes, optional)
        source (str): checkout, admin, callback or webhook
        created_at (datetime): Timestamp when the event occurred
    """
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    source = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
