"""
Pydantic schemas for request/response validation in the storefront service.

These schemas define the structure of data for API requests and responses.
Fields are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from .config import DEFAULT_FREE_SHIPPING_THRESHOLD, DEFAULT_SHIPPING_COST

# Money is kept as Decimal internally and written to JSON as a number
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

OrderStatus = Literal["Pending", "Paid", "Processing", "Shipped", "Delivered", "Unfinished", "Cancelled"]
PaymentMethod = Literal["myfatoorah", "deema", "manual"]


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, populated by either name."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CustomerIn(CamelModel):
    """Customer contact details captured at checkout."""
    name: str = Field(..., min_length=1)
    email: str = ""
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class CustomerUpdate(CamelModel):
    """Partial customer edit by staff. All fields are optional."""
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, min_length=1)
    address: Optional[str] = Field(default=None, min_length=1)
    city: Optional[str] = Field(default=None, min_length=1)
    country: Optional[str] = Field(default=None, min_length=1)


class CartItem(CamelModel):
    """
    A cart line submitted at checkout.

    Price, name and image are only trusted for manual (staff-created) orders;
    gateway orders take them from the catalog.
    """
    product_id: int
    product_name: str = ""
    quantity: int = Field(..., ge=1, description="Quantity ordered")
    price: Optional[Money] = Field(default=None, ge=0)
    image: str = ""
    size: Optional[str] = None
    measurements: Optional[Dict[str, str]] = None
    notes: Optional[str] = None


class OrderCreate(CamelModel):
    """Schema for checking out a cart."""
    customer: CustomerIn
    items: List[CartItem] = Field(..., min_length=1)
    payment_method: PaymentMethod = "myfatoorah"


class OrderItemIn(CamelModel):
    """Order line as edited by staff; every field is taken as submitted."""
    product_id: int
    product_name: str
    quantity: int = Field(..., ge=1)
    price: Money = Field(..., ge=0)
    image: str = ""
    size: Optional[str] = None
    measurements: Optional[Dict[str, str]] = None
    notes: Optional[str] = None
    notes_en: Optional[str] = None


class OrderUpdate(CamelModel):
    """Schema for editing an order. Replacing items recomputes shipping and total."""
    customer: Optional[CustomerUpdate] = None
    status: Optional[OrderStatus] = None
    items: Optional[List[OrderItemIn]] = Field(default=None, min_length=1)


class StatusUpdate(CamelModel):
    status: OrderStatus


class OrderItem(CamelModel):
    id: int
    order_id: int
    product_id: int
    product_name: str
    quantity: int
    price: Money
    image: str = ""
    size: Optional[str] = None
    measurements: Optional[Dict[str, str]] = None
    notes: Optional[str] = None
    notes_en: Optional[str] = None


class Order(CamelModel):
    """
    Schema for order responses, includes all stored fields and the order lines.

    Attributes:
        id (int): Server-assigned identifier
        order_number (str): Human-readable, unique, immutable order number
        status (str): Fulfilment status
        payment_status (str): Payment side-channel state
            (pending, initiated, paid, failed, manual)
        total (Decimal): Sum of line totals plus shipping
        created_at (str): Creation date, YYYY-MM-DD
    """
    id: int
    order_number: str
    customer_name: str
    customer_email: str = ""
    customer_phone: str
    customer_address: str
    customer_city: str
    customer_country: str
    customer_name_en: Optional[str] = None
    customer_address_en: Optional[str] = None
    customer_city_en: Optional[str] = None
    customer_country_en: Optional[str] = None
    status: str
    payment_method: str
    payment_id: Optional[str] = None
    payment_status: str
    total: Money
    shipping_cost: Money
    created_at: str
    items: List[OrderItem] = Field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.price * item.quantity for item in self.items), Decimal("0"))


class OrderEvent(CamelModel):
    """
    Schema for order timeline events.

    Attributes:
        event_type (str): created, status_changed, payment_changed, updated,
            transition_refused
        source (str): checkout, admin, callback or webhook
    """
    id: int
    order_id: int
    event_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    source: Optional[str] = None
    created_at: datetime


class ProductBase(CamelModel):
    name: str = Field(..., min_length=1)
    name_ar: str = ""
    price: Money = Field(..., ge=0)
    category: str = ""
    images: List[str] = Field(default_factory=list)
    description: str = ""
    sku: Optional[str] = None
    out_of_stock: bool = False


class ProductCreate(ProductBase):
    pass


class ProductUpdate(CamelModel):
    """Schema for updating a product. All fields are optional."""
    name: Optional[str] = Field(default=None, min_length=1)
    name_ar: Optional[str] = None
    price: Optional[Money] = Field(default=None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    description: Optional[str] = None
    sku: Optional[str] = None
    out_of_stock: Optional[bool] = None


class Product(ProductBase):
    id: int


class Settings(CamelModel):
    """Store-wide settings; a single record."""
    store_name: str = "BILYAR"
    store_email: str = "info@bilyar.com"
    store_phone: str = "+965 1234 5678"
    currency: str = "KWD"
    free_shipping_threshold: Money = DEFAULT_FREE_SHIPPING_THRESHOLD
    default_shipping_cost: Money = DEFAULT_SHIPPING_COST


class SettingsUpdate(CamelModel):
    store_name: Optional[str] = Field(default=None, min_length=1)
    store_email: Optional[str] = None
    store_phone: Optional[str] = None
    currency: Optional[str] = None
    free_shipping_threshold: Optional[Money] = Field(default=None, ge=0)
    default_shipping_cost: Optional[Money] = Field(default=None, ge=0)


class PaymentInitiate(CamelModel):
    order_id: int


class PaymentInitiateResponse(CamelModel):
    payment_url: str
    demo: bool = False
    reference: Optional[str] = None


class PaymentConfiguration(CamelModel):
    """Whether each gateway has an API key configured."""
    myfatoorah: bool
    deema: bool


class WebhookAck(CamelModel):
    received: bool = True


class Customer(CamelModel):
    """A customer derived from grouping orders; never stored."""
    id: str
    email: str = ""
    name: str
    phone: str
    total_orders: int
    total_spent: Money
    last_order_date: str
    tier: str
    orders: List[Order] = Field(default_factory=list)


class CustomerPatch(CamelModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = Field(default=None, min_length=1)


class OrderAnalytics(CamelModel):
    total_orders: int
    successful_orders: int
    pending_orders: int
    revenue: Money
    status_breakdown: Dict[str, int]


class AdminLogin(BaseModel):
    email: str
    password: str


class Token(BaseModel):
    """Schema for JWT token response."""
    access_token: str
    token_type: str = "bearer"
