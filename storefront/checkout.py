"""
Order creation and staff-side order management.

Checkout validates the cart against the catalog, prices it from the catalog
(except for staff-entered manual orders), adds shipping from the current
settings, translates Arabic text for drivers and persists the order as
Pending. Staff can edit, re-status and delete orders.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import cache, notifications, schemas
from .clients.translate_client import Translator
from .errors import NotFound, ProductUnavailable, ValidationError
from .storage import OrderStore
from .validators import PENDING_STATUSES, SUCCESSFUL_STATUSES, validate_order_items, validate_order_status

logger = logging.getLogger(__name__)

# Customer fields with an English counterpart for drivers
TRANSLATED_FIELDS = ("name", "address", "city", "country")


def current_settings(store: OrderStore) -> schemas.Settings:
    """
    Settings in force right now; defaults apply when no record exists.

    Read through the settings cache.
    """
    cached = cache.get_cache(cache.SETTINGS_CACHE_KEY)
    if cached:
        return schemas.Settings.model_validate(cached)
    settings = store.get_settings() or schemas.Settings()
    cache.set_cache(cache.SETTINGS_CACHE_KEY, settings.model_dump(mode="json"))
    return settings


def update_settings(store: OrderStore, data: Dict[str, Any]) -> schemas.Settings:
    settings = store.update_settings(data)
    cache.delete_cache(cache.SETTINGS_CACHE_KEY)
    return settings


def compute_totals(
    lines: Iterable[Tuple[Decimal, int]],
    settings: schemas.Settings,
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Price a list of (unit price, quantity) lines.

    Returns:
        Tuple of (subtotal, shipping_cost, total). Shipping is free once the
        subtotal reaches the free-shipping threshold.
    """
    subtotal = sum((Decimal(price) * quantity for price, quantity in lines), Decimal("0"))
    if subtotal >= settings.free_shipping_threshold:
        shipping_cost = Decimal("0")
    else:
        shipping_cost = settings.default_shipping_cost
    return subtotal, shipping_cost, subtotal + shipping_cost


def _english_or_none(original: Optional[str], translated: Optional[str]) -> Optional[str]:
    return translated if translated and translated != (original or "") else None


def _lookup_products(store: OrderStore, items: List[schemas.CartItem]) -> Dict[int, schemas.Product]:
    """Fetch every referenced product, rejecting the cart on the first missing or out-of-stock one."""
    products: Dict[int, schemas.Product] = {}
    for item in items:
        product = store.get_product(item.product_id)
        if product is None:
            raise ProductUnavailable(f"Product not found: {item.product_id}")
        if product.out_of_stock:
            raise ProductUnavailable(f"Product is out of stock: {product.name}")
        products[item.product_id] = product
    return products


def _price_lines(
    items: List[schemas.CartItem],
    products: Dict[int, schemas.Product],
    manual: bool,
) -> List[Dict[str, Any]]:
    lines = []
    for item in items:
        product = products[item.product_id]
        if manual:
            if item.price is None:
                raise ValidationError(
                    f"Price is required for product {item.product_id} on manual orders",
                    [{"field": "items.price", "productId": item.product_id}],
                )
            price = item.price
            image = item.image or (product.images[0] if product.images else "")
        else:
            # Never trust a client-submitted price
            price = product.price
            image = product.images[0] if product.images else item.image
        lines.append(
            {
                "product_id": item.product_id,
                "product_name": item.product_name or product.name,
                "quantity": item.quantity,
                "price": price,
                "image": image,
                "size": item.size or None,
                "measurements": item.measurements or None,
                "notes": item.notes or None,
                "notes_en": None,
            }
        )
    return lines


async def create_order(
    store: OrderStore,
    translator: Translator,
    order: schemas.OrderCreate,
) -> schemas.Order:
    """
    Check out a cart.

    Nothing is written unless every line passes validation.

    Raises:
        ValidationError: invalid lines
        ProductUnavailable: a product is missing or out of stock
    """
    is_valid, error_message = validate_order_items(order.items)
    if not is_valid:
        raise ValidationError(error_message)

    manual = order.payment_method == "manual"
    products = _lookup_products(store, order.items)
    lines = _price_lines(order.items, products, manual)

    _, shipping_cost, total = compute_totals(
        ((line["price"], line["quantity"]) for line in lines), current_settings(store)
    )

    customer = order.customer
    english: Dict[str, Optional[str]] = {field: None for field in TRANSLATED_FIELDS}
    if not manual:
        originals = [getattr(customer, field) for field in TRANSLATED_FIELDS]
        notes = [line["notes"] for line in lines]
        translated = await asyncio.gather(
            *(translator.translate_to_english(text) for text in originals + notes)
        )
        for field, original, value in zip(TRANSLATED_FIELDS, originals, translated):
            english[field] = _english_or_none(original, value)
        for line, value in zip(lines, translated[len(originals):]):
            line["notes_en"] = _english_or_none(line["notes"], value) if line["notes"] else None

    created = store.create_order(
        {
            "customer_name": customer.name,
            "customer_email": customer.email,
            "customer_phone": customer.phone,
            "customer_address": customer.address,
            "customer_city": customer.city,
            "customer_country": customer.country,
            "customer_name_en": english["name"],
            "customer_address_en": english["address"],
            "customer_city_en": english["city"],
            "customer_country_en": english["country"],
            "status": "Pending",
            "payment_method": order.payment_method,
            "payment_status": "manual" if manual else "pending",
            "total": total,
            "shipping_cost": shipping_cost,
        },
        lines,
    )
    store.add_event(
        created.id,
        "created",
        f"Order {created.order_number} created with status 'Pending'",
        new_value="Pending",
        source="checkout",
    )
    logger.info(
        f"Order {created.id} ({created.order_number}) created: "
        f"method={created.payment_method} total={created.total} shipping={created.shipping_cost}"
    )
    return created


def get_order(store: OrderStore, order_id: int) -> schemas.Order:
    order = store.get_order(order_id)
    if order is None:
        raise NotFound("Order not found")
    return order


def list_orders(store: OrderStore, view: Optional[str] = None) -> List[schemas.Order]:
    """
    List orders, newest first.

    Args:
        view: "successful" or "pending" to restrict to that visibility
            partition; None for all orders
    """
    orders = store.list_orders()
    if view == "successful":
        return [o for o in orders if o.status in SUCCESSFUL_STATUSES]
    if view == "pending":
        return [o for o in orders if o.status in PENDING_STATUSES]
    return orders


def _record_status_change(store: OrderStore, order: schemas.Order, old_status: str, source: str) -> None:
    store.add_event(
        order.id,
        "status_changed",
        f"Status changed from '{old_status}' to '{order.status}'",
        old_value=old_status,
        new_value=order.status,
        source=source,
    )
    notifications.notify_status_changed(order, old_status, order.status)


async def edit_order(store: OrderStore, order_id: int, update: schemas.OrderUpdate) -> schemas.Order:
    """
    Apply a staff edit to an order.

    Customer fields overwrite both the original and the English rendering.
    Replacing items takes the submitted lines as they are and recomputes
    shipping and total from the current settings.
    """
    existing = get_order(store, order_id)

    order_data: Dict[str, Any] = {}
    if update.customer is not None:
        customer = update.customer
        for field in TRANSLATED_FIELDS:
            value = getattr(customer, field)
            if value is not None:
                order_data[f"customer_{field}"] = value
                order_data[f"customer_{field}_en"] = value
        if customer.email is not None:
            order_data["customer_email"] = customer.email
        if customer.phone is not None:
            order_data["customer_phone"] = customer.phone

    if update.status is not None:
        order_data["status"] = update.status

    items_data: Optional[List[Dict[str, Any]]] = None
    if update.items is not None:
        is_valid, error_message = validate_order_items(update.items)
        if not is_valid:
            raise ValidationError(error_message)
        items_data = [item.model_dump() for item in update.items]
        _, shipping_cost, total = compute_totals(
            ((item.price, item.quantity) for item in update.items), current_settings(store)
        )
        order_data["shipping_cost"] = shipping_cost
        order_data["total"] = total

    updated = store.update_order(order_id, order_data, items_data)
    if updated is None:
        raise NotFound("Order not found")

    if updated.status != existing.status:
        _record_status_change(store, updated, existing.status, "admin")
    else:
        store.add_event(order_id, "updated", "Order details updated", source="admin")
    return updated


async def set_status(store: OrderStore, order_id: int, status: str) -> schemas.Order:
    """Set an order's status directly. Any known status is allowed at any time."""
    is_valid, error_message = validate_order_status(status)
    if not is_valid:
        raise ValidationError(error_message, [{"field": "status"}])

    existing = get_order(store, order_id)
    updated = store.update_order_status(order_id, status)
    if updated is None:
        raise NotFound("Order not found")
    if existing.status != status:
        _record_status_change(store, updated, existing.status, "admin")
    return updated


def delete_order(store: OrderStore, order_id: int) -> None:
    if not store.delete_order(order_id):
        raise NotFound("Order not found")
    logger.info(f"Order {order_id} deleted")


def order_analytics(store: OrderStore) -> schemas.OrderAnalytics:
    orders = store.list_orders()
    breakdown: Dict[str, int] = {}
    for order in orders:
        breakdown[order.status] = breakdown.get(order.status, 0) + 1
    successful = [o for o in orders if o.status in SUCCESSFUL_STATUSES]
    return schemas.OrderAnalytics(
        total_orders=len(orders),
        successful_orders=len(successful),
        pending_orders=sum(1 for o in orders if o.status in PENDING_STATUSES),
        revenue=sum((o.total for o in successful), Decimal("0")),
        status_breakdown=breakdown,
    )
