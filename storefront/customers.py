"""
Customers derived from orders.

There is no customer table: customers are grouped from orders on every
request, by lower-cased email when present, else by phone and name.
"""
import logging
from decimal import Decimal
from typing import Dict, List

from . import schemas
from .errors import NotFound
from .storage import OrderStore

logger = logging.getLogger(__name__)

LOYAL_ORDERS, LOYAL_SPEND = 5, Decimal("500")
REGULAR_ORDERS, REGULAR_SPEND = 2, Decimal("200")


def customer_key(order: schemas.Order) -> str:
    email = (order.customer_email or "").strip().lower()
    if email:
        return email
    return f"{(order.customer_phone or '').strip()}|{(order.customer_name or '').strip()}"


def loyalty_tier(total_orders: int, total_spent: Decimal) -> str:
    if total_orders >= LOYAL_ORDERS or total_spent >= LOYAL_SPEND:
        return "loyal"
    if total_orders >= REGULAR_ORDERS or total_spent >= REGULAR_SPEND:
        return "regular"
    return "new"


def _group(orders: List[schemas.Order]) -> Dict[str, List[schemas.Order]]:
    groups: Dict[str, List[schemas.Order]] = {}
    for order in orders:
        groups.setdefault(customer_key(order), []).append(order)
    return groups


def aggregate_customers(orders: List[schemas.Order]) -> List[schemas.Customer]:
    """
    Build the customer list from orders.

    Display name and phone come from the group's most recent order. Spend
    includes orders of every status.

    Returns:
        Customers sorted by total spend, highest first
    """
    customers = []
    for key, group in _group(orders).items():
        group.sort(key=lambda o: (o.created_at, o.id), reverse=True)
        latest = group[0]
        total_spent = sum((o.total for o in group), Decimal("0"))
        customers.append(
            schemas.Customer(
                id=key,
                email=latest.customer_email or "",
                name=latest.customer_name,
                phone=latest.customer_phone,
                total_orders=len(group),
                total_spent=total_spent,
                last_order_date=latest.created_at,
                tier=loyalty_tier(len(group), total_spent),
                orders=group,
            )
        )
    customers.sort(key=lambda c: c.total_spent, reverse=True)
    return customers


def _orders_for(store: OrderStore, customer_id: str) -> List[schemas.Order]:
    orders = _group(store.list_orders()).get(customer_id, [])
    if not orders:
        raise NotFound("Customer not found")
    return orders


def update_customer(store: OrderStore, patch: schemas.CustomerPatch) -> int:
    """
    Rewrite name and/or phone on every order of a customer.

    Returns:
        Number of orders updated
    """
    order_data = {}
    if patch.name is not None:
        order_data["customer_name"] = patch.name
        order_data["customer_name_en"] = patch.name
    if patch.phone is not None:
        order_data["customer_phone"] = patch.phone

    orders = _orders_for(store, patch.id)
    if not order_data:
        return 0
    for order in orders:
        store.update_order(order.id, order_data)
    logger.info(f"Customer {patch.id} updated on {len(orders)} orders")
    return len(orders)


def delete_customer(store: OrderStore, customer_id: str) -> int:
    """Delete every order of a customer. Returns the number deleted."""
    orders = _orders_for(store, customer_id)
    deleted = sum(1 for order in orders if store.delete_order(order.id))
    logger.info(f"Customer {customer_id} deleted with {deleted} orders")
    return deleted
