"""
Business-rule validation for the storefront service.

Provides validation beyond schema validation, plus the status vocabularies
shared by checkout, reconciliation and the admin views.
"""
import re
from typing import Iterable, Optional, Tuple

ORDER_STATUSES = ("Pending", "Paid", "Processing", "Shipped", "Delivered", "Unfinished", "Cancelled")

# Storefront/admin visibility partition
SUCCESSFUL_STATUSES = frozenset({"Paid", "Processing", "Shipped", "Delivered"})
PENDING_STATUSES = frozenset({"Pending", "Unfinished", "Cancelled"})

PAYMENT_STATUSES = ("pending", "initiated", "paid", "failed", "manual")

MAX_ORDER_ITEMS = 100
MAX_ITEM_QUANTITY = 10000

_NON_DIGITS = re.compile(r"\D")


def validate_order_items(items: Iterable) -> Tuple[bool, str]:
    """
    Validate order lines for business rules.

    Args:
        items: Cart lines or edited order lines (anything with product_id
            and quantity)

    Returns:
        Tuple of (is_valid, error_message)
    """
    items = list(items)
    if not items:
        return False, "Order must contain at least one item"

    if len(items) > MAX_ORDER_ITEMS:
        return False, f"Order cannot contain more than {MAX_ORDER_ITEMS} items"

    for item in items:
        if item.quantity < 1:
            return False, f"Product {item.product_id}: quantity must be at least 1"
        if item.quantity > MAX_ITEM_QUANTITY:
            return False, f"Product {item.product_id}: quantity exceeds maximum ({MAX_ITEM_QUANTITY})"

    return True, ""


def validate_order_status(status: str) -> Tuple[bool, str]:
    """
    Validate a status set directly by staff. Any known status is allowed from
    any other; staff transitions are an escape hatch, not a state machine.
    """
    if status not in ORDER_STATUSES:
        return False, f"Invalid status: {status}"
    return True, ""


def local_subscriber_number(phone: Optional[str]) -> Optional[str]:
    """
    Reduce a phone number to its 8-digit local subscriber number.

    Returns None when fewer than 8 digits are present.
    """
    digits = _NON_DIGITS.sub("", phone or "")[-8:]
    return digits if len(digits) == 8 else None
