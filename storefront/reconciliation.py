"""
Payment reconciliation: the order/payment state machine.

Two signals report a payment outcome: the browser callback after the hosted
payment page, and the gateway's webhook. They may arrive in any order, more
than once, or not at all. Every signal becomes a PaymentEvent, and the
transition table below decides the new (status, payment_status) from the
order's current payment_status. A paid order refuses every event that would
move it away from paid.
"""
import enum
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from . import notifications, schemas
from .clients.payment_gateway import CANCELLED, CAPTURED, PaymentGateway, WebhookNotice
from .errors import StorefrontError
from .storage import OrderStore
from .validators import PAYMENT_STATUSES

logger = logging.getLogger(__name__)


class PaymentEvent(str, enum.Enum):
    CALLBACK_FAILED = "callback_failed"
    CALLBACK_SUCCEEDED = "callback_succeeded"
    WEBHOOK_CAPTURED = "webhook_captured"
    WEBHOOK_CANCELLED = "webhook_cancelled"


PAID = ("Paid", "paid")
FAILED = ("Cancelled", "failed")
REFUSED = None

# (event, current payment_status) -> (status, payment_status), or REFUSED
TRANSITIONS: Dict[Tuple[PaymentEvent, str], Optional[Tuple[str, str]]] = {
    (PaymentEvent.CALLBACK_FAILED, "pending"): FAILED,
    (PaymentEvent.CALLBACK_FAILED, "initiated"): FAILED,
    (PaymentEvent.CALLBACK_FAILED, "manual"): FAILED,
    (PaymentEvent.CALLBACK_FAILED, "failed"): FAILED,
    (PaymentEvent.CALLBACK_FAILED, "paid"): REFUSED,
    (PaymentEvent.CALLBACK_SUCCEEDED, "pending"): PAID,
    (PaymentEvent.CALLBACK_SUCCEEDED, "initiated"): PAID,
    (PaymentEvent.CALLBACK_SUCCEEDED, "manual"): PAID,
    (PaymentEvent.CALLBACK_SUCCEEDED, "failed"): PAID,
    (PaymentEvent.CALLBACK_SUCCEEDED, "paid"): PAID,
    (PaymentEvent.WEBHOOK_CAPTURED, "pending"): PAID,
    (PaymentEvent.WEBHOOK_CAPTURED, "initiated"): PAID,
    (PaymentEvent.WEBHOOK_CAPTURED, "manual"): PAID,
    (PaymentEvent.WEBHOOK_CAPTURED, "failed"): PAID,
    (PaymentEvent.WEBHOOK_CAPTURED, "paid"): PAID,
    (PaymentEvent.WEBHOOK_CANCELLED, "pending"): FAILED,
    (PaymentEvent.WEBHOOK_CANCELLED, "initiated"): FAILED,
    (PaymentEvent.WEBHOOK_CANCELLED, "manual"): FAILED,
    (PaymentEvent.WEBHOOK_CANCELLED, "failed"): FAILED,
    (PaymentEvent.WEBHOOK_CANCELLED, "paid"): REFUSED,
}

WEBHOOK_EVENTS = {
    CAPTURED: PaymentEvent.WEBHOOK_CAPTURED,
    CANCELLED: PaymentEvent.WEBHOOK_CANCELLED,
}


def next_state(event: PaymentEvent, payment_status: str) -> Optional[Tuple[str, str]]:
    """
    Look up the transition for an event.

    Payment statuses outside the known set behave like "pending".

    Returns:
        (status, payment_status) to apply, or None if the event is refused
    """
    if payment_status not in PAYMENT_STATUSES:
        payment_status = "pending"
    return TRANSITIONS[(event, payment_status)]


def _refuse(store: OrderStore, order: schemas.Order, event: PaymentEvent, source: str) -> schemas.Order:
    logger.warning(
        f"Refused {event.value} from {source} for order {order.id}: payment status is {order.payment_status}"
    )
    store.add_event(
        order.id,
        "transition_refused",
        f"Ignored {event.value} because the order is already {order.payment_status}",
        old_value=order.payment_status,
        new_value=order.payment_status,
        source=source,
    )
    return order


def apply_event(
    store: OrderStore,
    order: schemas.Order,
    event: PaymentEvent,
    source: str,
    payment_id: Optional[str] = None,
) -> schemas.Order:
    """
    Apply a payment event to an order and record it on the timeline.

    The write itself refuses to move a stored "paid" order, so a signal
    racing another that has just marked the order paid is still refused.

    Args:
        payment_id: Gateway payment reference to store; None keeps the current one

    Returns:
        The order after the event; unchanged if the transition was refused
    """
    target = next_state(event, order.payment_status)
    if target is None:
        return _refuse(store, order, event, source)

    status, payment_status = target
    updated = store.update_order_payment(order.id, payment_id, payment_status, status, keep_paid=True)
    if updated is None:
        # Deleted between lookup and update
        logger.warning(f"Order {order.id} disappeared while applying {event.value}")
        return order
    if updated.payment_status != payment_status:
        # Paid by a concurrent signal after we read it
        return _refuse(store, updated, event, source)

    logger.info(
        f"Order {order.id} {event.value} via {source}: "
        f"{order.status}/{order.payment_status} -> {updated.status}/{updated.payment_status}"
    )
    if order.status != updated.status:
        store.add_event(
            order.id,
            "status_changed",
            f"Status changed from '{order.status}' to '{updated.status}'",
            old_value=order.status,
            new_value=updated.status,
            source=source,
        )
        notifications.notify_status_changed(updated, order.status, updated.status)
    if order.payment_status != updated.payment_status:
        store.add_event(
            order.id,
            "payment_changed",
            f"Payment status changed from '{order.payment_status}' to '{updated.payment_status}'",
            old_value=order.payment_status,
            new_value=updated.payment_status,
            source=source,
        )
    return updated


def _parse_order_id(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


async def handle_callback(
    store: OrderStore,
    gateway: PaymentGateway,
    query: Mapping[str, str],
    base_url: str,
) -> str:
    """
    Reconcile a browser callback and pick the page to send the customer to.

    An ambiguous outcome counts as success: the customer is never held on
    an error page, and the webhook remains the authoritative signal.

    Returns:
        URL of the success or failure page
    """
    raw_order_id = query.get("orderId")
    failed_url = f"{base_url}/order/failed?orderId={raw_order_id or ''}"

    order_id = _parse_order_id(raw_order_id)
    order = store.get_order(order_id) if order_id is not None else None
    if order is None:
        logger.warning(f"{gateway.name} callback for unknown order {raw_order_id!r}")
        return failed_url

    payment_id = gateway.callback_payment_id(query)

    if gateway.callback_failed(query):
        apply_event(store, order, PaymentEvent.CALLBACK_FAILED, "callback", payment_id)
        return f"{base_url}/order/failed?orderId={order.id}"

    if payment_id and gateway.configured:
        try:
            confirmed = await gateway.confirm_payment(payment_id)
        except StorefrontError as e:
            logger.error(f"Payment status query for order {order.id} failed: {e.message}")
            confirmed = False
        except Exception:
            logger.exception(f"Unexpected error in payment status query for order {order.id}")
            confirmed = False
        if not confirmed:
            logger.warning(f"Payment {payment_id} for order {order.id} not confirmed, marking paid optimistically")

    apply_event(store, order, PaymentEvent.CALLBACK_SUCCEEDED, "callback", payment_id)
    return f"{base_url}/order/success?orderId={order.id}"


def find_order(store: OrderStore, notice: WebhookNotice) -> Optional[schemas.Order]:
    """Match a webhook to an order by payment reference, then order id, then order number."""
    if notice.reference:
        order = store.get_order_by_payment_id(notice.reference)
        if order is not None:
            return order
    if notice.merchant_order_id:
        order_id = _parse_order_id(notice.merchant_order_id)
        if order_id is not None:
            order = store.get_order(order_id)
            if order is not None:
                return order
    if notice.order_number:
        return store.get_order_by_number(notice.order_number)
    return None


async def handle_webhook(store: OrderStore, gateway: PaymentGateway, payload: Dict[str, Any]) -> None:
    """Reconcile an authenticated webhook body. Unmatched or ignorable notices change nothing."""
    notice = gateway.parse_webhook(payload)
    logger.info(
        f"{gateway.name} webhook: reference={notice.reference} "
        f"merchant_order_id={notice.merchant_order_id} status={notice.status}"
    )

    order = find_order(store, notice)
    if order is None:
        logger.warning(
            f"{gateway.name} webhook matched no order: reference={notice.reference} "
            f"merchant_order_id={notice.merchant_order_id} order_number={notice.order_number}"
        )
        return

    event = WEBHOOK_EVENTS.get(notice.outcome)
    if event is None:
        logger.info(f"{gateway.name} webhook status {notice.status!r} ignored for order {order.id}")
        return

    apply_event(store, order, event, "webhook")
