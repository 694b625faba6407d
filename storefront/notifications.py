"""
WhatsApp notifications for order status changes.

Messages go out through the WhatsApp Cloud API as fire-and-forget tasks;
delivery failures are logged and never affect the request that triggered
them. Nothing is sent unless an access token and phone number id are
configured.
"""
import asyncio
import logging
import re
from typing import Any, Dict, Optional, Set

import httpx

from . import schemas
from .config import WHATSAPP_ACCESS_TOKEN, WHATSAPP_API_URL, WHATSAPP_PHONE_NUMBER_ID, WHATSAPP_TIMEOUT

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    "Paid": "We have received your payment for order {number}. Thank you!",
    "Processing": "Your order {number} is being prepared.",
    "Shipped": "Your order {number} is on its way.",
    "Delivered": "Your order {number} has been delivered.",
    "Cancelled": "Your order {number} has been cancelled.",
}

# Keep references so pending tasks are not garbage collected
_pending: Set[asyncio.Task] = set()


def is_configured() -> bool:
    return bool(WHATSAPP_ACCESS_TOKEN and WHATSAPP_PHONE_NUMBER_ID)


def format_phone(phone: str) -> str:
    """Country code + number, no + or spaces."""
    return re.sub(r"\D", "", phone or "")


async def send_text(to: str, text: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    """
    Send a text message to a single phone number.

    Args:
        to: Recipient phone number in any format
        text: Message body

    Returns:
        True if the API accepted the message
    """
    payload: Dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": format_phone(to),
        "type": "text",
        "text": {"body": text},
    }
    url = f"{WHATSAPP_API_URL}/{WHATSAPP_PHONE_NUMBER_ID}/messages"
    try:
        async with httpx.AsyncClient(timeout=WHATSAPP_TIMEOUT, transport=transport) as client:
            response = await client.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {WHATSAPP_ACCESS_TOKEN}"},
            )
        if response.status_code >= 400:
            logger.warning(f"WhatsApp message to {payload['to']} failed: HTTP {response.status_code}")
            return False
        return True
    except httpx.HTTPError as e:
        logger.warning(f"WhatsApp message to {payload['to']} failed: {e}")
        return False


def notify_status_changed(order: schemas.Order, old_status: str, new_status: str) -> None:
    """
    Schedule a customer notification for a status change.

    Must be called from a running event loop; without one the notification
    is skipped.
    """
    template = STATUS_MESSAGES.get(new_status)
    if not is_configured() or template is None or old_status == new_status or not order.customer_phone:
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug(f"No event loop, skipping notification for order {order.id}")
        return

    task = loop.create_task(send_text(order.customer_phone, template.format(number=order.order_number)))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
