"""
Buy-now-pay-later gateway adapter (Deema merchant API).

The gateway has no payment-status query in this flow: the browser callback
is taken at face value and the webhook is the authoritative outcome.
"""
import base64
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping

from .. import schemas
from ..config import (
    CURRENCY,
    DEEMA_API_KEY,
    DEEMA_AUTH,
    DEEMA_BASE_URL,
    DEEMA_SANDBOX_MAX,
    DEEMA_SANDBOX_MIN,
    DEEMA_WEBHOOK_HEADER,
    DEEMA_WEBHOOK_SECRET,
    PAYMENT_TIMEOUT,
)
from ..errors import GatewayRejected
from .payment_gateway import CANCELLED, CAPTURED, Initiation, PaymentGateway, WebhookNotice, data_object

logger = logging.getLogger(__name__)

SANDBOX_HOST_MARKERS = ("sandbox-api", "staging-api")

WEBHOOK_OUTCOMES = {
    "captured": CAPTURED,
    "expired": CANCELLED,
    "cancelled": CANCELLED,
}


def _error_message(result: Dict[str, Any]) -> str:
    errors = result.get("errors")
    if isinstance(errors, str):
        errors_message = errors
    elif isinstance(errors, list) and errors and isinstance(errors[0], dict):
        errors_message = errors[0].get("message")
    else:
        errors_message = None
    return result.get("message") or result.get("error") or errors_message or "Deema payment initiation failed"


class DeemaGateway(PaymentGateway):
    name = "deema"

    def __init__(
        self,
        base_url: str = DEEMA_BASE_URL,
        api_key: str = DEEMA_API_KEY,
        webhook_secret: str = DEEMA_WEBHOOK_SECRET,
        webhook_header: str = DEEMA_WEBHOOK_HEADER,
        timeout: float = PAYMENT_TIMEOUT,
        transport=None,
        currency: str = CURRENCY,
        auth_mode: str = DEEMA_AUTH,
        sandbox_min: Decimal = DEEMA_SANDBOX_MIN,
        sandbox_max: Decimal = DEEMA_SANDBOX_MAX,
    ):
        super().__init__(base_url, api_key, webhook_secret, webhook_header, timeout, transport)
        self.currency = currency
        self.auth_mode = auth_mode
        self.sandbox_min = sandbox_min
        self.sandbox_max = sandbox_max

    @property
    def is_sandbox(self) -> bool:
        return any(marker in self.base_url for marker in SANDBOX_HOST_MARKERS)

    def auth_headers(self) -> Dict[str, str]:
        # basic: raw key, basic64: base64("key:"), anything else: bearer
        if self.auth_mode == "basic":
            return {"Authorization": f"Basic {self.api_key}"}
        if self.auth_mode == "basic64":
            token = base64.b64encode(f"{self.api_key}:".encode()).decode()
            return {"Authorization": f"Basic {token}"}
        return {"Authorization": f"Bearer {self.api_key}"}

    async def initiate(self, order: schemas.Order, base_url: str) -> Initiation:
        if self.is_sandbox and not (self.sandbox_min <= order.total <= self.sandbox_max):
            raise GatewayRejected(
                f"Deema Sandbox only accepts orders between {self.sandbox_min} and {self.sandbox_max} "
                f"{self.currency}. Your total is {order.total:.3f} {self.currency}. "
                "Add or remove items to test."
            )

        body = {
            "amount": float(order.total),
            "currency_code": self.currency,
            "merchant_order_id": str(order.id),
            "merchant_urls": {
                "success": self.callback_url(base_url, order.id, status="success"),
                "failure": self.callback_url(base_url, order.id, status="failed"),
            },
        }

        result = await self._post_json("/api/merchant/v1/purchase", body, "Deema purchase")
        data = data_object(result, "data", "Deema purchase")
        if data.get("redirect_link"):
            return Initiation(payment_url=data["redirect_link"], reference=data.get("order_reference") or "")

        raise GatewayRejected(_error_message(result))

    def callback_failed(self, query: Mapping[str, str]) -> bool:
        # Anything other than an explicit "failed" counts as success
        return str(query.get("status", "")).lower() == "failed"

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookNotice:
        reference = payload.get("order_ref") or payload.get("order_reference")
        merchant_order_id = payload.get("merchant_order_ref") or payload.get("merchant_order_id")
        status = str(payload.get("status") or "")
        return WebhookNotice(
            reference=str(reference) if reference is not None else None,
            merchant_order_id=str(merchant_order_id) if merchant_order_id is not None else None,
            order_number=None,
            status=status,
            outcome=WEBHOOK_OUTCOMES.get(status.lower()),
        )
