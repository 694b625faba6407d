"""
Card / KNET gateway adapter (MyFatoorah v2 API).

Initiation uses ExecutePayment; the callback can be confirmed with
GetPaymentStatus; webhooks carry TransactionsStatusChanged events.
"""
import logging
from typing import Any, Dict, Mapping, Optional

from .. import schemas
from ..config import (
    CURRENCY,
    MYFATOORAH_API_KEY,
    MYFATOORAH_BASE_URL,
    MYFATOORAH_COUNTRY_CODE,
    MYFATOORAH_WEBHOOK_HEADER,
    MYFATOORAH_WEBHOOK_SECRET,
    PAYMENT_TIMEOUT,
)
from ..errors import GatewayRejected, ValidationError
from ..validators import local_subscriber_number
from .payment_gateway import CANCELLED, CAPTURED, Initiation, PaymentGateway, WebhookNotice, data_object

logger = logging.getLogger(__name__)

WEBHOOK_OUTCOMES = {
    "SUCCESS": CAPTURED,
    "CANCELED": CANCELLED,
    "CANCELLED": CANCELLED,
    "EXPIRED": CANCELLED,
}


class MyFatoorahGateway(PaymentGateway):
    name = "myfatoorah"

    def __init__(
        self,
        base_url: str = MYFATOORAH_BASE_URL,
        api_key: str = MYFATOORAH_API_KEY,
        webhook_secret: str = MYFATOORAH_WEBHOOK_SECRET,
        webhook_header: str = MYFATOORAH_WEBHOOK_HEADER,
        timeout: float = PAYMENT_TIMEOUT,
        transport=None,
        currency: str = CURRENCY,
        country_code: str = MYFATOORAH_COUNTRY_CODE,
    ):
        super().__init__(base_url, api_key, webhook_secret, webhook_header, timeout, transport)
        self.currency = currency
        self.country_code = country_code

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def check_customer(order: schemas.Order) -> str:
        """
        Validate the customer fields the gateway requires.

        Returns:
            The 8-digit local subscriber number

        Raises:
            ValidationError: naming the offending field
        """
        if not (order.customer_name or "").strip():
            raise ValidationError("Customer name is required", [{"field": "customerName"}])
        if not (order.customer_email or "").strip():
            raise ValidationError("Customer email is required", [{"field": "customerEmail"}])
        if not (order.customer_phone or "").strip():
            raise ValidationError("Customer phone is required", [{"field": "customerPhone"}])

        mobile = local_subscriber_number(order.customer_phone)
        if mobile is None:
            raise ValidationError(
                "Customer phone must be a valid Kuwait number (8 digits). "
                "Please update the phone number and try again.",
                [{"field": "customerPhone"}],
            )
        return mobile

    async def initiate(self, order: schemas.Order, base_url: str) -> Initiation:
        mobile = self.check_customer(order)

        body = {
            "InvoiceValue": float(order.total),
            "CurrencyIso": self.currency,
            "CustomerName": order.customer_name,
            "CustomerEmail": order.customer_email,
            "MobileCountryCode": self.country_code,
            "CustomerMobile": mobile,
            "CallBackUrl": self.callback_url(base_url, order.id),
            "ErrorUrl": self.callback_url(base_url, order.id, error="true"),
            "Language": "en",
            "CustomerReference": order.order_number,
            "InvoiceItems": [
                {
                    "ItemName": item.product_name,
                    "Quantity": item.quantity,
                    "UnitPrice": float(item.price),
                }
                for item in order.items
            ],
        }

        result = await self._post_json("/v2/ExecutePayment", body, "MyFatoorah ExecutePayment")
        data = data_object(result, "Data", "MyFatoorah ExecutePayment")
        if result.get("IsSuccess") and data.get("PaymentURL"):
            return Initiation(payment_url=data["PaymentURL"], reference=str(data.get("InvoiceId", "")))

        errors = result.get("ValidationErrors") or []
        raise GatewayRejected(result.get("Message") or "Payment initiation failed", errors)

    def callback_failed(self, query: Mapping[str, str]) -> bool:
        return bool(query.get("error"))

    def callback_payment_id(self, query: Mapping[str, str]) -> Optional[str]:
        return query.get("paymentId") or None

    async def confirm_payment(self, payment_id: str) -> bool:
        result = await self._post_json(
            "/v2/GetPaymentStatus",
            {"Key": payment_id, "KeyType": "PaymentId"},
            "MyFatoorah GetPaymentStatus",
        )
        data = data_object(result, "Data", "MyFatoorah GetPaymentStatus")
        return bool(result.get("IsSuccess")) and data.get("InvoiceStatus") == "Paid"

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookNotice:
        data = data_object(payload, "Data", "MyFatoorah webhook")
        status = str(data.get("TransactionStatus") or "")
        invoice_id = data.get("InvoiceId")
        return WebhookNotice(
            reference=str(invoice_id) if invoice_id is not None else None,
            merchant_order_id=None,
            order_number=data.get("CustomerReference"),
            status=status,
            outcome=WEBHOOK_OUTCOMES.get(status.upper()),
        )
