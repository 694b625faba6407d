"""
Common interface for hosted-payment gateway adapters.

An adapter starts a hosted payment session for an order, interprets the
browser callback the gateway redirects to afterwards, and parses the
gateway's server-to-server webhook. Shared HTTP handling lives here: bounded
timeouts, transport errors mapped to GatewayUnreachable and non-JSON bodies
mapped to MalformedGatewayResponse.
"""
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from .. import schemas
from ..errors import GatewayUnreachable, MalformedGatewayResponse

logger = logging.getLogger(__name__)

BODY_SNIPPET_LENGTH = 800

# Webhook outcomes
CAPTURED = "captured"
CANCELLED = "cancelled"


@dataclass
class Initiation:
    """A started hosted payment session."""
    payment_url: str
    reference: Optional[str] = None


@dataclass
class WebhookNotice:
    """
    A webhook body reduced to what reconciliation needs.

    Attributes:
        reference: Gateway reference, matched against Order.payment_id
        merchant_order_id: Our order id as echoed back by the gateway
        order_number: Our order number as echoed back by the gateway
        status: Gateway status string as received
        outcome: CAPTURED, CANCELLED or None when the status is not acted on
    """
    reference: Optional[str]
    merchant_order_id: Optional[str]
    order_number: Optional[str]
    status: str
    outcome: Optional[str]


class PaymentGateway(ABC):
    """Base class for payment gateway adapters."""

    name: str = ""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        webhook_secret: str = "",
        webhook_header: str = "x-webhook-secret",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.webhook_header = webhook_header.lower()
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        """False means demo mode: no live calls are made."""
        return bool(self.api_key)

    def callback_url(self, base_url: str, order_id: int, **params: str) -> str:
        query = "&".join([f"orderId={order_id}"] + [f"{k}={v}" for k, v in params.items()])
        return f"{base_url}/payment/{self.name}/callback?{query}"

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        ...

    @abstractmethod
    async def initiate(self, order: schemas.Order, base_url: str) -> Initiation:
        """
        Start a hosted payment session.

        Raises:
            ValidationError: order data the gateway cannot accept
            GatewayRejected: the gateway declined the request
            GatewayUnreachable: network failure, timeout or non-JSON response
        """

    @abstractmethod
    def callback_failed(self, query: Mapping[str, str]) -> bool:
        """True when the callback explicitly reports a failed payment."""

    def callback_payment_id(self, query: Mapping[str, str]) -> Optional[str]:
        """Gateway payment identifier carried by the callback, if any."""
        return None

    async def confirm_payment(self, payment_id: str) -> bool:
        """
        Ask the gateway whether a payment went through.

        Gateways without a status query report False, which reconciliation
        treats as unconfirmed.
        """
        return False

    @abstractmethod
    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookNotice:
        ...

    def verify_webhook(self, headers: Mapping[str, str]) -> bool:
        """
        Check the shared-secret header. A gateway without a configured secret
        accepts no webhooks.
        """
        if not self.webhook_secret:
            return False
        supplied = headers.get(self.webhook_header) or headers.get("x-webhook-secret") or ""
        return secrets.compare_digest(supplied.encode(), self.webhook_secret.encode())

    async def _post_json(self, path: str, body: Dict[str, Any], context: str) -> Dict[str, Any]:
        """
        POST a JSON body to the gateway and parse the JSON answer.

        The answer is returned whatever the HTTP status; gateways report
        declines in the body.
        """
        headers = {"Content-Type": "application/json", **self.auth_headers()}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}{path}", json=body, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"{context}: timed out after {self.timeout}s: {e}")
            raise GatewayUnreachable(f"{context}: gateway timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"{context}: request failed: {e}")
            raise GatewayUnreachable(f"{context}: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            content_type = response.headers.get("content-type", "")
            text = response.text
            snippet = f"{text[:BODY_SNIPPET_LENGTH]}..." if len(text) > BODY_SNIPPET_LENGTH else text
            logger.error(f"{context}: non-JSON response (status {response.status_code}): {text}")
            raise MalformedGatewayResponse(
                f'{context}: Non-JSON response (status {response.status_code}, '
                f'content-type "{content_type}"). Body: {snippet or "<empty>"}'
            ) from e

        if not isinstance(result, dict):
            raise MalformedGatewayResponse(f"{context}: expected a JSON object, got {type(result).__name__}")

        logger.info(f"{context}: HTTP {response.status_code}")
        return result


def data_object(result: Dict[str, Any], key: str, context: str) -> Dict[str, Any]:
    """
    Return the nested object a gateway answer keeps under key; {} if absent.

    Raises:
        MalformedGatewayResponse: the value is present but not an object
    """
    data = result.get(key) or {}
    if not isinstance(data, dict):
        raise MalformedGatewayResponse(f"{context}: expected {key} to be an object, got {type(data).__name__}")
    return data
