"""
Payment initiation against the configured gateways.
"""
import logging
from typing import Dict

from . import schemas
from .clients.deema_client import DeemaGateway
from .clients.myfatoorah_client import MyFatoorahGateway
from .clients.payment_gateway import PaymentGateway
from .errors import NotFound, ValidationError
from .storage import OrderStore

logger = logging.getLogger(__name__)

_gateways: Dict[str, PaymentGateway] = {}


def get_gateways() -> Dict[str, PaymentGateway]:
    """FastAPI dependency returning the gateway adapters by name."""
    if not _gateways:
        for gateway in (MyFatoorahGateway(), DeemaGateway()):
            _gateways[gateway.name] = gateway
    return _gateways


def get_gateway(name: str, gateways: Dict[str, PaymentGateway]) -> PaymentGateway:
    gateway = gateways.get(name)
    if gateway is None:
        raise NotFound("Unknown payment gateway")
    return gateway


def payment_configuration(gateways: Dict[str, PaymentGateway]) -> schemas.PaymentConfiguration:
    return schemas.PaymentConfiguration(
        myfatoorah=gateways["myfatoorah"].configured,
        deema=gateways["deema"].configured,
    )


async def initiate_payment(
    store: OrderStore,
    gateway: PaymentGateway,
    order_id: int,
    base_url: str,
) -> schemas.PaymentInitiateResponse:
    """
    Start a hosted payment session for an order.

    Without an API key the gateway runs in demo mode: the customer is sent
    straight to the success page and the order is left untouched.
    Re-initiating overwrites the stored payment reference.

    Args:
        store: Order storage
        gateway: Gateway adapter to initiate with
        order_id: Order to pay for
        base_url: Public base URL for the callback and redirect URLs

    Raises:
        NotFound: unknown order
        ValidationError: manual or already paid order, or gateway preconditions fail
        GatewayRejected: the gateway declined
        GatewayUnreachable: network failure or unusable response
    """
    order = store.get_order(order_id)
    if order is None:
        raise NotFound("Order not found")

    if order.payment_method == "manual":
        raise ValidationError("Manual orders cannot be paid online")

    if not gateway.configured:
        logger.info(f"{gateway.name} not configured, demo payment for order {order_id}")
        return schemas.PaymentInitiateResponse(
            payment_url=f"{base_url}/order/success?orderId={order_id}&demo=true",
            demo=True,
        )

    if order.payment_status == "paid":
        raise ValidationError("Order is already paid")

    initiation = await gateway.initiate(order, base_url)

    store.update_order_payment(order_id, initiation.reference or "", "initiated")
    store.add_event(
        order_id,
        "payment_changed",
        f"Payment initiated with {gateway.name}",
        old_value=order.payment_status,
        new_value="initiated",
        source="checkout",
    )
    logger.info(f"Payment initiated for order {order_id} via {gateway.name}, reference={initiation.reference}")
    return schemas.PaymentInitiateResponse(
        payment_url=initiation.payment_url,
        demo=False,
        reference=initiation.reference,
    )
