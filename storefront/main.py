"""
Storefront Service API

This module implements the FastAPI application for a fashion storefront:
checkout, payment initiation with hosted-payment gateways, reconciliation of
gateway callbacks and webhooks, and the admin endpoints for orders,
customers, products and store settings.

Endpoints:
    POST /orders: Check out a cart (manual orders: admin)
    GET /orders: List orders (admin)
    GET /orders/{order_id}: Get a single order
    PATCH /orders/{order_id}: Edit an order (admin)
    PATCH /orders/{order_id}/status: Set an order's status (admin)
    DELETE /orders/{order_id}: Delete an order (admin)
    POST /payment/{gateway}/initiate: Start a hosted payment
    GET /payment/{gateway}/callback: Browser return from the gateway
    POST /payment/{gateway}/webhook: Gateway server-to-server notification
    GET /payment/status: Which gateways are configured
    GET /settings, PATCH /settings: Store settings
    GET /customers, PATCH /customers, DELETE /customers: Customers grouped from orders (admin)
    GET /healthz: Health check endpoint for orchestration systems

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "storefront-service"
"""
import csv
import io
import json
import logging
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials

from . import auth, checkout, customers, payments, reconciliation, schemas
from .clients.payment_gateway import PaymentGateway
from .clients.translate_client import Translator, get_translator
from .config import APP_ENV, LOG_LEVEL, PUBLIC_BASE_URL
from .errors import GatewayUnreachable, NotFound, StorefrontError, ValidationError, WebhookAuthFailure
from .storage import OrderStore, get_storage

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="storefront-service")


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if isinstance(exc, GatewayUnreachable):
        logger.error(f"Payment service error on {request.url.path}: {exc.message}")
        content = {"message": "Payment service error"}
        if APP_ENV != "production":
            content["details"] = exc.message
        return JSONResponse(status_code=exc.status_code, content=content)
    if isinstance(exc, WebhookAuthFailure):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
    content = {"message": exc.message}
    if exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Validation error", "errors": jsonable_encoder(exc.errors())},
    )


def public_base_url(request: Request) -> str:
    """
    Base URL the customer's browser and the gateways can reach us on.

    PUBLIC_BASE_URL wins; otherwise it is rebuilt from proxy headers.
    """
    if PUBLIC_BASE_URL:
        return PUBLIC_BASE_URL
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


def gateway_dependency(
    gateway: str,
    gateways: Dict[str, PaymentGateway] = Depends(payments.get_gateways),
) -> PaymentGateway:
    return payments.get_gateway(gateway, gateways)


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the storefront service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


# Auth

@app.post("/auth/login", response_model=schemas.Token)
def login(credentials: schemas.AdminLogin):
    """
    Exchange the admin credentials for a JWT.

    Raises:
        HTTPException: 401 on wrong credentials
    """
    if not auth.authenticate_admin(credentials.email, credentials.password):
        logger.warning(f"Failed admin login for {credentials.email!r}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = auth.create_access_token({"sub": credentials.email.strip().lower(), "role": "admin"})
    return schemas.Token(access_token=token)


# Orders

@app.post("/orders", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
async def create_order(
    order: schemas.OrderCreate,
    store: OrderStore = Depends(get_storage),
    translator: Translator = Depends(get_translator),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth.optional_security),
):
    """
    Check out a cart.

    Prices come from the catalog for gateway orders; shipping is added from
    the current settings. The order starts as Pending. Manual orders carry
    staff-entered prices and need an admin token.
    """
    if order.payment_method == "manual":
        current_user = auth.admin_from_credentials(credentials)
        logger.info(f"Manual order entered by {current_user.email}")
    return await checkout.create_order(store, translator, order)


@app.get("/orders", response_model=List[schemas.Order])
def list_orders(
    view: Optional[str] = None,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """
    List orders, newest first.

    Args:
        view: "successful" or "pending" to filter; omitted for all orders
    """
    if view is not None and view not in ("successful", "pending"):
        raise ValidationError("view must be 'successful' or 'pending'", [{"field": "view"}])
    return checkout.list_orders(store, view)


@app.get("/orders/analytics", response_model=schemas.OrderAnalytics)
def get_analytics(
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return checkout.order_analytics(store)


@app.get("/orders/export/csv")
def export_orders_csv(
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """
    Export orders to CSV.

    Returns:
        CSV file; items_json is a JSON-encoded array of order items
    """
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "orderNumber", "createdAt", "customerName", "customerEmail", "customerPhone",
        "status", "paymentMethod", "paymentStatus", "shippingCost", "total", "items_json",
    ])
    for order in store.list_orders():
        items_json = json.dumps([item.model_dump(mode="json", by_alias=True) for item in order.items])
        writer.writerow([
            order.id,
            order.order_number,
            order.created_at,
            order.customer_name,
            order.customer_email,
            order.customer_phone,
            order.status,
            order.payment_method,
            order.payment_status,
            str(order.shipping_cost),
            str(order.total),
            items_json,
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=orders.csv"}
    )


@app.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(order_id: int, store: OrderStore = Depends(get_storage)):
    return checkout.get_order(store, order_id)


@app.patch("/orders/{order_id}", response_model=schemas.Order)
async def update_order(
    order_id: int,
    update: schemas.OrderUpdate,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return await checkout.edit_order(store, order_id, update)


@app.patch("/orders/{order_id}/status", response_model=schemas.Order)
async def update_order_status(
    order_id: int,
    update: schemas.StatusUpdate,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return await checkout.set_status(store, order_id, update.status)


@app.delete("/orders/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    order_id: int,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    checkout.delete_order(store, order_id)


@app.get("/orders/{order_id}/timeline", response_model=List[schemas.OrderEvent])
def get_order_timeline(
    order_id: int,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """
    Get the timeline of events for an order, oldest first.

    Raises:
        NotFound: 404 if order not found
    """
    checkout.get_order(store, order_id)
    return store.list_events(order_id)


# Payments

@app.get("/payment/status", response_model=schemas.PaymentConfiguration)
def payment_status(gateways: Dict[str, PaymentGateway] = Depends(payments.get_gateways)):
    return payments.payment_configuration(gateways)


@app.post("/payment/{gateway}/initiate", response_model=schemas.PaymentInitiateResponse)
async def initiate_payment(
    body: schemas.PaymentInitiate,
    request: Request,
    gateway: PaymentGateway = Depends(gateway_dependency),
    store: OrderStore = Depends(get_storage),
):
    return await payments.initiate_payment(store, gateway, body.order_id, public_base_url(request))


@app.get("/payment/{gateway}/callback")
async def payment_callback(
    request: Request,
    gateway: PaymentGateway = Depends(gateway_dependency),
    store: OrderStore = Depends(get_storage),
):
    """Browser return from the hosted payment page; always answers with a redirect."""
    base_url = public_base_url(request)
    target = await reconciliation.handle_callback(store, gateway, request.query_params, base_url)
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)


@app.post("/payment/{gateway}/webhook", response_model=schemas.WebhookAck)
async def payment_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(gateway_dependency),
    store: OrderStore = Depends(get_storage),
):
    """
    Gateway server-to-server notification.

    Authenticated by the gateway's shared-secret header. Every authenticated
    delivery is acknowledged, matched or not, so the gateway stops retrying.
    """
    if not gateway.verify_webhook(request.headers):
        client = request.client.host if request.client else "unknown"
        logger.warning(f"Rejected {gateway.name} webhook from {client}: bad or missing secret")
        raise WebhookAuthFailure("Unauthorized")

    try:
        payload = await request.json()
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        await reconciliation.handle_webhook(store, gateway, payload)
    except Exception:
        logger.exception(f"Error handling {gateway.name} webhook")
    return schemas.WebhookAck()


# Settings

@app.get("/settings", response_model=schemas.Settings)
def get_settings(store: OrderStore = Depends(get_storage)):
    return checkout.current_settings(store)


@app.patch("/settings", response_model=schemas.Settings)
def update_settings(
    update: schemas.SettingsUpdate,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return checkout.update_settings(store, update.model_dump(exclude_unset=True))


# Products

@app.get("/products", response_model=List[schemas.Product])
def list_products(store: OrderStore = Depends(get_storage)):
    return store.list_products()


@app.get("/products/{product_id}", response_model=schemas.Product)
def get_product(product_id: int, store: OrderStore = Depends(get_storage)):
    product = store.get_product(product_id)
    if product is None:
        raise NotFound("Product not found")
    return product


@app.post("/products", response_model=schemas.Product, status_code=status.HTTP_201_CREATED)
def create_product(
    product: schemas.ProductCreate,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return store.create_product(product.model_dump())


@app.patch("/products/{product_id}", response_model=schemas.Product)
def update_product(
    product_id: int,
    update: schemas.ProductUpdate,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    product = store.update_product(product_id, update.model_dump(exclude_unset=True))
    if product is None:
        raise NotFound("Product not found")
    return product


# Customers

@app.get("/customers", response_model=List[schemas.Customer])
def list_customers(
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return customers.aggregate_customers(store.list_orders())


@app.patch("/customers", response_model=dict)
def update_customer(
    patch: schemas.CustomerPatch,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return {"updated": customers.update_customer(store, patch)}


@app.delete("/customers", response_model=dict)
def delete_customer(
    id: str,
    store: OrderStore = Depends(get_storage),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return {"deleted": customers.delete_customer(store, id)}
