"""
Storage interface shared by the relational and document backends.

Business logic depends only on OrderStore; get_storage() picks the backend
named by STORAGE_BACKEND.
"""
import secrets
import string
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from . import schemas
from .config import DATABASE_URL, DOCUMENT_DB_PATH, STORAGE_BACKEND

_BASE36 = string.digits + string.ascii_uppercase
ORDER_NUMBER_ATTEMPTS = 5


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_order_number() -> str:
    """
    Generate a human-readable order number.

    The millisecond timestamp prefix keeps numbers sortable by creation time;
    the random suffix keeps numbers generated in the same millisecond apart.
    """
    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"ORD-{stamp}{suffix}"


class OrderStore(ABC):
    """
    Persistence contract for products, orders, order items, settings and the
    order timeline.

    Order field dictionaries use the snake_case names of schemas.Order;
    item dictionaries use the names of schemas.OrderItem without id/order_id.
    """

    # Catalog

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[schemas.Product]:
        ...

    @abstractmethod
    def list_products(self) -> List[schemas.Product]:
        ...

    @abstractmethod
    def create_product(self, data: Dict[str, Any]) -> schemas.Product:
        ...

    @abstractmethod
    def update_product(self, product_id: int, data: Dict[str, Any]) -> Optional[schemas.Product]:
        ...

    # Orders

    @abstractmethod
    def list_orders(self) -> List[schemas.Order]:
        """All orders with their items, newest first."""

    @abstractmethod
    def get_order(self, order_id: int) -> Optional[schemas.Order]:
        ...

    @abstractmethod
    def get_order_by_payment_id(self, payment_id: str) -> Optional[schemas.Order]:
        ...

    @abstractmethod
    def get_order_by_number(self, order_number: str) -> Optional[schemas.Order]:
        ...

    @abstractmethod
    def create_order(self, order_data: Dict[str, Any], items: List[Dict[str, Any]]) -> schemas.Order:
        """
        Persist an order together with its items.

        Assigns id, order_number and created_at.
        """

    @abstractmethod
    def update_order(
        self,
        order_id: int,
        order_data: Dict[str, Any],
        items: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[schemas.Order]:
        """
        Update order fields; when items is given, replace all existing items.

        Returns None if the order does not exist.
        """

    @abstractmethod
    def update_order_status(self, order_id: int, status: str) -> Optional[schemas.Order]:
        ...

    @abstractmethod
    def update_order_payment(
        self,
        order_id: int,
        payment_id: Optional[str],
        payment_status: str,
        status: Optional[str] = None,
        keep_paid: bool = False,
    ) -> Optional[schemas.Order]:
        """
        Record a payment outcome. A payment_id of None keeps the stored
        reference; a status of None keeps the order status.

        With keep_paid, an order whose stored payment_status is already
        "paid" is left as it is unless the new payment_status is also
        "paid". The check and the write are one atomic step.

        Returns:
            The stored order after the call, or None if it does not exist
        """

    @abstractmethod
    def delete_order(self, order_id: int) -> bool:
        """Delete an order with its items and timeline. False if not found."""

    # Settings

    @abstractmethod
    def get_settings(self) -> Optional[schemas.Settings]:
        ...

    @abstractmethod
    def update_settings(self, data: Dict[str, Any]) -> schemas.Settings:
        ...

    # Timeline

    @abstractmethod
    def add_event(
        self,
        order_id: int,
        event_type: str,
        description: str,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    def list_events(self, order_id: int) -> List[schemas.OrderEvent]:
        """Events for an order, oldest first."""


_storage: Optional[OrderStore] = None


def build_storage(backend: str = STORAGE_BACKEND) -> OrderStore:
    if backend == "document":
        from .documents import DocumentStorage
        return DocumentStorage(DOCUMENT_DB_PATH)
    if backend == "sql":
        from .crud import SqlStorage
        from .database import make_engine, make_session_factory
        return SqlStorage(make_session_factory(make_engine(DATABASE_URL)))
    raise ValueError(f"Unknown storage backend: {backend}")


def get_storage() -> OrderStore:
    """
    FastAPI dependency returning the configured storage backend.

    The backend is created on first use and shared by all requests.
    """
    global _storage
    if _storage is None:
        _storage = build_storage()
    return _storage
