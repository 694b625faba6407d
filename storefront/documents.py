"""
Document-store backend built on TinyDB.

DocumentStorage implements OrderStore with one table per collection and a
counters table that hands out monotonic integer ids. Decimals are stored as
strings. Multi-document writes (an order and its items) are sequential and
best-effort; a process-wide lock keeps concurrent requests from interleaving.
"""
import logging
import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from tinydb import Query, TinyDB

from . import schemas
from .storage import ORDER_NUMBER_ATTEMPTS, OrderStore, generate_order_number

logger = logging.getLogger(__name__)

PRODUCTS = "products"
ORDERS = "orders"
ORDER_ITEMS = "order_items"
SETTINGS = "settings"
ORDER_EVENTS = "order_events"
COUNTERS = "counters"


def _encode(data: Dict[str, Any]) -> Dict[str, Any]:
    """Make a field dictionary JSON-safe."""
    encoded = {}
    for key, value in data.items():
        if isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        encoded[key] = value
    return encoded


class DocumentStorage(OrderStore):
    """OrderStore backed by a TinyDB JSON document database."""

    def __init__(self, path: str, **tinydb_kwargs):
        self._db = TinyDB(path, **tinydb_kwargs)
        self._lock = threading.RLock()

    def close(self) -> None:
        self._db.close()

    def _table(self, name: str):
        return self._db.table(name)

    def _next_id(self, name: str) -> int:
        counters = self._table(COUNTERS)
        Counter = Query()
        row = counters.get(Counter.name == name)
        value = (row["value"] if row else 0) + 1
        counters.upsert({"name": name, "value": value}, Counter.name == name)
        return value

    def _items_for(self, order_id: int) -> List[Dict[str, Any]]:
        Item = Query()
        rows = self._table(ORDER_ITEMS).search(Item.order_id == order_id)
        return sorted((dict(r) for r in rows), key=lambda r: r["id"])

    def _to_order(self, row: Optional[Dict[str, Any]]) -> Optional[schemas.Order]:
        if row is None:
            return None
        data = dict(row)
        data["items"] = self._items_for(data["id"])
        return schemas.Order.model_validate(data)

    def _insert_items(self, order_id: int, items: List[Dict[str, Any]]) -> None:
        table = self._table(ORDER_ITEMS)
        for item in items:
            table.insert(
                _encode(
                    {
                        "id": self._next_id(ORDER_ITEMS),
                        "order_id": order_id,
                        "product_id": item["product_id"],
                        "product_name": item["product_name"],
                        "quantity": item["quantity"],
                        "price": item["price"],
                        "image": item.get("image") or "",
                        "size": item.get("size"),
                        "measurements": item.get("measurements"),
                        "notes": item.get("notes"),
                        "notes_en": item.get("notes_en"),
                    }
                )
            )

    # Catalog

    def get_product(self, product_id: int) -> Optional[schemas.Product]:
        with self._lock:
            row = self._table(PRODUCTS).get(Query().id == product_id)
            return schemas.Product.model_validate(dict(row)) if row else None

    def list_products(self) -> List[schemas.Product]:
        with self._lock:
            rows = sorted(self._table(PRODUCTS).all(), key=lambda r: r["id"])
            return [schemas.Product.model_validate(dict(r)) for r in rows]

    def create_product(self, data: Dict[str, Any]) -> schemas.Product:
        with self._lock:
            record = dict(data, id=self._next_id(PRODUCTS))
            self._table(PRODUCTS).insert(_encode(record))
            return schemas.Product.model_validate(record)

    def update_product(self, product_id: int, data: Dict[str, Any]) -> Optional[schemas.Product]:
        with self._lock:
            table = self._table(PRODUCTS)
            if not table.update(_encode(data), Query().id == product_id):
                return None
            return schemas.Product.model_validate(dict(table.get(Query().id == product_id)))

    # Orders

    def list_orders(self) -> List[schemas.Order]:
        with self._lock:
            rows = sorted(self._table(ORDERS).all(), key=lambda r: r["id"], reverse=True)
            return [self._to_order(r) for r in rows]

    def get_order(self, order_id: int) -> Optional[schemas.Order]:
        with self._lock:
            return self._to_order(self._table(ORDERS).get(Query().id == order_id))

    def get_order_by_payment_id(self, payment_id: str) -> Optional[schemas.Order]:
        if not payment_id:
            return None
        with self._lock:
            return self._to_order(self._table(ORDERS).get(Query().payment_id == payment_id))

    def get_order_by_number(self, order_number: str) -> Optional[schemas.Order]:
        if not order_number:
            return None
        with self._lock:
            return self._to_order(self._table(ORDERS).get(Query().order_number == order_number))

    def create_order(self, order_data: Dict[str, Any], items: List[Dict[str, Any]]) -> schemas.Order:
        with self._lock:
            orders = self._table(ORDERS)
            for _ in range(ORDER_NUMBER_ATTEMPTS):
                order_number = generate_order_number()
                if not orders.contains(Query().order_number == order_number):
                    break
                logger.warning("Order number collision, regenerating")
            else:
                raise RuntimeError("Could not generate a unique order number")

            order_id = self._next_id(ORDERS)
            record = dict(
                order_data,
                id=order_id,
                order_number=order_number,
                created_at=date.today().isoformat(),
            )
            record.setdefault("payment_id", None)
            orders.insert(_encode(record))
            self._insert_items(order_id, items)
            return self._to_order(orders.get(Query().id == order_id))

    def update_order(
        self,
        order_id: int,
        order_data: Dict[str, Any],
        items: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[schemas.Order]:
        with self._lock:
            orders = self._table(ORDERS)
            if not orders.contains(Query().id == order_id):
                return None
            if order_data:
                orders.update(_encode(order_data), Query().id == order_id)
            if items is not None:
                self._table(ORDER_ITEMS).remove(Query().order_id == order_id)
                self._insert_items(order_id, items)
            return self._to_order(orders.get(Query().id == order_id))

    def update_order_status(self, order_id: int, status: str) -> Optional[schemas.Order]:
        return self.update_order(order_id, {"status": status})

    def update_order_payment(
        self,
        order_id: int,
        payment_id: Optional[str],
        payment_status: str,
        status: Optional[str] = None,
        keep_paid: bool = False,
    ) -> Optional[schemas.Order]:
        data: Dict[str, Any] = {"payment_status": payment_status}
        if payment_id is not None:
            data["payment_id"] = payment_id
        if status is not None:
            data["status"] = status
        with self._lock:
            current = self._table(ORDERS).get(Query().id == order_id)
            if current is None:
                return None
            if keep_paid and current.get("payment_status") == "paid" and payment_status != "paid":
                return self._to_order(current)
            return self.update_order(order_id, data)

    def delete_order(self, order_id: int) -> bool:
        with self._lock:
            removed = self._table(ORDERS).remove(Query().id == order_id)
            if not removed:
                return False
            self._table(ORDER_ITEMS).remove(Query().order_id == order_id)
            self._table(ORDER_EVENTS).remove(Query().order_id == order_id)
            return True

    # Settings

    def get_settings(self) -> Optional[schemas.Settings]:
        with self._lock:
            rows = self._table(SETTINGS).all()
            return schemas.Settings.model_validate(dict(rows[0])) if rows else None

    def update_settings(self, data: Dict[str, Any]) -> schemas.Settings:
        with self._lock:
            table = self._table(SETTINGS)
            rows = table.all()
            merged = schemas.Settings.model_validate(dict(rows[0])).model_dump() if rows else schemas.Settings().model_dump()
            merged.update(data)
            table.truncate()
            table.insert(_encode(merged))
            return schemas.Settings.model_validate(merged)

    # Timeline

    def add_event(
        self,
        order_id: int,
        event_type: str,
        description: str,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._table(ORDER_EVENTS).insert(
                _encode(
                    {
                        "id": self._next_id(ORDER_EVENTS),
                        "order_id": order_id,
                        "event_type": event_type,
                        "description": description,
                        "old_value": old_value,
                        "new_value": new_value,
                        "source": source,
                        "created_at": datetime.utcnow(),
                    }
                )
            )

    def list_events(self, order_id: int) -> List[schemas.OrderEvent]:
        with self._lock:
            rows = self._table(ORDER_EVENTS).search(Query().order_id == order_id)
            return [schemas.OrderEvent.model_validate(dict(r)) for r in sorted(rows, key=lambda r: r["id"])]
