"""
CRUD (Create, Read, Update, Delete) operations for the relational backend.

SqlStorage implements OrderStore on top of SQLAlchemy. Every public method
runs in its own transaction and returns pydantic schemas, never ORM objects.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import delete as sqla_delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .database import session_scope
from .storage import ORDER_NUMBER_ATTEMPTS, OrderStore, generate_order_number

# Set up logging
logger = logging.getLogger(__name__)


def _get_order(db: Session, order_id: int) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def _to_order(db_order: Optional[models.Order]) -> Optional[schemas.Order]:
    if db_order is None:
        return None
    return schemas.Order.model_validate(db_order)


def _build_items(items: List[Dict[str, Any]]) -> List[models.OrderItem]:
    return [
        models.OrderItem(
            product_id=item["product_id"],
            product_name=item["product_name"],
            quantity=item["quantity"],
            price=item["price"],
            image=item.get("image") or "",
            size=item.get("size"),
            measurements=item.get("measurements"),
            notes=item.get("notes"),
            notes_en=item.get("notes_en"),
        )
        for item in items
    ]


class SqlStorage(OrderStore):
    """OrderStore backed by a relational database through SQLAlchemy."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    # Catalog

    def get_product(self, product_id: int) -> Optional[schemas.Product]:
        with session_scope(self._session_factory) as db:
            product = db.query(models.Product).filter(models.Product.id == product_id).first()
            return schemas.Product.model_validate(product) if product else None

    def list_products(self) -> List[schemas.Product]:
        with session_scope(self._session_factory) as db:
            products = db.query(models.Product).order_by(models.Product.id).all()
            return [schemas.Product.model_validate(p) for p in products]

    def create_product(self, data: Dict[str, Any]) -> schemas.Product:
        with session_scope(self._session_factory) as db:
            product = models.Product(**data)
            db.add(product)
            db.flush()
            return schemas.Product.model_validate(product)

    def update_product(self, product_id: int, data: Dict[str, Any]) -> Optional[schemas.Product]:
        with session_scope(self._session_factory) as db:
            product = db.query(models.Product).filter(models.Product.id == product_id).first()
            if product is None:
                return None
            for key, value in data.items():
                setattr(product, key, value)
            db.flush()
            return schemas.Product.model_validate(product)

    # Orders

    def list_orders(self) -> List[schemas.Order]:
        with session_scope(self._session_factory) as db:
            orders = db.query(models.Order).order_by(models.Order.id.desc()).all()
            return [schemas.Order.model_validate(o) for o in orders]

    def get_order(self, order_id: int) -> Optional[schemas.Order]:
        with session_scope(self._session_factory) as db:
            return _to_order(_get_order(db, order_id))

    def get_order_by_payment_id(self, payment_id: str) -> Optional[schemas.Order]:
        if not payment_id:
            return None
        with session_scope(self._session_factory) as db:
            return _to_order(
                db.query(models.Order).filter(models.Order.payment_id == payment_id).first()
            )

    def get_order_by_number(self, order_number: str) -> Optional[schemas.Order]:
        if not order_number:
            return None
        with session_scope(self._session_factory) as db:
            return _to_order(
                db.query(models.Order).filter(models.Order.order_number == order_number).first()
            )

    def create_order(self, order_data: Dict[str, Any], items: List[Dict[str, Any]]) -> schemas.Order:
        """
        Create an order and its items in a single transaction.

        A colliding order number is regenerated; the unique constraint on
        order_number is the final arbiter.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                with session_scope(self._session_factory) as db:
                    db_order = models.Order(
                        **order_data,
                        order_number=generate_order_number(),
                        created_at=date.today().isoformat(),
                    )
                    db_order.items = _build_items(items)
                    db.add(db_order)
                    db.flush()
                    return schemas.Order.model_validate(db_order)
            except IntegrityError:
                if attempt >= ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.warning(f"Order number collision, retrying (attempt {attempt})")

    def update_order(
        self,
        order_id: int,
        order_data: Dict[str, Any],
        items: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[schemas.Order]:
        with session_scope(self._session_factory) as db:
            db_order = _get_order(db, order_id)
            if db_order is None:
                return None

            for key, value in order_data.items():
                setattr(db_order, key, value)

            if items is not None:
                # Old rows are removed by delete-orphan within this transaction
                db_order.items.clear()
                db.flush()
                db_order.items.extend(_build_items(items))

            db.flush()
            db.refresh(db_order)
            return schemas.Order.model_validate(db_order)

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
        with session_scope(self._session_factory) as db:
            query = db.query(models.Order).filter(models.Order.id == order_id)
            if keep_paid and payment_status != "paid":
                query = query.filter(models.Order.payment_status != "paid")
            # Single UPDATE ... WHERE, so a concurrent "paid" write is never overwritten
            query.update(data, synchronize_session=False)
            return _to_order(_get_order(db, order_id))

    def delete_order(self, order_id: int) -> bool:
        """
        Delete an order from the database.

        This also deletes any associated order_events rows to satisfy the
        foreign key constraint; items go through the ORM cascade.
        """
        with session_scope(self._session_factory) as db:
            db_order = _get_order(db, order_id)
            if db_order is None:
                return False

            # Delete dependent timeline events first to avoid FK constraint errors
            db.execute(
                sqla_delete(models.OrderEvent).where(models.OrderEvent.order_id == order_id)
            )
            # Flush to ensure child rows are removed before deleting parent
            db.flush()

            db.delete(db_order)
            return True

    # Settings

    def get_settings(self) -> Optional[schemas.Settings]:
        with session_scope(self._session_factory) as db:
            row = db.query(models.Settings).order_by(models.Settings.id).first()
            return schemas.Settings.model_validate(row) if row else None

    def update_settings(self, data: Dict[str, Any]) -> schemas.Settings:
        with session_scope(self._session_factory) as db:
            row = db.query(models.Settings).order_by(models.Settings.id).first()
            if row is None:
                merged = schemas.Settings().model_dump()
                merged.update(data)
                row = models.Settings(**merged)
                db.add(row)
            else:
                for key, value in data.items():
                    setattr(row, key, value)
            db.flush()
            return schemas.Settings.model_validate(row)

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
        with session_scope(self._session_factory) as db:
            db.add(
                models.OrderEvent(
                    order_id=order_id,
                    event_type=event_type,
                    description=description,
                    old_value=old_value,
                    new_value=new_value,
                    source=source,
                )
            )

    def list_events(self, order_id: int) -> List[schemas.OrderEvent]:
        with session_scope(self._session_factory) as db:
            events = (
                db.query(models.OrderEvent)
                .filter(models.OrderEvent.order_id == order_id)
                .order_by(models.OrderEvent.created_at.asc(), models.OrderEvent.id.asc())
                .all()
            )
            return [schemas.OrderEvent.model_validate(e) for e in events]
