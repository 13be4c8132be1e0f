# Inventory Ledger - product stock counters and the stock movement audit trail
# Every stock change goes through _apply() under the product's barcode lock

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import InsufficientStock, POSError, ProductNotFound, ValidationError
from .models import MovementType, Product, StockMovement, to_decimal, touch

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'unit_price', 'min_stock_level', 'category', 'description')


class InventoryLedger:
    """Owns product stock and the append-only StockMovement log"""

    def __init__(self, store, activity_log=None):
        self.store = store
        self.activity_log = activity_log
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, barcode: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(barcode)
            if lock is None:
                lock = self._locks[barcode] = threading.RLock()
            return lock

    @contextmanager
    def locked(self, barcodes: Iterable[str]) -> Iterator[None]:
        """
        Hold the critical section of several barcodes at once.
        Locks are taken in sorted order so two callers cannot deadlock.
        """
        locks = [self._lock_for(b) for b in sorted(set(barcodes))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # Reads

    def get_product(self, barcode: str) -> Optional[Product]:
        return self.store.get_product(barcode)

    def require_product(self, barcode: str) -> Product:
        product = self.store.get_product(barcode)
        if product is None:
            raise ProductNotFound(barcode)
        return product

    def list_products(self) -> List[Product]:
        return self.store.list_products()

    def low_stock_products(self) -> List[Product]:
        """Products at or below their minimum stock level, emptiest first"""
        products = [p for p in self.store.list_products() if p.is_low_stock]
        return sorted(products, key=lambda p: p.stock_quantity)

    def movements(self, barcode: str = None) -> List[StockMovement]:
        return self.store.list_movements(barcode)

    # Product management

    def add_product(self, barcode: str, name: str, unit_price, stock_quantity: int = 0,
                    min_stock_level: int = 0, category: str = '', description: str = '',
                    actor_id: str = 'system') -> Product:
        """Register a product; opening stock is recorded as an 'in' movement"""
        barcode = (barcode or '').strip()
        try:
            product = Product(
                barcode=barcode,
                name=(name or '').strip(),
                unit_price=to_decimal(unit_price),
                stock_quantity=int(stock_quantity),
                min_stock_level=int(min_stock_level),
                category=category or '',
                description=description or '',
            )
            product.validate()
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e))

        movement = None
        if product.stock_quantity > 0:
            movement = self._movement(product, MovementType.IN, product.stock_quantity,
                                      'Initial stock', actor_id)
        with self.locked([barcode]):
            try:
                self.store.insert_product(product, movement)
            except sqlite3.IntegrityError:
                raise ValidationError(f"Barcode already registered: {barcode}")

        logger.info("Product added: %s (%s)", product.name, barcode)
        if self.activity_log:
            self.activity_log.log_product_action(actor_id, 'ADD', barcode, product.name)
        return product

    def update_product(self, barcode: str, actor_id: str = 'system', **changes) -> Product:
        """Edit descriptive fields. Stock can only change through apply_* operations."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        with self.locked([barcode]):
            product = self.require_product(barcode)
            try:
                if 'unit_price' in changes:
                    changes['unit_price'] = to_decimal(changes['unit_price'])
                if 'min_stock_level' in changes:
                    changes['min_stock_level'] = int(changes['min_stock_level'])
                updated = touch(product, **changes)
                updated.validate()
            except (TypeError, ValueError) as e:
                raise ValidationError(str(e))
            if not self.store.update_product(updated):
                raise ProductNotFound(barcode)

        if self.activity_log:
            self.activity_log.log_product_action(actor_id, 'UPDATE', barcode, updated.name)
        return updated

    def delete_product(self, barcode: str, actor_id: str = 'system'):
        with self.locked([barcode]):
            product = self.require_product(barcode)
            self.store.delete_product(barcode)
        logger.info("Product deleted: %s (%s)", product.name, barcode)
        if self.activity_log:
            self.activity_log.log_product_action(actor_id, 'DELETE', barcode, product.name)

    # Stock

    def reserve_check(self, barcode: str, requested_qty: int):
        """Read-only: raise InsufficientStock if requested_qty is not available now"""
        _check_quantity(requested_qty)
        product = self.require_product(barcode)
        if requested_qty > product.stock_quantity:
            raise InsufficientStock(barcode, requested_qty, product.stock_quantity)

    def apply_out(self, barcode: str, qty: int, actor_id: str, reason: str) -> StockMovement:
        _check_quantity(qty)

        def compute(product: Product) -> Tuple[int, int]:
            if qty > product.stock_quantity:
                raise InsufficientStock(barcode, qty, product.stock_quantity)
            return product.stock_quantity - qty, qty

        return self._apply(barcode, MovementType.OUT, compute, actor_id, reason)

    def apply_in(self, barcode: str, qty: int, actor_id: str, reason: str) -> StockMovement:
        _check_quantity(qty)
        return self._apply(barcode, MovementType.IN,
                           lambda product: (product.stock_quantity + qty, qty),
                           actor_id, reason)

    def apply_adjustment(self, barcode: str, new_quantity: int, actor_id: str,
                         reason: str) -> StockMovement:
        """Set stock to new_quantity; the movement carries the signed delta"""
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int) or new_quantity < 0:
            raise ValidationError(f"Stock must be a whole number >= 0, got {new_quantity!r}")
        return self._apply(barcode, MovementType.ADJUSTMENT,
                           lambda product: (new_quantity, new_quantity - product.stock_quantity),
                           actor_id, reason)

    def _apply(self, barcode: str, movement_type: MovementType,
               compute: Callable[[Product], Tuple[int, int]],
               actor_id: str, reason: str) -> StockMovement:
        with self.locked([barcode]):
            # Re-read under the lock; an earlier read may be stale
            product = self.require_product(barcode)
            new_stock, movement_qty = compute(product)
            movement = self._movement(product, movement_type, movement_qty, reason, actor_id)
            if not self.store.apply_stock_change(barcode, product.stock_quantity,
                                                 new_stock, movement):
                raise POSError(f"Stock of {barcode} changed outside the inventory ledger")

        logger.info("Stock %s %s: %d -> %d (%s)", movement_type.value, barcode,
                    product.stock_quantity, new_stock, reason)
        if self.activity_log:
            # Stock and movement are already written; the activity entry is secondary
            try:
                self.activity_log.log_stock_action(actor_id, 'UPDATE', barcode,
                                                   product.stock_quantity, new_stock)
            except sqlite3.Error as e:
                logger.error("Stock of %s changed but activity log not written: %s", barcode, e)
        return movement

    @staticmethod
    def _movement(product: Product, movement_type: MovementType, quantity: int,
                  reason: str, actor_id: str) -> StockMovement:
        return StockMovement(
            id=uuid.uuid4().hex,
            barcode=product.barcode,
            product_name=product.name,
            type=movement_type,
            quantity=quantity,
            reason=reason,
            actor_id=actor_id,
            timestamp=datetime.now(),
        )


def _check_quantity(qty):
    if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
        raise ValidationError(f"Quantity must be a whole number >= 1, got {qty!r}")
