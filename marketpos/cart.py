# Cart - the active sale session's lines
# Stock is re-checked against the inventory on every mutation

from collections import OrderedDict
from decimal import Decimal
from typing import Iterable, List

from .errors import InsufficientStock, ValidationError
from .models import CartLine


def merge_lines(lines: Iterable[CartLine]) -> List[CartLine]:
    """Collapse duplicate barcodes into one line, summing quantities, first position wins"""
    merged: 'OrderedDict[str, CartLine]' = OrderedDict()
    for line in lines:
        existing = merged.get(line.barcode)
        if existing is None:
            merged[line.barcode] = CartLine(line.product, line.quantity)
        else:
            existing.quantity += line.quantity
    return list(merged.values())


class Cart:
    """In-memory cart, one per operator session"""

    def __init__(self, inventory):
        self.inventory = inventory
        self._lines: 'OrderedDict[str, CartLine]' = OrderedDict()

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self._lines.values()), Decimal('0'))

    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self):
        return len(self._lines)

    def add(self, barcode: str, quantity: int = 1) -> CartLine:
        """Scan a barcode into the cart, or bump the existing line"""
        barcode = (barcode or '').strip()
        if not barcode:
            raise ValidationError("Barcode is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"Quantity must be a whole number >= 1, got {quantity!r}")

        product = self.inventory.require_product(barcode)
        existing = self._lines.get(barcode)
        wanted = quantity + (existing.quantity if existing else 0)
        if wanted > product.stock_quantity:
            raise InsufficientStock(barcode, wanted, product.stock_quantity)

        line = CartLine(product, wanted)
        self._lines[barcode] = line
        return line

    def set_quantity(self, barcode: str, quantity: int):
        """Set a line's quantity; zero or less removes the line"""
        if quantity <= 0:
            self.remove(barcode)
            return
        if barcode not in self._lines:
            raise ValidationError(f"Not in cart: {barcode}")
        product = self.inventory.require_product(barcode)
        if quantity > product.stock_quantity:
            raise InsufficientStock(barcode, quantity, product.stock_quantity)
        self._lines[barcode] = CartLine(product, quantity)

    def remove(self, barcode: str):
        self._lines.pop(barcode, None)

    def clear(self):
        self._lines.clear()
