# Data model for Market POS
# Records are JSON-compatible through to_dict()/from_dict()

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class PaymentMethod(str, Enum):
    CASH = 'cash'
    CARD = 'card'


class MovementType(str, Enum):
    IN = 'in'
    OUT = 'out'
    ADJUSTMENT = 'adjustment'


class UserRole(str, Enum):
    CASHIER = 'cashier'
    MANAGER = 'manager'
    ADMIN = 'admin'


def to_decimal(value: Any) -> Decimal:
    """Exact decimal from str/int/Decimal; floats go through str() to avoid binary noise"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a decimal amount: {value!r}")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a decimal amount: {value!r}")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return datetime.fromisoformat(text)


def _int_field(data: Dict, key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    return value


@dataclass
class Product:
    """Sellable product, keyed by barcode"""
    barcode: str
    name: str
    unit_price: Decimal
    stock_quantity: int = 0
    min_stock_level: int = 0
    category: str = ''
    description: str = ''
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock_level

    def to_dict(self) -> Dict[str, Any]:
        return {
            'barcode': self.barcode,
            'name': self.name,
            'unit_price': str(self.unit_price),
            'stock_quantity': self.stock_quantity,
            'min_stock_level': self.min_stock_level,
            'category': self.category,
            'description': self.description,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Product':
        product = cls(
            barcode=str(data['barcode']),
            name=str(data['name']),
            unit_price=to_decimal(data['unit_price']),
            stock_quantity=_int_field(data, 'stock_quantity'),
            min_stock_level=_int_field(data, 'min_stock_level'),
            category=str(data.get('category') or ''),
            description=str(data.get('description') or ''),
            created_at=parse_timestamp(data['created_at']),
            updated_at=parse_timestamp(data['updated_at']),
        )
        product.validate()
        return product

    def validate(self):
        if not self.barcode.strip():
            raise ValueError("barcode is required")
        if not self.name.strip():
            raise ValueError("name is required")
        if not self.unit_price.is_finite() or self.unit_price <= 0:
            raise ValueError(f"unit_price must be positive, got {self.unit_price}")
        if self.stock_quantity < 0:
            raise ValueError("stock_quantity must be >= 0")
        if self.min_stock_level < 0:
            raise ValueError("min_stock_level must be >= 0")


@dataclass
class CartLine:
    """One product in the active cart. Never persisted."""
    product: Product
    quantity: int

    @property
    def barcode(self) -> str:
        return self.product.barcode

    @property
    def line_total(self) -> Decimal:
        return self.product.unit_price * self.quantity


@dataclass(frozen=True)
class SaleLine:
    """Product snapshot taken at commit time"""
    barcode: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'barcode': self.barcode,
            'name': self.name,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'line_total': str(self.line_total),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SaleLine':
        return cls(
            barcode=str(data['barcode']),
            name=str(data['name']),
            quantity=_int_field(data, 'quantity'),
            unit_price=to_decimal(data['unit_price']),
            line_total=to_decimal(data['line_total']),
        )


@dataclass(frozen=True)
class Sale:
    """Completed sale. Immutable once created."""
    id: str
    lines: Tuple[SaleLine, ...]
    total: Decimal
    cashier_id: str
    payment_method: PaymentMethod
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'lines': [line.to_dict() for line in self.lines],
            'total': str(self.total),
            'cashier_id': self.cashier_id,
            'payment_method': self.payment_method.value,
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Sale':
        return cls(
            id=str(data['id']),
            lines=tuple(SaleLine.from_dict(line) for line in data['lines']),
            total=to_decimal(data['total']),
            cashier_id=str(data['cashier_id']),
            payment_method=PaymentMethod(data['payment_method']),
            timestamp=parse_timestamp(data['timestamp']),
        )


@dataclass(frozen=True)
class StockMovement:
    """Append-only audit entry for one stock change of one product"""
    id: str
    barcode: str
    product_name: str
    type: MovementType
    quantity: int
    reason: str
    actor_id: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'barcode': self.barcode,
            'product_name': self.product_name,
            'type': self.type.value,
            'quantity': self.quantity,
            'reason': self.reason,
            'actor_id': self.actor_id,
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StockMovement':
        return cls(
            id=str(data['id']),
            barcode=str(data['barcode']),
            product_name=str(data.get('product_name') or ''),
            type=MovementType(data['type']),
            quantity=_int_field(data, 'quantity'),
            reason=str(data.get('reason') or ''),
            actor_id=str(data['actor_id']),
            timestamp=parse_timestamp(data['timestamp']),
        )


@dataclass(frozen=True)
class ReceiptItem:
    name: str
    quantity: int
    unit_price: Decimal
    total: Decimal
    barcode: Optional[str] = None


@dataclass(frozen=True)
class ReceiptJob:
    """What the printer needs for one receipt; derived from a Sale, never stored"""
    sale_id: str
    lines: Tuple[ReceiptItem, ...]
    total: Decimal
    payment_method: PaymentMethod
    cashier_id: str
    timestamp: datetime

    @classmethod
    def from_sale(cls, sale: Sale) -> 'ReceiptJob':
        return cls(
            sale_id=sale.id,
            lines=tuple(
                ReceiptItem(
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total=line.line_total,
                    barcode=line.barcode or None,
                )
                for line in sale.lines
            ),
            total=sale.total,
            payment_method=sale.payment_method,
            cashier_id=sale.cashier_id,
            timestamp=sale.timestamp,
        )


@dataclass(frozen=True)
class LogEntry:
    """Operator activity log record"""
    id: str
    username: str
    action: str
    details: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'username': self.username,
            'action': self.action,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        return cls(
            id=str(data['id']),
            username=str(data['username']),
            action=str(data['action']),
            details=str(data.get('details') or ''),
            timestamp=parse_timestamp(data['timestamp']),
        )


@dataclass
class User:
    username: str
    role: UserRole
    full_name: str
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'username': self.username,
            'role': self.role.value,
            'full_name': self.full_name,
            'is_active': self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            username=str(data['username']),
            role=UserRole(data['role']),
            full_name=str(data.get('full_name') or ''),
            is_active=bool(data.get('is_active', True)),
        )


DEFAULT_USERS: List[User] = [
    User('admin', UserRole.ADMIN, 'Sistem Yöneticisi'),
    User('manager', UserRole.MANAGER, 'Mağaza Müdürü'),
    User('cashier', UserRole.CASHIER, 'Kasiyer'),
]


def touch(product: Product, **changes) -> Product:
    """Copy of product with changes applied and updated_at bumped"""
    return replace(product, updated_at=datetime.now(), **changes)
