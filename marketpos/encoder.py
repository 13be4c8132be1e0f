# Receipt Protocol Encoder - ReceiptJob -> ESC/POS byte stream
# Pure functions, no I/O. Hugin T300 family: ESC/POS plus the Turkish code page.
# Right-hand amounts (line totals, TOPLAM) are space-padded to the paper width
# within a left-aligned row; no ESC a 2 is sent before them.

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, Tuple

from .models import PaymentMethod, ReceiptJob


class Command(Enum):
    """Fixed ESC/POS command sequences"""
    INIT = b'\x1b@'                      # ESC @
    BOLD_ON = b'\x1bE\x01'               # ESC E 1
    BOLD_OFF = b'\x1bE\x00'              # ESC E 0
    UNDERLINE_ON = b'\x1b-\x01'          # ESC - 1
    UNDERLINE_OFF = b'\x1b-\x00'         # ESC - 0
    ALIGN_LEFT = b'\x1ba\x00'            # ESC a 0
    ALIGN_CENTER = b'\x1ba\x01'          # ESC a 1
    ALIGN_RIGHT = b'\x1ba\x02'           # ESC a 2
    NORMAL_SIZE = b'\x1b!\x00'           # ESC ! 0
    DOUBLE_HEIGHT = b'\x1b!\x10'         # ESC ! 16
    DOUBLE_WIDTH = b'\x1b!\x20'          # ESC ! 32
    FEED_LINE = b'\n'                    # LF
    CUT_PAPER = b'\x1dV\x00'             # GS V 0, full cut
    OPEN_DRAWER = b'\x1bp\x00\x19\xfa'   # ESC p 0 25 250


# Commands taking one parameter byte
FEED_LINES_PREFIX = b'\x1bd'             # ESC d n
SELECT_CODE_PAGE_PREFIX = b'\x1bt'       # ESC t n

# Vendor extension: code page 18 is PC857 (Turkish) on the Hugin T300
TURKISH_CODE_PAGE = 18
TURKISH_ENCODING = 'cp857'


class CommandBuffer:
    """Byte builder for a command/text stream"""

    def __init__(self, encoding: str = TURKISH_ENCODING):
        self.encoding = encoding
        self._buf = bytearray()

    def command(self, *commands: Command) -> 'CommandBuffer':
        for cmd in commands:
            self._buf += cmd.value
        return self

    def feed(self, lines: int) -> 'CommandBuffer':
        if not 0 <= lines <= 255:
            raise ValueError(f"Feed must be 0-255 lines, got {lines}")
        self._buf += FEED_LINES_PREFIX + bytes([lines])
        return self

    def code_page(self, page: int) -> 'CommandBuffer':
        if not 0 <= page <= 255:
            raise ValueError(f"Code page must be 0-255, got {page}")
        self._buf += SELECT_CODE_PAGE_PREFIX + bytes([page])
        return self

    def text(self, value: str) -> 'CommandBuffer':
        self._buf += value.encode(self.encoding, errors='replace')
        return self

    def line(self, value: str = '') -> 'CommandBuffer':
        return self.text(value).command(Command.FEED_LINE)

    def to_bytes(self) -> bytes:
        return bytes(self._buf)

    def __len__(self):
        return len(self._buf)


DEFAULT_LABELS = {
    'sale_id': 'Fiş No',
    'date': 'Tarih',
    'cashier': 'Kasiyer',
    'payment': 'Ödeme',
    'barcode': 'Barkod',
    'total': 'TOPLAM',
    'cash': 'Nakit',
    'card': 'Kart',
}


@dataclass(frozen=True)
class ReceiptLayout:
    """Store texts and paper geometry. Defaults match the tr-TR receipt."""
    store_name: str = 'MARKET OTOMASYONU'
    subtitle: str = 'Satış ve Stok Yönetim Sistemi'
    footer: Tuple[str, ...] = ('Teşekkür ederiz!', 'Tekrar bekleriz...')
    width: int = 32
    currency_suffix: str = 'TL'
    date_format: str = '%d.%m.%Y %H:%M'
    encoding: str = TURKISH_ENCODING
    code_page: int = TURKISH_CODE_PAGE
    feed_lines: int = 3
    labels: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_LABELS))

    @classmethod
    def from_config(cls, receipt_config: Dict) -> 'ReceiptLayout':
        known = {k: v for k, v in receipt_config.items() if k in cls.__dataclass_fields__}
        if 'footer' in known:
            known['footer'] = tuple(known['footer'])
        if 'labels' in known:
            known['labels'] = dict(DEFAULT_LABELS, **known['labels'])
        return cls(**known)


def format_currency(amount: Decimal, suffix: str = 'TL') -> str:
    """12.5 -> '12,50 TL'. Two fraction digits, decimal comma, no grouping."""
    quantized = Decimal(amount).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    return f"{quantized:.2f}".replace('.', ',') + f" {suffix}"


def fit(text: str, width: int) -> str:
    """Truncate to the paper width"""
    return text[:width]


def columns(left: str, right: str, width: int) -> str:
    """Left text and right-aligned value on one line; the left side is truncated first"""
    if len(right) >= width:
        return right[:width]
    left = left[:width - len(right) - 1]
    return left + ' ' * (width - len(left) - len(right)) + right


class ReceiptEncoder:
    """Builds the printer byte stream for a ReceiptJob"""

    def __init__(self, layout: ReceiptLayout = None):
        self.layout = layout or ReceiptLayout()

    def init_sequence(self) -> bytes:
        """Device initialization: reset plus code page selection"""
        return CommandBuffer(self.layout.encoding).command(Command.INIT) \
            .code_page(self.layout.code_page).to_bytes()

    def money(self, amount: Decimal) -> str:
        return format_currency(amount, self.layout.currency_suffix)

    def payment_label(self, method: PaymentMethod) -> str:
        return self.layout.labels[PaymentMethod(method).value]

    def encode(self, job: ReceiptJob) -> bytes:
        layout = self.layout
        labels = layout.labels
        width = layout.width
        buf = CommandBuffer(layout.encoding)

        # 1. Initialization
        buf.command(Command.INIT).code_page(layout.code_page)

        # 2. Header
        buf.command(Command.ALIGN_CENTER, Command.DOUBLE_HEIGHT, Command.BOLD_ON)
        buf.line(fit(layout.store_name, width))
        buf.command(Command.NORMAL_SIZE, Command.BOLD_OFF)
        if layout.subtitle:
            buf.line(fit(layout.subtitle, width))
        buf.line('=' * width)
        buf.command(Command.FEED_LINE)

        # 3. Metadata
        buf.command(Command.ALIGN_LEFT)
        buf.line(fit(f"{labels['sale_id']}: {job.sale_id}", width))
        buf.line(fit(f"{labels['date']}: {job.timestamp.strftime(layout.date_format)}", width))
        buf.line(fit(f"{labels['cashier']}: {job.cashier_id}", width))
        buf.line(fit(f"{labels['payment']}: {self.payment_label(job.payment_method)}", width))

        # 4. Separator
        buf.line('-' * width)

        # 5. Items
        for index, item in enumerate(job.lines, start=1):
            buf.line(fit(f"{index}. {item.name}", width))
            quantity = f"   {item.quantity} x {self.money(item.unit_price)}"
            line_total = self.money(item.total)
            if len(quantity) + 1 + len(line_total) <= width:
                buf.line(columns(quantity, line_total, width))
            else:
                # Too wide for one row: line total goes on its own right-aligned row
                buf.line(fit(quantity, width))
                buf.line(columns('', line_total, width))
            if item.barcode:
                buf.line(fit(f"   {labels['barcode']}: {item.barcode}", width))
            buf.command(Command.FEED_LINE)

        # 6. Total
        buf.line('=' * width)
        buf.command(Command.DOUBLE_HEIGHT, Command.BOLD_ON)
        buf.line(columns(f"{labels['total']}:", self.money(job.total), width))
        buf.command(Command.NORMAL_SIZE, Command.BOLD_OFF, Command.ALIGN_LEFT)

        # 7. Footer
        buf.command(Command.FEED_LINE, Command.ALIGN_CENTER)
        for text in layout.footer:
            buf.line(fit(text, width))

        # 8-9. Feed and cut
        buf.feed(layout.feed_lines)
        buf.command(Command.CUT_PAPER)
        return buf.to_bytes()


def encode(job: ReceiptJob, layout: ReceiptLayout = None) -> bytes:
    return ReceiptEncoder(layout).encode(job)
