# Receipt decoder - reads back byte streams produced by ReceiptEncoder
# Used by tests and for diagnosing what was sent to the printer

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from .encoder import ReceiptLayout

logger = logging.getLogger(__name__)

ESC = 0x1B
GS = 0x1D

# (lead, command byte) -> total sequence length
KNOWN_SEQUENCES = {
    (ESC, 0x40): 2,   # ESC @ Initialize
    (ESC, 0x21): 3,   # ESC ! Print mode
    (ESC, 0x2D): 3,   # ESC - Underline
    (ESC, 0x45): 3,   # ESC E Bold
    (ESC, 0x61): 3,   # ESC a Alignment
    (ESC, 0x64): 3,   # ESC d Feed n lines
    (ESC, 0x74): 3,   # ESC t Code page
    (ESC, 0x70): 5,   # ESC p Drawer kick
    (GS, 0x56): 3,    # GS V Cut
    (GS, 0x21): 3,    # GS ! Character size
}


@dataclass
class DecodedItem:
    name: str
    quantity: int
    unit_price: Decimal
    total: Optional[Decimal] = None


@dataclass
class DecodedReceipt:
    """Fields recovered from an encoded receipt"""
    sale_id: Optional[str] = None
    total: Optional[Decimal] = None
    cashier_id: Optional[str] = None
    payment_label: Optional[str] = None
    items: List[DecodedItem] = field(default_factory=list)
    commands: List[str] = field(default_factory=list)
    unknown_commands: List[str] = field(default_factory=list)
    is_cut: bool = False

    @property
    def line_count(self) -> int:
        return len(self.items)

    @property
    def is_incomplete(self) -> bool:
        return self.sale_id is None or self.total is None or not self.is_cut


class ReceiptParser:
    """Splits an ESC/POS stream into commands and text, then reads the receipt fields"""

    def __init__(self, layout: ReceiptLayout = None):
        self.layout = layout or ReceiptLayout()
        labels = self.layout.labels
        suffix = re.escape(self.layout.currency_suffix)
        money = rf'(\d+,\d{{2}} {suffix})'
        self._sale_id_re = re.compile(rf"^{re.escape(labels['sale_id'])}: (\S+)$")
        self._cashier_re = re.compile(rf"^{re.escape(labels['cashier'])}: (.*)$")
        self._payment_re = re.compile(rf"^{re.escape(labels['payment'])}: (.*)$")
        self._item_re = re.compile(r'^(\d+)\. (.*)$')
        # Line total is either on the quantity row or alone on the next row
        self._qty_re = re.compile(rf'^\s+(\d+) x {money}(?:\s+{money})?$')
        self._amount_re = re.compile(rf'^\s+{money}$')
        self._total_re = re.compile(rf"^{re.escape(labels['total'])}:\s+{money}$")

    def split(self, data: bytes) -> Tuple[bytes, List[str], List[str]]:
        """Strip command sequences; returns (text bytes, known commands hex, unknown commands hex)"""
        text = bytearray()
        known: List[str] = []
        unknown: List[str] = []
        i = 0
        while i < len(data):
            lead = data[i]
            if lead in (ESC, GS):
                if i + 1 >= len(data):
                    unknown.append(f"raw[{i}]: {lead:02X} (incomplete)")
                    break
                length = KNOWN_SEQUENCES.get((lead, data[i + 1]))
                if length is None:
                    cmd_hex = f'{lead:02X} {data[i + 1]:02X}'
                    unknown.append(f"raw[{i}]: {cmd_hex}")
                    logger.debug("Unknown ESC/POS command: %s", cmd_hex)
                    i += 2
                    continue
                known.append(' '.join(f'{b:02X}' for b in data[i:i + length]))
                i += length
                continue
            text.append(lead)
            i += 1
        return bytes(text), known, unknown

    def parse(self, data: bytes) -> DecodedReceipt:
        text_bytes, known, unknown = self.split(data)
        text = text_bytes.decode(self.layout.encoding, errors='replace')
        receipt = DecodedReceipt(commands=known, unknown_commands=unknown)
        receipt.is_cut = any(cmd.startswith('1D 56') for cmd in known)

        lines = text.split('\n')
        pending_name = None
        awaiting_total = None
        for line in lines:
            match = self._sale_id_re.match(line)
            if match and receipt.sale_id is None:
                receipt.sale_id = match.group(1)
                continue
            match = self._cashier_re.match(line)
            if match and receipt.cashier_id is None:
                receipt.cashier_id = match.group(1)
                continue
            match = self._payment_re.match(line)
            if match and receipt.payment_label is None:
                receipt.payment_label = match.group(1)
                continue
            match = self._total_re.match(line)
            if match:
                receipt.total = self._parse_money(match.group(1))
                continue
            match = self._item_re.match(line)
            if match:
                pending_name = match.group(2)
                continue
            match = self._qty_re.match(line)
            if match and pending_name is not None:
                item = DecodedItem(
                    name=pending_name,
                    quantity=int(match.group(1)),
                    unit_price=self._parse_money(match.group(2)),
                )
                if match.group(3):
                    item.total = self._parse_money(match.group(3))
                else:
                    awaiting_total = item
                receipt.items.append(item)
                pending_name = None
                continue
            match = self._amount_re.match(line)
            if match and awaiting_total is not None:
                awaiting_total.total = self._parse_money(match.group(1))
                awaiting_total = None

        if unknown:
            logger.info("Decoded receipt with %d unknown command(s): %s",
                        len(unknown), "; ".join(unknown[:5]))
        return receipt

    def _parse_money(self, value: str) -> Optional[Decimal]:
        """'12,50 TL' -> Decimal('12.50')"""
        number = value.replace(self.layout.currency_suffix, '').strip().replace(',', '.')
        try:
            return Decimal(number)
        except InvalidOperation:
            return None


def decode(data: bytes, layout: ReceiptLayout = None) -> DecodedReceipt:
    return ReceiptParser(layout).parse(data)
