# Tests for the receipt encoder and decoder

from datetime import datetime
from decimal import Decimal

import pytest

from marketpos.encoder import (
    Command, CommandBuffer, ReceiptEncoder, ReceiptLayout, columns, encode, fit,
    format_currency,
)
from marketpos.models import PaymentMethod, ReceiptItem, ReceiptJob
from marketpos.receipt_parser import ReceiptParser, decode


def make_job(*items, payment=PaymentMethod.CASH, sale_id='1700000000000'):
    items = items or (ReceiptItem('Ekmek', 2, Decimal('12.50'), Decimal('25.00'), '8690000000011'),)
    return ReceiptJob(
        sale_id=sale_id,
        lines=tuple(items),
        total=sum((i.total for i in items), Decimal('0')),
        payment_method=payment,
        cashier_id='cashier',
        timestamp=datetime(2024, 3, 5, 14, 7),
    )


class TestFormatting:
    """Currency and column helpers"""

    def test_currency_uses_decimal_comma(self):
        assert format_currency(Decimal('12.5')) == '12,50 TL'

    def test_currency_rounds_half_up(self):
        assert format_currency(Decimal('0.125')) == '0,13 TL'
        assert format_currency(Decimal('2.675')) == '2,68 TL'

    def test_currency_has_no_grouping(self):
        assert format_currency(Decimal('1234567.8')) == '1234567,80 TL'

    def test_fit_truncates(self):
        assert fit('x' * 40, 32) == 'x' * 32
        assert fit('short', 32) == 'short'

    def test_columns_pads_to_width(self):
        row = columns('TOPLAM:', '25,00 TL', 32)
        assert len(row) == 32
        assert row.startswith('TOPLAM:')
        assert row.endswith('25,00 TL')

    def test_columns_truncates_left_side(self):
        row = columns('y' * 40, '25,00 TL', 32)
        assert len(row) == 32
        assert row.endswith(' 25,00 TL')


class TestCommandBuffer:
    """Byte builder"""

    def test_commands_and_text(self):
        data = CommandBuffer().command(Command.INIT).line('abc').to_bytes()
        assert data == b'\x1b@abc\n'

    def test_feed_and_code_page_take_one_byte(self):
        data = CommandBuffer().feed(3).code_page(18).to_bytes()
        assert data == b'\x1bd\x03\x1bt\x12'

    def test_feed_out_of_range(self):
        with pytest.raises(ValueError):
            CommandBuffer().feed(256)

    def test_turkish_text_uses_code_page_encoding(self):
        data = CommandBuffer().text('Şİğ').to_bytes()
        assert data == 'Şİğ'.encode('cp857')


class TestReceiptEncoder:
    """Receipt layout"""

    def setup_method(self):
        self.encoder = ReceiptEncoder()

    def test_starts_with_init_and_code_page(self):
        data = self.encoder.encode(make_job())
        assert data.startswith(b'\x1b@\x1bt\x12')

    def test_ends_with_feed_and_cut(self):
        data = self.encoder.encode(make_job())
        assert data.endswith(b'\x1bd\x03\x1dV\x00')

    def test_init_sequence(self):
        assert self.encoder.init_sequence() == b'\x1b@\x1bt\x12'

    def test_sections_in_order(self):
        text = self.encoder.encode(make_job()).decode('cp857', errors='replace')
        positions = [text.index(part) for part in (
            'MARKET OTOMASYONU',
            'Fiş No: 1700000000000',
            'Tarih: 05.03.2024 14:07',
            'Kasiyer: cashier',
            'Ödeme: Nakit',
            '1. Ekmek',
            'Barkod: 8690000000011',
            'TOPLAM:',
            'Teşekkür ederiz!',
        )]
        assert positions == sorted(positions)

    def test_card_payment_label(self):
        data = self.encoder.encode(make_job(payment=PaymentMethod.CARD))
        assert 'Ödeme: Kart'.encode('cp857') in data

    def test_item_without_barcode_has_no_barcode_row(self):
        item = ReceiptItem('Su', 1, Decimal('5'), Decimal('5'))
        data = self.encoder.encode(make_job(item))
        assert 'Barkod'.encode('cp857') not in data

    def test_no_text_line_wider_than_paper(self):
        item = ReceiptItem('Çok uzun isimli bir ürün ' * 3, 1, Decimal('1'), Decimal('1'))
        text_bytes, _, _ = ReceiptParser().split(self.encoder.encode(make_job(item)))
        for line in text_bytes.decode('cp857').split('\n'):
            assert len(line) <= 32

    def test_layout_from_config(self):
        layout = ReceiptLayout.from_config({
            'store_name': 'BAKKAL',
            'footer': ['Güle güle'],
            'labels': {'total': 'TUTAR'},
            'unknown_key': 1,
        })
        assert layout.store_name == 'BAKKAL'
        assert layout.footer == ('Güle güle',)
        assert layout.labels['total'] == 'TUTAR'
        assert layout.labels['cash'] == 'Nakit'

    def test_module_level_encode_matches_encoder(self):
        job = make_job()
        assert encode(job) == self.encoder.encode(job)


class TestReceiptDecoder:
    """Reading encoded receipts back"""

    def test_round_trip(self):
        job = make_job(
            ReceiptItem('Ekmek', 2, Decimal('12.50'), Decimal('25.00'), '8690000000011'),
            ReceiptItem('Süt', 1, Decimal('34.90'), Decimal('34.90'), '8690000000028'),
        )
        receipt = decode(encode(job))

        assert receipt.sale_id == job.sale_id
        assert receipt.total == Decimal('59.90')
        assert receipt.cashier_id == 'cashier'
        assert receipt.payment_label == 'Nakit'
        assert receipt.line_count == 2
        assert receipt.items[1].name == 'Süt'
        assert receipt.items[1].unit_price == Decimal('34.90')
        assert receipt.is_cut
        assert not receipt.is_incomplete
        assert receipt.unknown_commands == []

    def test_wide_item_row_round_trip(self):
        """Line total too wide to share the quantity row moves to its own row"""
        job = make_job(
            ReceiptItem('Televizyon', 100, Decimal('12345.67'), Decimal('1234567.00')),
            ReceiptItem('Ekmek', 2, Decimal('12.50'), Decimal('25.00')),
        )
        data = encode(job)
        receipt = decode(data)

        assert receipt.line_count == 2
        assert receipt.items[0].quantity == 100
        assert receipt.items[0].unit_price == Decimal('12345.67')
        assert receipt.items[0].total == Decimal('1234567.00')
        assert receipt.items[1].total == Decimal('25.00')
        assert receipt.total == Decimal('1234592.00')

        text_bytes, _, _ = ReceiptParser().split(data)
        lines = text_bytes.decode('cp857').split('\n')
        assert '   100 x 12345,67 TL' in lines
        assert '1234567,00 TL'.rjust(32) in lines

    def test_custom_labels_round_trip(self):
        layout = ReceiptLayout.from_config({'labels': {'total': 'TUTAR', 'sale_id': 'No'}})
        receipt = decode(encode(make_job(), layout), layout)
        assert receipt.sale_id == '1700000000000'
        assert receipt.total == Decimal('25.00')

    def test_truncated_stream_is_incomplete(self):
        data = encode(make_job())
        receipt = decode(data[:len(data) // 2])
        assert receipt.is_incomplete

    def test_unknown_command_is_reported(self):
        data = encode(make_job()) + b'\x1b\x99'
        receipt = decode(data)
        assert len(receipt.unknown_commands) == 1
        assert receipt.total == Decimal('25.00')
