# Operator notices - short Turkish messages for errors and commit outcomes

from dataclasses import dataclass
from decimal import Decimal

from .encoder import format_currency
from .errors import (
    EmptyCart, ImportFormatError, InsufficientStock, PrinterConnectionError, PrinterError,
    ProductNotFound, ValidationError,
)

SUCCESS = 'success'
ERROR = 'error'
WARNING = 'warning'
INFO = 'info'


@dataclass(frozen=True)
class Notice:
    level: str
    message: str

    def to_dict(self):
        return {'level': self.level, 'message': self.message}


def notice_for(exc: Exception) -> Notice:
    if isinstance(exc, ProductNotFound):
        return Notice(ERROR, 'Ürün bulunamadı!')
    if isinstance(exc, InsufficientStock):
        return Notice(ERROR, f'Yetersiz stok! (Mevcut: {exc.available})')
    if isinstance(exc, ImportFormatError):
        return Notice(ERROR, 'Geçersiz dosya formatı!')
    if isinstance(exc, EmptyCart):
        return Notice(WARNING, 'Sepet boş!')
    if isinstance(exc, ValidationError):
        return Notice(ERROR, f'Geçersiz giriş: {exc}')
    if isinstance(exc, PrinterConnectionError):
        return Notice(ERROR, 'POS cihazına bağlanılamadı!')
    if isinstance(exc, PrinterError):
        return Notice(ERROR, 'Fiş yazdırılamadı!')
    return Notice(ERROR, 'Beklenmeyen bir hata oluştu!')


def notice_for_result(result) -> Notice:
    total = format_currency(Decimal(result.sale.total))
    if result.print_error is not None:
        return Notice(WARNING, f'Satış tamamlandı ancak fiş yazdırılamadı! Toplam: {total}')
    return Notice(SUCCESS, f'Satış tamamlandı! Toplam: {total}')
