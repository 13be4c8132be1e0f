# Market POS
# Sale commit, inventory ledger and ESC/POS receipt printing

__version__ = '1.0.0'

from .cart import Cart
from .driver import PrinterDriver, PrintResult
from .encoder import ReceiptEncoder, ReceiptLayout, encode
from .inventory import InventoryLedger
from .models import PaymentMethod, Product, ReceiptJob, Sale, StockMovement
from .pipeline import CommitResult, CommitStatus, SaleCommitPipeline, SessionContext
from .receipt_parser import ReceiptParser, decode
from .sales import SaleLedger
from .store import Store
from .transport import ConnectionState, PrinterTransport

__all__ = [
    'Cart',
    'PrinterDriver',
    'PrintResult',
    'ReceiptEncoder',
    'ReceiptLayout',
    'encode',
    'InventoryLedger',
    'PaymentMethod',
    'Product',
    'ReceiptJob',
    'Sale',
    'StockMovement',
    'CommitResult',
    'CommitStatus',
    'SaleCommitPipeline',
    'SessionContext',
    'ReceiptParser',
    'decode',
    'SaleLedger',
    'Store',
    'ConnectionState',
    'PrinterTransport',
]
