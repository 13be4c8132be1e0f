# Error taxonomy for Market POS
# Ledger/pipeline errors are raised; printer errors stop at the driver boundary


class POSError(Exception):
    """Base class for all Market POS errors"""


class ValidationError(POSError):
    """Bad cart or form input; the caller corrects it and resubmits"""


class EmptyCart(ValidationError):
    pass


class ProductNotFound(POSError):
    def __init__(self, barcode: str):
        super().__init__(f"Product not found: {barcode}")
        self.barcode = barcode


class InsufficientStock(POSError):
    """Requested quantity exceeds the current stock of a product"""

    def __init__(self, barcode: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {barcode}: requested {requested}, available {available}"
        )
        self.barcode = barcode
        self.requested = requested
        self.available = available


class PrinterError(POSError):
    """Device-layer error. Never escalates to a sale failure."""


class PrinterConnectionError(PrinterError):
    pass


class WriteError(PrinterError):
    pass


class PrintError(PrinterError):
    pass


class ImportFormatError(POSError):
    """Malformed backup file; nothing was imported"""
