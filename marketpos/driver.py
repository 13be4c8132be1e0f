# Printer Driver - connect/print/disconnect on top of transport + encoder
# Print failures come back as PrintResult values; nothing here raises into a sale

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .encoder import ReceiptEncoder
from .errors import PrintError, PrinterConnectionError, WriteError
from .models import PaymentMethod, ReceiptItem, ReceiptJob
from .transport import ConnectionState, PrinterTransport

logger = logging.getLogger(__name__)


@dataclass
class PrintResult:
    success: bool
    error: Optional[PrintError] = None
    bytes_written: int = 0


def sample_receipt_job(now: datetime = None) -> ReceiptJob:
    """Fixed synthetic receipt for the test print"""
    now = now or datetime.now()
    price = Decimal('10.50')
    return ReceiptJob(
        sale_id=f"TEST-{int(time.time() * 1000)}",
        lines=(ReceiptItem('Test Ürünü', 1, price, price, '1234567890123'),),
        total=price,
        payment_method=PaymentMethod.CASH,
        cashier_id='Test Kullanıcı',
        timestamp=now,
    )


class PrinterDriver:
    """Receipt printer state machine. Does not queue while disconnected and never auto-reconnects."""

    def __init__(self, transport: PrinterTransport, encoder: ReceiptEncoder = None,
                 device_selector: str = None):
        self.transport = transport
        self.encoder = encoder or ReceiptEncoder()
        self.device_selector = device_selector
        self.last_error: Optional[str] = None
        self._print_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='printer-connect')

    @property
    def state(self) -> ConnectionState:
        return self.transport.state

    def is_connected(self) -> bool:
        return self.transport.state == ConnectionState.CONNECTED

    def connect(self, selector: str = None) -> bool:
        selector = selector or self.device_selector
        if not selector:
            self.last_error = "No printer device selected"
            logger.warning(self.last_error)
            return False

        try:
            self.transport.open(selector)
        except PrinterConnectionError as e:
            self.last_error = str(e)
            logger.error("Printer connection failed: %s", e)
            return False

        # Reset the printer and select the Turkish code page
        try:
            self.transport.write(self.encoder.init_sequence())
        except WriteError as e:
            self.last_error = f"Printer did not accept initialization: {e}"
            logger.error(self.last_error)
            self.transport.fail(self.last_error)
            return False

        self.device_selector = selector
        self.last_error = None
        return True

    def connect_in_background(self, selector: str = None) -> 'Future[bool]':
        """Non-blocking connect; the caller may drop the future, the attempt still resolves"""
        return self._executor.submit(self.connect, selector)

    def disconnect(self):
        self.transport.close()

    def print_receipt(self, job: ReceiptJob) -> PrintResult:
        if not self.is_connected():
            return PrintResult(False, PrintError("Printer is not connected"))

        try:
            data = self.encoder.encode(job)
        except (KeyError, ValueError) as e:
            logger.error("Could not encode receipt %s: %s", job.sale_id, e)
            return PrintResult(False, PrintError(f"Could not encode receipt: {e}"))

        # One receipt at a time; concurrent requests wait their turn
        with self._print_lock:
            try:
                self.transport.write(data)
            except WriteError as e:
                self.last_error = str(e)
                logger.error("Receipt %s not printed: %s", job.sale_id, e)
                return PrintResult(False, PrintError(str(e)))

        logger.info("Printed receipt %s (%d bytes)", job.sale_id, len(data))
        return PrintResult(True, bytes_written=len(data))

    def print_test(self) -> PrintResult:
        return self.print_receipt(sample_receipt_job())

    def shutdown(self):
        self._executor.shutdown(wait=False)
        self.disconnect()
