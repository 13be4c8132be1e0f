# Sale Commit Pipeline - cart -> sale record -> stock movements -> receipt
#
# Phases: building -> validating -> committing -> printing -> done.
# Validating may fail back to building with no side effects. Committing is the
# only irrevocable step: once the sale is appended it is never rolled back,
# stock decrement failures and print failures become warnings on the result.

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Union

from .cart import Cart, merge_lines
from .errors import EmptyCart, POSError, PrintError, ValidationError
from .models import CartLine, PaymentMethod, ReceiptJob, Sale, SaleLine

logger = logging.getLogger(__name__)


class CommitPhase(str, Enum):
    BUILDING = 'building'
    VALIDATING = 'validating'
    COMMITTING = 'committing'
    PRINTING = 'printing'
    DONE = 'done'


class CommitStatus(str, Enum):
    SUCCEEDED = 'succeeded'
    SUCCEEDED_WITH_PRINT_FAILURE = 'succeeded-with-print-failure'


@dataclass
class SessionContext:
    """The operator session a commit runs in; identity is validated upstream"""
    actor_id: str
    auto_print: bool = True


@dataclass
class CommitResult:
    sale: Sale
    status: CommitStatus
    warnings: List[str] = field(default_factory=list)
    print_error: Optional[PrintError] = None

    @property
    def receipt_printed(self) -> bool:
        return self.status == CommitStatus.SUCCEEDED and self.print_error is None


class SaleCommitPipeline:
    """Turns a cart into one committed Sale plus its stock movements"""

    def __init__(self, inventory, sales, printer=None, activity_log=None, backup=None):
        self.inventory = inventory
        self.sales = sales
        self.printer = printer
        self.activity_log = activity_log
        self.backup = backup
        # Per thread: concurrent commits each see their own phase
        self._local = threading.local()

    @property
    def last_phase(self) -> CommitPhase:
        return getattr(self._local, 'phase', CommitPhase.BUILDING)

    def _enter(self, phase: CommitPhase):
        self._local.phase = phase

    def commit(self, cart: Union[Cart, Iterable[CartLine]], session: SessionContext,
               payment_method: Union[PaymentMethod, str]) -> CommitResult:
        """
        Commit the cart as a sale.

        Raises ValidationError / ProductNotFound / InsufficientStock before anything
        is written. After the sale is appended this never raises for stock or
        printer problems; they are reported on the CommitResult. A Cart instance is
        cleared once the sale is committed.
        """
        self._enter(CommitPhase.BUILDING)
        raw_lines = list(cart.lines if isinstance(cart, Cart) else cart)

        self._enter(CommitPhase.VALIDATING)
        method = self._validate_request(raw_lines, session, payment_method)
        lines = merge_lines(raw_lines)
        barcodes = [line.barcode for line in lines]

        # Validation and stock decrement share one critical section per barcode,
        # so two commits cannot both take the last unit
        with self.inventory.locked(barcodes):
            for line in lines:
                self.inventory.reserve_check(line.barcode, line.quantity)

            self._enter(CommitPhase.COMMITTING)
            sale = self._build_sale(lines, session.actor_id, method)
            self.sales.append(sale)
            warnings = self._apply_stock(sale, session.actor_id)

        if isinstance(cart, Cart):
            cart.clear()
        if self.activity_log:
            try:
                self.activity_log.log_sale(session.actor_id, sale.id, sale.total, len(sale.lines))
            except sqlite3.Error as e:
                logger.error("Sale %s committed but not written to the activity log: %s", sale.id, e)
                warnings.append(f"Activity log not updated: {e}")

        self._enter(CommitPhase.PRINTING)
        result = self._print(sale, session, warnings)

        if self.backup is not None:
            try:
                self.backup.submit(sale)
            except Exception as e:
                logger.warning("Backup of sale %s not started (sale is saved locally): %s", sale.id, e)

        self._enter(CommitPhase.DONE)
        logger.info("Sale %s committed: %s", sale.id, result.status.value)
        return result

    def _validate_request(self, lines: List[CartLine], session: SessionContext,
                          payment_method) -> PaymentMethod:
        if not lines:
            raise EmptyCart("Cart is empty")
        if not session.actor_id:
            raise ValidationError("No operator in session")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {payment_method!r}")
        for line in lines:
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) \
                    or line.quantity < 1:
                raise ValidationError(f"Invalid quantity for {line.barcode}: {line.quantity!r}")
        return method

    def _build_sale(self, lines: List[CartLine], actor_id: str,
                    method: PaymentMethod) -> Sale:
        """Snapshot name and price as they are now, not as they were when scanned"""
        sale_lines = []
        for line in lines:
            product = self.inventory.require_product(line.barcode)
            sale_lines.append(SaleLine(
                barcode=product.barcode,
                name=product.name,
                quantity=line.quantity,
                unit_price=product.unit_price,
                line_total=product.unit_price * line.quantity,
            ))
        total = sum((line.line_total for line in sale_lines), Decimal('0'))
        return Sale(
            id=self.sales.next_id(),
            lines=tuple(sale_lines),
            total=total,
            cashier_id=actor_id,
            payment_method=method,
            timestamp=datetime.now(),
        )

    def _apply_stock(self, sale: Sale, actor_id: str) -> List[str]:
        """Best-effort decrement loop; the sale stays committed whatever happens here"""
        warnings = []
        for line in sale.lines:
            try:
                self.inventory.apply_out(line.barcode, line.quantity, actor_id,
                                         f"Satış - {sale.id}")
            except (POSError, sqlite3.Error) as e:
                logger.error("Sale %s committed but stock of %s not updated: %s",
                             sale.id, line.barcode, e)
                warnings.append(f"Stock not updated for {line.barcode}: {e}")
        return warnings

    def _print(self, sale: Sale, session: SessionContext, warnings: List[str]) -> CommitResult:
        if not session.auto_print:
            return CommitResult(sale, CommitStatus.SUCCEEDED, warnings)

        if self.printer is None or not self.printer.is_connected():
            error = PrintError("Printer is not connected")
        else:
            outcome = self.printer.print_receipt(ReceiptJob.from_sale(sale))
            if outcome.success:
                return CommitResult(sale, CommitStatus.SUCCEEDED, warnings)
            error = outcome.error or PrintError("Receipt not printed")

        logger.warning("Sale %s completed, receipt not printed: %s", sale.id, error)
        warnings.append(f"Receipt not printed: {error}")
        return CommitResult(sale, CommitStatus.SUCCEEDED_WITH_PRINT_FAILURE, warnings, error)
