# Sale Ledger - immutable record of completed sales

import logging
import threading
import time
from typing import List, Optional

from .models import Sale

logger = logging.getLogger(__name__)


class SaleLedger:
    """Append-only sale records with millisecond-timestamp ids"""

    def __init__(self, store):
        self.store = store
        self._id_lock = threading.Lock()
        self._last_id = self._numeric(store.last_sale_id()) or 0

    @staticmethod
    def _numeric(sale_id: Optional[str]) -> Optional[int]:
        if sale_id and sale_id.isdigit():
            return int(sale_id)
        return None

    def next_id(self) -> str:
        """Epoch milliseconds, bumped past the previous id when two sales share a millisecond"""
        with self._id_lock:
            candidate = int(time.time() * 1000)
            if candidate <= self._last_id:
                candidate = self._last_id + 1
            self._last_id = candidate
            return str(candidate)

    def append(self, sale: Sale) -> Sale:
        self.store.insert_sale(sale)
        logger.info("Sale %s recorded: %s lines, total %s, %s",
                    sale.id, len(sale.lines), sale.total, sale.payment_method.value)
        return sale

    def get(self, sale_id: str) -> Optional[Sale]:
        return self.store.get_sale(sale_id)

    def all(self) -> List[Sale]:
        """Sales in commit completion order"""
        return self.store.list_sales()
