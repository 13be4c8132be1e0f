# Activity log - persisted record of operator actions
# Separate from the process log: these entries are exported with the data

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from .models import LogEntry

logger = logging.getLogger(__name__)


class ActivityLog:
    """Writes LogEntry records (SALE_COMPLETED, STOCK_UPDATE, PRODUCT_ADD, ...)"""

    def __init__(self, store):
        self.store = store

    def log(self, username: str, action: str, details: str = '') -> LogEntry:
        entry = LogEntry(
            id=uuid.uuid4().hex,
            username=username,
            action=action,
            details=details,
            timestamp=datetime.now(),
        )
        self.store.insert_log(entry)
        logger.debug("%s %s %s", username, action, details)
        return entry

    def log_sale(self, username: str, sale_id: str, total: Decimal, item_count: int):
        self.log(username, 'SALE_COMPLETED',
                 f"Sale ID: {sale_id}, Total: ₺{total:.2f}, Items: {item_count}")

    def log_product_action(self, username: str, action: str, barcode: str, name: str):
        self.log(username, f'PRODUCT_{action}', f"{name} ({barcode})")

    def log_stock_action(self, username: str, action: str, barcode: str,
                         old_stock: int, new_stock: int):
        self.log(username, f'STOCK_{action}', f"{barcode}: {old_stock} → {new_stock}")
