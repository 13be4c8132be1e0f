# Recovery Manager - sale backup uploads and replay after restart

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict

from .models import Sale

logger = logging.getLogger(__name__)


class RecoveryManager:
    """Uploads committed sales to the backup client and replays the ones that failed"""

    def __init__(self, store, sync_client, background: bool = True, terminal_id: str = 'till-1'):
        self.store = store
        self.sync_client = sync_client
        self.terminal_id = terminal_id
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='sale-backup') \
            if background else None

    def _payload(self, sale: Sale, replay: bool) -> Dict[str, Any]:
        payload = sale.to_dict()
        payload['terminal_id'] = self.terminal_id
        payload['replay'] = replay
        return payload

    def backup_sale(self, sale: Sale, replay: bool = False) -> bool:
        """Upload one sale. Never raises; failures are recorded for replay."""
        try:
            result = self.sync_client.sync_sale(self._payload(sale, replay))
        except Exception as e:
            logger.warning("Backup of sale %s failed (sale is saved locally): %s", sale.id, e)
            self.store.mark_sale_failed(sale.id, str(e))
            return False
        if result.get('success'):
            self.store.mark_sale_synced(sale.id, result.get('status_code', 200))
            return True
        self.store.mark_sale_failed(sale.id, result.get('error', 'Unknown error'))
        logger.warning("Backup of sale %s failed: %s", sale.id, result.get('error'))
        return False

    def submit(self, sale: Sale):
        """Upload without blocking the caller when running in background mode"""
        if self._executor is None:
            self.backup_sale(sale)
        else:
            self._executor.submit(self.backup_sale, sale)

    def on_startup(self) -> Dict[str, Any]:
        report = {
            'started_at': datetime.now().isoformat(),
            'sales_replayed': 0,
            'sales_failed': 0,
        }

        last_shutdown = self.store.load_state('last_shutdown')
        if last_shutdown:
            logger.info("Last clean shutdown at %s", last_shutdown)
        else:
            logger.info("No clean shutdown recorded")

        unsynced = self.store.get_unsynced_sales()
        if unsynced:
            logger.info("Replaying %d unsynced sale(s)", len(unsynced))
        for sale in unsynced:
            if self.backup_sale(sale, replay=True):
                report['sales_replayed'] += 1
            else:
                report['sales_failed'] += 1

        report['completed_at'] = datetime.now().isoformat()
        self.store.save_state('last_recovery', report)
        return report

    def on_shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        pending = len(self.store.get_unsynced_sales())
        self.store.save_state('last_shutdown', datetime.now().isoformat())
        self.store.save_state('pending_on_shutdown', pending)
        logger.info("Shutdown: %d sale(s) pending backup", pending)
