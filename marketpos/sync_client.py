# Sync Client - REST client for the optional remote sale backup
# A failed upload never affects the sale; it stays unsynced and is replayed later

import logging
import time
from typing import Any, Dict

import requests

logger = logging.getLogger(__name__)


class SaleBackupClient:
    """Posts committed sales to a backup endpoint"""

    def __init__(self, base_url: str, api_key: str = None, timeout: int = 30,
                 sales_path: str = '/api/pos/sales', max_retries: int = 3,
                 retry_delay: float = 2):
        self.base_url = base_url.rstrip('/')
        self.sales_path = sales_path if sales_path.startswith('/') else '/' + sales_path
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = requests.Session()

        if api_key:
            self.session.headers.update({'Authorization': f'Bearer {api_key}'})
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'MarketPOS/1.0',
        })

    def sync_sale(self, payload: Dict) -> Dict[str, Any]:
        endpoint = f"{self.base_url}{self.sales_path}"
        sale_id = payload.get('id')

        for attempt in range(self.max_retries):
            try:
                response = self.session.post(endpoint, json=payload, timeout=self.timeout)
            except requests.exceptions.Timeout:
                logger.warning("Backup timeout for sale %s, retry %d/%d",
                               sale_id, attempt + 1, self.max_retries)
            except requests.exceptions.ConnectionError:
                logger.warning("Backup server unreachable for sale %s, retry %d/%d",
                               sale_id, attempt + 1, self.max_retries)
            except requests.exceptions.RequestException as e:
                logger.error("Backup request failed for sale %s: %s", sale_id, e)
                return {'success': False, 'error': str(e), 'retry': False}
            else:
                if response.status_code in (200, 201):
                    logger.info("Sale %s backed up", sale_id)
                    return {'success': True, 'status_code': response.status_code}
                if response.status_code == 401:
                    logger.error("Backup authentication failed - check api_key")
                    return {'success': False, 'error': 'Authentication failed',
                            'status_code': 401, 'retry': False}
                if 400 <= response.status_code < 500:
                    logger.error("Backup rejected sale %s: %s", sale_id, response.text)
                    return {'success': False, 'error': response.text,
                            'status_code': response.status_code, 'retry': False}
                logger.warning("Backup server error %d, retry %d/%d",
                               response.status_code, attempt + 1, self.max_retries)
            time.sleep(self.retry_delay * (attempt + 1))

        return {'success': False, 'error': 'Max retries exceeded', 'status_code': 0, 'retry': True}

    def check_health(self) -> bool:
        try:
            response = self.session.get(f"{self.base_url}/api/health", timeout=5)
        except requests.exceptions.RequestException:
            return False
        return response.status_code == 200


class StubSyncClient:
    """Stands in when no backup server is configured; accepts everything"""

    def __init__(self, *args, **kwargs):
        self.synced = []

    def sync_sale(self, payload: Dict) -> Dict[str, Any]:
        self.synced.append(payload)
        logger.debug("[STUB] Backed up sale %s", payload.get('id'))
        return {'success': True, 'status_code': 200}

    def check_health(self) -> bool:
        return True
