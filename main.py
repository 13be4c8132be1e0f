#!/usr/bin/env python3
"""
Market POS - till service with a JSON control surface
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from marketpos.activity_log import ActivityLog
from marketpos.cart import Cart
from marketpos.config import load_config
from marketpos.driver import PrinterDriver
from marketpos.encoder import ReceiptEncoder, ReceiptLayout
from marketpos.errors import POSError, ValidationError
from marketpos.inventory import InventoryLedger
from marketpos.logging_config import set_error_alert_callback, setup_from_config
from marketpos.notifications import SUCCESS, notice_for, notice_for_result
from marketpos.pipeline import SaleCommitPipeline, SessionContext
from marketpos.recovery import RecoveryManager
from marketpos.sales import SaleLedger
from marketpos.store import Store
from marketpos.sync_client import SaleBackupClient, StubSyncClient
from marketpos.transport import PrinterTransport, list_serial_ports, open_device

logger = logging.getLogger(__name__)


class POSApp:
    """Wires the store, ledgers, printer and pipeline together"""

    def __init__(self, config: Dict[str, Any], background_backup: bool = True):
        self.config = config
        self.last_error: Optional[str] = None
        self._error_lock = threading.Lock()

        self.store = Store(config.get('db_path'))
        self.activity_log = ActivityLog(self.store)
        self.inventory = InventoryLedger(self.store, self.activity_log)
        self.sales = SaleLedger(self.store)

        write_timeout = float(config.get('write_timeout', 5.0))
        self.transport = PrinterTransport(
            device_factory=lambda selector: open_device(selector, write_timeout),
            open_timeout=float(config.get('open_timeout', 5.0)),
        )
        layout = ReceiptLayout.from_config(config.get('receipt') or {})
        self.driver = PrinterDriver(self.transport, ReceiptEncoder(layout),
                                    device_selector=config.get('printer_device'))

        backup_url = config.get('backup_api_url')
        if backup_url:
            sync_client = SaleBackupClient(
                backup_url,
                api_key=config.get('api_key'),
                sales_path=config.get('backup_sales_path', '/api/pos/sales'),
            )
        else:
            sync_client = StubSyncClient()
        self.recovery = RecoveryManager(self.store, sync_client,
                                        background=background_backup,
                                        terminal_id=config.get('terminal_id', 'till-1'))

        self.pipeline = SaleCommitPipeline(self.inventory, self.sales, self.driver,
                                           self.activity_log, self.recovery)

    def on_error_logged(self, message: str, level: str):
        with self._error_lock:
            self.last_error = message

    def start(self):
        logger.info("Market POS starting...")
        self.recovery.on_startup()
        if self.driver.device_selector:
            self.driver.connect_in_background()

    def stop(self):
        self.driver.shutdown()
        self.recovery.on_shutdown()
        logger.info("Market POS stopped")

    # Operations behind the HTTP surface

    def get_status(self) -> Dict[str, Any]:
        return {
            'printer': {
                'state': self.driver.state.value,
                'device': self.transport.selector or self.driver.device_selector,
                'last_error': self.driver.last_error or self.transport.last_error,
            },
            'stats': self.store.get_stats(),
            'low_stock': [p.barcode for p in self.inventory.low_stock_products()],
            'auto_print': bool(self.config.get('auto_print', True)),
            'last_error': self.last_error,
        }

    def commit_sale(self, body: Dict[str, Any]) -> Dict[str, Any]:
        items = body.get('items')
        if not isinstance(items, list):
            raise ValidationError("'items' must be a list")
        cart = Cart(self.inventory)
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError("Each item needs a barcode and quantity")
            cart.add(str(item.get('barcode', '')), item.get('quantity', 1))

        session = SessionContext(
            actor_id=str(body.get('cashier_id') or ''),
            auto_print=bool(body.get('auto_print', self.config.get('auto_print', True))),
        )
        result = self.pipeline.commit(cart, session, body.get('payment_method', 'cash'))
        notice = notice_for_result(result)
        return {
            'ok': True,
            'level': notice.level,
            'message': notice.message,
            'status': result.status.value,
            'sale': result.sale.to_dict(),
            'warnings': result.warnings,
        }

    def connect_printer(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if self.driver.connect(body.get('device')):
            return {'ok': True, 'level': SUCCESS, 'message': 'POS cihazına bağlandı',
                    'state': self.driver.state.value}
        return {'ok': False, 'level': 'error', 'message': 'POS cihazına bağlanılamadı!',
                'error': self.driver.last_error, 'state': self.driver.state.value}

    def disconnect_printer(self) -> Dict[str, Any]:
        self.driver.disconnect()
        return {'ok': True, 'level': 'info', 'message': 'POS cihazı bağlantısı kesildi',
                'state': self.driver.state.value}

    def print_test(self) -> Dict[str, Any]:
        result = self.driver.print_test()
        if result.success:
            return {'ok': True, 'level': SUCCESS, 'message': 'Test fişi yazdırıldı',
                    'bytes_written': result.bytes_written}
        notice = notice_for(result.error)
        return {'ok': False, 'level': notice.level, 'message': notice.message,
                'error': str(result.error)}

    def import_backup(self, body: Any) -> Dict[str, Any]:
        counts = self.store.import_data(body)
        self.activity_log.log('system', 'DATA_IMPORT', json.dumps(counts))
        return {'ok': True, 'level': SUCCESS, 'message': 'Veriler içe aktarıldı',
                'imported': counts}


def make_handler(app: POSApp):
    class Handler(BaseHTTPRequestHandler):
        def _send_json(self, status: int, payload: Any):
            body = json.dumps(payload, ensure_ascii=False).encode('utf-8')
            self.send_response(status)
            self.send_header('Content-Type', 'application/json; charset=utf-8')
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _read_json(self) -> Any:
            length = int(self.headers.get('Content-Length') or 0)
            if not length:
                return {}
            return json.loads(self.rfile.read(length).decode('utf-8'))

        def _dispatch(self, routes: Dict[str, Any]):
            route = routes.get(self.path.split('?', 1)[0])
            if route is None:
                self._send_json(404, {'ok': False, 'message': 'Not found'})
                return
            try:
                status, payload = route()
            except json.JSONDecodeError as e:
                self._send_error_notice(400, ValidationError(f"Request body is not valid JSON: {e}"))
            except POSError as e:
                self._send_error_notice(400, e)
            except Exception as e:
                logger.exception("Request %s %s failed", self.command, self.path)
                self._send_error_notice(500, e)
            else:
                self._send_json(status, payload)

        def _send_error_notice(self, status: int, error: Exception):
            notice = notice_for(error)
            self._send_json(status, {'ok': False, 'level': notice.level,
                                     'message': notice.message, 'error': str(error)})

        def do_GET(self):
            self._dispatch({
                '/status': lambda: (200, app.get_status()),
                '/products': lambda: (200, [p.to_dict() for p in app.inventory.list_products()]),
                '/ports': lambda: (200, list_serial_ports()),
                '/export': lambda: (200, app.store.export_data()),
            })

        def do_POST(self):
            self._dispatch({
                '/sales': lambda: _ok(app.commit_sale(self._read_json())),
                '/import': lambda: _ok(app.import_backup(self._read_json())),
                '/printer/connect': lambda: _ok(app.connect_printer(self._read_json())),
                '/printer/disconnect': lambda: _ok(app.disconnect_printer()),
                '/printer/test': lambda: _ok(app.print_test()),
            })

        def log_message(self, format, *args):
            logger.debug("%s - %s", self.address_string(), format % args)

    return Handler


def _ok(payload: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    return (200 if payload.get('ok') else 502), payload


def main():
    config = load_config()
    log_path = setup_from_config(config)

    app = POSApp(config)
    set_error_alert_callback(app.on_error_logged)
    app.start()

    port = int(config.get('http_port', 8080))
    server = ThreadingHTTPServer(('', port), make_handler(app))

    print("=" * 50)
    print("  Market POS")
    print("=" * 50)
    print(f"Control API: http://localhost:{port}/status")
    print(f"Database: {Path(app.store.db_path).resolve()}")
    print(f"Logs: {log_path}")
    print("=" * 50)
    print("Press Ctrl+C to stop")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        server.server_close()
        app.stop()


if __name__ == '__main__':
    main()
