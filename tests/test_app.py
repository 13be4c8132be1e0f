# Tests for configuration, notices, logging, backup client and the app shell

import json
import logging
from logging.handlers import RotatingFileHandler
from decimal import Decimal

import pytest
import requests

from main import POSApp
from marketpos.config import DEFAULT_CONFIG, load_config
from marketpos.errors import (
    EmptyCart, ImportFormatError, InsufficientStock, PrinterConnectionError,
    ProductNotFound, WriteError,
)
from marketpos.logging_config import (
    ErrorAlertHandler, resolve_level, set_error_alert_callback, setup_from_config,
)
from marketpos.notifications import ERROR, SUCCESS, WARNING, notice_for, notice_for_result
from marketpos.pipeline import CommitResult, CommitStatus
from marketpos.sync_client import SaleBackupClient


class TestConfig:
    """config.json loading"""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / 'config.json')
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_receipt_section_merged(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({
            'printer_device': 'COM3',
            'receipt': {'store_name': 'BAKKAL'},
        }), encoding='utf-8')

        config = load_config(path)

        assert config['printer_device'] == 'COM3'
        assert config['receipt'] == {'store_name': 'BAKKAL'}
        assert config['http_port'] == 8080
        assert DEFAULT_CONFIG['receipt'] == {}

    def test_non_object_rejected(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('[]', encoding='utf-8')
        with pytest.raises(ValueError):
            load_config(path)


class TestNotices:
    """Operator messages"""

    def test_error_notices(self):
        assert notice_for(ProductNotFound('1')).message == 'Ürün bulunamadı!'
        assert notice_for(InsufficientStock('1', 3, 2)).message.startswith('Yetersiz stok!')
        assert notice_for(EmptyCart('empty')).level == WARNING
        assert notice_for(ImportFormatError('bad')).message == 'Geçersiz dosya formatı!'
        assert notice_for(PrinterConnectionError('x')).message == 'POS cihazına bağlanılamadı!'
        assert notice_for(WriteError('x')).level == ERROR

    def test_result_notices(self):
        class FakeSale:
            total = Decimal('25')

        ok = CommitResult(FakeSale(), CommitStatus.SUCCEEDED)
        assert notice_for_result(ok).level == SUCCESS
        assert notice_for_result(ok).message == 'Satış tamamlandı! Toplam: 25,00 TL'

        failed = CommitResult(FakeSale(), CommitStatus.SUCCEEDED_WITH_PRINT_FAILURE,
                              print_error=WriteError('x'))
        assert notice_for_result(failed).level == WARNING
        assert 'fiş yazdırılamadı' in notice_for_result(failed).message


class TestErrorAlertHandler:
    """Error alert hook"""

    def teardown_method(self):
        set_error_alert_callback(None)

    def test_errors_reach_callback(self):
        alerts = []
        set_error_alert_callback(lambda message, level: alerts.append(level))
        log = logging.getLogger('marketpos.test_alerts')
        handler = ErrorAlertHandler()
        log.addHandler(handler)
        try:
            log.warning('just a warning')
            log.error('printer on fire')
        finally:
            log.removeHandler(handler)
        assert alerts == ['ERROR']


class TestSetupLogging:
    """Root logger configuration from the app config"""

    def test_config_keys_applied(self, tmp_path):
        root = logging.getLogger()
        saved_handlers = list(root.handlers)
        saved_level = root.level
        log_file = tmp_path / 'logs' / 'till.log'
        try:
            used = setup_from_config({'log_path': str(log_file), 'log_level': 'debug',
                                      'log_console': False})
            handlers = list(root.handlers)
            logging.getLogger('marketpos.test').info('sale committed')
            for handler in handlers:
                handler.flush()
            level = root.level
            urllib3_level = logging.getLogger('urllib3').level
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                if handler not in saved_handlers:
                    handler.close()
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
            logging.getLogger('urllib3').setLevel(logging.NOTSET)

        assert used == log_file
        assert level == logging.DEBUG
        assert urllib3_level == logging.WARNING
        files = [h for h in handlers if isinstance(h, RotatingFileHandler)]
        assert [h.baseFilename for h in files] == [str(log_file)]
        assert any(isinstance(h, ErrorAlertHandler) for h in handlers)
        assert not any(type(h) is logging.StreamHandler for h in handlers)
        assert 'sale committed' in log_file.read_text(encoding='utf-8')

    def test_level_names(self):
        assert resolve_level('warning') == logging.WARNING
        assert resolve_level(logging.ERROR) == logging.ERROR
        assert resolve_level('nonsense') == logging.INFO
        assert resolve_level(None) == logging.INFO


class FakeResponse:
    def __init__(self, status_code, text=''):
        self.status_code = status_code
        self.text = text


class TestSaleBackupClient:
    """HTTP backup client"""

    def setup_method(self):
        self.client = SaleBackupClient('http://backup.local/', api_key='k', retry_delay=0)

    def test_auth_header(self):
        assert self.client.session.headers['Authorization'] == 'Bearer k'

    def test_success(self, monkeypatch):
        posted = []

        def post(url, json=None, timeout=None):
            posted.append(url)
            return FakeResponse(201)

        monkeypatch.setattr(self.client.session, 'post', post)
        result = self.client.sync_sale({'id': '1'})
        assert result == {'success': True, 'status_code': 201}
        assert posted == ['http://backup.local/api/pos/sales']

    def test_client_error_not_retried(self, monkeypatch):
        calls = []

        def post(url, json=None, timeout=None):
            calls.append(url)
            return FakeResponse(422, 'bad sale')

        monkeypatch.setattr(self.client.session, 'post', post)
        result = self.client.sync_sale({'id': '1'})
        assert not result['success']
        assert result['retry'] is False
        assert len(calls) == 1

    def test_unreachable_retries_then_gives_up(self, monkeypatch):
        calls = []

        def post(url, json=None, timeout=None):
            calls.append(url)
            raise requests.exceptions.ConnectionError('refused')

        monkeypatch.setattr(self.client.session, 'post', post)
        result = self.client.sync_sale({'id': '1'})
        assert not result['success']
        assert result['retry'] is True
        assert len(calls) == self.client.max_retries


class TestPOSApp:
    """Composition root operations"""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        config = dict(DEFAULT_CONFIG, db_path=str(tmp_path / 'pos.db'), auto_print=False)
        self.app = POSApp(config, background_backup=False)
        self.app.inventory.add_product('111', 'Ekmek', '12.50', stock_quantity=5)
        yield
        self.app.stop()

    def test_commit_sale(self):
        response = self.app.commit_sale({
            'items': [{'barcode': '111', 'quantity': 2}],
            'cashier_id': 'cashier',
            'payment_method': 'card',
        })
        assert response['ok']
        assert response['status'] == 'succeeded'
        assert response['sale']['total'] == '25.00'
        assert response['message'] == 'Satış tamamlandı! Toplam: 25,00 TL'
        assert self.app.inventory.get_product('111').stock_quantity == 3

    def test_commit_sale_over_stock(self):
        with pytest.raises(InsufficientStock):
            self.app.commit_sale({
                'items': [{'barcode': '111', 'quantity': 6}],
                'cashier_id': 'cashier',
            })

    def test_status(self):
        status = self.app.get_status()
        assert status['printer']['state'] == 'disconnected'
        assert status['stats']['products'] == 1
        assert status['last_error'] is None

    def test_error_alert_recorded(self):
        self.app.on_error_logged('boom', 'ERROR')
        assert self.app.get_status()['last_error'] == 'boom'

    def test_print_test_when_disconnected(self):
        response = self.app.print_test()
        assert not response['ok']

    def test_import_round_trip(self):
        backup = self.app.store.export_data()
        self.app.inventory.add_product('222', 'Süt', '34.90', stock_quantity=1)
        response = self.app.import_backup(backup)
        assert response['imported']['products'] == 1
        assert self.app.inventory.get_product('222') is None
