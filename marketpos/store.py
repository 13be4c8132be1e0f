# Store - SQLite persistence for Market POS
# One connection per operation, serialized by a process-wide lock

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import ImportFormatError
from .models import DEFAULT_USERS, LogEntry, Product, Sale, StockMovement, User

logger = logging.getLogger(__name__)

# Collection name -> record class, in export order
COLLECTIONS = {
    'products': Product,
    'sales': Sale,
    'users': User,
    'logs': LogEntry,
    'stock_movements': StockMovement,
}


class Store:
    """SQLite-backed collections: products, sales, stock movements, logs, users"""

    DB_PATH = "marketpos.db"

    def __init__(self, db_path: str = None):
        self.db_path = db_path or self.DB_PATH
        self.lock = threading.RLock()
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Locked connection; commits on success, rolls back on error"""
        with self.lock:
            conn = sqlite3.connect(self.db_path, timeout=30)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def _init_db(self):
        with self._connection() as conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS products (
                    barcode TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    unit_price TEXT NOT NULL,
                    stock_quantity INTEGER NOT NULL CHECK (stock_quantity >= 0),
                    min_stock_level INTEGER NOT NULL DEFAULT 0,
                    category TEXT,
                    description TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            ''')

            # Row order (rowid) is commit completion order
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sales (
                    id TEXT PRIMARY KEY,
                    lines_json TEXT NOT NULL,
                    total TEXT NOT NULL,
                    cashier_id TEXT NOT NULL,
                    payment_method TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    synced INTEGER DEFAULT 0,
                    sync_error TEXT,
                    retry_count INTEGER DEFAULT 0
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS stock_movements (
                    id TEXT PRIMARY KEY,
                    barcode TEXT NOT NULL,
                    product_name TEXT,
                    type TEXT NOT NULL,
                    quantity INTEGER NOT NULL,
                    reason TEXT,
                    actor_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS logs (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL,
                    action TEXT NOT NULL,
                    details TEXT,
                    timestamp TEXT NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS users (
                    username TEXT PRIMARY KEY,
                    role TEXT NOT NULL,
                    full_name TEXT,
                    is_active INTEGER DEFAULT 1
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sale_id TEXT,
                    synced_at TEXT,
                    response_code INTEGER
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT
                )
            ''')

            cursor.execute('SELECT COUNT(*) FROM users')
            if cursor.fetchone()[0] == 0:
                for user in DEFAULT_USERS:
                    self._insert_user(cursor, user)

    # Row <-> record

    @staticmethod
    def _product_from_row(row: sqlite3.Row) -> Product:
        return Product.from_dict(dict(row))

    @staticmethod
    def _sale_from_row(row: sqlite3.Row) -> Sale:
        data = dict(row)
        data['lines'] = json.loads(data.pop('lines_json'))
        return Sale.from_dict(data)

    @staticmethod
    def _insert_product(cursor, product: Product):
        cursor.execute('''
            INSERT INTO products
            (barcode, name, unit_price, stock_quantity, min_stock_level,
             category, description, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (product.barcode, product.name, str(product.unit_price),
              product.stock_quantity, product.min_stock_level, product.category,
              product.description, product.created_at.isoformat(),
              product.updated_at.isoformat()))

    @staticmethod
    def _insert_movement(cursor, movement: StockMovement):
        cursor.execute('''
            INSERT INTO stock_movements
            (id, barcode, product_name, type, quantity, reason, actor_id, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', (movement.id, movement.barcode, movement.product_name,
              movement.type.value, movement.quantity, movement.reason,
              movement.actor_id, movement.timestamp.isoformat()))

    @staticmethod
    def _insert_sale(cursor, sale: Sale, synced: bool = False):
        cursor.execute('''
            INSERT INTO sales
            (id, lines_json, total, cashier_id, payment_method, timestamp, synced)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (sale.id, json.dumps([line.to_dict() for line in sale.lines]),
              str(sale.total), sale.cashier_id, sale.payment_method.value,
              sale.timestamp.isoformat(), 1 if synced else 0))

    @staticmethod
    def _insert_log(cursor, entry: LogEntry):
        cursor.execute('''
            INSERT INTO logs (id, username, action, details, timestamp)
            VALUES (?, ?, ?, ?, ?)
        ''', (entry.id, entry.username, entry.action, entry.details,
              entry.timestamp.isoformat()))

    @staticmethod
    def _insert_user(cursor, user: User):
        cursor.execute('''
            INSERT INTO users (username, role, full_name, is_active)
            VALUES (?, ?, ?, ?)
        ''', (user.username, user.role.value, user.full_name,
              1 if user.is_active else 0))

    # Products

    def insert_product(self, product: Product, movement: Optional[StockMovement] = None):
        """Insert a product and its opening movement in one transaction"""
        with self._connection() as conn:
            cursor = conn.cursor()
            self._insert_product(cursor, product)
            if movement is not None:
                self._insert_movement(cursor, movement)

    def update_product(self, product: Product) -> bool:
        """Update descriptive fields. Stock is changed only by apply_stock_change."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                UPDATE products
                SET name = ?, unit_price = ?, min_stock_level = ?, category = ?,
                    description = ?, updated_at = ?
                WHERE barcode = ?
            ''', (product.name, str(product.unit_price), product.min_stock_level,
                  product.category, product.description,
                  product.updated_at.isoformat(), product.barcode))
            return cursor.rowcount == 1

    def delete_product(self, barcode: str) -> bool:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM products WHERE barcode = ?', (barcode,))
            return cursor.rowcount == 1

    def get_product(self, barcode: str) -> Optional[Product]:
        with self._connection() as conn:
            row = conn.execute(
                'SELECT * FROM products WHERE barcode = ?', (barcode,)
            ).fetchone()
            return self._product_from_row(row) if row else None

    def list_products(self) -> List[Product]:
        with self._connection() as conn:
            rows = conn.execute('SELECT * FROM products ORDER BY name ASC').fetchall()
            return [self._product_from_row(row) for row in rows]

    def apply_stock_change(self, barcode: str, expected_stock: int, new_stock: int,
                           movement: StockMovement) -> bool:
        """
        Compare-and-set the stock counter and append the movement atomically.
        Returns False (nothing written) when the stored stock is not expected_stock.
        """
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                UPDATE products SET stock_quantity = ?, updated_at = ?
                WHERE barcode = ? AND stock_quantity = ?
            ''', (new_stock, movement.timestamp.isoformat(), barcode, expected_stock))
            if cursor.rowcount != 1:
                return False
            self._insert_movement(cursor, movement)
            return True

    def list_movements(self, barcode: str = None) -> List[StockMovement]:
        with self._connection() as conn:
            if barcode:
                rows = conn.execute('''
                    SELECT * FROM stock_movements WHERE barcode = ? ORDER BY rowid ASC
                ''', (barcode,)).fetchall()
            else:
                rows = conn.execute(
                    'SELECT * FROM stock_movements ORDER BY rowid ASC'
                ).fetchall()
            return [StockMovement.from_dict(dict(row)) for row in rows]

    # Sales

    def insert_sale(self, sale: Sale):
        with self._connection() as conn:
            self._insert_sale(conn.cursor(), sale)

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        with self._connection() as conn:
            row = conn.execute('''
                SELECT id, lines_json, total, cashier_id, payment_method, timestamp
                FROM sales WHERE id = ?
            ''', (sale_id,)).fetchone()
            return self._sale_from_row(row) if row else None

    def list_sales(self) -> List[Sale]:
        with self._connection() as conn:
            rows = conn.execute('''
                SELECT id, lines_json, total, cashier_id, payment_method, timestamp
                FROM sales ORDER BY rowid ASC
            ''').fetchall()
            return [self._sale_from_row(row) for row in rows]

    def last_sale_id(self) -> Optional[str]:
        with self._connection() as conn:
            row = conn.execute(
                'SELECT id FROM sales ORDER BY rowid DESC LIMIT 1'
            ).fetchone()
            return row[0] if row else None

    def get_unsynced_sales(self, max_retries: int = 5) -> List[Sale]:
        with self._connection() as conn:
            rows = conn.execute('''
                SELECT id, lines_json, total, cashier_id, payment_method, timestamp
                FROM sales WHERE synced = 0 AND retry_count < ?
                ORDER BY rowid ASC
            ''', (max_retries,)).fetchall()
            return [self._sale_from_row(row) for row in rows]

    def mark_sale_synced(self, sale_id: str, response_code: int = 200):
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute('UPDATE sales SET synced = 1 WHERE id = ?', (sale_id,))
            cursor.execute('''
                INSERT INTO sync_log (sale_id, synced_at, response_code)
                VALUES (?, ?, ?)
            ''', (sale_id, datetime.now().isoformat(), response_code))

    def mark_sale_failed(self, sale_id: str, error: str):
        with self._connection() as conn:
            conn.execute('''
                UPDATE sales SET sync_error = ?, retry_count = retry_count + 1
                WHERE id = ?
            ''', (error, sale_id))

    # Logs and users

    def insert_log(self, entry: LogEntry):
        with self._connection() as conn:
            self._insert_log(conn.cursor(), entry)

    def list_logs(self) -> List[LogEntry]:
        with self._connection() as conn:
            rows = conn.execute('SELECT * FROM logs ORDER BY rowid ASC').fetchall()
            return [LogEntry.from_dict(dict(row)) for row in rows]

    def list_users(self) -> List[User]:
        with self._connection() as conn:
            rows = conn.execute('SELECT * FROM users ORDER BY username ASC').fetchall()
            return [User.from_dict(dict(row)) for row in rows]

    # State

    def save_state(self, key: str, value: Any):
        with self._connection() as conn:
            conn.execute('''
                INSERT OR REPLACE INTO state (key, value, updated_at)
                VALUES (?, ?, ?)
            ''', (key, json.dumps(value), datetime.now().isoformat()))

    def load_state(self, key: str, default: Any = None) -> Any:
        with self._connection() as conn:
            row = conn.execute('SELECT value FROM state WHERE key = ?', (key,)).fetchone()
            if row is None:
                return default
            try:
                return json.loads(row[0])
            except ValueError:
                return row[0]

    # Backup

    def export_data(self) -> Dict[str, Any]:
        """Every collection as JSON-compatible records, plus the export timestamp"""
        data = {
            'products': [p.to_dict() for p in self.list_products()],
            'sales': [s.to_dict() for s in self.list_sales()],
            'users': [u.to_dict() for u in self.list_users()],
            'logs': [e.to_dict() for e in self.list_logs()],
            'stock_movements': [m.to_dict() for m in self.list_movements()],
        }
        data['export_date'] = datetime.now().isoformat()
        return data

    def import_data(self, payload: Any) -> Dict[str, int]:
        """
        Replace every collection present in payload.
        All records are parsed before anything is written; any malformed record
        raises ImportFormatError and leaves the store untouched.
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError as e:
                raise ImportFormatError(f"Backup is not valid JSON: {e}")
        if not isinstance(payload, dict):
            raise ImportFormatError("Backup must be a JSON object")

        parsed: Dict[str, list] = {}
        for name, record_cls in COLLECTIONS.items():
            if name not in payload:
                continue
            records = payload[name]
            if not isinstance(records, list):
                raise ImportFormatError(f"'{name}' must be a list")
            try:
                parsed[name] = [record_cls.from_dict(r) for r in records]
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ImportFormatError(f"Malformed record in '{name}': {e}")
            key: Callable = {
                'products': lambda r: r.barcode,
                'users': lambda r: r.username,
            }.get(name, lambda r: r.id)
            keys = [key(r) for r in parsed[name]]
            if len(keys) != len(set(keys)):
                raise ImportFormatError(f"Duplicate identifiers in '{name}'")

        if not parsed:
            raise ImportFormatError("Backup contains no known collections")

        inserters = {
            'products': self._insert_product,
            'sales': lambda cursor, sale: self._insert_sale(cursor, sale, synced=True),
            'users': self._insert_user,
            'logs': self._insert_log,
            'stock_movements': self._insert_movement,
        }
        with self._connection() as conn:
            cursor = conn.cursor()
            for name, records in parsed.items():
                cursor.execute(f'DELETE FROM {name}')
                for record in records:
                    inserters[name](cursor, record)

        counts = {name: len(records) for name, records in parsed.items()}
        logger.info("Imported backup: %s", counts)
        return counts

    def get_stats(self) -> Dict:
        with self._connection() as conn:
            cursor = conn.cursor()
            stats = {}

            cursor.execute('SELECT COUNT(*) FROM products')
            stats['products'] = cursor.fetchone()[0]

            cursor.execute('SELECT COUNT(*) FROM sales')
            stats['sales'] = cursor.fetchone()[0]

            cursor.execute('SELECT COUNT(*) FROM sales WHERE synced = 0')
            stats['pending_sync'] = cursor.fetchone()[0]

            cursor.execute('SELECT COUNT(*) FROM stock_movements')
            stats['stock_movements'] = cursor.fetchone()[0]

            cursor.execute('SELECT COUNT(*) FROM products WHERE stock_quantity <= min_stock_level')
            stats['low_stock'] = cursor.fetchone()[0]

            return stats
