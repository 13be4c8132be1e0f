# Tests for the inventory ledger and cart

from decimal import Decimal

import pytest

from marketpos.activity_log import ActivityLog
from marketpos.cart import Cart, merge_lines
from marketpos.errors import InsufficientStock, ProductNotFound, ValidationError
from marketpos.inventory import InventoryLedger
from marketpos.models import CartLine, MovementType
from marketpos.store import Store


@pytest.fixture
def store(tmp_path):
    return Store(str(tmp_path / 'pos.db'))


@pytest.fixture
def inventory(store):
    ledger = InventoryLedger(store, ActivityLog(store))
    ledger.add_product('111', 'Ekmek', '12.50', stock_quantity=10, min_stock_level=2)
    ledger.add_product('222', 'Süt', Decimal('34.90'), stock_quantity=1, min_stock_level=5)
    return ledger


class TestProducts:
    """Product registration and editing"""

    def test_initial_stock_is_an_in_movement(self, inventory):
        movements = inventory.movements('111')
        assert len(movements) == 1
        assert movements[0].type == MovementType.IN
        assert movements[0].quantity == 10

    def test_zero_initial_stock_has_no_movement(self, inventory):
        inventory.add_product('333', 'Çay', '45', stock_quantity=0)
        assert inventory.movements('333') == []

    def test_duplicate_barcode_rejected(self, inventory):
        with pytest.raises(ValidationError):
            inventory.add_product('111', 'Başka', '1')

    def test_invalid_price_rejected(self, inventory):
        with pytest.raises(ValidationError):
            inventory.add_product('444', 'Bedava', '0')
        with pytest.raises(ValidationError):
            inventory.add_product('444', 'Bozuk', 'abc')

    def test_update_keeps_stock(self, inventory):
        updated = inventory.update_product('111', name='Tam Buğday Ekmek', unit_price='15')
        assert updated.unit_price == Decimal('15')
        product = inventory.get_product('111')
        assert product.name == 'Tam Buğday Ekmek'
        assert product.stock_quantity == 10

    def test_update_cannot_touch_stock(self, inventory):
        with pytest.raises(ValidationError):
            inventory.update_product('111', stock_quantity=99)

    def test_delete(self, inventory):
        inventory.delete_product('222')
        assert inventory.get_product('222') is None
        with pytest.raises(ProductNotFound):
            inventory.delete_product('222')

    def test_low_stock(self, inventory):
        assert [p.barcode for p in inventory.low_stock_products()] == ['222']

    def test_actions_are_logged(self, inventory, store):
        actions = [entry.action for entry in store.list_logs()]
        assert actions.count('PRODUCT_ADD') == 2


class TestStockOperations:
    """apply_in / apply_out / apply_adjustment"""

    def test_apply_out(self, inventory):
        movement = inventory.apply_out('111', 3, 'cashier', 'Satış - 1')
        assert movement.type == MovementType.OUT
        assert movement.quantity == 3
        assert movement.product_name == 'Ekmek'
        assert inventory.get_product('111').stock_quantity == 7

    def test_apply_out_insufficient(self, inventory):
        with pytest.raises(InsufficientStock) as exc:
            inventory.apply_out('222', 2, 'cashier', 'Satış - 1')
        assert exc.value.available == 1
        assert inventory.get_product('222').stock_quantity == 1
        assert len(inventory.movements('222')) == 1

    def test_apply_in(self, inventory):
        inventory.apply_in('222', 12, 'manager', 'Mal kabul')
        assert inventory.get_product('222').stock_quantity == 13

    def test_adjustment_records_signed_delta(self, inventory):
        movement = inventory.apply_adjustment('111', 4, 'manager', 'Sayım')
        assert movement.type == MovementType.ADJUSTMENT
        assert movement.quantity == -6
        assert inventory.get_product('111').stock_quantity == 4

    def test_adjustment_to_negative_rejected(self, inventory):
        with pytest.raises(ValidationError):
            inventory.apply_adjustment('111', -1, 'manager', 'Sayım')

    @pytest.mark.parametrize('qty', [0, -1, 1.5, '2', True])
    def test_bad_quantity_rejected(self, inventory, qty):
        with pytest.raises(ValidationError):
            inventory.apply_out('111', qty, 'cashier', 'x')

    def test_unknown_product(self, inventory):
        with pytest.raises(ProductNotFound):
            inventory.apply_in('999', 1, 'manager', 'x')

    def test_reserve_check_writes_nothing(self, inventory):
        inventory.reserve_check('111', 10)
        with pytest.raises(InsufficientStock):
            inventory.reserve_check('111', 11)
        assert inventory.get_product('111').stock_quantity == 10
        assert len(inventory.movements('111')) == 1

    def test_movements_reconcile_with_stock(self, inventory):
        inventory.apply_out('111', 3, 'cashier', 'a')
        inventory.apply_in('111', 5, 'manager', 'b')
        inventory.apply_adjustment('111', 9, 'manager', 'c')
        inventory.apply_out('111', 2, 'cashier', 'd')

        net = 0
        for m in inventory.movements('111'):
            net += -m.quantity if m.type == MovementType.OUT else m.quantity
        assert net == inventory.get_product('111').stock_quantity == 7

    def test_stock_change_outside_ledger_is_detected(self, inventory, store):
        from marketpos.errors import POSError

        original = store.apply_stock_change
        store.apply_stock_change = lambda *args: False
        try:
            with pytest.raises(POSError):
                inventory.apply_out('111', 1, 'cashier', 'x')
        finally:
            store.apply_stock_change = original


class TestCart:
    """Cart mutations"""

    def test_add_merges_same_barcode(self, inventory):
        cart = Cart(inventory)
        cart.add('111')
        cart.add('111', 2)
        assert len(cart) == 1
        assert cart.lines[0].quantity == 3
        assert cart.total == Decimal('37.50')

    def test_add_checks_cumulative_stock(self, inventory):
        cart = Cart(inventory)
        cart.add('222')
        with pytest.raises(InsufficientStock):
            cart.add('222')
        assert cart.lines[0].quantity == 1

    def test_add_unknown_barcode(self, inventory):
        with pytest.raises(ProductNotFound):
            Cart(inventory).add('999')

    def test_set_quantity_zero_removes(self, inventory):
        cart = Cart(inventory)
        cart.add('111')
        cart.set_quantity('111', 0)
        assert cart.is_empty()

    def test_set_quantity_over_stock(self, inventory):
        cart = Cart(inventory)
        cart.add('111')
        with pytest.raises(InsufficientStock):
            cart.set_quantity('111', 11)

    def test_merge_lines_keeps_first_position(self, inventory):
        bread = inventory.get_product('111')
        milk = inventory.get_product('222')
        merged = merge_lines([CartLine(bread, 1), CartLine(milk, 1), CartLine(bread, 2)])
        assert [(line.barcode, line.quantity) for line in merged] == [('111', 3), ('222', 1)]
