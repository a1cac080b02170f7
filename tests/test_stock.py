from decimal import Decimal

import pytest

from fleet_manager.models import StockStatus
from fleet_manager.stock import InventoryLevel, classify_stock, inventory_level


@pytest.mark.parametrize("requested, available, expected", [
    (5, "0", StockStatus.OUT_OF_STOCK),
    (5, None, StockStatus.OUT_OF_STOCK),
    (5, "3", StockStatus.INSUFFICIENT),
    (5, "5", StockStatus.SUFFICIENT),
    (Decimal("0.5"), "1", StockStatus.SUFFICIENT),
])
def test_classify_stock(requested, available, expected):
    assert classify_stock(requested, available) == expected


def test_inventory_level():
    assert inventory_level("0", "2") == InventoryLevel.OUT
    assert inventory_level("2", "2") == InventoryLevel.LOW
    assert inventory_level("3", "2") == InventoryLevel.NORMAL
    assert inventory_level("1", None) == InventoryLevel.NORMAL
