from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from fleet_manager.models import StockStatus
from fleet_manager.totals import to_decimal


class InventoryLevel(str, Enum):
    """Situação do item na listagem de estoque."""
    OUT = "out"        # Sem estoque
    LOW = "low"        # Abaixo do mínimo
    NORMAL = "normal"


@dataclass(frozen=True)
class ReplenishmentRequest:
    """Dados para abrir uma solicitação de compra quando a peça está zerada."""
    inventory_id: int
    quantity: Decimal
    service_order_id: Optional[int] = None


def classify_stock(requested: Any, available: Any) -> StockStatus:
    available = to_decimal(available)
    if available <= 0:
        return StockStatus.OUT_OF_STOCK
    if available < to_decimal(requested):
        return StockStatus.INSUFFICIENT
    return StockStatus.SUFFICIENT


def inventory_level(quantity: Any, min_quantity: Any) -> InventoryLevel:
    quantity = to_decimal(quantity)
    if quantity == 0:
        return InventoryLevel.OUT
    if min_quantity is not None and quantity <= to_decimal(min_quantity):
        return InventoryLevel.LOW
    return InventoryLevel.NORMAL
