"""Agregados somente leitura: painel inicial, estoque e relatório de custos."""

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlmodel import Session, select

from fleet_manager.models import (
    Cost,
    Driver,
    DriverStatus,
    InventoryItem,
    Maintenance,
    PurchaseRequest,
    PurchaseStatus,
    ServiceOrder,
    ServiceOrderStatus,
    Supplier,
    Vehicle,
    VehicleStatus,
)
from fleet_manager.stock import InventoryLevel, inventory_level
from fleet_manager.totals import CENT, ZERO, line_total, to_decimal


def _count(session: Session, model, *conditions) -> int:
    statement = select(func.count()).select_from(model)
    for condition in conditions:
        statement = statement.where(condition)
    return session.exec(statement).one()


def dashboard_stats(session: Session) -> Dict[str, Dict[str, object]]:
    inventory = session.exec(select(InventoryItem)).all()
    low_stock = sum(
        1
        for item in inventory
        if inventory_level(item.quantity, item.min_quantity) != InventoryLevel.NORMAL
    )
    total_costs = sum(
        (to_decimal(amount) for amount in session.exec(select(Cost.amount)).all()), ZERO
    )
    return {
        "vehicles": {
            "total": _count(session, Vehicle),
            "available": _count(session, Vehicle, Vehicle.status == VehicleStatus.AVAILABLE),
        },
        "drivers": {
            "total": _count(session, Driver),
            "active": _count(session, Driver, Driver.status == DriverStatus.ACTIVE),
        },
        "maintenances": {
            "total": _count(session, Maintenance),
            "open": _count(session, Maintenance, Maintenance.end_date.is_(None)),
        },
        "service_orders": {
            "total": _count(session, ServiceOrder),
            "open": _count(session, ServiceOrder, ServiceOrder.status == ServiceOrderStatus.OPEN),
        },
        "inventory": {
            "total": len(inventory),
            "low_stock": low_stock,
            "value": inventory_value(inventory),
        },
        "purchases": {
            "total": _count(session, PurchaseRequest),
            "pending": _count(
                session, PurchaseRequest, PurchaseRequest.status == PurchaseStatus.PENDING
            ),
        },
        "suppliers": {
            "total": _count(session, Supplier),
            "active": _count(session, Supplier, Supplier.is_active == True),  # noqa: E712
        },
        "costs": {"total": total_costs.quantize(CENT)},
    }


def inventory_value(items: Sequence[InventoryItem]) -> Decimal:
    """Valor do estoque: Σ quantidade × custo unitário."""
    return line_total((item.quantity, item.unit_cost) for item in items)


@dataclass
class CostShare:
    label: str
    amount: Decimal
    percentage: Decimal


@dataclass
class CostReport:
    costs: List[Cost]
    total: Decimal
    by_category: List[CostShare] = field(default_factory=list)
    by_vehicle: List[CostShare] = field(default_factory=list)


def _shares(totals: Dict[str, Decimal], grand_total: Decimal) -> List[CostShare]:
    shares = []
    for label, amount in sorted(totals.items(), key=lambda entry: entry[1], reverse=True):
        if grand_total:
            percentage = (amount * 100 / grand_total).quantize(CENT, rounding=ROUND_HALF_UP)
        else:
            percentage = ZERO.quantize(CENT)
        shares.append(CostShare(label, amount.quantize(CENT), percentage))
    return shares


def cost_report(session: Session, vehicle_id: Optional[int] = None) -> CostReport:
    statement = (
        select(Cost, Vehicle)
        .join(Vehicle, Cost.vehicle_id == Vehicle.id, isouter=True)
        .order_by(Cost.cost_date)
    )
    if vehicle_id is not None:
        statement = statement.where(Cost.vehicle_id == vehicle_id)
    rows = session.exec(statement).all()

    by_category: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_vehicle: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    total = ZERO
    for cost, vehicle in rows:
        amount = to_decimal(cost.amount)
        total += amount
        by_category[cost.category] += amount
        by_vehicle[vehicle.plate if vehicle else "Sem veículo"] += amount

    return CostReport(
        costs=[cost for cost, _ in rows],
        total=total.quantize(CENT),
        by_category=_shares(by_category, total),
        by_vehicle=_shares(by_vehicle, total),
    )
