from datetime import datetime
from decimal import Decimal

from fleet_manager import reports
from fleet_manager.models import (
    Cost,
    InventoryItem,
    Maintenance,
    MaintenanceType,
    PurchaseRequest,
    ServiceOrderStatus,
)


def _cost(session, category, amount, vehicle_id=None):
    session.add(Cost(
        category=category, description=category, amount=Decimal(amount),
        vehicle_id=vehicle_id, cost_date=datetime(2026, 5, 1),
    ))
    session.commit()


class TestCostReport:

    def test_empty(self, db_session):
        report = reports.cost_report(db_session)
        assert report.costs == []
        assert report.total == Decimal("0.00")
        assert report.by_category == []

    def test_shares_by_category_and_vehicle(self, db_session, vehicle):
        _cost(db_session, "Combustível", "300.00", vehicle.id)
        _cost(db_session, "Peças", "100.00", vehicle.id)
        _cost(db_session, "Combustível", "100.00")

        report = reports.cost_report(db_session)

        assert report.total == Decimal("500.00")
        assert [(s.label, s.amount, s.percentage) for s in report.by_category] == [
            ("Combustível", Decimal("400.00"), Decimal("80.00")),
            ("Peças", Decimal("100.00"), Decimal("20.00")),
        ]
        assert [(s.label, s.percentage) for s in report.by_vehicle] == [
            (vehicle.plate, Decimal("80.00")),
            ("Sem veículo", Decimal("20.00")),
        ]

    def test_filter_by_vehicle(self, db_session, vehicle):
        _cost(db_session, "Pneus", "250.00", vehicle.id)
        _cost(db_session, "Pneus", "99.00")

        report = reports.cost_report(db_session, vehicle_id=vehicle.id)

        assert len(report.costs) == 1
        assert report.total == Decimal("250.00")
        assert report.by_category[0].percentage == Decimal("100.00")


class TestDashboard:

    def test_counts(self, db_session, vehicle, driver, supplier, service_order, make_item):
        make_item(name="Filtro", quantity="1", min_quantity="5")
        make_item(name="Óleo", quantity="20", unit_cost="10.00", min_quantity="5")
        db_session.add(PurchaseRequest(number="PR-001", quantity=Decimal("1")))
        db_session.add(Maintenance(
            vehicle_id=vehicle.id, type=MaintenanceType.CORRECTIVE,
            description="Embreagem", start_date=datetime(2026, 5, 2),
        ))
        _cost(db_session, "Combustível", "120.50", vehicle.id)

        stats = reports.dashboard_stats(db_session)

        assert stats["vehicles"] == {"total": 1, "available": 1}
        assert stats["drivers"] == {"total": 1, "active": 1}
        assert stats["suppliers"] == {"total": 1, "active": 1}
        assert stats["service_orders"] == {"total": 1, "open": 1}
        assert stats["maintenances"] == {"total": 1, "open": 1}
        assert stats["purchases"] == {"total": 1, "pending": 1}
        assert stats["inventory"]["total"] == 2
        assert stats["inventory"]["low_stock"] == 1
        assert stats["inventory"]["value"] == Decimal("225.50")
        assert stats["costs"]["total"] == Decimal("120.50")

    def test_closed_orders_not_open(self, db_session, service_order):
        service_order.status = ServiceOrderStatus.CANCELLED
        db_session.add(service_order)
        db_session.commit()
        assert reports.dashboard_stats(db_session)["service_orders"]["open"] == 0


def test_inventory_value_ignores_missing_cost():
    items = [
        InventoryItem(name="A", quantity=Decimal("2"), unit_cost=Decimal("3.25")),
        InventoryItem(name="B", quantity=Decimal("5"), unit_cost=None),
    ]
    assert reports.inventory_value(items) == Decimal("6.50")
