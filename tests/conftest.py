"""Pytest configuration and fixtures."""

import os

# Banco em memória para o engine padrão criado na importação do app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ACTOR_HEADER"] = "X-Forwarded-User"

from datetime import date
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from fleet_manager.database import build_engine, get_session
from fleet_manager.main import app
from fleet_manager.models import (
    Driver,
    InventoryItem,
    ServiceOrder,
    ServiceOrderType,
    Supplier,
    Vehicle,
)


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    with Session(db_engine) as session:
        yield session


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_session():
        yield db_session

    app.dependency_overrides[get_session] = override_get_session
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def vehicle(db_session: Session) -> Vehicle:
    vehicle = Vehicle(
        plate="ABC1D23", brand="Volvo", model="FH 540", year=2021,
        fuel_type="diesel", mileage=120000,
    )
    db_session.add(vehicle)
    db_session.commit()
    db_session.refresh(vehicle)
    return vehicle


@pytest.fixture
def driver(db_session: Session) -> Driver:
    driver = Driver(
        name="Carla Souza", cpf="123.456.789-00", cnh="01234567890",
        cnh_category="E", cnh_expiry=date(2030, 1, 31),
    )
    db_session.add(driver)
    db_session.commit()
    db_session.refresh(driver)
    return driver


@pytest.fixture
def supplier(db_session: Session) -> Supplier:
    supplier = Supplier(name="Auto Peças Central", cnpj="12.345.678/0001-90")
    db_session.add(supplier)
    db_session.commit()
    db_session.refresh(supplier)
    return supplier


@pytest.fixture
def make_item(db_session: Session):
    def _make_item(name="Filtro de óleo", quantity="10", unit_cost="25.50", min_quantity=None):
        item = InventoryItem(
            name=name,
            quantity=Decimal(quantity),
            unit_cost=Decimal(unit_cost) if unit_cost is not None else None,
            min_quantity=Decimal(min_quantity) if min_quantity is not None else None,
        )
        db_session.add(item)
        db_session.commit()
        db_session.refresh(item)
        return item

    return _make_item


@pytest.fixture
def service_order(db_session: Session, vehicle: Vehicle) -> ServiceOrder:
    order = ServiceOrder(
        number="OS-001",
        vehicle_id=vehicle.id,
        description="Troca de óleo e filtros",
        type=ServiceOrderType.PREVENTIVE,
        current_mileage=Decimal("120000"),
        mechanic="João",
    )
    db_session.add(order)
    db_session.commit()
    db_session.refresh(order)
    return order
