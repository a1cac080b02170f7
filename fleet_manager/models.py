from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

# --- Enums ---
class VehicleStatus(str, Enum):
    AVAILABLE = "available"      # Disponível
    IN_USE = "in_use"            # Em uso
    MAINTENANCE = "maintenance"  # Em manutenção
    INACTIVE = "inactive"

class DriverStatus(str, Enum):
    ACTIVE = "active"
    VACATION = "vacation"  # Férias
    INACTIVE = "inactive"

class MaintenanceType(str, Enum):
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"
    REVIEW = "review"  # Revisão

class Priority(str, Enum):
    """Prioridade da OS e urgência da solicitação de compra."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

class ServiceOrderStatus(str, Enum):
    """Status possíveis para uma Ordem de Serviço."""
    OPEN = "open"               # Aberta
    IN_PROGRESS = "in_progress" # Em andamento
    COMPLETED = "completed"     # Concluída
    CANCELLED = "cancelled"     # Cancelada

class ServiceOrderType(str, Enum):
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"
    PREDICTIVE = "predictive"

class PurchaseStatus(str, Enum):
    """Status possíveis para uma Solicitação de Compra."""
    PENDING = "pending"     # Pendente
    APPROVED = "approved"   # Aprovada
    RECEIVED = "received"   # Recebida
    CANCELLED = "cancelled" # Cancelada

class StockStatus(str, Enum):
    """Disponibilidade do estoque frente à quantidade pedida."""
    SUFFICIENT = "sufficient"
    INSUFFICIENT = "insufficient"
    OUT_OF_STOCK = "out_of_stock"


def _money_field(default=Decimal("0"), **kwargs):
    return Field(default=default, max_digits=10, decimal_places=2, **kwargs)

# --- Modelos de Dados (Tabelas) ---

class Vehicle(SQLModel, table=True):
    """
    Representa um Veículo da frota.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    plate: str = Field(unique=True, description="Placa do veículo")
    brand: str
    model: str
    year: int
    color: Optional[str] = None
    category: Optional[str] = None
    status: VehicleStatus = Field(default=VehicleStatus.AVAILABLE)
    mileage: int = Field(default=0, description="Quilometragem atual")
    fuel_type: str
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class Driver(SQLModel, table=True):
    """
    Representa um Motorista e os dados da sua habilitação.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    cpf: str = Field(unique=True)
    cnh: str = Field(unique=True, description="Número da CNH")
    cnh_category: str
    cnh_expiry: date
    phone: Optional[str] = None
    email: Optional[str] = None
    status: DriverStatus = Field(default=DriverStatus.ACTIVE)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class Supplier(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    cnpj: Optional[str] = Field(default=None, unique=True)
    phone: Optional[str] = None
    email: Optional[str] = None
    contact_person: Optional[str] = None
    category: Optional[str] = None
    payment_terms: Optional[str] = None
    delivery_days: Optional[int] = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class InventoryItem(SQLModel, table=True):
    """
    Representa um item no Estoque (Peça ou Produto).
    Somente leitura para o fluxo de ordens e compras.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: Optional[str] = None
    manufacturer_code: Optional[str] = None
    category: Optional[str] = Field(default=None, description="Categoria da peça (ex: Motor, Freio)")
    unit: str = Field(default="un")
    quantity: Decimal = _money_field(description="Quantidade atual em estoque")
    min_quantity: Optional[Decimal] = _money_field(default=None, description="Quantidade mínima para alerta")
    max_quantity: Optional[Decimal] = _money_field(default=None)
    unit_cost: Optional[Decimal] = _money_field(default=None, description="Custo unitário")
    location: Optional[str] = Field(default=None, description="Localização física no almoxarifado")
    supplier_id: Optional[int] = Field(default=None, foreign_key="supplier.id")
    last_purchase: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class Maintenance(SQLModel, table=True):
    """
    Histórico de manutenções de um veículo.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    vehicle_id: int = Field(foreign_key="vehicle.id", ondelete="CASCADE")
    type: MaintenanceType
    description: str
    cost: Optional[Decimal] = _money_field(default=None)
    mileage: int = Field(default=0)
    start_date: datetime
    end_date: Optional[datetime] = None
    provider: Optional[str] = None
    mechanic: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class ServiceOrder(SQLModel, table=True):
    """
    Representa uma Ordem de Serviço (OS) de um veículo.
    estimated_cost é derivado dos itens (quantidade × custo unitário).
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    number: str = Field(unique=True, description="Número sequencial (OS-001)")
    vehicle_id: int = Field(foreign_key="vehicle.id", ondelete="CASCADE")
    driver_id: Optional[int] = Field(default=None, foreign_key="driver.id")
    description: str
    status: ServiceOrderStatus = Field(default=ServiceOrderStatus.OPEN)
    priority: Priority = Field(default=Priority.MEDIUM)
    type: ServiceOrderType = Field(default=ServiceOrderType.CORRECTIVE)
    current_mileage: Optional[Decimal] = _money_field(default=None)
    mechanic: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    estimated_cost: Decimal = _money_field()
    validated_by: Optional[str] = None
    validation_date: Optional[date] = None
    start_date: datetime = Field(default_factory=datetime.now)
    end_date: Optional[datetime] = None
    version: int = Field(default=1, description="Controle de concorrência otimista")
    created_at: datetime = Field(default_factory=datetime.now, description="Data de abertura")
    updated_at: datetime = Field(default_factory=datetime.now)

class PurchaseRequest(SQLModel, table=True):
    """
    Representa uma Solicitação de Compra de uma peça do estoque.
    total_amount é derivado (quantidade × custo unitário) salvo quando
    total_override estiver preenchido.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    number: str = Field(unique=True, description="Número sequencial (PR-001)")
    inventory_id: Optional[int] = Field(default=None, foreign_key="inventoryitem.id")
    service_order_id: Optional[int] = Field(default=None, foreign_key="serviceorder.id", ondelete="SET NULL")
    supplier_id: Optional[int] = Field(default=None, foreign_key="supplier.id")
    urgency: Priority = Field(default=Priority.MEDIUM)
    status: PurchaseStatus = Field(default=PurchaseStatus.PENDING)
    quantity: Decimal = _money_field()
    total_amount: Decimal = _money_field()
    total_override: Optional[Decimal] = _money_field(default=None)
    purchase_date: datetime = Field(default_factory=datetime.now)
    delivery_date: Optional[date] = None
    receiver_name: Optional[str] = None
    invoice_number: Optional[str] = None
    approved_by: Optional[str] = None
    approval_date: Optional[date] = None
    notes: Optional[str] = None
    version: int = Field(default=1, description="Controle de concorrência otimista")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class ServiceOrderItem(SQLModel, table=True):
    """
    Peça necessária dentro de uma OS.
    Pode apontar para a solicitação de compra criada para repor a falta.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    service_order_id: int = Field(foreign_key="serviceorder.id", ondelete="CASCADE")
    inventory_id: Optional[int] = Field(default=None, foreign_key="inventoryitem.id")
    description: str
    required_quantity: Decimal = _money_field()
    purchase_request_id: Optional[int] = Field(default=None, foreign_key="purchaserequest.id")
    stock_status: StockStatus = Field(default=StockStatus.SUFFICIENT)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

class Cost(SQLModel, table=True):
    """
    Lançamento de custo da frota (combustível, peças, serviços...).
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    vehicle_id: Optional[int] = Field(default=None, foreign_key="vehicle.id")
    maintenance_id: Optional[int] = Field(default=None, foreign_key="maintenance.id")
    purchase_id: Optional[int] = Field(default=None, foreign_key="purchaserequest.id")
    service_order_id: Optional[int] = Field(default=None, foreign_key="serviceorder.id", ondelete="SET NULL")
    category: str
    description: str
    amount: Decimal = _money_field()
    cost_date: datetime = Field(default_factory=datetime.now)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
