"""
Operações de ordens de serviço e solicitações de compra.

Todas as funções recebem uma ``Session`` aberta e fazem no máximo um
commit. Mudanças de status passam pela máquina de estados de
``fleet_manager.workflow`` e são gravadas num único UPDATE condicionado
à versão do registro; se outra operação gravou antes, o UPDATE não
afeta nenhuma linha e ``ConcurrencyConflictError`` é levantado.

As leituras (``*_detail``) não escrevem nada. A correção do total
derivado é feita por ``reconcile_*``, chamado explicitamente após cada
alteração de itens.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from fleet_manager.config import settings
from fleet_manager.exceptions import (
    ConcurrencyConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from fleet_manager.models import (
    Driver,
    InventoryItem,
    Maintenance,
    MaintenanceType,
    Priority,
    PurchaseRequest,
    PurchaseStatus,
    ServiceOrder,
    ServiceOrderItem,
    ServiceOrderStatus,
    ServiceOrderType,
    StockStatus,
    Supplier,
    Vehicle,
)
from fleet_manager.stock import ReplenishmentRequest, classify_stock
from fleet_manager.totals import has_drift, line_total, to_decimal
from fleet_manager.workflow import PURCHASE_WORKFLOW, SERVICE_ORDER_WORKFLOW

logger = logging.getLogger(__name__)

SERVICE_ORDER_PREFIX = "OS"
PURCHASE_PREFIX = "PR"

# Preditiva não existe no histórico de manutenções
MAINTENANCE_TYPE_FOR_ORDER = {
    ServiceOrderType.PREVENTIVE: MaintenanceType.PREVENTIVE,
    ServiceOrderType.CORRECTIVE: MaintenanceType.CORRECTIVE,
    ServiceOrderType.PREDICTIVE: MaintenanceType.PREVENTIVE,
}


@dataclass
class ReconcileResult:
    record: Any
    previous: Decimal
    computed: Decimal
    corrected: bool


@dataclass
class AddItemResult:
    """
    Resultado de adicionar uma peça à OS: ou o item criado, ou o pedido
    de reposição quando a peça está sem estoque e há callback registrado.
    """
    item: Optional[ServiceOrderItem] = None
    stock_status: Optional[StockStatus] = None
    replenishment: Optional[ReplenishmentRequest] = None
    callback_result: Any = None

    @property
    def created(self) -> bool:
        return self.item is not None


@dataclass
class ItemView:
    item: ServiceOrderItem
    inventory: Optional[InventoryItem]
    unit_cost: Decimal
    subtotal: Decimal
    purchase: Optional[PurchaseRequest] = None

    @property
    def stale_purchase_link(self) -> bool:
        return (
            self.purchase is not None
            and self.purchase.status == PurchaseStatus.CANCELLED
        )


@dataclass
class ServiceOrderDetail:
    order: ServiceOrder
    vehicle: Optional[Vehicle]
    driver: Optional[Driver]
    items: List[ItemView] = field(default_factory=list)
    computed_cost: Decimal = Decimal("0.00")
    has_drift: bool = False


@dataclass
class PurchaseDetail:
    purchase: PurchaseRequest
    inventory: Optional[InventoryItem]
    supplier: Optional[Supplier]
    service_order: Optional[ServiceOrder]
    computed_total: Decimal = Decimal("0.00")
    has_drift: bool = False


# --- Infraestrutura ---

def commit(session: Session) -> None:
    """Commit convertendo erros do banco nas exceções do domínio."""
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ValidationError(None, "Registro duplicado ou referência inválida") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Store failure on commit: %s", exc)
        raise StoreError("Falha ao gravar no banco de dados") from exc


def get_or_raise(session: Session, model, record_id: Optional[int], entity: str):
    record = session.get(model, record_id) if record_id is not None else None
    if record is None:
        raise NotFoundError(entity, record_id)
    return record


def ensure_unique(
    session: Session,
    model,
    field_name: str,
    value: Any,
    label: str,
    exclude_id: Optional[int] = None,
) -> None:
    """Levanta ValidationError no campo quando outro registro já usa o valor."""
    if value is None or value == "":
        return
    statement = select(model.id).where(getattr(model, field_name) == value)
    if exclude_id is not None:
        statement = statement.where(model.id != exclude_id)
    if session.exec(statement).first() is not None:
        raise ValidationError(field_name, f"{label} já cadastrado(a)")


def next_number(session: Session, model, prefix: str) -> str:
    """Próximo número sequencial (ex: OS-004) a partir do maior existente."""
    pattern = re.compile(rf"{prefix}-(\d+)")
    highest = 0
    for number in session.exec(select(model.number)).all():
        match = pattern.fullmatch(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{highest + 1:03d}"


def _guarded_update(
    session: Session,
    model,
    entity: str,
    record,
    values: dict,
    expected_version: Optional[int] = None,
) -> None:
    """
    UPDATE ... WHERE id = :id AND version = :version, incrementando a
    versão. Não faz commit: o chamador grava eventuais registros extras
    na mesma transação e chama ``commit``.
    """
    version = record.version if expected_version is None else expected_version
    if record.version != version:
        raise ConcurrencyConflictError(entity, record.id, version, record.version)

    table = model.__table__
    values = dict(values, version=version + 1, updated_at=datetime.now())
    statement = (
        update(table)
        .where(table.c.id == record.id, table.c.version == version)
        .values(**values)
    )
    try:
        result = session.connection().execute(statement)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Store failure updating %s %s: %s", entity, record.id, exc)
        raise StoreError("Falha ao gravar no banco de dados") from exc

    if result.rowcount != 1:
        session.rollback()
        logger.warning(
            "Version conflict on %s %s (expected version %s)", entity, record.id, version
        )
        raise ConcurrencyConflictError(entity, record.id, version)


def _require_text(field_name: str, value: Optional[str], label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(field_name, f"{label} é obrigatório")
    return value


def _require_positive(field_name: str, value: Any, label: str) -> Decimal:
    quantity = to_decimal(value)
    if quantity <= 0:
        raise ValidationError(field_name, f"{label} deve ser maior que 0")
    return quantity


# --- Ordens de Serviço ---

def create_service_order(
    session: Session,
    *,
    vehicle_id: int,
    description: str,
    type: ServiceOrderType = ServiceOrderType.CORRECTIVE,
    priority: Priority = Priority.MEDIUM,
    current_mileage: Any = None,
    mechanic: Optional[str] = None,
    scheduled_date: Optional[datetime] = None,
    driver_id: Optional[int] = None,
) -> ServiceOrder:
    description = _require_text("description", description, "Descrição")
    if current_mileage is not None and to_decimal(current_mileage) < 0:
        raise ValidationError(
            "current_mileage", "Quilometragem deve ser maior ou igual a 0"
        )
    get_or_raise(session, Vehicle, vehicle_id, "Veículo")
    if driver_id is not None:
        get_or_raise(session, Driver, driver_id, "Motorista")

    order = ServiceOrder(
        number=next_number(session, ServiceOrder, SERVICE_ORDER_PREFIX),
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        description=description,
        type=type,
        priority=priority,
        current_mileage=to_decimal(current_mileage) if current_mileage is not None else None,
        mechanic=(mechanic or "").strip() or None,
        scheduled_date=scheduled_date,
        start_date=scheduled_date or datetime.now(),
        status=ServiceOrderStatus.OPEN,
    )
    session.add(order)
    commit(session)
    session.refresh(order)
    logger.info("Service order %s created for vehicle %s", order.number, vehicle_id)
    return order


def update_service_order(
    session: Session,
    order_id: int,
    *,
    description: str,
    type: ServiceOrderType,
    priority: Priority,
    mechanic: Optional[str] = None,
    current_mileage: Any = None,
    scheduled_date: Optional[datetime] = None,
    expected_version: Optional[int] = None,
) -> ServiceOrder:
    order = get_or_raise(session, ServiceOrder, order_id, "Ordem de serviço")
    if SERVICE_ORDER_WORKFLOW.is_terminal(order.status):
        raise ValidationError("status", "Ordem de serviço encerrada não pode ser editada")

    values = {
        "description": _require_text("description", description, "Descrição"),
        "type": type,
        "priority": priority,
        "mechanic": (mechanic or "").strip() or None,
        "current_mileage": to_decimal(current_mileage) if current_mileage is not None else None,
        "scheduled_date": scheduled_date,
    }
    _guarded_update(session, ServiceOrder, "Ordem de serviço", order, values, expected_version)
    commit(session)
    session.refresh(order)
    return order


def delete_service_order(session: Session, order_id: int) -> None:
    """
    Remove a OS. Os itens saem junto pela chave estrangeira em cascata;
    compras e custos vinculados ficam sem OS (SET NULL).
    """
    order = get_or_raise(session, ServiceOrder, order_id, "Ordem de serviço")
    number = order.number
    session.delete(order)
    commit(session)
    logger.info("Service order %s deleted", number)


def _order_item_rows(session: Session, order_id: int) -> List[Tuple[ServiceOrderItem, Optional[InventoryItem]]]:
    statement = (
        select(ServiceOrderItem, InventoryItem)
        .join(InventoryItem, ServiceOrderItem.inventory_id == InventoryItem.id, isouter=True)
        .where(ServiceOrderItem.service_order_id == order_id)
        .order_by(ServiceOrderItem.id)
    )
    return list(session.exec(statement).all())


def compute_service_order_cost(session: Session, order_id: int) -> Decimal:
    rows = _order_item_rows(session, order_id)
    return line_total(
        (item.required_quantity, inventory.unit_cost if inventory else None)
        for item, inventory in rows
    )


def _apply_order_cost(session: Session, order: ServiceOrder) -> ReconcileResult:
    previous = to_decimal(order.estimated_cost)
    computed = compute_service_order_cost(session, order.id)
    corrected = has_drift(previous, computed, settings.cost_tolerance)
    if corrected:
        _guarded_update(
            session, ServiceOrder, "Ordem de serviço", order, {"estimated_cost": computed}
        )
        logger.info(
            "Service order %s estimated cost corrected: %s -> %s",
            order.number, previous, computed,
        )
    return ReconcileResult(order, previous, computed, corrected)


def reconcile_service_order(session: Session, order_id: int) -> ReconcileResult:
    """
    Recalcula o custo estimado a partir dos itens e grava o valor
    quando diverge do salvo em mais que a tolerância.
    """
    order = get_or_raise(session, ServiceOrder, order_id, "Ordem de serviço")
    result = _apply_order_cost(session, order)
    if result.corrected:
        commit(session)
        session.refresh(order)
    return result


def add_service_order_item(
    session: Session,
    order_id: int,
    *,
    inventory_id: int,
    required_quantity: Any,
    on_out_of_stock: Optional[Callable[[ReplenishmentRequest], Any]] = None,
) -> AddItemResult:
    """
    Adiciona uma peça do estoque à OS.

    Sem estoque e com ``on_out_of_stock`` registrado, nenhum item é criado:
    o callback recebe o pedido de reposição e o resultado volta no
    ``AddItemResult``. Estoque insuficiente não bloqueia; o item é criado
    e marcado como ``insufficient``. O estoque não é alterado.
    """
    quantity = _require_positive("required_quantity", required_quantity, "Quantidade")
    order = get_or_raise(session, ServiceOrder, order_id, "Ordem de serviço")
    if SERVICE_ORDER_WORKFLOW.is_terminal(order.status):
        raise ValidationError("status", "Ordem de serviço encerrada não aceita novas peças")
    inventory = get_or_raise(session, InventoryItem, inventory_id, "Peça")

    status = classify_stock(quantity, inventory.quantity)
    if status == StockStatus.OUT_OF_STOCK and on_out_of_stock is not None:
        request = ReplenishmentRequest(
            inventory_id=inventory.id, quantity=quantity, service_order_id=order.id
        )
        logger.info(
            "Item %s out of stock for service order %s; handing off to purchase request",
            inventory.id, order.number,
        )
        return AddItemResult(
            stock_status=status,
            replenishment=request,
            callback_result=on_out_of_stock(request),
        )

    item = ServiceOrderItem(
        service_order_id=order.id,
        inventory_id=inventory.id,
        description=inventory.name,
        required_quantity=quantity,
        stock_status=status,
    )
    session.add(item)
    session.flush()
    _apply_order_cost(session, order)
    commit(session)
    session.refresh(item)
    if status != StockStatus.SUFFICIENT:
        logger.warning(
            "Item %s added to service order %s with stock status %s",
            inventory.id, order.number, status.value,
        )
    return AddItemResult(item=item, stock_status=status)


def transition_service_order(
    session: Session,
    order_id: int,
    requested: ServiceOrderStatus,
    *,
    actor: Optional[str],
    validation_date: Optional[date] = None,
    expected_version: Optional[int] = None,
) -> ServiceOrder:
    """
    Muda o status da OS. ``validated_by`` vem sempre de ``actor`` (usuário
    autenticado), nunca de texto enviado pelo formulário.
    """
    order = get_or_raise(session, ServiceOrder, order_id, "Ordem de serviço")
    updates = SERVICE_ORDER_WORKFLOW.plan(
        order.status,
        requested,
        {"validated_by": actor, "validation_date": validation_date},
    )
    if updates is None:
        return order

    now = datetime.now()
    if requested == ServiceOrderStatus.IN_PROGRESS:
        updates["start_date"] = now
    elif requested == ServiceOrderStatus.COMPLETED:
        updates["end_date"] = now

    previous_status = order.status
    _guarded_update(
        session, ServiceOrder, "Ordem de serviço", order, updates, expected_version
    )
    if requested == ServiceOrderStatus.COMPLETED:
        finished = datetime.combine(validation_date, now.time()) if validation_date else now
        _record_maintenance(session, order, end_date=finished)
    commit(session)
    session.refresh(order)
    logger.info(
        "Service order %s: %s -> %s by %s",
        order.number, previous_status.value, order.status.value, actor,
    )
    return order


def _record_maintenance(session: Session, order: ServiceOrder, end_date: datetime) -> None:
    """Gera o histórico de manutenção da OS concluída, sem duplicar."""
    existing = session.exec(
        select(Maintenance).where(
            Maintenance.vehicle_id == order.vehicle_id,
            Maintenance.description == order.description,
        )
    ).all()
    for maintenance in existing:
        if abs((maintenance.start_date - order.start_date).total_seconds()) < 1:
            return

    session.add(
        Maintenance(
            vehicle_id=order.vehicle_id,
            type=MAINTENANCE_TYPE_FOR_ORDER.get(order.type, MaintenanceType.CORRECTIVE),
            description=order.description,
            cost=order.estimated_cost,
            mileage=int(to_decimal(order.current_mileage)),
            start_date=order.start_date,
            end_date=end_date,
            mechanic=order.mechanic,
        )
    )


def service_order_detail(session: Session, order_id: int) -> ServiceOrderDetail:
    order = get_or_raise(session, ServiceOrder, order_id, "Ordem de serviço")
    views = []
    for item, inventory in _order_item_rows(session, order_id):
        unit_cost = to_decimal(inventory.unit_cost if inventory else None)
        purchase = (
            session.get(PurchaseRequest, item.purchase_request_id)
            if item.purchase_request_id is not None
            else None
        )
        views.append(
            ItemView(
                item=item,
                inventory=inventory,
                unit_cost=unit_cost,
                subtotal=line_total([(item.required_quantity, unit_cost)]),
                purchase=purchase,
            )
        )
    computed = line_total((view.item.required_quantity, view.unit_cost) for view in views)
    return ServiceOrderDetail(
        order=order,
        vehicle=session.get(Vehicle, order.vehicle_id),
        driver=session.get(Driver, order.driver_id) if order.driver_id else None,
        items=views,
        computed_cost=computed,
        has_drift=has_drift(order.estimated_cost, computed, settings.cost_tolerance),
    )


def service_order_snapshot(session: Session, order_id: int) -> ServiceOrderDetail:
    """Dados completos e já reconciliados para impressão da OS."""
    reconcile_service_order(session, order_id)
    return service_order_detail(session, order_id)


# --- Solicitações de Compra ---

def purchase_total(quantity: Any, total_override: Any, inventory: Optional[InventoryItem]) -> Decimal:
    if total_override is not None:
        return line_total([(1, total_override)])
    return line_total([(quantity, inventory.unit_cost if inventory else None)])


def compute_purchase_total(purchase: PurchaseRequest, inventory: Optional[InventoryItem]) -> Decimal:
    return purchase_total(purchase.quantity, purchase.total_override, inventory)


def create_purchase_request(
    session: Session,
    *,
    inventory_id: int,
    quantity: Any,
    urgency: Priority = Priority.MEDIUM,
    service_order_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
    notes: Optional[str] = None,
    total_override: Any = None,
) -> PurchaseRequest:
    """
    Abre uma solicitação de compra pendente. Vinculada a uma OS, cria
    também o item da OS apontando para a solicitação e reconcilia a OS.
    """
    quantity = _require_positive("quantity", quantity, "Quantidade")
    inventory = get_or_raise(session, InventoryItem, inventory_id, "Item do estoque")
    order = None
    if service_order_id is not None:
        order = get_or_raise(session, ServiceOrder, service_order_id, "Ordem de serviço")
        if SERVICE_ORDER_WORKFLOW.is_terminal(order.status):
            raise ValidationError("service_order_id", "Ordem de serviço já encerrada")
    if supplier_id is not None:
        get_or_raise(session, Supplier, supplier_id, "Fornecedor")

    purchase = PurchaseRequest(
        number=next_number(session, PurchaseRequest, PURCHASE_PREFIX),
        inventory_id=inventory.id,
        service_order_id=service_order_id,
        supplier_id=supplier_id or inventory.supplier_id,
        urgency=urgency,
        quantity=quantity,
        total_override=to_decimal(total_override) if total_override is not None else None,
        status=PurchaseStatus.PENDING,
        notes=(notes or "").strip() or None,
    )
    purchase.total_amount = compute_purchase_total(purchase, inventory)
    session.add(purchase)
    session.flush()

    if order is not None:
        session.add(
            ServiceOrderItem(
                service_order_id=order.id,
                inventory_id=inventory.id,
                description=inventory.name,
                required_quantity=quantity,
                purchase_request_id=purchase.id,
                stock_status=classify_stock(quantity, inventory.quantity),
            )
        )
        session.flush()
        _apply_order_cost(session, order)
    commit(session)
    session.refresh(purchase)
    logger.info(
        "Purchase request %s created for item %s (qty %s)",
        purchase.number, inventory.id, quantity,
    )
    return purchase


def update_purchase_request(
    session: Session,
    purchase_id: int,
    *,
    inventory_id: int,
    quantity: Any,
    urgency: Priority,
    supplier_id: Optional[int] = None,
    notes: Optional[str] = None,
    total_override: Any = None,
    expected_version: Optional[int] = None,
) -> PurchaseRequest:
    purchase = get_or_raise(session, PurchaseRequest, purchase_id, "Solicitação de compra")
    if purchase.status != PurchaseStatus.PENDING:
        raise ValidationError("status", "Somente solicitações pendentes podem ser editadas")
    quantity = _require_positive("quantity", quantity, "Quantidade")
    inventory = get_or_raise(session, InventoryItem, inventory_id, "Item do estoque")
    if supplier_id is not None:
        get_or_raise(session, Supplier, supplier_id, "Fornecedor")

    override = to_decimal(total_override) if total_override is not None else None
    values = {
        "inventory_id": inventory.id,
        "quantity": quantity,
        "urgency": urgency,
        "supplier_id": supplier_id or inventory.supplier_id,
        "notes": (notes or "").strip() or None,
        "total_override": override,
        "total_amount": purchase_total(quantity, override, inventory),
    }
    _guarded_update(
        session, PurchaseRequest, "Solicitação de compra", purchase, values, expected_version
    )
    commit(session)
    session.refresh(purchase)
    return purchase


def reconcile_purchase_request(session: Session, purchase_id: int) -> ReconcileResult:
    purchase = get_or_raise(session, PurchaseRequest, purchase_id, "Solicitação de compra")
    inventory = session.get(InventoryItem, purchase.inventory_id) if purchase.inventory_id else None
    previous = to_decimal(purchase.total_amount)
    computed = compute_purchase_total(purchase, inventory)
    if not has_drift(previous, computed, settings.cost_tolerance):
        return ReconcileResult(purchase, previous, computed, corrected=False)

    _guarded_update(
        session, PurchaseRequest, "Solicitação de compra", purchase, {"total_amount": computed}
    )
    commit(session)
    session.refresh(purchase)
    logger.info(
        "Purchase request %s total corrected: %s -> %s", purchase.number, previous, computed
    )
    return ReconcileResult(purchase, previous, computed, corrected=True)


def transition_purchase_request(
    session: Session,
    purchase_id: int,
    requested: PurchaseStatus,
    *,
    actor: Optional[str],
    approval_date: Optional[date] = None,
    receiver_name: Optional[str] = None,
    invoice_number: Optional[str] = None,
    receipt_date: Optional[date] = None,
    expected_version: Optional[int] = None,
) -> PurchaseRequest:
    """
    Muda o status da compra. ``approved_by`` vem sempre de ``actor``.
    O recebimento exige recebedor, nota fiscal e data de recebimento.
    """
    purchase = get_or_raise(session, PurchaseRequest, purchase_id, "Solicitação de compra")
    updates = PURCHASE_WORKFLOW.plan(
        purchase.status,
        requested,
        {
            "approved_by": actor,
            "approval_date": approval_date,
            "receiver_name": receiver_name,
            "invoice_number": invoice_number,
            "delivery_date": receipt_date,
        },
    )
    if updates is None:
        return purchase

    previous_status = purchase.status
    _guarded_update(
        session, PurchaseRequest, "Solicitação de compra", purchase, updates, expected_version
    )
    commit(session)
    session.refresh(purchase)
    logger.info(
        "Purchase request %s: %s -> %s by %s",
        purchase.number, previous_status.value, purchase.status.value, actor,
    )
    return purchase


def purchase_detail(session: Session, purchase_id: int) -> PurchaseDetail:
    purchase = get_or_raise(session, PurchaseRequest, purchase_id, "Solicitação de compra")
    inventory = session.get(InventoryItem, purchase.inventory_id) if purchase.inventory_id else None
    computed = compute_purchase_total(purchase, inventory)
    return PurchaseDetail(
        purchase=purchase,
        inventory=inventory,
        supplier=session.get(Supplier, purchase.supplier_id) if purchase.supplier_id else None,
        service_order=(
            session.get(ServiceOrder, purchase.service_order_id)
            if purchase.service_order_id
            else None
        ),
        computed_total=computed,
        has_drift=has_drift(purchase.total_amount, computed, settings.cost_tolerance),
    )
