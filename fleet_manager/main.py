from fastapi import FastAPI, Request, Form, Depends
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from sqlmodel import Session, select
from typing import Annotated, Optional
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
import html
import json
import logging
import urllib.parse

from fleet_manager import reports, services, summary
from fleet_manager.config import settings
from fleet_manager.database import create_db_and_tables, get_session
from fleet_manager.exceptions import (
    ConcurrencyConflictError,
    FleetError,
    IllegalTransitionError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from fleet_manager.logging_config import configure_logging
from fleet_manager.models import (
    Cost,
    Driver,
    DriverStatus,
    InventoryItem,
    Maintenance,
    MaintenanceType,
    Priority,
    PurchaseRequest,
    PurchaseStatus,
    ServiceOrder,
    ServiceOrderStatus,
    ServiceOrderType,
    Supplier,
    Vehicle,
    VehicleStatus,
)
from fleet_manager.stock import ReplenishmentRequest, inventory_level
from fleet_manager.workflow import PURCHASE_WORKFLOW, SERVICE_ORDER_WORKFLOW

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Fleet Manager")
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

ERROR_STATUS = (
    (ValidationError, 422),
    (IllegalTransitionError, 409),
    (ConcurrencyConflictError, 409),
    (NotFoundError, 404),
    (StoreError, 503),
)

SessionDep = Annotated[Session, Depends(get_session)]


def get_actor(request: Request) -> Optional[str]:
    """Usuário autenticado, informado pelo proxy de autenticação."""
    return request.headers.get(settings.actor_header)


Actor = Annotated[Optional[str], Depends(get_actor)]


@app.on_event("startup")
def on_startup():
    create_db_and_tables()


def wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("accept", "")


@app.exception_handler(FleetError)
async def fleet_error_handler(request: Request, exc: FleetError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 400)
    detail = exc.message
    if isinstance(exc, StoreError):
        detail = "A operação falhou. Tente novamente."
    logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)

    if wants_json(request):
        return JSONResponse(
            status_code=status_code,
            content={"code": exc.code, "detail": detail, "field": getattr(exc, "field", None)},
        )
    if request.headers.get("HX-Request"):
        return HTMLResponse(
            f"""<div class="alert alert-danger" data-error-code="{exc.code}">
                <i class="bi bi-x-circle"></i> {html.escape(detail)}
            </div>""",
            status_code=status_code,
        )
    if request.method == "GET":
        return templates.TemplateResponse(
            request, "error.html", {"code": exc.code, "detail": detail}, status_code=status_code
        )
    # Formulário comum: alerta e volta para a página anterior
    message = json.dumps(f"Erro: {detail}", ensure_ascii=False).replace("</", "<\\/")
    return HTMLResponse(
        f"""<script>
            alert({message});
            window.history.back();
        </script>""",
        status_code=status_code,
    )


@app.get("/", response_class=HTMLResponse)
async def read_root(request: Request, session: SessionDep):
    return templates.TemplateResponse(request, "index.html", {"stats": reports.dashboard_stats(session)})

# --- Rotas de Estoque ---
@app.get("/inventory", response_class=HTMLResponse)
async def read_inventory(
    request: Request,
    session: SessionDep,
    search: str = "",
):
    query = select(InventoryItem)

    if search:
        query = query.where(
            (InventoryItem.name.ilike(f"%{search}%")) |
            (InventoryItem.category.ilike(f"%{search}%")) |
            (InventoryItem.code.ilike(f"%{search}%")) |
            (InventoryItem.manufacturer_code.ilike(f"%{search}%"))
        )

    items = session.exec(query.order_by(InventoryItem.name)).all()
    context = {"items": items, "levels": {item.id: inventory_level(item.quantity, item.min_quantity) for item in items}}

    if request.headers.get("HX-Request"):
        return templates.TemplateResponse(request, "partials/inventory_rows.html", context)

    context.update(search=search, total_value=reports.inventory_value(items), suppliers=session.exec(select(Supplier)).all())
    return templates.TemplateResponse(request, "inventory.html", context)

@app.post("/inventory/add")
async def add_item(
    session: SessionDep,
    name: Annotated[str, Form()],
    unit: Annotated[str, Form()] = "un",
    quantity: Annotated[Decimal, Form()] = Decimal("0"),
    category: Annotated[Optional[str], Form()] = None,
    code: Annotated[Optional[str], Form()] = None,
    manufacturer_code: Annotated[Optional[str], Form()] = None,
    unit_cost: Annotated[Optional[Decimal], Form()] = None,
    min_quantity: Annotated[Optional[Decimal], Form()] = None,
    max_quantity: Annotated[Optional[Decimal], Form()] = None,
    location: Annotated[Optional[str], Form()] = None,
    supplier_id: Annotated[Optional[int], Form()] = None,
):
    if quantity < 0:
        raise ValidationError("quantity", "Quantidade não pode ser negativa")
    new_item = InventoryItem(
        name=name, unit=unit, quantity=quantity, category=category, code=code,
        manufacturer_code=manufacturer_code, unit_cost=unit_cost,
        min_quantity=min_quantity, max_quantity=max_quantity,
        location=location, supplier_id=supplier_id,
    )
    session.add(new_item)
    services.commit(session)
    return RedirectResponse(url="/inventory", status_code=303)

@app.get("/inventory/{item_id}/edit", response_class=HTMLResponse)
async def edit_item_row(request: Request, item_id: int, session: SessionDep):
    item = services.get_or_raise(session, InventoryItem, item_id, "Peça")
    return templates.TemplateResponse(request, "partials/inventory_edit_row.html", {"item": item})

@app.get("/inventory/{item_id}", response_class=HTMLResponse)
async def get_item_row(request: Request, item_id: int, session: SessionDep):
    item = services.get_or_raise(session, InventoryItem, item_id, "Peça")
    # Reusa o partial de linhas, passando uma lista com 1 item
    return templates.TemplateResponse(
        request, "partials/inventory_rows.html",
        {"items": [item], "levels": {item.id: inventory_level(item.quantity, item.min_quantity)}},
    )

@app.put("/inventory/{item_id}", response_class=HTMLResponse)
async def update_item(
    request: Request,
    item_id: int,
    session: SessionDep,
    name: Annotated[str, Form()],
    quantity: Annotated[Decimal, Form()],
    category: Annotated[Optional[str], Form()] = None,
    unit_cost: Annotated[Optional[Decimal], Form()] = None,
    min_quantity: Annotated[Optional[Decimal], Form()] = None,
    location: Annotated[Optional[str], Form()] = None,
):
    item = services.get_or_raise(session, InventoryItem, item_id, "Peça")
    if quantity < 0:
        raise ValidationError("quantity", "Quantidade não pode ser negativa")

    item.name = name
    item.category = category
    item.quantity = quantity
    item.unit_cost = unit_cost
    item.min_quantity = min_quantity
    item.location = location
    item.updated_at = datetime.now()

    session.add(item)
    services.commit(session)
    session.refresh(item)

    return templates.TemplateResponse(
        request, "partials/inventory_rows.html",
        {"items": [item], "levels": {item.id: inventory_level(item.quantity, item.min_quantity)}},
    )

@app.delete("/inventory/{item_id}")
async def delete_item(item_id: int, session: SessionDep):
    item = services.get_or_raise(session, InventoryItem, item_id, "Peça")
    session.delete(item)
    services.commit(session)
    return Response(status_code=200)

# --- Rotas de Veículos ---
def _check_vehicle(year: int, mileage: int) -> None:
    if not 1900 <= year <= 2100:
        raise ValidationError("year", "Ano inválido")
    if mileage < 0:
        raise ValidationError("mileage", "Quilometragem deve ser maior ou igual a 0")

@app.get("/vehicles", response_class=HTMLResponse)
async def read_vehicles(request: Request, session: SessionDep):
    vehicles = session.exec(select(Vehicle).order_by(Vehicle.plate)).all()
    return templates.TemplateResponse(request, "vehicles.html", {"vehicles": vehicles})

@app.post("/vehicles/add")
async def add_vehicle(
    session: SessionDep,
    plate: Annotated[str, Form()],
    brand: Annotated[str, Form()],
    model: Annotated[str, Form()],
    year: Annotated[int, Form()],
    fuel_type: Annotated[str, Form()],
    mileage: Annotated[int, Form()] = 0,
    color: Annotated[Optional[str], Form()] = None,
    category: Annotated[Optional[str], Form()] = None,
):
    plate = plate.strip().upper()
    _check_vehicle(year, mileage)
    services.ensure_unique(session, Vehicle, "plate", plate, "Placa")
    vehicle = Vehicle(
        plate=plate, brand=brand, model=model, year=year,
        fuel_type=fuel_type, mileage=mileage, color=color, category=category,
    )
    session.add(vehicle)
    services.commit(session)
    return RedirectResponse(url="/vehicles", status_code=303)

@app.get("/vehicles/{vehicle_id}", response_class=HTMLResponse)
async def read_vehicle(vehicle_id: int, request: Request, session: SessionDep):
    vehicle = services.get_or_raise(session, Vehicle, vehicle_id, "Veículo")
    orders = session.exec(
        select(ServiceOrder).where(ServiceOrder.vehicle_id == vehicle_id).order_by(ServiceOrder.id.desc())
    ).all()
    maintenances = session.exec(
        select(Maintenance).where(Maintenance.vehicle_id == vehicle_id).order_by(Maintenance.start_date.desc())
    ).all()
    return templates.TemplateResponse(request, "vehicle_detail.html", {
        "vehicle": vehicle,
        "orders": orders,
        "maintenances": maintenances,
        "statuses": list(VehicleStatus),
    })

@app.post("/vehicles/{vehicle_id}/edit")
async def edit_vehicle(
    vehicle_id: int,
    session: SessionDep,
    plate: Annotated[str, Form()],
    brand: Annotated[str, Form()],
    model: Annotated[str, Form()],
    year: Annotated[int, Form()],
    fuel_type: Annotated[str, Form()],
    status: Annotated[VehicleStatus, Form()],
    mileage: Annotated[int, Form()] = 0,
    color: Annotated[Optional[str], Form()] = None,
    category: Annotated[Optional[str], Form()] = None,
):
    vehicle = services.get_or_raise(session, Vehicle, vehicle_id, "Veículo")
    plate = plate.strip().upper()
    _check_vehicle(year, mileage)
    services.ensure_unique(session, Vehicle, "plate", plate, "Placa", exclude_id=vehicle_id)

    vehicle.plate = plate
    vehicle.brand = brand
    vehicle.model = model
    vehicle.year = year
    vehicle.fuel_type = fuel_type
    vehicle.status = status
    vehicle.mileage = mileage
    vehicle.color = color
    vehicle.category = category
    vehicle.updated_at = datetime.now()

    session.add(vehicle)
    services.commit(session)
    return RedirectResponse(url=f"/vehicles/{vehicle_id}", status_code=303)

# --- Rotas de Motoristas ---
@app.get("/drivers", response_class=HTMLResponse)
async def read_drivers(request: Request, session: SessionDep):
    drivers = session.exec(select(Driver).order_by(Driver.name)).all()
    return templates.TemplateResponse(request, "drivers.html", {"drivers": drivers})

@app.post("/drivers/add")
async def add_driver(
    session: SessionDep,
    name: Annotated[str, Form()],
    cpf: Annotated[str, Form()],
    cnh: Annotated[str, Form()],
    cnh_category: Annotated[str, Form()],
    cnh_expiry: Annotated[date, Form()],
    phone: Annotated[Optional[str], Form()] = None,
    email: Annotated[Optional[str], Form()] = None,
):
    cpf, cnh = cpf.strip(), cnh.strip()
    services.ensure_unique(session, Driver, "cpf", cpf, "CPF")
    services.ensure_unique(session, Driver, "cnh", cnh, "CNH")
    driver = Driver(
        name=name, cpf=cpf, cnh=cnh, cnh_category=cnh_category,
        cnh_expiry=cnh_expiry, phone=phone, email=email,
    )
    session.add(driver)
    services.commit(session)
    return RedirectResponse(url="/drivers", status_code=303)

@app.get("/drivers/{driver_id}", response_class=HTMLResponse)
async def read_driver(driver_id: int, request: Request, session: SessionDep):
    driver = services.get_or_raise(session, Driver, driver_id, "Motorista")
    return templates.TemplateResponse(request, "driver_detail.html", {
        "driver": driver, "statuses": list(DriverStatus), "today": date.today(),
    })

@app.post("/drivers/{driver_id}/edit")
async def edit_driver(
    driver_id: int,
    session: SessionDep,
    name: Annotated[str, Form()],
    cpf: Annotated[str, Form()],
    cnh: Annotated[str, Form()],
    cnh_category: Annotated[str, Form()],
    cnh_expiry: Annotated[date, Form()],
    status: Annotated[DriverStatus, Form()],
    phone: Annotated[Optional[str], Form()] = None,
    email: Annotated[Optional[str], Form()] = None,
):
    driver = services.get_or_raise(session, Driver, driver_id, "Motorista")
    cpf, cnh = cpf.strip(), cnh.strip()
    services.ensure_unique(session, Driver, "cpf", cpf, "CPF", exclude_id=driver_id)
    services.ensure_unique(session, Driver, "cnh", cnh, "CNH", exclude_id=driver_id)

    driver.name = name
    driver.cpf = cpf
    driver.cnh = cnh
    driver.cnh_category = cnh_category
    driver.cnh_expiry = cnh_expiry
    driver.status = status
    driver.phone = phone
    driver.email = email
    driver.updated_at = datetime.now()

    session.add(driver)
    services.commit(session)
    return RedirectResponse(url=f"/drivers/{driver_id}", status_code=303)

# --- Rotas de Fornecedores ---
@app.get("/suppliers", response_class=HTMLResponse)
async def read_suppliers(request: Request, session: SessionDep):
    suppliers = session.exec(select(Supplier).order_by(Supplier.name)).all()
    return templates.TemplateResponse(request, "suppliers.html", {"suppliers": suppliers})

@app.post("/suppliers/add")
async def add_supplier(
    session: SessionDep,
    name: Annotated[str, Form()],
    cnpj: Annotated[Optional[str], Form()] = None,
    phone: Annotated[Optional[str], Form()] = None,
    email: Annotated[Optional[str], Form()] = None,
    contact_person: Annotated[Optional[str], Form()] = None,
    category: Annotated[Optional[str], Form()] = None,
    payment_terms: Annotated[Optional[str], Form()] = None,
    delivery_days: Annotated[Optional[int], Form()] = None,
):
    services.ensure_unique(session, Supplier, "cnpj", cnpj, "CNPJ")
    supplier = Supplier(
        name=name, cnpj=cnpj, phone=phone, email=email, contact_person=contact_person,
        category=category, payment_terms=payment_terms, delivery_days=delivery_days,
    )
    session.add(supplier)
    services.commit(session)
    return RedirectResponse(url="/suppliers", status_code=303)

@app.get("/suppliers/{supplier_id}", response_class=HTMLResponse)
async def read_supplier(supplier_id: int, request: Request, session: SessionDep):
    supplier = services.get_or_raise(session, Supplier, supplier_id, "Fornecedor")
    items = session.exec(
        select(InventoryItem).where(InventoryItem.supplier_id == supplier_id).order_by(InventoryItem.name)
    ).all()
    return templates.TemplateResponse(request, "supplier_detail.html", {"supplier": supplier, "items": items})

@app.post("/suppliers/{supplier_id}/edit")
async def edit_supplier(
    supplier_id: int,
    session: SessionDep,
    name: Annotated[str, Form()],
    cnpj: Annotated[Optional[str], Form()] = None,
    phone: Annotated[Optional[str], Form()] = None,
    email: Annotated[Optional[str], Form()] = None,
    contact_person: Annotated[Optional[str], Form()] = None,
    category: Annotated[Optional[str], Form()] = None,
    payment_terms: Annotated[Optional[str], Form()] = None,
    delivery_days: Annotated[Optional[int], Form()] = None,
    is_active: Annotated[bool, Form()] = False,  # checkbox desmarcado não é enviado
):
    supplier = services.get_or_raise(session, Supplier, supplier_id, "Fornecedor")
    services.ensure_unique(session, Supplier, "cnpj", cnpj, "CNPJ", exclude_id=supplier_id)

    supplier.name = name
    supplier.cnpj = cnpj
    supplier.phone = phone
    supplier.email = email
    supplier.contact_person = contact_person
    supplier.category = category
    supplier.payment_terms = payment_terms
    supplier.delivery_days = delivery_days
    supplier.is_active = is_active
    supplier.updated_at = datetime.now()

    session.add(supplier)
    services.commit(session)
    return RedirectResponse(url=f"/suppliers/{supplier_id}", status_code=303)

# --- Rotas de Manutenções e Custos ---
@app.get("/maintenances", response_class=HTMLResponse)
async def read_maintenances(request: Request, session: SessionDep):
    results = session.exec(
        select(Maintenance, Vehicle)
        .where(Maintenance.vehicle_id == Vehicle.id)
        .order_by(Maintenance.start_date.desc())
    ).all()
    maintenances = [{"maintenance": r[0], "vehicle": r[1]} for r in results]
    vehicles = session.exec(select(Vehicle)).all()
    return templates.TemplateResponse(
        request, "maintenances.html",
        {"maintenances": maintenances, "vehicles": vehicles, "types": list(MaintenanceType)},
    )

@app.post("/maintenances/add")
async def add_maintenance(
    session: SessionDep,
    vehicle_id: Annotated[int, Form()],
    type: Annotated[MaintenanceType, Form()],
    description: Annotated[str, Form()],
    start_date: Annotated[datetime, Form()],
    mileage: Annotated[int, Form()] = 0,
    cost: Annotated[Optional[Decimal], Form()] = None,
    end_date: Annotated[Optional[datetime], Form()] = None,
    mechanic: Annotated[Optional[str], Form()] = None,
    provider: Annotated[Optional[str], Form()] = None,
):
    services.get_or_raise(session, Vehicle, vehicle_id, "Veículo")
    maintenance = Maintenance(
        vehicle_id=vehicle_id, type=type, description=description, start_date=start_date,
        mileage=mileage, cost=cost, end_date=end_date, mechanic=mechanic, provider=provider,
    )
    session.add(maintenance)
    services.commit(session)
    return RedirectResponse(url="/maintenances", status_code=303)

@app.get("/costs", response_class=HTMLResponse)
async def read_costs(request: Request, session: SessionDep, vehicle_id: Optional[int] = None):
    report = reports.cost_report(session, vehicle_id)
    vehicles = session.exec(select(Vehicle)).all()
    return templates.TemplateResponse(request, "costs.html", {"report": report, "vehicles": vehicles})

@app.post("/costs/add")
async def add_cost(
    session: SessionDep,
    category: Annotated[str, Form()],
    description: Annotated[str, Form()],
    amount: Annotated[Decimal, Form()],
    cost_date: Annotated[Optional[datetime], Form()] = None,
    vehicle_id: Annotated[Optional[int], Form()] = None,
):
    if amount < 0:
        raise ValidationError("amount", "Valor não pode ser negativo")
    cost = Cost(
        category=category, description=description, amount=amount,
        cost_date=cost_date or datetime.now(), vehicle_id=vehicle_id,
    )
    session.add(cost)
    services.commit(session)
    return RedirectResponse(url="/costs", status_code=303)

# --- Rotas de OS ---
@app.get("/service-orders", response_class=HTMLResponse)
async def read_service_orders(request: Request, session: SessionDep, status: Optional[ServiceOrderStatus] = None):
    query = select(ServiceOrder, Vehicle).where(ServiceOrder.vehicle_id == Vehicle.id)
    if status is not None:
        query = query.where(ServiceOrder.status == status)
    results = session.exec(query.order_by(ServiceOrder.id.desc())).all()
    orders = [{"order": r[0], "vehicle": r[1]} for r in results]
    return templates.TemplateResponse(request, "service_orders.html", {
        "orders": orders,
        "vehicles": session.exec(select(Vehicle)).all(),
        "drivers": session.exec(select(Driver)).all(),
        "types": list(ServiceOrderType),
        "priorities": list(Priority),
    })

@app.post("/service-orders/create")
async def create_service_order(
    session: SessionDep,
    vehicle_id: Annotated[int, Form()],
    description: Annotated[str, Form()],
    type: Annotated[ServiceOrderType, Form()] = ServiceOrderType.CORRECTIVE,
    priority: Annotated[Priority, Form()] = Priority.MEDIUM,
    current_mileage: Annotated[Optional[Decimal], Form()] = None,
    mechanic: Annotated[Optional[str], Form()] = None,
    scheduled_date: Annotated[Optional[datetime], Form()] = None,
    driver_id: Annotated[Optional[int], Form()] = None,
):
    order = services.create_service_order(
        session, vehicle_id=vehicle_id, description=description, type=type,
        priority=priority, current_mileage=current_mileage, mechanic=mechanic,
        scheduled_date=scheduled_date, driver_id=driver_id,
    )
    return RedirectResponse(url=f"/service-orders/{order.id}", status_code=303)

@app.get("/service-orders/{order_id}", response_class=HTMLResponse)
async def read_service_order(order_id: int, request: Request, session: SessionDep):
    detail = services.service_order_detail(session, order_id)
    inventory = session.exec(select(InventoryItem).order_by(InventoryItem.name)).all()
    return templates.TemplateResponse(request, "service_order_detail.html", {
        "detail": detail,
        "inventory": inventory,
        "next_statuses": sorted(SERVICE_ORDER_WORKFLOW.allowed_targets(detail.order.status), key=lambda s: s.value),
        "types": list(ServiceOrderType),
        "priorities": list(Priority),
    })

@app.post("/service-orders/{order_id}/edit")
async def edit_service_order(
    order_id: int,
    session: SessionDep,
    description: Annotated[str, Form()],
    type: Annotated[ServiceOrderType, Form()],
    priority: Annotated[Priority, Form()],
    mechanic: Annotated[Optional[str], Form()] = None,
    current_mileage: Annotated[Optional[Decimal], Form()] = None,
    scheduled_date: Annotated[Optional[datetime], Form()] = None,
    version: Annotated[Optional[int], Form()] = None,
):
    services.update_service_order(
        session, order_id, description=description, type=type, priority=priority,
        mechanic=mechanic, current_mileage=current_mileage,
        scheduled_date=scheduled_date, expected_version=version,
    )
    return RedirectResponse(url=f"/service-orders/{order_id}", status_code=303)

def _open_purchase_form(request: ReplenishmentRequest) -> RedirectResponse:
    params = {"inventory_id": request.inventory_id, "quantity": str(request.quantity)}
    if request.service_order_id is not None:
        params["service_order_id"] = request.service_order_id
    query = urllib.parse.urlencode(params)
    return RedirectResponse(url=f"/purchases/new?{query}", status_code=303)

@app.post("/service-orders/{order_id}/items")
async def add_service_order_item(
    order_id: int,
    session: SessionDep,
    inventory_id: Annotated[int, Form()],
    required_quantity: Annotated[Decimal, Form()],
):
    # Peça zerada: não cria o item e abre o formulário de compra pré-preenchido
    result = services.add_service_order_item(
        session, order_id, inventory_id=inventory_id,
        required_quantity=required_quantity, on_out_of_stock=_open_purchase_form,
    )
    if not result.created:
        return result.callback_result
    return RedirectResponse(url=f"/service-orders/{order_id}", status_code=303)

@app.post("/service-orders/{order_id}/reconcile")
async def reconcile_service_order(order_id: int, session: SessionDep):
    services.reconcile_service_order(session, order_id)
    return RedirectResponse(url=f"/service-orders/{order_id}", status_code=303)

@app.post("/service-orders/{order_id}/status")
async def update_service_order_status(
    order_id: int,
    session: SessionDep,
    actor: Actor,
    status: Annotated[ServiceOrderStatus, Form()],
    validation_date: Annotated[Optional[date], Form()] = None,
    version: Annotated[Optional[int], Form()] = None,
):
    services.transition_service_order(
        session, order_id, status, actor=actor,
        validation_date=validation_date, expected_version=version,
    )
    return RedirectResponse(url=f"/service-orders/{order_id}", status_code=303)

@app.delete("/service-orders/{order_id}")
async def delete_service_order(order_id: int, session: SessionDep):
    services.delete_service_order(session, order_id)
    return Response(status_code=200)  # HTMX remove a linha da tabela

@app.get("/service-orders/{order_id}/print", response_class=HTMLResponse)
async def print_service_order(order_id: int, request: Request, session: SessionDep):
    """Rota simplificada apenas para impressão"""
    detail = services.service_order_snapshot(session, order_id)
    return templates.TemplateResponse(request, "print_service_order.html", {"detail": detail, "now": datetime.now()})

# --- IA ---
@app.post("/service-orders/{order_id}/summary")
async def generate_summary(order_id: int, session: SessionDep):
    detail = services.service_order_detail(session, order_id)

    if not detail.items:
        return HTMLResponse("""
        <div class="alert alert-warning">
            <i class="bi bi-exclamation-triangle"></i>
            Adicione peças à OS antes de gerar o resumo.
        </div>
        """)

    try:
        return HTMLResponse(summary.generate_summary(detail))
    except Exception as e:
        logger.exception("Summary generation failed for service order %s", order_id)
        return HTMLResponse(f"<span class='text-danger'>Erro IA: {str(e)}</span>")

# --- Rotas de Compras ---
@app.get("/purchases", response_class=HTMLResponse)
async def read_purchases(request: Request, session: SessionDep, status: Optional[PurchaseStatus] = None):
    query = select(PurchaseRequest, InventoryItem).join(
        InventoryItem, PurchaseRequest.inventory_id == InventoryItem.id, isouter=True
    )
    if status is not None:
        query = query.where(PurchaseRequest.status == status)
    results = session.exec(query.order_by(PurchaseRequest.id.desc())).all()
    purchases = [{"purchase": r[0], "inventory": r[1]} for r in results]
    return templates.TemplateResponse(request, "purchases.html", {"purchases": purchases, "status": status})

@app.get("/purchases/new", response_class=HTMLResponse)
async def new_purchase_form(
    request: Request,
    session: SessionDep,
    inventory_id: Optional[int] = None,
    quantity: Optional[Decimal] = None,
    service_order_id: Optional[int] = None,
):
    return templates.TemplateResponse(request, "purchase_form.html", {
        "inventory": session.exec(select(InventoryItem).order_by(InventoryItem.name)).all(),
        "suppliers": session.exec(select(Supplier).where(Supplier.is_active == True)).all(),  # noqa: E712
        "urgencies": list(Priority),
        "prefill": {"inventory_id": inventory_id, "quantity": quantity, "service_order_id": service_order_id},
    })

@app.post("/purchases/create")
async def create_purchase(
    session: SessionDep,
    inventory_id: Annotated[int, Form()],
    quantity: Annotated[Decimal, Form()],
    urgency: Annotated[Priority, Form()] = Priority.MEDIUM,
    service_order_id: Annotated[Optional[int], Form()] = None,
    supplier_id: Annotated[Optional[int], Form()] = None,
    notes: Annotated[Optional[str], Form()] = None,
    total_override: Annotated[Optional[Decimal], Form()] = None,
):
    purchase = services.create_purchase_request(
        session, inventory_id=inventory_id, quantity=quantity, urgency=urgency,
        service_order_id=service_order_id, supplier_id=supplier_id,
        notes=notes, total_override=total_override,
    )
    if service_order_id is not None:
        return RedirectResponse(url=f"/service-orders/{service_order_id}", status_code=303)
    return RedirectResponse(url=f"/purchases/{purchase.id}", status_code=303)

@app.get("/purchases/{purchase_id}", response_class=HTMLResponse)
async def read_purchase(purchase_id: int, request: Request, session: SessionDep):
    detail = services.purchase_detail(session, purchase_id)
    return templates.TemplateResponse(request, "purchase_detail.html", {
        "detail": detail,
        "next_statuses": sorted(PURCHASE_WORKFLOW.allowed_targets(detail.purchase.status), key=lambda s: s.value),
        "inventory": session.exec(select(InventoryItem).order_by(InventoryItem.name)).all(),
        "urgencies": list(Priority),
    })

@app.post("/purchases/{purchase_id}/edit")
async def edit_purchase(
    purchase_id: int,
    session: SessionDep,
    inventory_id: Annotated[int, Form()],
    quantity: Annotated[Decimal, Form()],
    urgency: Annotated[Priority, Form()],
    supplier_id: Annotated[Optional[int], Form()] = None,
    notes: Annotated[Optional[str], Form()] = None,
    total_override: Annotated[Optional[Decimal], Form()] = None,
    version: Annotated[Optional[int], Form()] = None,
):
    services.update_purchase_request(
        session, purchase_id, inventory_id=inventory_id, quantity=quantity,
        urgency=urgency, supplier_id=supplier_id, notes=notes,
        total_override=total_override, expected_version=version,
    )
    return RedirectResponse(url=f"/purchases/{purchase_id}", status_code=303)

@app.post("/purchases/{purchase_id}/reconcile")
async def reconcile_purchase(purchase_id: int, session: SessionDep):
    services.reconcile_purchase_request(session, purchase_id)
    return RedirectResponse(url=f"/purchases/{purchase_id}", status_code=303)

@app.post("/purchases/{purchase_id}/status")
async def update_purchase_status(
    purchase_id: int,
    session: SessionDep,
    actor: Actor,
    status: Annotated[PurchaseStatus, Form()],
    approval_date: Annotated[Optional[date], Form()] = None,
    receiver_name: Annotated[Optional[str], Form()] = None,
    invoice_number: Annotated[Optional[str], Form()] = None,
    receipt_date: Annotated[Optional[date], Form()] = None,
    version: Annotated[Optional[int], Form()] = None,
):
    # approved_by vem do usuário autenticado, nunca do formulário
    services.transition_purchase_request(
        session, purchase_id, status, actor=actor, approval_date=approval_date,
        receiver_name=receiver_name, invoice_number=invoice_number,
        receipt_date=receipt_date, expected_version=version,
    )
    return RedirectResponse(url=f"/purchases/{purchase_id}", status_code=303)
