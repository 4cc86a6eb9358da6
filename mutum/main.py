"""
Mutum HTTP API

Thin FastAPI layer over the services. Caller identity comes from the
X-User-Id / X-User-Role headers set by the session gateway. Uploaded
objects are served from STORAGE_ROOT under STORAGE_MOUNT_PATH.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from mutum import __version__
from mutum.models import (
    Caller,
    CostProjectionResponse,
    EarningsResponse,
    Expense,
    ExpenseCreateRequest,
    FormFileUpload,
    FormResponse,
    FormSaveRequest,
    GoalCreateRequest,
    GoalView,
    HarvestSeason,
    HarvestSeasonRequest,
    HealthCheckResponse,
    MaterialInput,
    MaterialRequest,
    PayrollResponse,
    Product,
    ProductionLogRequest,
    ProductionRequest,
    ProductionRequestCreate,
    ProductionRequestUpdate,
    SectionView,
    Shipment,
    ShipmentRequest,
    Tool,
    ToolReport,
    ToolReportRequest,
    ToolRequest,
    UserCreateRequest,
    UserUpdateRequest,
    WorkerSettings,
    WorkerSettingsRequest,
)
from mutum.models.api import FilePayload
from mutum.services import (
    AuthorizationError,
    FormSession,
    MutumError,
    ValidationError,
    get_finance_service,
    get_form_service,
    get_goal_tracker,
    get_harvest_service,
    get_inventory_ledger,
    get_payroll_service,
    get_product_catalog,
    get_production_request_service,
    get_shipment_service,
    get_tool_service,
    get_user_admin_service,
)
from mutum.services.form_content import FieldPath
from mutum.services.goals import summarize
from mutum.services.payroll import format_currency, payroll_total
from mutum.utils.config import settings
from mutum.utils.database import db

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    catalog = get_product_catalog()
    if settings.REALTIME_ENABLED:
        catalog.start_watching()
    yield
    catalog.stop_watching()


app = FastAPI(title="Mutum Sanctuary API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Path(settings.STORAGE_ROOT).mkdir(parents=True, exist_ok=True)
app.mount(settings.STORAGE_MOUNT_PATH, StaticFiles(directory=settings.STORAGE_ROOT), name="storage")


@app.exception_handler(MutumError)
async def handle_service_error(request, exc: MutumError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def get_caller(
    x_user_id: Optional[UUID] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Caller:
    return Caller(user_id=x_user_id, role=x_user_role)


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin(settings.ADMIN_ROLES):
        raise AuthorizationError("Administrator role required")
    return caller


def require_member(caller: Caller = Depends(get_caller)) -> Caller:
    if caller.user_id is None:
        raise AuthorizationError("A signed-in user is required")
    return caller


def _upload(payload: Optional[FilePayload]):
    if payload is None:
        return None
    try:
        return payload.to_upload()
    except ValueError as e:
        raise ValidationError(str(e))


def _form_response(session: FormSession) -> FormResponse:
    document = session.document
    return FormResponse(
        slug=document.slug,
        status=document.status,
        editable=session.editable,
        content=session.content,
        last_submitted_at=document.last_submitted_at,
        updated_at=document.updated_at,
        sections=[
            SectionView(
                id=section.id,
                title=section.title,
                description=section.description,
                controls=session.render_section(i),
            )
            for i, section in enumerate(session.schema.sections)
        ],
        missing_required=session.missing_required(),
        message=session.message,
    )


@app.get("/", response_model=HealthCheckResponse)
def read_root():
    database = "connected"
    try:
        db.execute_query("SELECT 1 AS ok", fetch_one=True)
    except Exception as e:
        logger.warning(f"Health check could not reach the database: {e}")
        database = f"unavailable: {str(e)[:80]}"
    return HealthCheckResponse(status="ok", version=__version__, database=database)


# Forms
@app.get("/api/forms/{slug}", response_model=FormResponse)
def get_form(slug: str, caller: Caller = Depends(get_caller)):
    session = get_form_service().open(slug, caller)
    return _form_response(session)


@app.put("/api/forms/{slug}", response_model=FormResponse)
def save_form(slug: str, body: FormSaveRequest, caller: Caller = Depends(get_caller)):
    session = get_form_service().open(slug, caller)
    if body.content is not None:
        session.replace_content(body.content)
    for change in body.changes:
        session.update_field(FieldPath(change.key, parent=change.parent, index=change.index), change.value)
    session.save(finalize=body.finalize)
    return _form_response(session)


@app.post("/api/forms/{slug}/files", response_model=FormResponse)
def upload_form_file(slug: str, body: FormFileUpload, caller: Caller = Depends(get_caller)):
    """Upload a file_upload answer and save the form with its URL"""
    session = get_form_service().open(slug, caller)
    upload = _upload(body.file)
    session.upload_file(FieldPath(body.key, parent=body.parent, index=body.index), upload.filename, upload.data)
    session.save()
    return _form_response(session)


# Products and inventory
@app.get("/api/products", response_model=List[Product])
def list_products():
    return get_product_catalog().refresh()


@app.post("/api/production-logs")
def log_production(body: ProductionLogRequest, caller: Caller = Depends(get_caller)):
    return get_inventory_ledger().log_production_action(
        caller,
        body.product_id,
        body.action_type,
        body.quantity,
        description=body.description,
        image=_upload(body.image),
        expected_arrival_date=body.expected_arrival_date,
        per_variant=body.variant_quantities,
    )


@app.get("/api/shipments", response_model=List[Shipment])
def list_shipments(status: Optional[str] = None, caller: Caller = Depends(require_member)):
    return get_shipment_service().list_shipments(status)


@app.post("/api/shipments")
def create_shipment(body: ShipmentRequest, caller: Caller = Depends(get_caller)):
    return get_inventory_ledger().create_shipment(
        body.description,
        body.expected_arrival_date,
        body.items,
        voucher=_upload(body.voucher_photo),
        package=_upload(body.package_photo),
    )


@app.post("/api/shipments/{shipment_id}/received")
def receive_shipment(shipment_id: UUID, caller: Caller = Depends(require_admin)):
    get_shipment_service().mark_received(str(shipment_id))
    return {"ok": True}


@app.get("/api/production-requests", response_model=List[ProductionRequest])
def list_production_requests(status: Optional[str] = None, caller: Caller = Depends(require_member)):
    return get_production_request_service().list_requests(status)


@app.post("/api/production-requests", response_model=ProductionRequest)
def create_production_request(body: ProductionRequestCreate, caller: Caller = Depends(require_admin)):
    product = get_product_catalog().get(body.product_id)
    return get_production_request_service().create_request(str(product.id), body.quantity, body.needed_date)


@app.put("/api/production-requests/{request_id}", response_model=ProductionRequest)
def update_production_request(
    request_id: UUID, body: ProductionRequestUpdate, caller: Caller = Depends(require_member)
):
    return get_production_request_service().update_status(str(request_id), body.status.value)


# Goals
@app.get("/api/goals", response_model=List[GoalView])
def list_goals(product_id: Optional[UUID] = None):
    goals = get_goal_tracker().active_goals(str(product_id) if product_id else None)
    return [GoalView(**view) for view in summarize(goals)]


@app.post("/api/goals", response_model=GoalView)
def create_goal(body: GoalCreateRequest, caller: Caller = Depends(require_admin)):
    product = get_product_catalog().get(body.product_id)
    goal = get_goal_tracker().create_goal(product, body.name, body.deadline, body.targets)
    return GoalView(**summarize([goal])[0])


@app.post("/api/goals/{goal_id}/complete")
def complete_goal(goal_id: UUID, caller: Caller = Depends(require_admin)):
    get_goal_tracker().complete_goal(str(goal_id))
    return {"ok": True}


# Finance
@app.get("/api/payroll", response_model=PayrollResponse)
def get_payroll(
    year: Optional[int] = None,
    month: Optional[int] = Query(default=None, ge=1, le=12),
    caller: Caller = Depends(require_admin),
):
    today = date.today()
    year = year or today.year
    month = month or today.month
    workers = get_finance_service().list_workers()
    entries = get_payroll_service().compute_month(workers, year, month)
    total = payroll_total(entries)
    return PayrollResponse(
        year=year, month=month, entries=entries, total=total, total_formatted=format_currency(total)
    )


@app.put("/api/workers/{user_id}", response_model=WorkerSettings)
def update_worker(user_id: UUID, body: WorkerSettingsRequest, caller: Caller = Depends(require_admin)):
    fields = body.model_dump(exclude_none=True)
    return get_finance_service().upsert_worker_settings(str(user_id), **fields)


@app.get("/api/workers/{user_id}/earnings", response_model=EarningsResponse)
def worker_earnings(user_id: UUID, caller: Caller = Depends(require_member)):
    """Month-to-date production earnings; workers see their own, admins anyone's"""
    if caller.user_id != user_id and not caller.is_admin(settings.ADMIN_ROLES):
        raise AuthorizationError("Workers can only see their own earnings")
    today = date.today()
    earnings = get_payroll_service().worker_month_earnings(str(user_id), today=today)
    return EarningsResponse(
        user_id=user_id,
        since=today.replace(day=1),
        earnings=earnings,
        earnings_formatted=format_currency(earnings),
    )


@app.get("/api/expenses", response_model=List[Expense])
def list_expenses(caller: Caller = Depends(require_admin)):
    return get_finance_service().list_expenses()


@app.post("/api/expenses", response_model=Expense)
def add_expense(body: ExpenseCreateRequest, caller: Caller = Depends(require_admin)):
    return get_finance_service().add_expense(
        body.description,
        body.amount,
        body.category.value,
        body.date,
        recurrence=body.recurrence,
        created_by=str(caller.user_id) if caller.user_id else None,
    )


@app.delete("/api/expenses/{expense_id}")
def delete_expense(expense_id: UUID, caller: Caller = Depends(require_admin)):
    get_finance_service().delete_expense(str(expense_id))
    return {"ok": True}


@app.get("/api/expenses/projection", response_model=CostProjectionResponse)
def cost_projection(
    year: Optional[int] = None,
    month: Optional[int] = Query(default=None, ge=1, le=12),
    caller: Caller = Depends(require_admin),
):
    """Recorded expenses of the month plus fixed payroll"""
    today = date.today()
    year = year or today.year
    month = month or today.month
    finance = get_finance_service()
    total = finance.projected_monthly_cost(
        finance.list_expenses(), finance.list_workers(), month=month, year=year
    )
    return CostProjectionResponse(year=year, month=month, total=total, total_formatted=format_currency(total))


# Tools
@app.get("/api/tools", response_model=List[Tool])
def list_tools(status: Optional[str] = None, caller: Caller = Depends(require_member)):
    return get_tool_service().list_tools(status)


@app.post("/api/tools", response_model=Tool)
def add_tool(body: ToolRequest, caller: Caller = Depends(require_admin)):
    fields = body.model_dump(exclude_none=True)
    name = fields.pop("name", None)
    if not name:
        raise ValidationError("Tool name is required")
    return get_tool_service().add_tool(name, **fields)


@app.put("/api/tools/{tool_id}", response_model=Tool)
def update_tool(tool_id: UUID, body: ToolRequest, caller: Caller = Depends(require_admin)):
    return get_tool_service().update_tool(str(tool_id), **body.model_dump(exclude_none=True))


@app.get("/api/tool-reports", response_model=List[ToolReport])
def list_tool_reports(
    status: Optional[str] = None, tool_id: Optional[UUID] = None, caller: Caller = Depends(require_member)
):
    return get_tool_service().list_reports(status, str(tool_id) if tool_id else None)


@app.post("/api/tools/{tool_id}/reports", response_model=ToolReport)
def report_tool_problem(tool_id: UUID, body: ToolReportRequest, caller: Caller = Depends(require_member)):
    return get_tool_service().report_problem(
        caller,
        str(tool_id),
        body.description,
        priority=body.priority.value,
        photos=[_upload(photo) for photo in body.photos],
        photo_urls=body.photo_urls,
    )


@app.post("/api/tool-reports/{report_id}/resolve")
def resolve_tool_report(report_id: UUID, caller: Caller = Depends(require_admin)):
    get_tool_service().resolve_report(str(report_id))
    return {"ok": True}


# Materials and harvest
@app.get("/api/materials", response_model=List[MaterialInput])
def list_materials(caller: Caller = Depends(require_member)):
    return get_harvest_service().list_materials()


@app.post("/api/materials", response_model=MaterialInput)
def add_material(body: MaterialRequest, caller: Caller = Depends(require_admin)):
    if not body.name or not body.unit:
        raise ValidationError("Material name and unit are required")
    fields = body.model_dump(exclude_none=True)
    return get_harvest_service().add_material(**fields)


@app.put("/api/materials/{material_id}", response_model=MaterialInput)
def update_material(material_id: UUID, body: MaterialRequest, caller: Caller = Depends(require_admin)):
    return get_harvest_service().update_material(str(material_id), **body.model_dump(exclude_none=True))


@app.get("/api/harvest-seasons", response_model=List[HarvestSeason])
def list_harvest_seasons(month: Optional[int] = Query(default=None, ge=1, le=12)):
    service = get_harvest_service()
    if month is not None:
        return service.seasons_in(month)
    return service.list_seasons()


@app.post("/api/harvest-seasons", response_model=HarvestSeason)
def add_harvest_season(body: HarvestSeasonRequest, caller: Caller = Depends(require_admin)):
    return get_harvest_service().add_season(
        str(body.product_id),
        body.start_month,
        body.end_month,
        moon_phase_preference=body.moon_phase_preference,
        description=body.description,
    )


# User administration
@app.post("/api/admin/users")
def create_user(body: UserCreateRequest, caller: Caller = Depends(get_caller)):
    return get_user_admin_service().create_user(
        caller, body.email, body.password, body.role, body.full_name
    )


@app.put("/api/admin/users/{user_id}")
def update_user(user_id: UUID, body: UserUpdateRequest, caller: Caller = Depends(get_caller)):
    return get_user_admin_service().update_user(caller, str(user_id), **body.model_dump(exclude_none=True))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
