"""
Domain Models - Pydantic models for sanctuary business entities.

These models represent the rows of the hosted store (products, production
logs, goals, shipments, payroll configuration, expenses, profiles, tools,
materials, harvest seasons) and are used for validation and serialization
when reading and writing them.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, field_validator


TOTAL_VARIANT = "Total"


# ============================================================================
# Enums
# ============================================================================

class PaymentType(str, Enum):
    """How a worker is paid."""
    FIXED = "fixed"
    PRODUCTION = "production"
    MIXED = "mixed"

    @property
    def includes_fixed(self) -> bool:
        return self in (PaymentType.FIXED, PaymentType.MIXED)

    @property
    def includes_production(self) -> bool:
        return self in (PaymentType.PRODUCTION, PaymentType.MIXED)


class ActionType(str, Enum):
    """Kinds of production log events."""
    PRODUCED = "produced"
    SENT = "sent"
    PROBLEM = "problem"


class GoalStatus(str, Enum):
    """Status values for production goals."""
    PENDING = "pending"
    COMPLETED = "completed"


class ShipmentStatus(str, Enum):
    """Status values for shipments."""
    PENDING = "pending"
    RECEIVED = "received"


class RequestStatus(str, Enum):
    """Status values for production requests."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DONE = "done"


class ExpenseCategory(str, Enum):
    """Expense buckets used by the cost dashboard."""
    RAW_MATERIAL = "raw_material"
    LOGISTICS = "logistics"
    FIXED = "fixed"
    MARKETING = "marketing"
    OTHER = "other"


class ToolStatus(str, Enum):
    """Where a tool currently is."""
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"
    LOST = "lost"
    NEEDED = "needed"


class ReportPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReportStatus(str, Enum):
    """Status values for tool problem reports."""
    PENDING = "pending"
    RESOLVED = "resolved"


# ============================================================================
# Domain Models
# ============================================================================

class Profile(BaseModel):
    """Canonical user profile from the profiles table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    spirit_name: Optional[str] = None
    squads: List[str] = Field(default_factory=list)

    @field_validator("squads", mode="before")
    @classmethod
    def _squads_default(cls, value):
        return value or []


class VariationData(BaseModel):
    sizes: List[str] = Field(default_factory=list)


class Product(BaseModel):
    """Product entity from the products table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    technical_name: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    stock_quantity: int = Field(default=0, ge=0)
    monthly_production_goal: int = Field(default=0, ge=0)
    variation_data: VariationData = Field(default_factory=VariationData)
    is_visible: bool = True

    @field_validator("images", mode="before")
    @classmethod
    def _images_default(cls, value):
        return value or []

    @field_validator("variation_data", mode="before")
    @classmethod
    def _variation_default(cls, value):
        return value or {}

    @property
    def sizes(self) -> List[str]:
        return list(self.variation_data.sizes)


class WorkerSettings(BaseModel):
    """Payroll configuration from the worker_settings table."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    payment_type: PaymentType
    fixed_salary: Decimal = Field(default=Decimal("0"), ge=0)
    production_rate: Decimal = Field(default=Decimal("0"), ge=0)
    payment_date: Optional[date] = None
    active: bool = True
    # Joined from profiles
    full_name: Optional[str] = None
    role: Optional[str] = None

    @field_validator("fixed_salary", "production_rate", mode="before")
    @classmethod
    def _money_default(cls, value):
        return Decimal("0") if value is None else value


class ProductionLogEntry(BaseModel):
    """Immutable event from the production_logs table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    user_id: UUID
    action_type: ActionType
    quantity: int = Field(default=0, ge=0)
    unit_labor_cost: Decimal = Decimal("0")
    created_at: datetime
    description: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("unit_labor_cost", mode="before")
    @classmethod
    def _cost_default(cls, value):
        return Decimal("0") if value is None else value


class ProductionGoal(BaseModel):
    """Named production target from the production_goals table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    name: str
    deadline: Optional[date] = None
    targets: Dict[str, int] = Field(default_factory=dict)
    current_progress: Dict[str, int] = Field(default_factory=dict)
    status: GoalStatus = GoalStatus.PENDING

    @field_validator("targets", "current_progress", mode="before")
    @classmethod
    def _mapping_default(cls, value):
        return value or {}


class ShipmentItem(BaseModel):
    product_id: UUID
    quantity: int = Field(..., ge=1)


class Shipment(BaseModel):
    """Shipment from the shipments table, with its shipment_items rows."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    description: Optional[str] = None
    voucher_photo_url: Optional[str] = None
    package_photo_url: Optional[str] = None
    expected_arrival_date: Optional[date] = None
    status: ShipmentStatus = ShipmentStatus.PENDING
    items: List[ShipmentItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ProductionRequest(BaseModel):
    """Admin request for a production batch (production_requests table)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    quantity: int = Field(..., ge=1)
    needed_date: date
    status: RequestStatus = RequestStatus.PENDING


class Expense(BaseModel):
    """Expense entry from the expenses table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    description: str
    amount: Decimal
    category: ExpenseCategory = ExpenseCategory.OTHER
    date: date
    recurrence: Optional[str] = None
    created_by: Optional[UUID] = None


class Tool(BaseModel):
    """Shared tool from the tools table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    usage_description: Optional[str] = None
    status: ToolStatus = ToolStatus.AVAILABLE
    quantity: int = Field(default=1, ge=0)
    acquisition_date: Optional[date] = None
    purchase_date: Optional[date] = None
    cost: Optional[Decimal] = None
    photos: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @field_validator("photos", mode="before")
    @classmethod
    def _photos_default(cls, value):
        return value or []


class ToolReport(BaseModel):
    """Problem reported on a tool (tool_reports table, joined with tool and reporter names)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tool_id: UUID
    user_id: Optional[UUID] = None
    description: str
    priority: ReportPriority = ReportPriority.MEDIUM
    photos: List[str] = Field(default_factory=list)
    status: ReportStatus = ReportStatus.PENDING
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    tool_name: Optional[str] = None
    reporter_name: Optional[str] = None

    @field_validator("photos", mode="before")
    @classmethod
    def _photos_default(cls, value):
        return value or []


class MaterialInput(BaseModel):
    """Raw material kept in stock (material_inputs table)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    unit: str
    cost_per_unit: Decimal = Decimal("0")
    current_stock: Decimal = Decimal("0")


class HarvestSeason(BaseModel):
    """Months in which a product's raw material is harvested."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    start_month: int = Field(..., ge=1, le=12)
    end_month: int = Field(..., ge=1, le=12)
    moon_phase_preference: Optional[str] = None
    description: Optional[str] = None
    product_name: Optional[str] = None

    def covers(self, month: int) -> bool:
        """Whether month falls in the season; seasons may wrap past December"""
        if self.start_month <= self.end_month:
            return self.start_month <= month <= self.end_month
        return month >= self.start_month or month <= self.end_month


class Caller(BaseModel):
    """Identity of the signed-in user issuing a request."""

    user_id: Optional[UUID] = None
    role: Optional[str] = None

    def is_admin(self, admin_roles) -> bool:
        return self.role is not None and self.role in admin_roles


# ============================================================================
# Derived Models (not directly mapped to tables)
# ============================================================================

class PayrollEntry(BaseModel):
    """One worker's line in a payroll period."""

    user_id: UUID
    full_name: str = "Desconhecido"
    role: Optional[str] = None
    payment_type: PaymentType
    fixed_salary: Decimal = Decimal("0")
    production_count: int = 0
    production_earnings: Decimal = Decimal("0")
    total_due: Decimal = Decimal("0")
