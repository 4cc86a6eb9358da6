"""
API Models - Pydantic models for API requests and responses.

These models define the structure of HTTP request and response payloads
for the FastAPI endpoints.
"""

import base64
import binascii
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field

from .domain import (
    ActionType,
    ExpenseCategory,
    PaymentType,
    PayrollEntry,
    ProductionGoal,
    ReportPriority,
    RequestStatus,
    ShipmentItem,
    ToolStatus,
)
from .forms import FormStatus, RenderedControl
from mutum.utils.storage import UploadedFile


# ============================================================================
# Shared
# ============================================================================

class FilePayload(BaseModel):
    """A file sent inline as base64."""

    filename: str = Field(..., min_length=1)
    content_base64: str = Field(..., description="File bytes, base64 encoded")

    def to_upload(self) -> UploadedFile:
        try:
            data = base64.b64decode(self.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError(f"File '{self.filename}' is not valid base64")
        return UploadedFile(filename=self.filename, data=data)


class HealthCheckResponse(BaseModel):
    status: str
    version: str
    database: str


# ============================================================================
# Form API Models
# ============================================================================

class FieldChange(BaseModel):
    """One answer written through a control."""

    key: str
    parent: Optional[str] = None
    index: Optional[int] = Field(default=None, ge=0)
    value: Any = None


class FormSaveRequest(BaseModel):
    """Save payload: individual changes, or a whole replacement document."""

    changes: List[FieldChange] = Field(default_factory=list)
    content: Optional[Dict[str, Any]] = Field(default=None, description="Replaces all answers when given")
    finalize: bool = Field(default=False, description="Submit the form")


class FormFileUpload(BaseModel):
    """A file for one file_upload field, addressed like a FieldChange."""

    key: str
    parent: Optional[str] = None
    index: Optional[int] = Field(default=None, ge=0)
    file: FilePayload


class SectionView(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    controls: List[RenderedControl] = Field(default_factory=list)


class FormResponse(BaseModel):
    slug: str
    status: FormStatus
    editable: bool
    content: Dict[str, Any] = Field(default_factory=dict)
    last_submitted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sections: List[SectionView] = Field(default_factory=list)
    missing_required: List[str] = Field(default_factory=list)
    message: Optional[str] = None


# ============================================================================
# Finance API Models
# ============================================================================

class WorkerSettingsRequest(BaseModel):
    payment_type: Optional[PaymentType] = None
    fixed_salary: Optional[Decimal] = Field(default=None, ge=0)
    production_rate: Optional[Decimal] = Field(default=None, ge=0)
    payment_date: Optional[date] = None
    active: Optional[bool] = None


class PayrollResponse(BaseModel):
    year: int
    month: int
    entries: List[PayrollEntry] = Field(default_factory=list)
    total: Decimal = Decimal("0")
    total_formatted: str = ""


class EarningsResponse(BaseModel):
    user_id: UUID
    since: date
    earnings: Decimal
    earnings_formatted: str


class ExpenseCreateRequest(BaseModel):
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    category: ExpenseCategory = ExpenseCategory.OTHER
    date: date
    recurrence: Optional[str] = None


class CostProjectionResponse(BaseModel):
    year: int
    month: int
    total: Decimal
    total_formatted: str


# ============================================================================
# Inventory API Models
# ============================================================================

class ProductionLogRequest(BaseModel):
    product_id: UUID
    action_type: ActionType
    quantity: int = Field(default=0, ge=0)
    description: Optional[str] = None
    expected_arrival_date: Optional[date] = None
    variant_quantities: Optional[Dict[str, int]] = None
    image: Optional[FilePayload] = None


class ShipmentRequest(BaseModel):
    description: Optional[str] = None
    expected_arrival_date: date
    items: List[ShipmentItem] = Field(..., min_length=1)
    voucher_photo: Optional[FilePayload] = None
    package_photo: Optional[FilePayload] = None


class ProductionRequestCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., ge=1)
    needed_date: date


class ProductionRequestUpdate(BaseModel):
    status: RequestStatus


class GoalCreateRequest(BaseModel):
    product_id: UUID
    name: str = Field(..., min_length=1)
    deadline: Optional[date] = None
    targets: Dict[str, int] = Field(default_factory=dict)


class GoalView(BaseModel):
    goal: ProductionGoal
    label: str
    remaining: Dict[str, int] = Field(default_factory=dict)


# ============================================================================
# User Administration API Models
# ============================================================================

class UserCreateRequest(BaseModel):
    email: str
    password: str
    role: str
    full_name: str


class UserUpdateRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[str] = None


# ============================================================================
# Tools and Harvest API Models
# ============================================================================

class ToolRequest(BaseModel):
    """Tool fields; on update only the fields sent are changed."""

    name: Optional[str] = None
    description: Optional[str] = None
    usage_description: Optional[str] = None
    status: Optional[ToolStatus] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    acquisition_date: Optional[date] = None
    purchase_date: Optional[date] = None
    cost: Optional[Decimal] = Field(default=None, ge=0)
    photos: Optional[List[str]] = None


class ToolReportRequest(BaseModel):
    description: str = Field(..., min_length=1)
    priority: ReportPriority = ReportPriority.MEDIUM
    photos: List[FilePayload] = Field(default_factory=list)
    photo_urls: List[str] = Field(default_factory=list)


class MaterialRequest(BaseModel):
    name: Optional[str] = None
    unit: Optional[str] = None
    cost_per_unit: Optional[Decimal] = Field(default=None, ge=0)
    current_stock: Optional[Decimal] = Field(default=None, ge=0)


class HarvestSeasonRequest(BaseModel):
    product_id: UUID
    start_month: int = Field(..., ge=1, le=12)
    end_month: int = Field(..., ge=1, le=12)
    moon_phase_preference: Optional[str] = None
    description: Optional[str] = None
