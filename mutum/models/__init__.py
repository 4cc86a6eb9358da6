"""
Models package for the Mutum service.
"""

# Form models
from .forms import (
    FieldType,
    FormStatus,
    FieldOption,
    FieldSchema,
    FormSection,
    FormSchema,
    FormDocument,
    RenderedControl,
)

# Domain models
from .domain import (
    Caller,
    Profile,
    Product,
    WorkerSettings,
    ProductionLogEntry,
    ProductionGoal,
    Shipment,
    ShipmentItem,
    ProductionRequest,
    Expense,
    PayrollEntry,
    PaymentType,
    ActionType,
    GoalStatus,
    ShipmentStatus,
    RequestStatus,
    ExpenseCategory,
    Tool,
    ToolReport,
    ToolStatus,
    ReportPriority,
    ReportStatus,
    MaterialInput,
    HarvestSeason,
    TOTAL_VARIANT,
)

# API models
from .api import (
    FilePayload,
    HealthCheckResponse,
    FieldChange,
    FormSaveRequest,
    FormFileUpload,
    FormResponse,
    SectionView,
    WorkerSettingsRequest,
    PayrollResponse,
    EarningsResponse,
    ExpenseCreateRequest,
    CostProjectionResponse,
    ProductionLogRequest,
    ShipmentRequest,
    ProductionRequestCreate,
    ProductionRequestUpdate,
    GoalCreateRequest,
    GoalView,
    UserCreateRequest,
    UserUpdateRequest,
    ToolRequest,
    ToolReportRequest,
    MaterialRequest,
    HarvestSeasonRequest,
)

__version__ = "0.1.0"

__all__ = [
    # Forms
    "FieldType",
    "FormStatus",
    "FieldOption",
    "FieldSchema",
    "FormSection",
    "FormSchema",
    "FormDocument",
    "RenderedControl",
    # Domain
    "Caller",
    "Profile",
    "Product",
    "WorkerSettings",
    "ProductionLogEntry",
    "ProductionGoal",
    "Shipment",
    "ShipmentItem",
    "ProductionRequest",
    "Expense",
    "PayrollEntry",
    "PaymentType",
    "ActionType",
    "GoalStatus",
    "ShipmentStatus",
    "RequestStatus",
    "ExpenseCategory",
    "Tool",
    "ToolReport",
    "ToolStatus",
    "ReportPriority",
    "ReportStatus",
    "MaterialInput",
    "HarvestSeason",
    "TOTAL_VARIANT",
    # API
    "FilePayload",
    "HealthCheckResponse",
    "FieldChange",
    "FormSaveRequest",
    "FormFileUpload",
    "FormResponse",
    "SectionView",
    "WorkerSettingsRequest",
    "PayrollResponse",
    "EarningsResponse",
    "ExpenseCreateRequest",
    "CostProjectionResponse",
    "ProductionLogRequest",
    "ShipmentRequest",
    "ProductionRequestCreate",
    "ProductionRequestUpdate",
    "GoalCreateRequest",
    "GoalView",
    "UserCreateRequest",
    "UserUpdateRequest",
    "ToolRequest",
    "ToolReportRequest",
    "MaterialRequest",
    "HarvestSeasonRequest",
]
