"""
Services package for the Mutum service.
"""

from .exceptions import (
    MutumError,
    NotFoundError,
    ValidationError,
    AuthorizationError,
    BackendError,
)
from .form_schema import get_form_schema
from .form_engine import FormSession, get_form_service
from .payroll import get_payroll_service, get_finance_service
from .goals import get_goal_tracker
from .inventory import (
    get_product_catalog,
    get_inventory_ledger,
    get_shipment_service,
    get_production_request_service,
)
from .tools import get_tool_service, get_harvest_service
from .user_admin import get_user_admin_service

__version__ = "0.1.0"

__all__ = [
    "MutumError",
    "NotFoundError",
    "ValidationError",
    "AuthorizationError",
    "BackendError",
    "get_form_schema",
    "FormSession",
    "get_form_service",
    "get_payroll_service",
    "get_finance_service",
    "get_goal_tracker",
    "get_product_catalog",
    "get_inventory_ledger",
    "get_shipment_service",
    "get_production_request_service",
    "get_tool_service",
    "get_harvest_service",
    "get_user_admin_service",
]
