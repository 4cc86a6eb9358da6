"""
Tool, material and harvest season tests (store mocked)
"""

import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

import psycopg2
import pytest
from psycopg2 import errors

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mutum.models import Caller, HarvestSeason, ReportStatus, ToolStatus
from mutum.services import BackendError, NotFoundError, ValidationError
from mutum.services.tools import HarvestService, ToolService
from mutum.utils.database import db
from mutum.utils.storage import ObjectStorage, UploadedFile

WORKER = Caller(user_id=uuid4(), role="artesa")
TOOL_ID = uuid4()
PRODUCT_ID = uuid4()


def tool_row(**overrides):
    row = {
        "id": TOOL_ID, "name": "Serrote", "description": None, "usage_description": None,
        "status": "available", "quantity": 1, "acquisition_date": None, "purchase_date": None,
        "cost": None, "photos": None, "created_at": None,
    }
    row.update(overrides)
    return row


def report_row(**overrides):
    row = {
        "id": uuid4(), "tool_id": TOOL_ID, "user_id": WORKER.user_id, "description": "Lâmina cega",
        "priority": "high", "photos": [], "status": "pending", "resolved_at": None, "created_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def tools(tmp_path):
    return ToolService(storage=ObjectStorage(root=str(tmp_path), public_url="http://files.test"))


def test_list_tools_filters_by_status(tools):
    with patch.object(db, "execute_query", return_value=[tool_row(status="in_use")]) as query:
        [tool] = tools.list_tools(status="in_use")
    assert query.call_args[0][1] == ("in_use",)
    assert tool.status == ToolStatus.IN_USE
    assert tool.photos == []

    with pytest.raises(ValidationError):
        tools.list_tools(status="broken")


def test_add_tool_validates_fields(tools):
    with patch.object(db, "execute_query", return_value=tool_row(cost=Decimal("89.90"))) as query:
        tool = tools.add_tool(" Serrote ", status="available", cost="89,90", photos=["http://x/1.jpg", " "])
    params = query.call_args[0][1]
    assert params[0] == "Serrote"
    assert params[2] == Decimal("89.90")
    assert params[3].adapted == ["http://x/1.jpg"]
    assert tool.cost == Decimal("89.90")

    for bad in ({"status": "borrowed"}, {"quantity": -1}, {"cost": "caro"}, {"owner": "Ana"}):
        with pytest.raises(ValidationError):
            tools.add_tool("Enxada", **bad)
    with pytest.raises(ValidationError):
        tools.add_tool("  ")


def test_update_missing_tool(tools):
    with patch.object(db, "execute_query", return_value=None):
        with pytest.raises(NotFoundError):
            tools.update_tool(str(uuid4()), status="maintenance")
    with pytest.raises(ValidationError):
        tools.update_tool(str(TOOL_ID))


def test_report_problem_uploads_photos_and_starts_pending(tools):
    with patch.object(db, "execute_query", return_value=report_row()) as query:
        report = tools.report_problem(
            WORKER, str(TOOL_ID), " Lâmina cega ", priority="high",
            photos=[UploadedFile("cabo.jpg", b"img")],
        )
    params = query.call_args[0][1]
    assert params[2] == "Lâmina cega"
    assert params[3] == "high"
    [url] = params[4].adapted
    assert url.startswith("http://files.test/production-evidence/tools/")
    assert params[5] == "pending"
    assert report.status == ReportStatus.PENDING


def test_report_problem_validation(tools):
    with pytest.raises(ValidationError):
        tools.report_problem(Caller(), str(TOOL_ID), "Quebrou")
    with pytest.raises(ValidationError):
        tools.report_problem(WORKER, str(TOOL_ID), "   ")
    with pytest.raises(ValidationError):
        tools.report_problem(WORKER, str(TOOL_ID), "Quebrou", priority="urgent")


def test_report_on_unknown_tool(tools):
    with patch.object(db, "execute_query", side_effect=errors.ForeignKeyViolation("tool_id")):
        with pytest.raises(NotFoundError):
            tools.report_problem(WORKER, str(uuid4()), "Sumiu")


def test_resolve_report_keeps_first_timestamp(tools):
    when = datetime(2026, 3, 1, tzinfo=timezone.utc)
    with patch.object(db, "execute_update", return_value=1) as update:
        tools.resolve_report("r1", now=when)
    query, params = update.call_args[0]
    assert "COALESCE(resolved_at" in query
    assert params == ("resolved", when, "r1")

    with patch.object(db, "execute_update", return_value=0):
        with pytest.raises(NotFoundError):
            tools.resolve_report("missing")


def test_list_reports_joins_names(tools):
    row = report_row(tool_name="Serrote", reporter_name="Ana")
    with patch.object(db, "execute_query", return_value=[row]) as query:
        [report] = tools.list_reports(status="pending", tool_id=str(TOOL_ID))
    assert query.call_args[0][1] == ("pending", str(TOOL_ID))
    assert report.tool_name == "Serrote" and report.reporter_name == "Ana"


def test_add_material_parses_amounts():
    row = {"id": uuid4(), "name": "Miçanga", "unit": "g", "cost_per_unit": Decimal("0.15"),
           "current_stock": Decimal("500")}
    with patch.object(db, "execute_query", return_value=row) as query:
        material = HarvestService().add_material("Miçanga", "g", "0,15", 500)
    assert query.call_args[0][1] == ("Miçanga", "g", Decimal("0.15"), Decimal("500"))
    assert material.current_stock == Decimal("500")

    with pytest.raises(ValidationError):
        HarvestService().add_material("Miçanga", "", 1, 1)
    with pytest.raises(ValidationError):
        HarvestService().update_material("m1", current_stock="-3")


def test_material_store_failure():
    with patch.object(db, "execute_query", side_effect=psycopg2.OperationalError("down")):
        with pytest.raises(BackendError):
            HarvestService().list_materials()


def test_add_season_checks_months():
    with pytest.raises(ValidationError):
        HarvestService().add_season(str(PRODUCT_ID), 0, 3)
    with pytest.raises(ValidationError):
        HarvestService().add_season(str(PRODUCT_ID), 11, 13)
    with patch.object(db, "execute_query", side_effect=errors.ForeignKeyViolation("product_id")):
        with pytest.raises(NotFoundError):
            HarvestService().add_season(str(uuid4()), 1, 3)


def test_seasons_wrapping_the_year():
    summer = HarvestSeason(id=uuid4(), product_id=PRODUCT_ID, start_month=11, end_month=2)
    winter = HarvestSeason(id=uuid4(), product_id=PRODUCT_ID, start_month=6, end_month=8)
    service = HarvestService()
    assert service.seasons_in(1, [summer, winter]) == [summer]
    assert service.seasons_in(7, [summer, winter]) == [winter]
    assert service.seasons_in(4, [summer, winter]) == []
