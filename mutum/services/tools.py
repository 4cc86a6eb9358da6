"""
Tools and Harvest - shared tool tracking, problem reports, raw material
stock and harvest calendar.

Any member may report a problem on a tool; reports start pending and an
administrator resolves them. Tool, material and season management is
admin work and is guarded at the HTTP layer.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import psycopg2
from psycopg2 import errors, sql
from psycopg2.extras import Json

from mutum.models.domain import (
    Caller,
    HarvestSeason,
    MaterialInput,
    ReportPriority,
    ReportStatus,
    Tool,
    ToolReport,
    ToolStatus,
)
from mutum.services.exceptions import BackendError, NotFoundError, ValidationError
from mutum.services.payroll import parse_money
from mutum.utils.config import settings
from mutum.utils.database import db
from mutum.utils.storage import (
    ObjectStorage,
    StorageError,
    UploadedFile,
    get_object_storage,
    unique_object_path,
)

logger = logging.getLogger(__name__)

TOOL_COLUMNS = (
    "name", "description", "usage_description", "status", "quantity",
    "acquisition_date", "purchase_date", "cost", "photos",
)
MATERIAL_COLUMNS = ("name", "unit", "cost_per_unit", "current_stock")

REPORT_QUERY = """
    SELECT r.id, r.tool_id, r.user_id, r.description, r.priority, r.photos,
           r.status, r.resolved_at, r.created_at,
           t.name AS tool_name, p.full_name AS reporter_name
    FROM tool_reports r
    JOIN tools t ON t.id = r.tool_id
    LEFT JOIN profiles p ON p.id = r.user_id
"""


def _clean_tool_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate tool fields and adapt them for the store"""
    unknown = set(fields) - set(TOOL_COLUMNS)
    if unknown:
        raise ValidationError(f"Unknown tool fields: {', '.join(sorted(unknown))}")

    cleaned = dict(fields)
    if "name" in cleaned and not (cleaned["name"] or "").strip():
        raise ValidationError("Tool name is required")
    if "status" in cleaned:
        try:
            cleaned["status"] = ToolStatus(cleaned["status"]).value
        except ValueError:
            raise ValidationError(f"Unknown tool status '{cleaned['status']}'")
    if "quantity" in cleaned:
        quantity = cleaned["quantity"]
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
            raise ValidationError("Tool quantity must be a whole number >= 0")
    if cleaned.get("cost") is not None:
        cleaned["cost"] = parse_money(cleaned["cost"], "cost")
    if "photos" in cleaned:
        photos = cleaned["photos"] or []
        if not isinstance(photos, list) or not all(isinstance(url, str) for url in photos):
            raise ValidationError("Tool photos must be a list of URLs")
        cleaned["photos"] = Json([url for url in photos if url.strip()])
    return cleaned


class ToolService:
    """Tool inventory and problem reports"""

    def __init__(self, storage: Optional[ObjectStorage] = None):
        self.storage = storage or get_object_storage()

    def list_tools(self, status: Optional[str] = None) -> List[Tool]:
        """Tools ordered by name, optionally of one status"""
        query = "SELECT id, {}, created_at FROM tools".format(", ".join(TOOL_COLUMNS))
        params: tuple = ()
        if status:
            try:
                params = (ToolStatus(status).value,)
            except ValueError:
                raise ValidationError(f"Unknown tool status '{status}'")
            query += " WHERE status = %s"
        query += " ORDER BY name"
        try:
            rows = db.execute_query(query, params)
        except psycopg2.Error as e:
            logger.error(f"Error fetching tools: {e}")
            raise BackendError("Erro ao carregar ferramentas.", e)
        return [Tool(**row) for row in rows]

    def add_tool(self, name: str, **fields) -> Tool:
        fields = _clean_tool_fields({"name": name, **fields})
        fields["name"] = fields["name"].strip()
        columns = list(fields)
        query = sql.SQL(
            "INSERT INTO tools ({columns}) VALUES ({values}) RETURNING id, {returning}, created_at"
        ).format(
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            returning=sql.SQL(", ").join(sql.Identifier(c) for c in TOOL_COLUMNS),
        )
        try:
            row = db.execute_query(query, tuple(fields.values()), fetch_one=True)
        except psycopg2.Error as e:
            logger.error(f"Error adding tool {name}: {e}")
            raise BackendError("Erro ao salvar ferramenta.", e)
        logger.info(f"Added tool {row['id']} ({fields['name']})")
        return Tool(**row)

    def update_tool(self, tool_id: str, **fields) -> Tool:
        """Partial update; only the given fields change"""
        fields = _clean_tool_fields(fields)
        if not fields:
            raise ValidationError("Nothing to update")
        query = sql.SQL(
            "UPDATE tools SET {assignments} WHERE id = %s RETURNING id, {returning}, created_at"
        ).format(
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(c)) for c in fields
            ),
            returning=sql.SQL(", ").join(sql.Identifier(c) for c in TOOL_COLUMNS),
        )
        try:
            row = db.execute_query(query, (*fields.values(), tool_id), fetch_one=True)
        except psycopg2.Error as e:
            logger.error(f"Error updating tool {tool_id}: {e}")
            raise BackendError("Erro ao atualizar ferramenta.", e)
        if not row:
            raise NotFoundError(f"Tool {tool_id} not found")
        logger.info(f"Updated tool {tool_id}: {list(fields)}")
        return Tool(**row)

    def list_reports(self, status: Optional[str] = None, tool_id: Optional[str] = None) -> List[ToolReport]:
        """Reports newest first, with tool and reporter names"""
        conditions, params = [], []
        if status:
            try:
                params.append(ReportStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown report status '{status}'")
            conditions.append("r.status = %s")
        if tool_id:
            conditions.append("r.tool_id = %s")
            params.append(tool_id)

        query = REPORT_QUERY
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY r.created_at DESC"
        try:
            rows = db.execute_query(query, tuple(params))
        except psycopg2.Error as e:
            logger.error(f"Error fetching tool reports: {e}")
            raise BackendError("Erro ao carregar reportes.", e)
        return [ToolReport(**row) for row in rows]

    def report_problem(
        self,
        caller: Caller,
        tool_id: str,
        description: str,
        priority: str = ReportPriority.MEDIUM.value,
        photos: Iterable[UploadedFile] = (),
        photo_urls: Iterable[str] = (),
    ) -> ToolReport:
        """
        File a pending problem report on a tool.

        Uploaded photos go to the evidence bucket under tools/; already
        hosted photos can be passed as URLs.
        """
        if caller.user_id is None:
            raise ValidationError("A signed-in user is required")
        if not description or not description.strip():
            raise ValidationError("Describe the problem")
        try:
            priority = ReportPriority(priority).value
        except ValueError:
            raise ValidationError(f"Unknown priority '{priority}'")

        urls = [url for url in photo_urls if url and url.strip()]
        for photo in photos:
            try:
                urls.append(self.storage.upload(
                    settings.EVIDENCE_BUCKET, unique_object_path("tools", photo.filename), photo.data
                ))
            except StorageError as e:
                raise BackendError("Erro ao enviar foto.", e)

        try:
            row = db.execute_query(
                """
                INSERT INTO tool_reports (tool_id, user_id, description, priority, photos, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id, tool_id, user_id, description, priority, photos, status,
                          resolved_at, created_at
                """,
                (tool_id, str(caller.user_id), description.strip(), priority, Json(urls),
                 ReportStatus.PENDING.value),
                fetch_one=True,
            )
        except errors.ForeignKeyViolation:
            raise NotFoundError(f"Tool {tool_id} not found")
        except psycopg2.Error as e:
            logger.error(f"Error reporting problem on tool {tool_id}: {e}")
            raise BackendError("Erro ao enviar reporte.", e)
        logger.info(f"User {caller.user_id} reported a {priority} problem on tool {tool_id}")
        return ToolReport(**row)

    def resolve_report(self, report_id: str, now: Optional[datetime] = None) -> None:
        """Mark a report resolved; resolving twice keeps the first timestamp"""
        now = now or datetime.now(timezone.utc)
        try:
            count = db.execute_update(
                """
                UPDATE tool_reports
                SET status = %s, resolved_at = COALESCE(resolved_at, %s)
                WHERE id = %s
                """,
                (ReportStatus.RESOLVED.value, now, report_id),
            )
        except psycopg2.Error as e:
            logger.error(f"Error resolving report {report_id}: {e}")
            raise BackendError("Erro ao resolver reporte.", e)
        if not count:
            raise NotFoundError(f"Tool report {report_id} not found")
        logger.info(f"Resolved tool report {report_id}")


class HarvestService:
    """Raw material stock and harvest seasons"""

    def list_materials(self) -> List[MaterialInput]:
        try:
            rows = db.execute_query(
                "SELECT id, name, unit, cost_per_unit, current_stock FROM material_inputs ORDER BY name"
            )
        except psycopg2.Error as e:
            logger.error(f"Error fetching materials: {e}")
            raise BackendError("Erro ao carregar materiais.", e)
        return [MaterialInput(**row) for row in rows]

    def _clean_material(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(fields) - set(MATERIAL_COLUMNS)
        if unknown:
            raise ValidationError(f"Unknown material fields: {', '.join(sorted(unknown))}")
        cleaned = dict(fields)
        for text in ("name", "unit"):
            if text in cleaned:
                if not (cleaned[text] or "").strip():
                    raise ValidationError(f"Material {text} is required")
                cleaned[text] = cleaned[text].strip()
        for amount in ("cost_per_unit", "current_stock"):
            if amount in cleaned:
                cleaned[amount] = parse_money(cleaned[amount], amount)
        return cleaned

    def add_material(
        self, name: str, unit: str, cost_per_unit: Decimal = Decimal("0"), current_stock: Decimal = Decimal("0")
    ) -> MaterialInput:
        fields = self._clean_material({
            "name": name, "unit": unit, "cost_per_unit": cost_per_unit, "current_stock": current_stock,
        })
        try:
            row = db.execute_query(
                """
                INSERT INTO material_inputs (name, unit, cost_per_unit, current_stock)
                VALUES (%s, %s, %s, %s)
                RETURNING id, name, unit, cost_per_unit, current_stock
                """,
                (fields["name"], fields["unit"], fields["cost_per_unit"], fields["current_stock"]),
                fetch_one=True,
            )
        except psycopg2.Error as e:
            logger.error(f"Error adding material {name}: {e}")
            raise BackendError("Erro ao salvar material.", e)
        return MaterialInput(**row)

    def update_material(self, material_id: str, **fields) -> MaterialInput:
        fields = self._clean_material(fields)
        if not fields:
            raise ValidationError("Nothing to update")
        query = sql.SQL(
            "UPDATE material_inputs SET {assignments} WHERE id = %s "
            "RETURNING id, name, unit, cost_per_unit, current_stock"
        ).format(
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(c)) for c in fields
            ),
        )
        try:
            row = db.execute_query(query, (*fields.values(), material_id), fetch_one=True)
        except psycopg2.Error as e:
            logger.error(f"Error updating material {material_id}: {e}")
            raise BackendError("Erro ao atualizar material.", e)
        if not row:
            raise NotFoundError(f"Material {material_id} not found")
        return MaterialInput(**row)

    def list_seasons(self) -> List[HarvestSeason]:
        try:
            rows = db.execute_query(
                """
                SELECT h.id, h.product_id, h.start_month, h.end_month,
                       h.moon_phase_preference, h.description, p.name AS product_name
                FROM harvest_seasons h
                JOIN products p ON p.id = h.product_id
                ORDER BY h.start_month, p.name
                """
            )
        except psycopg2.Error as e:
            logger.error(f"Error fetching harvest seasons: {e}")
            raise BackendError("Erro ao carregar safras.", e)
        return [HarvestSeason(**row) for row in rows]

    def add_season(
        self,
        product_id: str,
        start_month: int,
        end_month: int,
        moon_phase_preference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> HarvestSeason:
        for month in (start_month, end_month):
            if not isinstance(month, int) or isinstance(month, bool) or not 1 <= month <= 12:
                raise ValidationError("Season months must be between 1 and 12")
        try:
            row = db.execute_query(
                """
                INSERT INTO harvest_seasons (product_id, start_month, end_month, moon_phase_preference, description)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id, product_id, start_month, end_month, moon_phase_preference, description
                """,
                (product_id, start_month, end_month, moon_phase_preference, description),
                fetch_one=True,
            )
        except errors.ForeignKeyViolation:
            raise NotFoundError(f"Product {product_id} not found")
        except psycopg2.Error as e:
            logger.error(f"Error adding harvest season for {product_id}: {e}")
            raise BackendError("Erro ao salvar safra.", e)
        return HarvestSeason(**row)

    def seasons_in(self, month: int, seasons: Optional[Iterable[HarvestSeason]] = None) -> List[HarvestSeason]:
        """Seasons covering a calendar month"""
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")
        if seasons is None:
            seasons = self.list_seasons()
        return [season for season in seasons if season.covers(month)]


# Singleton instances
_tool_service = None
_harvest_service = None

def get_tool_service() -> ToolService:
    """Get singleton instance of ToolService"""
    global _tool_service
    if _tool_service is None:
        _tool_service = ToolService()
    return _tool_service


def get_harvest_service() -> HarvestService:
    """Get singleton instance of HarvestService"""
    global _harvest_service
    if _harvest_service is None:
        _harvest_service = HarvestService()
    return _harvest_service
