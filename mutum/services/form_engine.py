"""
Form Engine - load/edit/save lifecycle of a user's onboarding form.

A FormSession holds one FormDocument's answers and status and walks the
wizard sections:

    loading -> draft | submitted      (load)
    draft -> draft | submitted        (save / save(finalize=True))
    submitted -> submitted            (any save; never back to draft)
    loading -> error                  (not found, denied or store failure)

Saves are explicit; navigating between sections never writes. There is no
concurrency token: concurrent editors overwrite each other (last write wins).
"""

import copy
import logging
import re
import secrets
import threading
import unicodedata
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import psycopg2
from psycopg2.extras import Json

from mutum.models.domain import Caller
from mutum.models.forms import FieldSchema, FieldType, FormDocument, FormSchema, FormStatus, RenderedControl
from mutum.services.exceptions import (
    AuthorizationError,
    BackendError,
    MutumError,
    NotFoundError,
    ValidationError,
)
from mutum.services import field_renderer, form_content
from mutum.services.form_content import FieldPath
from mutum.services.form_schema import get_form_schema
from mutum.services.profile_sync import ProfileSyncService, get_profile_sync_service
from mutum.utils.config import settings
from mutum.utils.database import db
from mutum.utils.storage import ObjectStorage, StorageError, get_object_storage, unique_object_path

logger = logging.getLogger(__name__)

LOAD_ERROR = "Erro ao carregar o formulário."
SAVE_ERROR = "Erro ao salvar. Tente novamente."
SAVED_DRAFT = "Rascunho salvo."
SAVED_SUBMITTED = "Formulário enviado com sucesso!"


class FormState(str, Enum):
    LOADING = "loading"
    DRAFT = "draft"
    SUBMITTED = "submitted"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FormSession:
    """Editing session over one form document"""

    def __init__(
        self,
        slug: str,
        caller: Caller,
        schema: Optional[FormSchema] = None,
        profile_sync: Optional[ProfileSyncService] = None,
        storage: Optional[ObjectStorage] = None,
        read_only: bool = False,
        clock: Callable[[], datetime] = _utcnow,
        uploads: Optional[field_renderer.UploadTracker] = None,
    ):
        self.slug = slug
        self.caller = caller
        self.schema = schema or get_form_schema()
        self.profile_sync = profile_sync or get_profile_sync_service()
        self.storage = storage or get_object_storage()
        self.read_only = read_only
        self.clock = clock

        self.state = FormState.LOADING
        self.document: Optional[FormDocument] = None
        self.content: Dict[str, Any] = {}
        self.current_section = 0
        self.saving = False
        self.error: Optional[str] = None
        self.message: Optional[str] = None
        self.uploads = uploads or field_renderer.UploadTracker()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def is_owner(self) -> bool:
        return (
            self.document is not None
            and self.caller.user_id is not None
            and self.caller.user_id == self.document.user_id
        )

    @property
    def is_admin(self) -> bool:
        return self.caller.is_admin(settings.ADMIN_ROLES)

    @property
    def can_view(self) -> bool:
        return self.is_owner or self.is_admin

    @property
    def editable(self) -> bool:
        return self.interactive and self.can_view and not self.read_only

    @property
    def interactive(self) -> bool:
        return self.state in (FormState.DRAFT, FormState.SUBMITTED)

    @property
    def status(self) -> Optional[FormStatus]:
        return self.document.status if self.document else None

    # ------------------------------------------------------------------
    # Load / Save
    # ------------------------------------------------------------------

    def load(self) -> FormDocument:
        """
        Fetch the document by slug and hydrate the session.

        Raises:
            NotFoundError: No form with this slug
            AuthorizationError: Caller is neither the owner nor an admin
            BackendError: The store failed
        """
        self.state = FormState.LOADING
        self.error = None
        query = """
            SELECT slug, user_id, content, status, last_submitted_at, updated_at
            FROM user_forms
            WHERE slug = %s
        """
        try:
            row = db.execute_query(query, (self.slug,), fetch_one=True)
        except psycopg2.Error as e:
            logger.error(f"Failed to load form {self.slug}: {e}")
            self._fail(LOAD_ERROR)
            raise BackendError(LOAD_ERROR, e)

        if not row:
            self._fail(LOAD_ERROR)
            raise NotFoundError(f"Form '{self.slug}' not found")

        document = FormDocument(**row)
        self.document = document
        if not self.can_view:
            self.document = None
            self._fail("Acesso Restrito")
            raise AuthorizationError("Only the form owner or an admin can open this form")

        self.content = dict(document.content)
        self.state = FormState(document.status.value)
        self.current_section = 0
        logger.info(f"Loaded form {self.slug} ({document.status.value})")
        return document

    def save(self, finalize: bool = False) -> FormDocument:
        """
        Write the current answers.

        finalize=True marks the form submitted and stamps last_submitted_at;
        a submitted form stays submitted on later saves. updated_at is
        stamped on every save. Profile sync runs afterwards as a best-effort
        side effect.
        """
        self._require_editable()
        if self.saving:
            raise ValidationError("A save is already in progress")

        now = self.clock()
        was_submitted = self.document.status == FormStatus.SUBMITTED
        new_status = FormStatus.SUBMITTED if finalize or was_submitted else FormStatus.DRAFT

        assignments = ["content = %s", "status = %s", "updated_at = %s"]
        params: List[Any] = [Json(self.content), new_status.value, now]
        if finalize:
            assignments.append("last_submitted_at = %s")
            params.append(now)
        params.append(self.slug)
        query = f"UPDATE user_forms SET {', '.join(assignments)} WHERE slug = %s"

        self.saving = True
        self.error = None
        self.message = None
        try:
            updated = db.execute_update(query, tuple(params))
        except psycopg2.Error as e:
            logger.error(f"Failed to save form {self.slug}: {e}")
            self.error = SAVE_ERROR
            raise BackendError(SAVE_ERROR, e)
        finally:
            self.saving = False

        if not updated:
            self.error = SAVE_ERROR
            raise NotFoundError(f"Form '{self.slug}' no longer exists")

        self.document = self.document.model_copy(update={
            "content": dict(self.content),
            "status": new_status,
            "updated_at": now,
            "last_submitted_at": now if finalize else self.document.last_submitted_at,
        })
        self.state = FormState(new_status.value)
        self.message = SAVED_SUBMITTED if finalize else SAVED_DRAFT
        logger.info(f"Saved form {self.slug} as {new_status.value} (finalize={finalize})")

        if finalize or settings.PROFILE_SYNC_ON_EVERY_SAVE:
            self._sync_profile()
        return self.document

    def _sync_profile(self):
        try:
            self.profile_sync.sync(str(self.document.user_id), self.content)
        except (psycopg2.Error, MutumError) as e:
            logger.warning(f"Profile sync failed for form {self.slug}: {e}")

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def field_at(self, path: FieldPath) -> FieldSchema:
        """Resolve the schema of the field a path points to"""
        if path.parent is None:
            field = self.schema.find_field(path.key)
            if field is None:
                raise ValidationError(f"Unknown field '{path.key}'")
            return field

        container = self.schema.find_field(path.parent)
        if container is None or not container.is_container:
            raise ValidationError(f"Unknown group or repeater '{path.parent}'")
        if (container.type == FieldType.REPEATER) != (path.index is not None):
            raise ValidationError(f"Path '{path}' does not match the layout of '{path.parent}'")
        for child in container.fields:
            if child.key == path.key:
                return child
        raise ValidationError(f"Unknown field '{path}'")

    def get(self, path: FieldPath, default: Any = None) -> Any:
        return form_content.get_value(self.content, path, default)

    def replace_content(self, content: Dict[str, Any]):
        """
        Swap in a whole answers document (saved on the next save).

        Answers for schema fields go through the same coercion as single
        edits, repeater lengths included. Keys the schema does not know
        are stored as given.
        """
        self._require_editable()
        if not isinstance(content, dict):
            raise ValidationError("Form content must be an object")
        replacement = copy.deepcopy(content)
        for field in self.schema.iter_fields():
            if field.carries_value and field.key in replacement:
                replacement[field.key] = field_renderer.coerce_value(field, replacement[field.key])
        self.content = replacement

    def update_field(self, path: FieldPath, value: Any) -> Any:
        """Write one answer in memory (saved on the next save)"""
        self._require_editable()
        field = self.field_at(path)
        if path.index is not None:
            container = self.schema.find_field(path.parent)
            _, maximum = form_content.item_bounds(container)
            if path.index >= maximum:
                raise ValidationError(f"'{path.parent}' accepts at most {maximum} items")
        stored = field_renderer.coerce_value(field, value)
        self.content = form_content.set_value(self.content, path, stored)
        return stored

    def toggle_choice(self, path: FieldPath, label: str) -> List[str]:
        field = self.field_at(path)
        if field.type != FieldType.CHECKBOX_GROUP:
            raise ValidationError(f"'{path}' is not a checkbox group")
        return self.update_field(path, field_renderer.toggle_choice(self.get(path), label))

    def add_item(self, key: str) -> int:
        """Append an empty repeater item; returns the new item count"""
        self._require_editable()
        field = self._repeater(key)
        self.content = form_content.add_item(self.content, field)
        return len(self.content[key])

    def remove_item(self, key: str, index: int) -> int:
        self._require_editable()
        field = self._repeater(key)
        self.content = form_content.remove_item(self.content, field, index)
        return len(self.content[key])

    def upload_file(self, path: FieldPath, filename: str, data: bytes) -> str:
        """
        Upload a file for a file_upload field and store its public URL.

        Only the uploading field is locked while the upload runs.
        """
        self._require_editable()
        field = self.field_at(path)
        if field.type != FieldType.FILE_UPLOAD:
            raise ValidationError(f"'{path}' does not accept files")

        self.uploads.begin(path)
        try:
            object_path = unique_object_path(str(self.document.user_id), filename)
            url = self.storage.upload(settings.AVATAR_BUCKET, object_path, data)
        except StorageError as e:
            logger.error(f"Upload for {path} failed: {e}")
            self.error = "Erro ao enviar arquivo."
            raise BackendError(self.error, e)
        finally:
            self.uploads.finish(path)

        self.content = form_content.set_value(self.content, path, url)
        return url

    def _repeater(self, key: str) -> FieldSchema:
        field = self.schema.find_field(key)
        if field is None or field.type != FieldType.REPEATER:
            raise ValidationError(f"'{key}' is not a repeater")
        return field

    def _require_editable(self):
        if not self.interactive:
            raise ValidationError("Form is not loaded")
        if not self.editable:
            raise AuthorizationError("This form is read-only for you")

    def _fail(self, message: str):
        self.state = FormState.ERROR
        self.error = message

    # ------------------------------------------------------------------
    # Navigation and views
    # ------------------------------------------------------------------

    def go_to_section(self, index: int) -> int:
        self.current_section = max(0, min(self.schema.section_count - 1, index))
        return self.current_section

    def next_section(self) -> int:
        return self.go_to_section(self.current_section + 1)

    def previous_section(self) -> int:
        return self.go_to_section(self.current_section - 1)

    @property
    def is_last_section(self) -> bool:
        return self.current_section == self.schema.section_count - 1

    def render_section(self, index: Optional[int] = None) -> List[RenderedControl]:
        if not self.interactive:
            raise ValidationError("Form is not loaded")
        section = self.schema.sections[self.current_section if index is None else index]
        return field_renderer.render_section(section.fields, self.content, self.editable, self.uploads)

    def missing_required(self) -> List[str]:
        """Paths of required answers still blank (informational)"""
        missing = []
        for field in self.schema.iter_fields():
            if field.type == FieldType.GROUP:
                for child in field.fields:
                    path = FieldPath(child.key, parent=field.key)
                    if child.required and form_content.is_blank(self.get(path)):
                        missing.append(str(path))
            elif field.type == FieldType.REPEATER:
                items = form_content.repeater_items(self.content, field)
                for i in range(len(items)):
                    for child in field.fields:
                        path = FieldPath(child.key, parent=field.key, index=i)
                        if child.required and form_content.is_blank(self.get(path)):
                            missing.append(str(path))
            elif field.required and field.type not in (FieldType.SELECT, FieldType.SECTION_TITLE):
                if form_content.is_blank(self.get(FieldPath(field.key))):
                    missing.append(field.key)
        return missing


class FormService:
    """Creates and looks up the one form document per user"""

    def __init__(self):
        self._uploads: Dict[str, field_renderer.UploadTracker] = {}
        self._lock = threading.Lock()

    def uploads_for(self, slug: str) -> field_renderer.UploadTracker:
        """Upload locks shared by every session opened on one form"""
        with self._lock:
            return self._uploads.setdefault(slug, field_renderer.UploadTracker())

    def ensure_form(self, user_id: str, full_name: Optional[str] = None) -> str:
        """Create the user's form if missing; returns its slug"""
        existing = db.execute_query(
            "SELECT slug FROM user_forms WHERE user_id = %s", (user_id,), fetch_one=True
        )
        if existing:
            return existing["slug"]

        slug = make_slug(full_name or "guardiao")
        row = db.execute_query(
            """
            INSERT INTO user_forms (slug, user_id, content, status, updated_at)
            VALUES (%s, %s, %s, %s, NOW())
            ON CONFLICT (user_id) DO NOTHING
            RETURNING slug
            """,
            (slug, user_id, Json({}), FormStatus.DRAFT.value),
            fetch_one=True,
        )
        if row:
            logger.info(f"Created form {row['slug']} for user {user_id}")
            return row["slug"]

        # Lost a race against a concurrent create
        existing = db.execute_query(
            "SELECT slug FROM user_forms WHERE user_id = %s", (user_id,), fetch_one=True
        )
        if not existing:
            raise BackendError("Could not create form")
        return existing["slug"]

    def get_by_user(self, user_id: str) -> Optional[FormDocument]:
        row = db.execute_query(
            """
            SELECT slug, user_id, content, status, last_submitted_at, updated_at
            FROM user_forms WHERE user_id = %s
            """,
            (user_id,),
            fetch_one=True,
        )
        return FormDocument(**row) if row else None

    def open(self, slug: str, caller: Caller, **kwargs) -> FormSession:
        kwargs.setdefault("uploads", self.uploads_for(slug))
        session = FormSession(slug, caller, **kwargs)
        session.load()
        return session


def make_slug(name: str) -> str:
    """URL-safe slug from a display name plus a random suffix"""
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    base = re.sub(r"[^a-z0-9]+", "-", ascii_name.lower()).strip("-")[:40] or "guardiao"
    return f"{base}-{secrets.token_hex(3)}"


_form_service = None

def get_form_service() -> FormService:
    """Get singleton instance of FormService"""
    global _form_service
    if _form_service is None:
        _form_service = FormService()
    return _form_service
