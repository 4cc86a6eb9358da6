"""
Form session tests

The store is replaced with mocks on the global db instance, the same
object the services import.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch
from uuid import uuid4

import psycopg2
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mutum.models import Caller, FormStatus
from mutum.services import AuthorizationError, BackendError, NotFoundError, ValidationError
from mutum.services.form_content import FieldPath
from mutum.services.form_engine import (
    SAVED_DRAFT,
    SAVED_SUBMITTED,
    FormService,
    FormSession,
    FormState,
    make_slug,
)
from mutum.utils.config import settings
from mutum.utils.database import db
from mutum.utils.storage import ObjectStorage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
OWNER = uuid4()


def form_row(status="draft", content=None, user_id=OWNER):
    return {
        "slug": "ana-abc123",
        "user_id": user_id,
        "content": content if content is not None else {"nome_civil": "Ana"},
        "status": status,
        "last_submitted_at": None,
        "updated_at": None,
    }


def open_session(row, caller=None, profile_sync=None, **kwargs):
    session = FormSession(
        "ana-abc123",
        caller or Caller(user_id=OWNER, role="guardiao"),
        profile_sync=profile_sync or MagicMock(),
        clock=lambda: NOW,
        **kwargs,
    )
    with patch.object(db, "execute_query", return_value=row):
        session.load()
    return session


def test_load_hydrates_draft():
    session = open_session(form_row())
    assert session.state == FormState.DRAFT
    assert session.editable
    assert session.get(FieldPath("nome_civil")) == "Ana"
    assert session.current_section == 0


def test_load_missing_form():
    session = FormSession("nope", Caller(user_id=OWNER), profile_sync=MagicMock())
    with patch.object(db, "execute_query", return_value=None):
        with pytest.raises(NotFoundError):
            session.load()
    assert session.state == FormState.ERROR


def test_load_store_failure():
    session = FormSession("nope", Caller(user_id=OWNER), profile_sync=MagicMock())
    with patch.object(db, "execute_query", side_effect=psycopg2.OperationalError("down")):
        with pytest.raises(BackendError):
            session.load()
    assert session.state == FormState.ERROR
    assert session.error


def test_stranger_is_denied():
    with pytest.raises(AuthorizationError):
        open_session(form_row(), caller=Caller(user_id=uuid4(), role="guardiao"))


def test_admin_can_open_and_edit_any_form():
    admin = Caller(user_id=uuid4(), role=settings.ADMIN_ROLES[0])
    session = open_session(form_row(), caller=admin)
    assert session.is_admin and not session.is_owner
    assert session.editable


def test_read_only_session_cannot_edit():
    session = open_session(form_row(), read_only=True)
    assert not session.editable
    with pytest.raises(AuthorizationError):
        session.update_field(FieldPath("nome_civil"), "Bia")
    assert all(c.disabled for c in session.render_section(0))


def test_save_draft_stamps_updated_at_only():
    session = open_session(form_row())
    session.update_field(FieldPath("sobrenome"), "Silva")

    with patch.object(db, "execute_update", return_value=1) as update:
        document = session.save()

    assert update.call_count == 1
    query, params = update.call_args[0]
    assert "last_submitted_at" not in query
    assert params[1] == "draft"
    assert params[2] == NOW
    assert document.status == FormStatus.DRAFT
    assert document.updated_at == NOW
    assert document.last_submitted_at is None
    assert session.message == SAVED_DRAFT


def test_finalize_marks_submitted():
    session = open_session(form_row())
    with patch.object(db, "execute_update", return_value=1) as update:
        document = session.save(finalize=True)

    query, params = update.call_args[0]
    assert "last_submitted_at" in query
    assert document.status == FormStatus.SUBMITTED
    assert document.last_submitted_at == NOW
    assert session.state == FormState.SUBMITTED
    assert session.message == SAVED_SUBMITTED


def test_submitted_form_never_regresses_to_draft():
    session = open_session(form_row(status="submitted"))
    with patch.object(db, "execute_update", return_value=1) as update:
        document = session.save(finalize=False)

    assert update.call_args[0][1][1] == "submitted"
    assert document.status == FormStatus.SUBMITTED


def test_save_failure_raises_and_keeps_answers():
    session = open_session(form_row())
    session.update_field(FieldPath("sobrenome"), "Silva")
    with patch.object(db, "execute_update", side_effect=psycopg2.OperationalError("down")):
        with pytest.raises(BackendError):
            session.save()
    assert session.get(FieldPath("sobrenome")) == "Silva"
    assert not session.saving
    assert session.error


def test_save_of_deleted_form():
    session = open_session(form_row())
    with patch.object(db, "execute_update", return_value=0):
        with pytest.raises(NotFoundError):
            session.save()


def test_profile_sync_failure_does_not_fail_save():
    sync = MagicMock()
    sync.sync.side_effect = psycopg2.OperationalError("profiles down")
    session = open_session(form_row(), profile_sync=sync)

    with patch.object(db, "execute_update", return_value=1):
        document = session.save(finalize=True)

    sync.sync.assert_called_once_with(str(OWNER), session.content)
    assert document.status == FormStatus.SUBMITTED


def test_profile_sync_only_on_finalize_when_configured():
    sync = MagicMock()
    session = open_session(form_row(), profile_sync=sync)
    with patch.object(settings, "PROFILE_SYNC_ON_EVERY_SAVE", False):
        with patch.object(db, "execute_update", return_value=1):
            session.save()
            sync.sync.assert_not_called()
            session.save(finalize=True)
    sync.sync.assert_called_once()


def test_repeater_editing_through_session():
    session = open_session(form_row(content={}))
    assert session.add_item("emergencia") == 2
    with pytest.raises(ValidationError):
        session.add_item("emergencia")

    session.update_field(FieldPath("nome_contato", parent="emergencia", index=1), "Rui")
    assert session.content["emergencia"][1] == {"nome_contato": "Rui"}

    with pytest.raises(ValidationError):
        session.update_field(FieldPath("nome_contato", parent="emergencia", index=2), "Zé")

    assert session.remove_item("emergencia", 0) == 1
    with pytest.raises(ValidationError):
        session.remove_item("emergencia", 0)


def test_path_must_match_container_layout():
    session = open_session(form_row())
    with pytest.raises(ValidationError):
        session.update_field(FieldPath("telefone", parent="contatos", index=0), "1")
    with pytest.raises(ValidationError):
        session.update_field(FieldPath("unknown"), "1")


def test_toggle_choice_through_session():
    session = open_session(form_row())
    path = FieldPath("squads_interesse")
    assert session.toggle_choice(path, "Espaço de Cura") == ["Espaço de Cura"]
    assert session.toggle_choice(path, "Espaço de Cura") == []


def test_replace_content():
    session = open_session(form_row())
    session.replace_content({"nome_civil": "Bia"})
    assert session.content == {"nome_civil": "Bia"}
    with pytest.raises(ValidationError):
        session.replace_content(["not", "a", "dict"])


def test_replace_content_enforces_repeater_limit_and_types():
    session = open_session(form_row())
    contact = {"nome_contato": "Rui", "parentesco": "Irmão", "numero_contato": "99"}
    with pytest.raises(ValidationError):
        session.replace_content({"emergencia": [contact, contact, contact]})
    with pytest.raises(ValidationError):
        session.replace_content({"biometria_saude": {"altura": "nan"}})
    with pytest.raises(ValidationError):
        session.replace_content({"tamanho_roupa": "XXXL"})
    assert session.content == {"nome_civil": "Ana"}

    session.replace_content({"lideranca_vs_apoio": "70", "emergencia": [contact], "notas": "livre"})
    assert session.content == {"lideranca_vs_apoio": 70, "emergencia": [contact], "notas": "livre"}


def test_navigation_is_clamped():
    session = open_session(form_row())
    assert session.previous_section() == 0
    assert session.go_to_section(99) == 3
    assert session.is_last_section
    assert session.next_section() == 3


def test_upload_file_stores_url(tmp_path):
    storage = ObjectStorage(root=str(tmp_path), public_url="http://files.test")
    session = open_session(form_row(), storage=storage)

    url = session.upload_file(FieldPath("profile_photo"), "me.png", b"png-bytes")

    assert url.startswith(f"http://files.test/{settings.AVATAR_BUCKET}/{OWNER}/")
    assert url.endswith("_me.png")
    assert session.get(FieldPath("profile_photo")) == url
    assert not session.uploads.is_busy(FieldPath("profile_photo"))


def test_upload_rejected_for_non_file_field(tmp_path):
    session = open_session(form_row(), storage=ObjectStorage(root=str(tmp_path)))
    with pytest.raises(ValidationError):
        session.upload_file(FieldPath("nome_civil"), "x.txt", b"x")


def test_missing_required_lists_blank_answers():
    session = open_session(form_row(content={"nome_civil": "Ana"}))
    missing = session.missing_required()
    assert "sobrenome" in missing
    assert "nome_civil" not in missing


def test_make_slug():
    slug = make_slug("João da Silva")
    assert slug.startswith("joao-da-silva-")
    assert len(slug.rsplit("-", 1)[1]) == 6


def test_ensure_form_returns_existing_slug():
    with patch.object(db, "execute_query", return_value={"slug": "ana-abc123"}) as query:
        assert FormService().ensure_form(str(OWNER), "Ana") == "ana-abc123"
    assert query.call_count == 1


def test_ensure_form_creates_when_missing():
    with patch.object(db, "execute_query", side_effect=[None, {"slug": "ana-ff00aa"}]):
        assert FormService().ensure_form(str(OWNER), "Ana") == "ana-ff00aa"
