"""
User administration tests
"""

import sys
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

import psycopg2
import pytest
from psycopg2 import errors

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mutum.models import Caller
from mutum.services import AuthorizationError, NotFoundError, ValidationError
from mutum.services.user_admin import UserAdminService, hash_password, verify_password
from mutum.utils.database import db

ADMIN = Caller(user_id=uuid4(), role="superadmin")
MEMBER = Caller(user_id=uuid4(), role="guardiao")


def test_password_hash_roundtrip():
    encoded = hash_password("segredo123", rounds=4)
    assert encoded.startswith("$2b$04$")
    assert verify_password("segredo123", encoded)
    assert not verify_password("errado", encoded)
    assert not verify_password("segredo123", "garbage")


def test_non_admin_cannot_create_users():
    with patch.object(db, "execute_query") as query:
        with pytest.raises(AuthorizationError):
            UserAdminService().create_user(MEMBER, "a@b.co", "segredo123", "guardiao", "Ana")
    query.assert_not_called()


def test_create_user_writes_account_and_profile():
    new_id = uuid4()
    with patch.object(db, "execute_query", return_value={"id": new_id, "email": "ana@mutum.org"}) as query, \
            patch.object(db, "execute_update", return_value=1) as update:
        user = UserAdminService().create_user(ADMIN, "Ana@Mutum.org", "segredo123", "artesa", "Ana Silva")

    assert user == {"id": new_id, "email": "ana@mutum.org"}
    assert query.call_args[0][1][0] == "ana@mutum.org"
    assert update.call_args[0][1] == (str(new_id), "Ana Silva", "artesa")


def test_profile_failure_keeps_created_account():
    new_id = uuid4()
    with patch.object(db, "execute_query", return_value={"id": new_id, "email": "a@b.co"}), \
            patch.object(db, "execute_update", side_effect=psycopg2.OperationalError("down")):
        user = UserAdminService().create_user(ADMIN, "a@b.co", "segredo123", "artesa", "Ana")
    assert user["id"] == new_id


def test_duplicate_email():
    with patch.object(db, "execute_query", side_effect=errors.UniqueViolation("dup")):
        with pytest.raises(ValidationError):
            UserAdminService().create_user(ADMIN, "a@b.co", "segredo123", "artesa", "Ana")


def test_credentials_validated():
    service = UserAdminService()
    with pytest.raises(ValidationError):
        service.create_user(ADMIN, "not-an-email", "segredo123", "artesa", "Ana")
    with pytest.raises(ValidationError):
        service.create_user(ADMIN, "a@b.co", "123", "artesa", "Ana")


def test_update_user_only_touches_given_fields():
    user_id = str(uuid4())
    with patch.object(db, "execute_update", return_value=1) as update:
        result = UserAdminService().update_user(ADMIN, user_id, full_name="Ana Souza")

    assert update.call_count == 1
    query, params = update.call_args[0]
    assert query.startswith("UPDATE profiles")
    assert params == ("Ana Souza", user_id)
    assert result == {"id": user_id, "updated": ["full_name"]}


def test_update_unknown_user():
    with patch.object(db, "execute_update", return_value=0):
        with pytest.raises(NotFoundError):
            UserAdminService().update_user(ADMIN, str(uuid4()), email="x@y.co")


def test_overlong_password_rejected():
    with patch.object(db, "execute_query") as query:
        with pytest.raises(ValidationError):
            UserAdminService().create_user(ADMIN, "ana@mutum.org", "ç" * 40, "guardiao", "Ana")
    query.assert_not_called()
