"""
User Administration - privileged creation and update of member accounts.

Only callers holding an admin role may use it; anyone else gets an
AuthorizationError before anything is written.
"""

import logging
import re
from typing import Any, Dict, Optional

import bcrypt
import psycopg2
from psycopg2 import errors
from psycopg2.extras import Json

from mutum.models.domain import Caller
from mutum.services.exceptions import AuthorizationError, BackendError, NotFoundError, ValidationError
from mutum.utils.config import settings
from mutum.utils.database import db

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 6
# bcrypt only reads the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("ascii")


def verify_password(password: str, encoded: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), encoded.encode("ascii"))
    except (ValueError, UnicodeEncodeError):
        return False


class UserAdminService:
    """Creates and updates auth users together with their profiles"""

    def _require_admin(self, caller: Caller):
        if not caller.is_admin(settings.ADMIN_ROLES):
            logger.warning(f"User {caller.user_id} ({caller.role}) attempted user administration")
            raise AuthorizationError("Only administrators can manage users")

    def _validate_credentials(self, email: Optional[str], password: Optional[str]):
        if email is not None and not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email address")
        if password is not None and len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password needs at least {MIN_PASSWORD_LENGTH} characters")
        if password is not None and len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password may have at most {MAX_PASSWORD_BYTES} bytes")

    def create_user(
        self,
        caller: Caller,
        email: str,
        password: str,
        role: str,
        full_name: str,
    ) -> Dict[str, Any]:
        """
        Create a confirmed account and its profile.

        A failing profile write is logged; the account itself stays created.
        """
        self._require_admin(caller)
        if not email or not password:
            raise ValidationError("Email and password are required")
        self._validate_credentials(email, password)

        try:
            user = db.execute_query(
                """
                INSERT INTO auth_users (email, password_hash, email_confirmed, user_metadata)
                VALUES (%s, %s, TRUE, %s)
                RETURNING id, email
                """,
                (email.lower(), hash_password(password), Json({"full_name": full_name, "role": role})),
                fetch_one=True,
            )
        except errors.UniqueViolation:
            raise ValidationError("Email already registered")
        except psycopg2.Error as e:
            logger.error(f"User creation failed for {email}: {e}")
            raise BackendError("Erro ao criar usuário.", e)

        try:
            db.execute_update(
                """
                INSERT INTO profiles (id, full_name, role) VALUES (%s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET full_name = EXCLUDED.full_name, role = EXCLUDED.role
                """,
                (str(user["id"]), full_name, role),
            )
        except psycopg2.Error as e:
            logger.error(f"Profile creation failed for {user['id']}: {e}")

        logger.info(f"Created user {user['id']} with role {role}")
        return dict(user)

    def update_user(
        self,
        caller: Caller,
        user_id: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
        full_name: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Update credentials and/or profile fields of an existing user"""
        self._require_admin(caller)
        if not user_id:
            raise ValidationError("User ID required for update")
        self._validate_credentials(email, password)

        auth_updates: Dict[str, Any] = {}
        if email:
            auth_updates["email"] = email.lower()
        if password:
            auth_updates["password_hash"] = hash_password(password)
        profile_updates = {k: v for k, v in (("full_name", full_name), ("role", role)) if v}

        try:
            if auth_updates:
                assignments = ", ".join(f"{column} = %s" for column in auth_updates)
                count = db.execute_update(
                    f"UPDATE auth_users SET {assignments} WHERE id = %s",
                    (*auth_updates.values(), user_id),
                )
                if not count:
                    raise NotFoundError(f"User {user_id} not found")
            if profile_updates:
                assignments = ", ".join(f"{column} = %s" for column in profile_updates)
                count = db.execute_update(
                    f"UPDATE profiles SET {assignments} WHERE id = %s",
                    (*profile_updates.values(), user_id),
                )
                if not count:
                    raise NotFoundError(f"Profile {user_id} not found")
        except errors.UniqueViolation:
            raise ValidationError("Email already registered")
        except psycopg2.Error as e:
            logger.error(f"User update failed for {user_id}: {e}")
            raise BackendError("Erro ao atualizar usuário.", e)

        logger.info(f"Updated user {user_id}: {sorted(auth_updates) + sorted(profile_updates)}")
        return {"id": user_id, "updated": sorted(auth_updates) + sorted(profile_updates)}


_user_admin_service = None

def get_user_admin_service() -> UserAdminService:
    """Get singleton instance of UserAdminService"""
    global _user_admin_service
    if _user_admin_service is None:
        _user_admin_service = UserAdminService()
    return _user_admin_service
