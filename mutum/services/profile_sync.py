"""
Profile Sync - projects well-known form answers onto the profile record.

One-directional: form content -> profiles row. Missing or blank answers
are skipped so existing profile values are never overwritten with nulls.
"""

import logging
from typing import Any, Dict, Optional

from psycopg2 import sql

from mutum.services.form_content import FieldPath, get_value, is_blank
from mutum.utils.database import db

logger = logging.getLogger(__name__)

AVATAR_PATH = FieldPath("profile_photo")
SPIRIT_NAME_PATH = FieldPath("nome_yawanawa")
PHONE_PATHS = (FieldPath("telefone", parent="contatos"), FieldPath("whatsapp", parent="contatos"))
FIRST_NAME_PATH = FieldPath("nome_civil")
LAST_NAME_PATH = FieldPath("sobrenome")


def project_profile(content: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Derive the profile columns available in the form content"""
    updates: Dict[str, str] = {}

    avatar = get_value(content, AVATAR_PATH)
    if not is_blank(avatar):
        updates["avatar_url"] = str(avatar).strip()

    spirit_name = get_value(content, SPIRIT_NAME_PATH)
    if not is_blank(spirit_name):
        updates["spirit_name"] = str(spirit_name).strip()

    for path in PHONE_PATHS:
        phone = get_value(content, path)
        if not is_blank(phone):
            updates["phone"] = str(phone).strip()
            break

    names = [get_value(content, FIRST_NAME_PATH), get_value(content, LAST_NAME_PATH)]
    full_name = " ".join(str(n).strip() for n in names if not is_blank(n))
    if full_name:
        updates["full_name"] = full_name

    return updates


class ProfileSyncService:
    """Upserts projected form answers onto profiles"""

    def sync(self, user_id: str, content: Optional[Dict[str, Any]]) -> Dict[str, str]:
        """
        Write the projection for one user.

        Returns:
            The columns written (empty when nothing was projectable)
        """
        updates = project_profile(content)
        if not updates:
            logger.info(f"No profile fields to sync for user {user_id}")
            return updates

        columns = list(updates)
        query = sql.SQL(
            "INSERT INTO profiles (id, {columns}) VALUES (%s, {values}) "
            "ON CONFLICT (id) DO UPDATE SET {assignments}"
        ).format(
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            assignments=sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c)) for c in columns
            ),
        )
        db.execute_update(query, (user_id, *updates.values()))
        logger.info(f"Synced profile fields {columns} for user {user_id}")
        return updates


_profile_sync_service = None

def get_profile_sync_service() -> ProfileSyncService:
    """Get singleton instance of ProfileSyncService"""
    global _profile_sync_service
    if _profile_sync_service is None:
        _profile_sync_service = ProfileSyncService()
    return _profile_sync_service
