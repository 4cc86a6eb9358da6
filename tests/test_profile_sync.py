"""
Profile projection tests
"""

import sys
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mutum.services.profile_sync import ProfileSyncService, project_profile
from mutum.utils.database import db


def test_full_projection():
    content = {
        "profile_photo": "http://files/avatars/u/1_me.png",
        "nome_yawanawa": "Tene",
        "nome_civil": "Ana",
        "sobrenome": "Silva",
        "contatos": {"telefone": "", "whatsapp": "+55 68 9999"},
    }
    assert project_profile(content) == {
        "avatar_url": "http://files/avatars/u/1_me.png",
        "spirit_name": "Tene",
        "phone": "+55 68 9999",
        "full_name": "Ana Silva",
    }


def test_phone_prefers_mobile_over_whatsapp():
    content = {"contatos": {"telefone": "111", "whatsapp": "222"}}
    assert project_profile(content)["phone"] == "111"


def test_blank_answers_are_skipped():
    assert project_profile({"nome_civil": "  ", "profile_photo": None}) == {}
    assert project_profile({"sobrenome": "Silva"}) == {"full_name": "Silva"}
    assert project_profile(None) == {}


def test_sync_upserts_only_projected_columns():
    user_id = str(uuid4())
    with patch.object(db, "execute_update", return_value=1) as update:
        written = ProfileSyncService().sync(user_id, {"nome_yawanawa": "Tene"})

    assert written == {"spirit_name": "Tene"}
    params = update.call_args[0][1]
    assert params == (user_id, "Tene")


def test_sync_with_nothing_to_write_skips_store():
    with patch.object(db, "execute_update") as update:
        assert ProfileSyncService().sync(str(uuid4()), {}) == {}
    update.assert_not_called()
