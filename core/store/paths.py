"""Document paths used by the services."""

from __future__ import annotations

USERS = "users"
COMMUNITY_PRESETS = "community-presets"


def user_path(uid: str) -> str:
    return f"{USERS}/{_segment(uid)}"


def presets_collection(uid: str) -> str:
    return f"{user_path(uid)}/presets"


def preset_path(uid: str, preset_id: str) -> str:
    return f"{presets_collection(uid)}/{_segment(preset_id)}"


def tables_collection(uid: str) -> str:
    return f"{user_path(uid)}/tables"


def table_path(uid: str, table_id: str) -> str:
    return f"{tables_collection(uid)}/{_segment(table_id)}"


def community_preset_path(preset_id: str) -> str:
    return f"{COMMUNITY_PRESETS}/{_segment(preset_id)}"


def _segment(value: str) -> str:
    if not value or "/" in value or value in {".", ".."}:
        raise ValueError(f"invalid document id: {value!r}")
    return value
