"""Preset library and community marketplace operations."""

from __future__ import annotations

import logging
import uuid

from pydantic import ValidationError

from core.accounts.models import UserRecord
from core.presets.models import ParsedPreset, PresetIssue, PresetRecord
from core.presets.parser import lint_preset, require_parsed_preset
from core.services.records import load_record, save_record
from core.store import paths
from core.store.document_store import DocumentStore

logger = logging.getLogger("dataweaver.presets")

MANUAL_PRESET_NAME = "Untitled Manual Preset"
MANUAL_PRESET_DESCRIPTION = "A new preset saved from the manual editor."


def save_preset(
    store: DocumentStore,
    user: UserRecord,
    preset_string: str,
    *,
    name: str = MANUAL_PRESET_NAME,
    description: str = MANUAL_PRESET_DESCRIPTION,
    tags: list[str] | None = None,
) -> tuple[PresetRecord, ParsedPreset, list[PresetIssue]]:
    """Validate and store a preset in the user's library.

    Raises:
        InvalidPresetFormatError: When the preset string does not parse.
    """

    parsed = require_parsed_preset(preset_string)

    record = PresetRecord(
        id=uuid.uuid4().hex,
        name=name,
        description=description,
        author_id=user.uid,
        author_name=user.name or "Anonymous",
        preset_string=preset_string,
        tags=list(tags or []),
    )
    save_record(store, paths.preset_path(user.uid, record.id), record)
    return record, parsed, lint_preset(parsed)


def get_preset(store: DocumentStore, uid: str, preset_id: str) -> PresetRecord:
    return load_record(store, paths.preset_path(uid, preset_id), PresetRecord)


def list_presets(store: DocumentStore, uid: str) -> list[PresetRecord]:
    return _validated(store.list_children(paths.presets_collection(uid)))


def publish_preset(
    store: DocumentStore,
    user: UserRecord,
    preset_id: str,
    *,
    name: str,
    description: str,
    tags: str,
) -> PresetRecord:
    """Mark a library preset public and copy it into the community list."""

    original = get_preset(store, user.uid, preset_id)
    tag_list = split_tags(tags)

    mine = original.model_copy(
        update={"is_public": True, "name": name, "description": description, "tags": tag_list}
    )
    save_record(store, paths.preset_path(user.uid, preset_id), mine)

    public = mine.model_copy(
        update={
            "author_id": user.uid,
            "author_name": user.name or "Anonymous",
            "author_username": user.username,
            "author_avatar_url": user.avatar_url,
        }
    )
    save_record(store, paths.community_preset_path(preset_id), public)
    logger.info("Published preset %s by %s", preset_id, user.uid)
    return public


def list_community_presets(store: DocumentStore) -> list[PresetRecord]:
    """Community presets, most downloaded first."""

    presets = [
        preset
        for preset in _validated(store.list_children(paths.COMMUNITY_PRESETS))
        if preset.name and preset.preset_string and preset.author_name
    ]
    return sorted(presets, key=lambda preset: preset.download_count, reverse=True)


def add_community_preset(store: DocumentStore, uid: str, preset_id: str) -> PresetRecord:
    """Copy a community preset into the user's library as a private preset."""

    public = load_record(store, paths.community_preset_path(preset_id), PresetRecord)
    copy = public.model_copy(update={"is_public": False})
    save_record(store, paths.preset_path(uid, preset_id), copy)
    return copy


def split_tags(raw: str) -> list[str]:
    return [tag for tag in (part.strip().lower() for part in raw.split(",")) if tag]


def _validated(children: list[tuple[str, dict]]) -> list[PresetRecord]:
    presets: list[PresetRecord] = []
    for doc_id, record in children:
        try:
            presets.append(PresetRecord.model_validate({**record, "id": doc_id}))
        except ValidationError as exc:
            logger.warning("Skipping malformed preset %s: %s", doc_id, exc)
    return presets
