"""
Payload normalization for synchronized entities.

Every function here is pure: it takes a raw client payload and returns a
typed, canonical payload or raises EntityValidationError. Nothing touches
storage, so the rules can be tested in isolation.

Invariants:
    - Upsert payloads keep unknown client keys (last-write-wins on the whole object)
    - Delete payloads are reduced to the identity fragment
    - customPlatform and customPlatformIgdbId survive only together
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .types import SQLITE_MAX_INTEGER, parse_int, utc_timestamp

_DATA_IMAGE_RE = re.compile(r"^data:image/[a-z0-9.+-]+;base64,", re.IGNORECASE)


class ApplyError(Exception):
    """An operation could not be applied; recorded as a failed result."""

    pass


class EntityValidationError(ApplyError):
    """Payload failed validation or normalization."""

    pass


@dataclass(frozen=True)
class GameIdentity:
    """Natural key of a game row."""

    igdb_game_id: str
    platform_igdb_id: int

    @property
    def entity_key(self) -> str:
        return f"{self.igdb_game_id}::{self.platform_igdb_id}"

    def to_dict(self) -> dict[str, Any]:
        return {"igdbGameId": self.igdb_game_id, "platformIgdbId": self.platform_igdb_id}


@dataclass(frozen=True)
class GamePayload:
    """Canonical game payload.

    Attributes:
        identity: (igdbGameId, platformIgdbId)
        custom_title: User title override, None when redundant
        custom_platform: User platform override, None unless paired with an id
        custom_platform_igdb_id: Id for custom_platform, None when it was dropped
        custom_cover_url: data:image/... URL, None otherwise
        updated_at: Client-supplied or server-assigned modification time
        fields: All other client keys, with title/platform trimmed and notes
            line endings normalized
    """

    identity: GameIdentity
    custom_title: str | None
    custom_platform: str | None
    custom_platform_igdb_id: int | None
    custom_cover_url: str | None
    updated_at: str
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.fields,
            **self.identity.to_dict(),
            "customTitle": self.custom_title,
            "customPlatform": self.custom_platform,
            "customPlatformIgdbId": self.custom_platform_igdb_id,
            "customCoverUrl": self.custom_cover_url,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class RecordIdentity:
    """Surrogate key of a tag or view row."""

    id: int

    @property
    def entity_key(self) -> str:
        return str(self.id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id}


@dataclass(frozen=True)
class RecordPayload:
    """Tag or view payload; id is None when the server must allocate one."""

    id: int | None
    fields: dict[str, Any] = field(default_factory=dict)

    def with_id(self, record_id: int) -> dict[str, Any]:
        """Stored form of the payload with its row id embedded."""
        return {**self.fields, "id": record_id}


@dataclass(frozen=True)
class SettingIdentity:
    key: str

    @property
    def entity_key(self) -> str:
        return self.key

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key}


@dataclass(frozen=True)
class SettingPayload:
    key: str
    value: str

    @property
    def entity_key(self) -> str:
        return self.key

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value}


def normalize_object_payload(value: Any) -> dict[str, Any]:
    """Require a JSON object payload (arrays and null are rejected)."""
    if not isinstance(value, dict):
        raise EntityValidationError("Invalid operation payload.")
    return value


def normalize_line_endings(text: str) -> str:
    """Convert CR-LF and lone CR to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _positive_int(value: Any) -> int | None:
    parsed = parse_int(value)
    if parsed is None or not 0 < parsed <= SQLITE_MAX_INTEGER:
        return None
    return parsed


def _game_identity(payload: dict[str, Any], message: str) -> GameIdentity:
    igdb_game_id = _trimmed(payload.get("igdbGameId"))
    platform_igdb_id = _positive_int(payload.get("platformIgdbId"))
    if not igdb_game_id or platform_igdb_id is None:
        raise EntityValidationError(message)
    return GameIdentity(igdb_game_id=igdb_game_id, platform_igdb_id=platform_igdb_id)


def normalize_game_payload(value: Any) -> GamePayload:
    """Normalize a game upsert payload.

    Raises:
        EntityValidationError: If the payload is not an object or the
            identity fields are missing or malformed
    """
    payload = normalize_object_payload(value)
    identity = _game_identity(payload, "Invalid game payload identity.")

    title = _trimmed(payload.get("title"))
    platform = _trimmed(payload.get("platform"))

    fields = dict(payload)
    if isinstance(fields.get("title"), str):
        fields["title"] = title
    if isinstance(fields.get("platform"), str):
        fields["platform"] = platform
    if isinstance(fields.get("notes"), str):
        fields["notes"] = normalize_line_endings(fields["notes"])

    custom_title_raw = _trimmed(payload.get("customTitle"))
    custom_platform_raw = _trimmed(payload.get("customPlatform"))
    custom_platform_igdb_id = _positive_int(payload.get("customPlatformIgdbId"))
    custom_cover_url_raw = _trimmed(payload.get("customCoverUrl"))

    custom_title = custom_title_raw if custom_title_raw and custom_title_raw != title else None
    custom_platform = (
        custom_platform_raw
        if custom_platform_raw
        and custom_platform_igdb_id is not None
        and custom_platform_raw != platform
        else None
    )
    custom_cover_url = (
        custom_cover_url_raw if _DATA_IMAGE_RE.match(custom_cover_url_raw) else None
    )

    updated_at = payload.get("updatedAt")
    if not isinstance(updated_at, str) or not updated_at.strip():
        updated_at = utc_timestamp()

    return GamePayload(
        identity=identity,
        custom_title=custom_title,
        custom_platform=custom_platform,
        custom_platform_igdb_id=custom_platform_igdb_id if custom_platform is not None else None,
        custom_cover_url=custom_cover_url,
        updated_at=updated_at,
        fields=fields,
    )


def normalize_game_identity(value: Any) -> GameIdentity:
    """Reduce a game delete payload to its identity."""
    payload = normalize_object_payload(value)
    return _game_identity(payload, "Invalid game delete payload.")


def _explicit_record_id(value: Any, label: str) -> int | None:
    # Only JSON numbers count; "7" does not select a row.
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value > 0:
        if value > SQLITE_MAX_INTEGER:
            raise EntityValidationError(f"Invalid {label} payload id.")
        return value
    return None


def normalize_record_payload(value: Any, label: str = "record") -> RecordPayload:
    """Normalize a tag or view upsert payload.

    Raises:
        EntityValidationError: If the payload is not an object or its
            explicit id cannot be stored
    """
    payload = normalize_object_payload(value)
    return RecordPayload(id=_explicit_record_id(payload.get("id"), label), fields=dict(payload))


def normalize_record_identity(value: Any, label: str) -> RecordIdentity:
    """Reduce a tag or view delete payload to its id."""
    payload = normalize_object_payload(value)
    record_id = _positive_int(payload.get("id"))
    if record_id is None:
        raise EntityValidationError(f"Invalid {label} payload id.")
    return RecordIdentity(id=record_id)


def normalize_setting_payload(value: Any) -> SettingPayload:
    payload = normalize_object_payload(value)
    key = _trimmed(payload.get("key"))
    if not key:
        raise EntityValidationError("Invalid setting payload key.")
    setting_value = payload.get("value")
    return SettingPayload(key=key, value=setting_value if isinstance(setting_value, str) else "")


def normalize_setting_identity(value: Any) -> SettingIdentity:
    payload = normalize_object_payload(value)
    key = _trimmed(payload.get("key"))
    if not key:
        raise EntityValidationError("Invalid setting delete payload key.")
    return SettingIdentity(key=key)
