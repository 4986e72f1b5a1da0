"""
Unit tests for payload normalization.

Tests cover:
- Game identity validation and custom field rules
- Tag/view id handling
- Setting key/value coercion
- Delete payload reduction
"""

import pytest

from backend.shelfsync_server.sync.normalize import (
    EntityValidationError,
    normalize_game_identity,
    normalize_game_payload,
    normalize_line_endings,
    normalize_object_payload,
    normalize_record_identity,
    normalize_record_payload,
    normalize_setting_identity,
    normalize_setting_payload,
)


def game(**overrides):
    payload = {"igdbGameId": "1942", "platformIgdbId": 6, "title": "The Witcher 3", "platform": "PC"}
    payload.update(overrides)
    return payload


class TestObjectPayload:
    """Tests for the object-shape check."""

    @pytest.mark.parametrize("value", [None, [], "text", 5])
    def test_non_object_rejected(self, value):
        with pytest.raises(EntityValidationError, match="Invalid operation payload."):
            normalize_object_payload(value)

    def test_line_endings(self):
        assert normalize_line_endings("a\r\nb\rc\nd") == "a\nb\nc\nd"


class TestGamePayload:
    """Tests for game upsert normalization."""

    def test_identity_is_trimmed_and_parsed(self):
        result = normalize_game_payload(game(igdbGameId="  1942 ", platformIgdbId="6"))

        assert result.identity.igdb_game_id == "1942"
        assert result.identity.platform_igdb_id == 6
        assert result.identity.entity_key == "1942::6"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"igdbGameId": "   "},
            {"igdbGameId": 1942},
            {"platformIgdbId": 0},
            {"platformIgdbId": -3},
            {"platformIgdbId": "abc"},
            {"platformIgdbId": None},
            {"platformIgdbId": "99999999999999999999"},
            {"platformIgdbId": 2**63},
        ],
    )
    def test_invalid_identity(self, overrides):
        with pytest.raises(EntityValidationError, match="Invalid game payload identity."):
            normalize_game_payload(game(**overrides))

    def test_leading_integer_platform_id(self):
        result = normalize_game_payload(game(platformIgdbId="48abc"))
        assert result.identity.platform_igdb_id == 48

    def test_largest_storable_platform_id(self):
        result = normalize_game_payload(game(platformIgdbId=str(2**63 - 1)))
        assert result.identity.platform_igdb_id == 2**63 - 1

    def test_oversized_custom_platform_id_dropped(self):
        result = normalize_game_payload(
            game(customPlatform="Steam Deck", customPlatformIgdbId="99999999999999999999")
        )

        assert result.custom_platform is None
        assert result.custom_platform_igdb_id is None

    def test_title_and_platform_trimmed(self):
        payload = normalize_game_payload(game(title="  Hades  ", platform=" Switch ")).to_dict()

        assert payload["title"] == "Hades"
        assert payload["platform"] == "Switch"

    def test_notes_line_endings_normalized(self):
        payload = normalize_game_payload(game(notes="line1\r\nline2\rline3")).to_dict()
        assert payload["notes"] == "line1\nline2\nline3"

    def test_non_string_notes_pass_through(self):
        payload = normalize_game_payload(game(notes=None)).to_dict()
        assert payload["notes"] is None

    def test_unknown_fields_preserved(self):
        payload = normalize_game_payload(game(rating=9, status="playing")).to_dict()

        assert payload["rating"] == 9
        assert payload["status"] == "playing"

    def test_custom_title_equal_to_title_dropped(self):
        payload = normalize_game_payload(game(customTitle=" The Witcher 3 ")).to_dict()
        assert payload["customTitle"] is None

    def test_custom_title_kept(self):
        payload = normalize_game_payload(game(customTitle="  Witcher III  ")).to_dict()
        assert payload["customTitle"] == "Witcher III"

    def test_custom_platform_requires_id(self):
        payload = normalize_game_payload(game(customPlatform="Steam Deck")).to_dict()

        assert payload["customPlatform"] is None
        assert payload["customPlatformIgdbId"] is None

    def test_custom_platform_with_id(self):
        payload = normalize_game_payload(
            game(customPlatform="Steam Deck", customPlatformIgdbId="163")
        ).to_dict()

        assert payload["customPlatform"] == "Steam Deck"
        assert payload["customPlatformIgdbId"] == 163

    def test_custom_platform_equal_to_platform_drops_both(self):
        payload = normalize_game_payload(
            game(customPlatform="PC", customPlatformIgdbId=6)
        ).to_dict()

        assert payload["customPlatform"] is None
        assert payload["customPlatformIgdbId"] is None

    def test_custom_platform_id_without_name_dropped(self):
        payload = normalize_game_payload(game(customPlatformIgdbId=163)).to_dict()
        assert payload["customPlatformIgdbId"] is None

    def test_custom_cover_must_be_data_image(self):
        kept = normalize_game_payload(
            game(customCoverUrl="DATA:image/png;base64,iVBORw0KGgo=")
        ).to_dict()
        dropped = normalize_game_payload(
            game(customCoverUrl="https://example.com/cover.png")
        ).to_dict()

        assert kept["customCoverUrl"] == "DATA:image/png;base64,iVBORw0KGgo="
        assert dropped["customCoverUrl"] is None

    def test_updated_at_kept_or_assigned(self):
        kept = normalize_game_payload(game(updatedAt="2024-01-01T00:00:00.000Z")).to_dict()
        assigned = normalize_game_payload(game(updatedAt="  ")).to_dict()

        assert kept["updatedAt"] == "2024-01-01T00:00:00.000Z"
        assert assigned["updatedAt"].endswith("Z")
        assert assigned["updatedAt"] != "  "


class TestGameIdentity:
    """Tests for game delete normalization."""

    def test_reduced_to_identity(self):
        identity = normalize_game_identity(game(notes="gone"))
        assert identity.to_dict() == {"igdbGameId": "1942", "platformIgdbId": 6}

    def test_invalid(self):
        with pytest.raises(EntityValidationError, match="Invalid game delete payload."):
            normalize_game_identity({"igdbGameId": "1942"})

    def test_oversized_platform_id(self):
        with pytest.raises(EntityValidationError, match="Invalid game delete payload."):
            normalize_game_identity(game(platformIgdbId="99999999999999999999"))


class TestRecordPayload:
    """Tests for tag/view normalization."""

    def test_explicit_id(self):
        record = normalize_record_payload({"id": 7, "name": "RPG"})

        assert record.id == 7
        assert record.with_id(7) == {"id": 7, "name": "RPG"}

    def test_integral_float_id(self):
        assert normalize_record_payload({"id": 7.0}).id == 7

    @pytest.mark.parametrize("value", [None, 0, -1, "7", True, 2.5])
    def test_non_explicit_id(self, value):
        assert normalize_record_payload({"id": value, "name": "RPG"}).id is None

    def test_delete_identity(self):
        assert normalize_record_identity({"id": "12", "name": "x"}, "tag").to_dict() == {"id": 12}

    def test_delete_invalid_id(self):
        with pytest.raises(EntityValidationError, match="Invalid view payload id."):
            normalize_record_identity({"id": 0}, "view")

    @pytest.mark.parametrize("value", [1e20, 2**63, 99999999999999999999])
    def test_oversized_explicit_id(self, value):
        with pytest.raises(EntityValidationError, match="Invalid tag payload id."):
            normalize_record_payload({"id": value, "name": "RPG"}, "tag")

    def test_largest_storable_explicit_id(self):
        assert normalize_record_payload({"id": 2**63 - 1}, "tag").id == 2**63 - 1

    def test_delete_oversized_id(self):
        with pytest.raises(EntityValidationError, match="Invalid view payload id."):
            normalize_record_identity({"id": "99999999999999999999"}, "view")


class TestSettingPayload:
    """Tests for setting normalization."""

    def test_key_trimmed(self):
        setting = normalize_setting_payload({"key": "  theme ", "value": "dark"})
        assert setting.to_dict() == {"key": "theme", "value": "dark"}

    @pytest.mark.parametrize("value", [None, 42, {"a": 1}])
    def test_non_string_value_coerced(self, value):
        assert normalize_setting_payload({"key": "theme", "value": value}).value == ""

    def test_missing_key(self):
        with pytest.raises(EntityValidationError, match="Invalid setting payload key."):
            normalize_setting_payload({"key": "  ", "value": "dark"})

    def test_delete_identity(self):
        assert normalize_setting_identity({"key": " theme "}).to_dict() == {"key": "theme"}

    def test_delete_missing_key(self):
        with pytest.raises(EntityValidationError, match="Invalid setting delete payload key."):
            normalize_setting_identity({})
