"""
Integration tests for RaidService.

Runs the real service stack over SQLite and the in-memory Redis client.
Rolls are passed explicitly so outcomes are deterministic: against a tier 3
monster with two participants the penalty is 1, so

- roll 100 -> 99: deals 3 damage
- roll 50  -> 49: costs 1 heart
- roll 1   -> 1:  costs 5 hearts
"""

from datetime import timedelta

import pytest

from tests.conftest import published_event_names, published_payloads
from tinglebot.core.redis.service import RedisService
from tinglebot.domain.models.base import utc_now
from tinglebot.modules.raid.service import RAID_COOLDOWN_KEY
from tinglebot.modules.shared.exceptions import (
    CooldownActiveError,
    InvalidOperationError,
    NotYourTurnError,
    RaidFullError,
    RaidParticipantExistsError,
)

BOKOBLIN = {"name": "Bokoblin", "tier": 3, "hearts": 5}


@pytest.fixture
async def party(services):
    """Two Rudania characters owned by different users."""
    link = await services.character.create_character("1", "Link", "Rudania", max_hearts=3)
    mipha = await services.character.create_character("2", "Mipha", "rudania", max_hearts=5)
    return link, mipha


async def start_with_party(services, party, monster=BOKOBLIN):
    link, mipha = party
    raid = await services.raid.start_raid("Rudania", monster, character_id=link["id"])
    await services.raid.join_raid(raid["raid_id"], mipha["id"])
    return raid["raid_id"]


@pytest.mark.integration
class TestRaidStart:
    """Test starting raids and the global cooldown."""

    async def test_start_seats_initiator_and_claims_cooldown(self, services, party, mock_event_bus):
        # Arrange
        link, _ = party

        # Act
        raid = await services.raid.start_raid("rudania", BOKOBLIN, character_id=link["id"])

        # Assert
        assert raid["village"] == "Rudania"
        assert raid["status"] == "active"
        assert raid["monster"]["current_hearts"] == 5
        assert [p["name"] for p in raid["participants"]] == ["Link"]
        assert raid["current_character_id"] == link["id"]
        assert await services.raid.get_cooldown_remaining() == 14400
        assert "raid.started" in published_event_names(mock_event_bus)

    async def test_second_raid_blocked_by_cooldown(self, services, party):
        await services.raid.start_raid("Rudania", BOKOBLIN)

        with pytest.raises(CooldownActiveError) as excinfo:
            await services.raid.start_raid("Inariko", BOKOBLIN)

        assert excinfo.value.remaining_seconds == 14400

    async def test_moderator_override_skips_cooldown(self, services):
        await services.raid.start_raid("Rudania", BOKOBLIN)

        raid = await services.raid.start_raid("Vhintl", BOKOBLIN, skip_cooldown=True)

        assert raid["village"] == "Vhintl"
        assert len(await services.raid.list_active_raids()) == 2

    async def test_failed_start_releases_cooldown(self, services):
        # Arrange
        zelda = await services.character.create_character("3", "Zelda", "Inariko")

        # Act
        with pytest.raises(InvalidOperationError):
            await services.raid.start_raid("Rudania", BOKOBLIN, character_id=zelda["id"])

        # Assert
        assert await services.raid.get_cooldown_remaining() == 0
        assert not await RedisService.exists(RAID_COOLDOWN_KEY)
        assert await services.raid.list_active_raids() == []


@pytest.mark.integration
class TestRaidJoin:
    """Test join eligibility."""

    async def test_join_rescales_and_advertises(self, services, party, mock_event_bus):
        raid_id = await start_with_party(services, party)

        raid = await services.raid.get_raid(raid_id)

        assert [p["name"] for p in raid["participants"]] == ["Link", "Mipha"]
        assert raid["analytics"]["participant_count"] == 2
        payloads = published_payloads(mock_event_bus, "raid.participant_joined")
        assert [p["character_name"] for p in payloads] == ["Link", "Mipha"]

    async def test_wrong_village_rejected(self, services, party):
        raid = await services.raid.start_raid("Rudania", BOKOBLIN)
        zelda = await services.character.create_character("3", "Zelda", "Inariko")

        with pytest.raises(InvalidOperationError):
            await services.raid.join_raid(raid["raid_id"], zelda["id"])

    async def test_same_user_cannot_seat_two_characters(self, services, party):
        link, _ = party
        sidon = await services.character.create_character("1", "Sidon", "Rudania")
        raid = await services.raid.start_raid("Rudania", BOKOBLIN, character_id=link["id"])

        with pytest.raises(RaidParticipantExistsError):
            await services.raid.join_raid(raid["raid_id"], sidon["id"])

    async def test_full_raid_rejects_players(self, services, party, config_manager):
        # Arrange
        link, mipha = party
        config_manager.set("raid.max_participants", 1)
        raid = await services.raid.start_raid("Rudania", BOKOBLIN, character_id=link["id"])

        # Act & Assert
        with pytest.raises(RaidFullError):
            await services.raid.join_raid(raid["raid_id"], mipha["id"])

    async def test_expired_raid_rejects_joins(self, services, party):
        link, mipha = party
        raid = await services.raid.start_raid("Rudania", BOKOBLIN, character_id=link["id"])

        with pytest.raises(InvalidOperationError):
            await services.raid.join_raid(
                raid["raid_id"], mipha["id"], now=utc_now() + timedelta(hours=1)
            )


@pytest.mark.integration
class TestRaidTurns:
    """Test turn resolution end to end."""

    async def test_hit_advances_turn(self, services, party):
        # Arrange
        link, mipha = party
        raid_id = await start_with_party(services, party)

        # Act
        result = await services.raid.process_turn(raid_id, link["id"], roll=100)

        # Assert
        assert result["adjusted_roll"] == 99
        assert result["damage_dealt"] == 3
        assert result["hearts_lost"] == 0
        assert result["monster_hearts"] == 2
        assert result["next_character_id"] == mipha["id"]
        assert result["raid"]["participants"][0]["damage"] == 3

    async def test_acting_out_of_turn_rejected(self, services, party):
        link, mipha = party
        raid_id = await start_with_party(services, party)

        with pytest.raises(NotYourTurnError):
            await services.raid.process_turn(raid_id, mipha["id"], roll=50)

        await services.raid.process_turn(raid_id, link["id"], roll=50)
        with pytest.raises(NotYourTurnError):
            await services.raid.process_turn(raid_id, link["id"], roll=50)

    async def test_heavy_hit_knocks_out_and_skips_ko_player(self, services, party):
        # Arrange
        link, mipha = party
        raid_id = await start_with_party(services, party)
        await services.raid.process_turn(raid_id, link["id"], roll=50)
        glance = await services.raid.process_turn(raid_id, mipha["id"], roll=50)

        # Act
        crushed = await services.raid.process_turn(raid_id, link["id"], roll=1)

        # Assert
        assert glance["character_hearts"] == 4
        assert crushed["hearts_lost"] == 5
        assert crushed["character_ko"] is True
        assert crushed["next_character_id"] == mipha["id"]
        character = await services.character.get_character(link["id"])
        assert character["ko"] is True
        assert character["current_hearts"] == 0

        after = await services.raid.process_turn(raid_id, mipha["id"], roll=60)
        assert after["next_character_id"] == mipha["id"]

    async def test_whole_party_knocked_out_fails_raid(self, services, party, mock_event_bus):
        # Arrange
        link, mipha = party
        raid_id = await start_with_party(services, party)
        await services.raid.process_turn(raid_id, link["id"], roll=1)

        # Act
        result = await services.raid.process_turn(raid_id, mipha["id"], roll=1)

        # Assert
        assert result["character_ko"] is True
        assert result["party_wiped"] is True
        assert result["next_character_id"] is None
        assert result["raid"]["status"] == "timed_out"
        assert result["raid"]["result"] == "timeout"
        assert "raid.failed" in published_event_names(mock_event_bus)
        for character in (link, mipha):
            assert (await services.character.get_character(character["id"]))["ko"] is True
        with pytest.raises(InvalidOperationError):
            await services.raid.process_turn(raid_id, mipha["id"], roll=100)

    async def test_single_knockout_keeps_raid_active(self, services, party):
        link, _ = party
        raid_id = await start_with_party(services, party)

        result = await services.raid.process_turn(raid_id, link["id"], roll=1)

        assert result["character_ko"] is True
        assert result["party_wiped"] is False
        assert result["turn_advanced"] is True
        assert result["raid"]["status"] == "active"

    async def test_revived_character_gets_turns_back(self, services, party):
        # Arrange
        link, mipha = party
        raid_id = await start_with_party(services, party)
        await services.raid.process_turn(raid_id, link["id"], roll=1)
        await services.character.revive(link["id"])

        # Act
        restored = await services.raid.restore_participant(link["id"])
        after = await services.raid.process_turn(raid_id, mipha["id"], roll=60)

        # Assert
        assert restored == [raid_id]
        assert after["next_character_id"] == link["id"]
        assert await services.raid.restore_participant(link["id"]) == []

    async def test_killing_blow_completes_raid(self, services, mock_event_bus):
        # Arrange
        link = await services.character.create_character("1", "Link", "Rudania")
        raid = await services.raid.start_raid(
            "Rudania", {"name": "Chuchu", "tier": 1, "hearts": 2}, character_id=link["id"]
        )

        # Act
        result = await services.raid.process_turn(raid["raid_id"], link["id"], roll=100)

        # Assert
        assert result["monster_defeated"] is True
        assert result["damage_dealt"] == 2
        assert result["next_character_id"] is None
        assert result["raid"]["status"] == "completed"
        assert result["raid"]["result"] == "defeated"
        completed = published_payloads(mock_event_bus, "raid.completed")
        assert completed[0]["success"] is True

    async def test_mod_character_one_hit_kill(self, services, party):
        # Arrange
        link, _ = party
        rauru = await services.character.create_character(
            "9", "Rauru", "Rudania", is_mod_character=True
        )
        raid = await services.raid.start_raid("Rudania", BOKOBLIN, character_id=link["id"])
        await services.raid.join_raid(raid["raid_id"], rauru["id"])

        # Act
        result = await services.raid.process_turn(raid["raid_id"], rauru["id"], roll=2)

        # Assert
        assert result["damage_dealt"] == 5
        assert result["hearts_lost"] == 0
        assert result["monster_defeated"] is True
        assert result["turn_advanced"] is False

    async def test_turn_after_completion_rejected(self, services):
        link = await services.character.create_character("1", "Link", "Rudania")
        raid = await services.raid.start_raid(
            "Rudania", {"name": "Chuchu", "tier": 1, "hearts": 1}, character_id=link["id"]
        )
        await services.raid.process_turn(raid["raid_id"], link["id"], roll=100)

        with pytest.raises(InvalidOperationError):
            await services.raid.process_turn(raid["raid_id"], link["id"], roll=100)

    async def test_turn_lock_released(self, services, party, fake_redis):
        link, _ = party
        raid_id = await start_with_party(services, party)

        await services.raid.process_turn(raid_id, link["id"], roll=70)

        assert f"raid:turn_lock:{raid_id}" not in fake_redis.store


@pytest.mark.integration
class TestRaidSkipsAndExits:
    """Test skips, voluntary exits and timeouts."""

    async def test_skip_twice_removes_participant(self, services, party):
        # Arrange
        link, mipha = party
        raid_id = await start_with_party(services, party)

        # Act
        first = await services.raid.skip_turn(raid_id, expected_character_id=link["id"])
        await services.raid.skip_turn(raid_id, expected_character_id=mipha["id"])
        second = await services.raid.skip_turn(raid_id, expected_character_id=link["id"])

        # Assert
        assert first["skipped"] is True
        assert first["removed"] is False
        assert first["next_character_id"] == mipha["id"]
        assert second["removed"] is True
        assert [p["name"] for p in second["raid"]["participants"]] == ["Mipha"]
        assert second["raid"]["loot_eligible_removed"] == []

    async def test_stale_skip_timer_does_nothing(self, services, party):
        link, mipha = party
        raid_id = await start_with_party(services, party)
        await services.raid.process_turn(raid_id, link["id"], roll=70)

        result = await services.raid.skip_turn(raid_id, expected_character_id=link["id"])

        assert result["skipped"] is False
        assert result["reason"] == "turn_advanced"
        assert result["next_character_id"] == mipha["id"]

    async def test_leave_keeps_loot_rights_after_damage(self, services, party):
        # Arrange
        link, mipha = party
        raid_id = await start_with_party(services, party)
        await services.raid.process_turn(raid_id, link["id"], roll=100)

        # Act
        result = await services.raid.leave_raid(raid_id, link["id"])

        # Assert
        assert result["loot_eligible"] is True
        assert result["raid"]["loot_eligible_removed"][0]["name"] == "Link"
        assert result["raid"]["current_character_id"] == mipha["id"]

    async def test_fail_raid_knocks_out_everyone(self, services, party, mock_event_bus):
        # Arrange
        link, mipha = party
        raid_id = await start_with_party(services, party)

        # Act
        first = await services.raid.fail_raid(raid_id)
        second = await services.raid.fail_raid(raid_id)

        # Assert
        assert first["failed"] is True
        assert first["raid"]["status"] == "timed_out"
        assert second["failed"] is False
        for character_id in (link["id"], mipha["id"]):
            character = await services.character.get_character(character_id)
            assert character["ko"] is True
            assert character["current_hearts"] == 0
        assert published_event_names(mock_event_bus).count("raid.failed") == 1

    async def test_cleanup_fails_only_expired_raids(self, services, party):
        # Arrange
        raid_id = await start_with_party(services, party)

        # Act
        early = await services.raid.cleanup_expired_raids(now=utc_now())
        late = await services.raid.cleanup_expired_raids(now=utc_now() + timedelta(hours=1))

        # Assert
        assert early == 0
        assert late == 1
        assert (await services.raid.get_raid(raid_id))["status"] == "timed_out"
        assert await services.raid.list_active_raids() == []
